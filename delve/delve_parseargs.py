import argparse
import re
import sys
from textwrap import dedent
from typing import IO, List, Optional, Tuple

from rich.console import Console
from rich.markup import escape

from delve.delve_arguments import DelveArguments
from delve.delve_config import delve_date, delve_version

# (pattern, style, flags) applied in order to escaped help text
_HELP_STYLES = [
    (r"^(usage:|options:|positional arguments:|optional arguments:)", "bold blue", re.M),
    (r"(?<=usage:\[/bold blue\] )(\S+)", "bold magenta", 0),
    # example command lines in the description
    (r"^(  % .*)$", "green", re.M),
    (r"(?<=[\s\[])(---)(?=[\s\]])", "bold magenta", 0),
    (r"(?<=^  )(--[a-zA-Z][\w-]*)|(?<=, )(--[a-zA-Z][\w-]*)", "bold cyan", re.M),
    (r"(?<=\[/bold cyan\] )([A-Z][A-Z0-9_=]*)\b", "yellow", 0),
]


def _style_help(text: str) -> str:
    """Turn argparse output into Rich markup; literal brackets stay literal."""
    text = escape(text)
    for pattern, style, flags in _HELP_STYLES:
        text = re.sub(
            pattern,
            lambda match: f"[{style}]{match.group(0)}[/{style}]",
            text,
            flags=flags,
        )
    return text


class DelveArgParser(argparse.ArgumentParser):
    """ArgumentParser whose help, usage and errors are rendered with Rich."""

    def _print_message(self, message: Optional[str], file: Optional[IO[str]] = None) -> None:
        if not message:
            return
        console = Console(file=file if file is not None else sys.stderr, highlight=False)
        console.print(_style_help(message), end="", soft_wrap=True)


def parse_replacement(text: str) -> Tuple[str, str]:
    """Split ``PATTERN=REPLACEMENT`` at the first ``=``."""
    pattern, sep, replacement = text.partition("=")
    if not sep or not pattern:
        raise argparse.ArgumentTypeError(
            f"'{text}' is not of the form PATTERN=REPLACEMENT"
        )
    return pattern, replacement


def positive_float(text: str) -> float:
    try:
        value = float(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{text}' is not a number") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"'{text}' must be positive")
    return value


class DelveParseArgs:
    @staticmethod
    def parse_args(
        argv: Optional[List[str]] = None,
    ) -> Tuple[argparse.Namespace, List[str]]:
        """Parse Delve's options; returns them and the program with its arguments."""
        if argv is None:
            argv = sys.argv[1:]
        defaults = DelveArguments()
        usage = dedent(
            rf"""Delve: trace method entries and exits of student programs, version {delve_version} ({delve_date})

command-line:
  % delve [options] your_program.py [--- --your_program_args]
or
  % python3 -m delve [options] your_program.py [--- --your_program_args]

"""
        )
        parser = DelveArgParser(
            prog="delve",
            description=usage,
            formatter_class=argparse.RawTextHelpFormatter,
            allow_abbrev=False,
        )
        parser.add_argument(
            "--version",
            dest="version",
            action="store_const",
            const=True,
            help="prints the version number for this release of Delve and exits",
        )
        parser.add_argument(
            "--classpath",
            dest="classpath",
            type=str,
            default=defaults.classpath,
            help="directories and archives (separated by the path separator) "
            "searched for the program's imports",
        )
        parser.add_argument(
            "--import",
            dest="imports",
            action="append",
            default=defaults.imports,
            metavar="NAME",
            help="import to add to the program (repeatable); a dotted name "
            "a.b.Name becomes 'from a.b import Name'",
        )
        parser.add_argument(
            "--replace",
            dest="replacements",
            action="append",
            type=parse_replacement,
            default=defaults.replacements,
            metavar="PATTERN=REPLACEMENT",
            help="regular expression rewrite applied before instrumenting (repeatable)",
        )
        parser.add_argument(
            "--no-entry",
            dest="insert_entry_call",
            action="store_false",
            default=defaults.insert_entry_call,
            help="do not insert method entry calls",
        )
        parser.add_argument(
            "--no-exit",
            dest="insert_exit_call",
            action="store_false",
            default=defaults.insert_exit_call,
            help="do not insert method exit calls",
        )
        parser.add_argument(
            "--trace-method",
            dest="trace_method",
            type=str,
            default=defaults.trace_method,
            metavar="NAME",
            help="instead of instrumenting every method, make run() trace a single call of NAME",
        )
        parser.add_argument(
            "--disk",
            dest="disk",
            type=str,
            default=defaults.disk,
            metavar="DIR",
            help="byte-compile into DIR and run in a separate interpreter "
            "(default: run in this process)",
        )
        parser.add_argument(
            "--timeout",
            dest="timeout",
            type=positive_float,
            default=defaults.timeout,
            metavar="SECS",
            help="kill the separate interpreter after SECS seconds (requires --disk)",
        )
        parser.add_argument(
            "--process-id",
            dest="process_id",
            type=str,
            default=defaults.process_id,
            metavar="ID",
            help="serialize runs that share this identifier (requires --disk)",
        )
        parser.add_argument(
            "--package",
            dest="package",
            type=str,
            default=defaults.package,
            metavar="PKG",
            help="package the program's unit belongs to",
        )
        parser.add_argument(
            "--show-source",
            dest="show_source",
            action="store_const",
            const=True,
            default=defaults.show_source,
            help="print the instrumented source before running it",
        )
        parser.add_argument(
            "--save-trace",
            dest="save_trace",
            type=str,
            default=defaults.save_trace,
            metavar="FILE",
            help="save the recorded trace to FILE",
        )
        parser.add_argument(
            "--sort-snapshots",
            dest="sort_snapshots",
            type=str,
            default=defaults.sort_snapshots,
            metavar="DIR",
            help="organize the student snapshots in DIR and exit",
        )
        parser.add_argument(
            "--debug", dest="debug", action="store_const", const=True,
            default=defaults.debug, help=argparse.SUPPRESS,
        )
        # collect all arguments after "---", which Delve passes to the program
        parser.add_argument(
            "---",
            dest="unused_args",
            default=[],
            help=argparse.SUPPRESS,
            nargs=argparse.REMAINDER,
        )
        args, left = parser.parse_known_args(argv)
        left += args.unused_args

        if args.timeout is not None and not args.disk:
            parser.error("--timeout requires --disk")
        if args.process_id is not None and not args.disk:
            parser.error("--process-id requires --disk")
        if args.trace_method is not None and not args.insert_entry_call:
            parser.error("--trace-method cannot be combined with --no-entry")

        if args.version:
            print(f"Delve version {delve_version} ({delve_date})")
            sys.exit(0)
        # Nothing to do: print the usage information and bail.
        if not left and not args.sort_snapshots:
            parser.print_help(sys.stderr)
            sys.exit(-1)
        return args, left
