"""Child-side runner for out-of-process runs.

    python -m delve.delve_launch --classpath <cp> <unit> [args...]

Puts the classpath on `sys.path`, imports the unit, and runs its entry point
the same way `ProgramExecutor` does in process. If `DELVE_TRACE_FILE` is set,
the recorded trace is dumped there when the run ends.
"""

import argparse
import importlib
import importlib.util
import sys
from typing import List, Optional

from delve.delve_entry_points import NoEntry, classify_entry_point
from delve.delve_program_executor import entry_callable
from delve.delve_source_model import SourceModel
from delve.delve_tracer import dump_if_requested
from delve.delve_utility import classpath_entries, error_message


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="delve.delve_launch")
    parser.add_argument("--classpath", "-classpath", default="")
    parser.add_argument("unit")
    parser.add_argument("args", nargs=argparse.REMAINDER)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    for entry in reversed(classpath_entries(args.classpath)):
        sys.path.insert(0, entry)

    try:
        spec = importlib.util.find_spec(args.unit)
    except ModuleNotFoundError:
        # missing parent package
        spec = None
    if spec is None or spec.origin is None:
        error_message(f"Unit not found: {args.unit}")
        return 1
    with open(spec.origin, encoding="utf-8") as f:
        model = SourceModel(f.read())
    class_name = args.unit.rpartition(".")[2]
    entry = classify_entry_point(model.methods, class_name)
    if isinstance(entry, NoEntry):
        error_message(f"No runnable entry point in {args.unit}")
        return 1

    try:
        module = importlib.import_module(args.unit)
        execution_unit = getattr(module, class_name, None)
        function = entry_callable(entry, module, execution_unit, args.args)
        assert function is not None
        function()
    finally:
        dump_if_requested()
    return 0


if __name__ == "__main__":
    sys.exit(main())
