"""Command-line driver: instrument a program, run it, and report its trace."""

import argparse
import os
import sys
import tempfile
from typing import List, Optional

from rich.console import Console

from delve.delve_errors import DelveError
from delve.delve_instrumentation_config import InstrumentationConfig
from delve.delve_output import DelveOutput
from delve.delve_parseargs import DelveParseArgs
from delve.delve_program_executor import ProgramExecutor
from delve.delve_rewriter import SourceRewriter
from delve.delve_run_coordinator import default_coordinator
from delve.delve_runtime_exec import RuntimeExec
from delve.delve_snapshots import sort_snapshots
from delve.delve_tracer import TraceRecorder, recorder, tracing_config
from delve.delve_utility import error_message


def instrumented_source(args: argparse.Namespace, program: str) -> str:
    """The program's text with trace calls, imports and replacements applied."""
    config = config_from_args(args)
    rewriter = SourceRewriter.from_file(program)
    if args.trace_method:
        reentered = rewriter.get_reentry_instrumented_source(args.trace_method)
        return SourceRewriter(reentered).get_instrumented_source(
            False, False, config.imports, config.replacements
        )
    return rewriter.instrument(config)


def config_from_args(args: argparse.Namespace) -> InstrumentationConfig:
    return tracing_config(
        insert_entry_call=args.insert_entry_call,
        insert_exit_call=args.insert_exit_call,
        imports=tuple(args.imports),
        replacements=dict(args.replacements),
        classpath=args.classpath or None,
    )


def run_in_process(
    args: argparse.Namespace, source: str, program_args: List[str]
) -> TraceRecorder:
    recorder.clear()
    with ProgramExecutor(
        source, classpath=args.classpath or None, package=args.package
    ) as executor:
        if not executor.execute(program_args):
            error_message(f"No runnable entry point in {executor.unit_name}")
            return recorder
        if executor.exit_status:
            error_message(f"Program exited with status {executor.exit_status}")
    return recorder


def run_on_disk(
    args: argparse.Namespace,
    source: str,
    program_args: List[str],
    output: DelveOutput,
) -> Optional[TraceRecorder]:
    if args.process_id:
        default_coordinator.register([args.process_id])
    # The source is already instrumented; only compile and run it.
    config = InstrumentationConfig(
        insert_entry_call=False,
        insert_exit_call=False,
        classpath=args.classpath or None,
    )
    with tempfile.TemporaryDirectory(prefix="delve_trace_") as trace_dir:
        trace_file = os.path.join(trace_dir, "trace.pkl")
        result = ProgramExecutor.compile_and_execute_program_from_disk(
            source,
            config,
            args.disk,
            timeout_seconds=args.timeout,
            process_id=args.process_id,
            trace_file=trace_file,
            package=args.package,
            show_output=True,
            show_error=True,
            program_args=program_args,
        )
        if result is None:
            return None
        output.output_run_result(result)
        if not os.path.exists(trace_file):
            return TraceRecorder()
        return TraceRecorder.load(trace_file)


def main(argv: Optional[List[str]] = None) -> int:
    args, left = DelveParseArgs.parse_args(argv)
    RuntimeExec.debug = bool(args.debug)
    output = DelveOutput(Console())

    if args.sort_snapshots:
        sorted_snapshots = sort_snapshots(args.sort_snapshots)
        for student, snapshots in sorted_snapshots.items():
            output.console.print(f"{student}: {len(snapshots)} snapshot(s)")
        if not left:
            return 0

    program, program_args = left[0], left[1:]
    try:
        source = instrumented_source(args, program)
        if args.show_source:
            output.output_source(source, program)
        if args.disk:
            trace = run_on_disk(args, source, program_args, output)
            if trace is None:
                return 1
        else:
            trace = run_in_process(args, source, program_args)
    except DelveError as e:
        error_message(str(e))
        return 1

    output.output_trace(trace)
    if args.save_trace:
        trace.dump(args.save_trace)
    return 0


if __name__ == "__main__":
    sys.exit(main())
