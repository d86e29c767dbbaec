from typing import Optional

from rich import box
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from delve.delve_runtime_exec import RunResult
from delve.delve_tracer import TraceRecorder


class DelveOutput:
    """Render instrumented programs and recorded traces."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console if console is not None else Console()

    def output_source(self, source: str, title: str = "") -> None:
        if title:
            self.console.rule(title)
        self.console.print(
            Syntax(source, "python", theme="vim", line_numbers=True, code_width=None)
        )

    def trace_table(self, trace: TraceRecorder) -> Table:
        tbl = Table(
            box=box.MINIMAL_HEAVY_HEAD,
            title="Method traces",
            collapse_padding=True,
        )
        tbl.add_column("Method", style="bold cyan", no_wrap=True)
        tbl.add_column("#", style="dim", justify="right", no_wrap=True)
        tbl.add_column("Precondition", style="blue")
        tbl.add_column("Postcondition", style="green")
        for name in trace.method_names():
            for n, pair in enumerate(trace.pairs_for(name), 1):
                tbl.add_row(
                    name if n == 1 else "",
                    str(n),
                    str(pair.precondition),
                    str(pair.postcondition),
                )
        return tbl

    def output_trace(self, trace: TraceRecorder) -> bool:
        """Print the trace table; False (and nothing printed) if it is empty."""
        if not len(trace):
            return False
        self.console.print(self.trace_table(trace))
        return True

    def output_run_result(self, result: RunResult) -> None:
        if result.timed_out:
            self.console.print("[bold red]Timed out[/bold red]")
        else:
            self.console.print(f"Exit code: {result.exit_code}")
