"""Run student programs, in process or in a supervised child process."""

import os
import pathlib
import shutil
import threading
from types import ModuleType
from typing import Any, Callable, Dict, List, Optional, Sequence

from rich.console import Console

from delve import delve_compiler
from delve.delve_config import (
    PYTHON_BIN,
    PYTHON_HOME_BIN_SUBPATH,
    PYTHON_HOME_ENV_VAR,
    TRACE_FILE_ENV_VAR,
)
from delve.delve_entry_points import (
    MAIN_METHOD_NAME,
    RUN_METHOD_NAME,
    EntryPoint,
    InstanceEntry,
    MainEntry,
    classify_entry_point,
)
from delve.delve_errors import DelveError, ExecutionError, InstantiationError
from delve.delve_instrumentation_config import InstrumentationConfig
from delve.delve_memory_loader import MemoryUnitLoader
from delve.delve_rewriter import SourceRewriter
from delve.delve_run_coordinator import RunCoordinator
from delve.delve_runtime_exec import RunResult, RuntimeExec, child_env
from delve.delve_source_model import SourceModel
from delve.delve_utility import (
    error_message,
    find_binary_on_env_var,
    join_classpath,
    unit_name_to_relative_path,
    validate_dir_to_write,
)


def find_runtime_binary() -> Optional[str]:
    """The interpreter for child runs: on PATH, else under PYTHONHOME."""
    return find_binary_on_env_var("PATH", None, PYTHON_BIN) or find_binary_on_env_var(
        PYTHON_HOME_ENV_VAR, PYTHON_HOME_BIN_SUBPATH, PYTHON_BIN
    )


def entry_callable(
    entry: EntryPoint,
    module: ModuleType,
    execution_unit: Optional[type],
    args: Sequence[str] = (),
) -> Optional[Callable[[], Any]]:
    """Bind an entry point to the loaded code; None for `NoEntry`."""
    if isinstance(entry, MainEntry):
        owner = execution_unit if entry.owner is not None else module
        main = getattr(owner, MAIN_METHOD_NAME)
        return lambda: main(list(args))
    if isinstance(entry, InstanceEntry):
        assert execution_unit is not None
        try:
            instance = execution_unit()
        except (SystemExit, KeyboardInterrupt):
            raise
        except Exception as e:
            raise InstantiationError(
                f"Error instantiating {execution_unit.__name__}. Details: \n{e}"
            ) from e
        return getattr(instance, RUN_METHOD_NAME)
    return None


def exit_status(e: SystemExit) -> int:
    """The process exit status `sys.exit(code)` stands for."""
    if e.code is None:
        return 0
    if isinstance(e.code, int):
        return e.code
    return 1


class ProgramExecutor:
    """Compile a program in memory, load it and run its entry point.

    The execution unit is the program's first top-level class. The loaded
    modules stay importable until `close()`.
    """

    def __init__(
        self,
        source: str,
        required_source_files: Optional[Sequence[str]] = None,
        classpath: Optional[str] = None,
        package: Optional[str] = None,
    ) -> None:
        if source is None:
            raise DelveError("Argument 'sourceCode' is null")
        self.source = source
        self.unit_name = delve_compiler.get_fully_qualified_unit_name(source, package)
        self.class_name = self.unit_name.rpartition(".")[2]
        units = delve_compiler.compile_units(
            source, self.unit_name, required_source_files, classpath
        )
        # Threads started by module top-level code count toward the delta.
        self.initial_number_of_threads = threading.active_count()
        self.loader = MemoryUnitLoader(units, classpath)
        try:
            self.modules: List[ModuleType] = self.loader.load_all_units()
            self.module = self.loader.load_unit(self.unit_name)
        except BaseException:
            self.loader.close()
            raise
        execution_unit = getattr(self.module, self.class_name, None)
        if not isinstance(execution_unit, type):
            self.loader.close()
            raise DelveError(f"No matching class for the given source code:\n{source}")
        self.execution_unit: type = execution_unit
        self.entry_point = classify_entry_point(
            SourceModel(source).methods, self.class_name
        )
        self.exit_status: Optional[int] = None

    def __enter__(self) -> "ProgramExecutor":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        self.loader.close()

    # ------------------------------------------------------------------ #
    # In-process execution                                               #
    # ------------------------------------------------------------------ #

    def execute_main_method(self, args: Sequence[str] = ()) -> bool:
        """Run `main(args)` if the program has one; False otherwise."""
        if not isinstance(self.entry_point, MainEntry):
            return False
        main = entry_callable(self.entry_point, self.module, self.execution_unit, args)
        assert main is not None
        return self._invoke(main, "'main(args)'")

    def execute_run_method(self) -> bool:
        """Instantiate the execution class and call `run()`; False if there is none."""
        if not isinstance(self.entry_point, InstanceEntry):
            return False
        run = entry_callable(self.entry_point, self.module, self.execution_unit)
        assert run is not None
        return self._invoke(run, "'run()'")

    def execute(self, args: Sequence[str] = ()) -> bool:
        """Run the entry point; False means the program has none."""
        return self.execute_main_method(args) or self.execute_run_method()

    def _invoke(self, function: Callable[[], Any], description: str) -> bool:
        try:
            function()
        except SystemExit as e:
            self.exit_status = exit_status(e)
            return True
        except KeyboardInterrupt:
            raise
        except Exception as e:
            raise ExecutionError(
                f"Error running {description} in class {self.unit_name}. "
                f"Details: \n{type(e).__name__}: {e}"
            ) from e
        self.exit_status = 0
        return True

    def thread_count_delta(self) -> int:
        return threading.active_count() - self.initial_number_of_threads

    def print_num_of_threads(self, console: Optional[Console] = None) -> None:
        if console is None:
            console = Console()
        total = threading.active_count()
        console.print(
            f"     Total number of threads: {self.thread_count_delta() + 1}"
            f"  -  All Python threads: {total}"
        )

    # ------------------------------------------------------------------ #
    # One-shot helpers                                                   #
    # ------------------------------------------------------------------ #

    @staticmethod
    def execute_program(source: str, config: InstrumentationConfig) -> bool:
        """Instrument `source` per `config`, then compile and run it in process."""
        if source is None:
            raise DelveError("Argument 'sourceCode' is null")
        instrumented = SourceRewriter(source).instrument(config)
        try:
            executor = ProgramExecutor(
                instrumented, config.source_files, config.classpath
            )
        except DelveError as e:
            raise DelveError(
                f"Error executing the following source code:\n{source}\nDetails: \n{e}"
            ) from e
        with executor:
            return executor.execute()

    @staticmethod
    def execute_program_file(
        pathname: str,
        imports: Optional[Sequence[str]] = None,
        replacements: Optional[Dict[str, str]] = None,
        classpath: Optional[str] = None,
    ) -> bool:
        """Run a program file after inserting `imports` and applying `replacements`."""
        if pathname is None:
            raise DelveError("Argument 'sourceFile' is null")
        instrumented = SourceRewriter.from_file(pathname).get_instrumented_source(
            False, False, imports, replacements
        )
        try:
            executor = ProgramExecutor(instrumented, classpath=classpath)
        except DelveError as e:
            raise DelveError(
                f"Error executing program in file '{pathname}'. Details: \n{e}"
            ) from e
        with executor:
            return executor.execute()

    @staticmethod
    def compile_and_execute_program_from_disk(
        source: str,
        config: InstrumentationConfig,
        dest_dir: str,
        timeout_seconds: Optional[float] = None,
        process_id: Optional[str] = None,
        coordinator: Optional[RunCoordinator] = None,
        trace_file: Optional[str] = None,
        package: Optional[str] = None,
        show_output: bool = False,
        show_error: bool = False,
        program_args: Sequence[str] = (),
    ) -> Optional[RunResult]:
        """Instrument, write, byte-compile and run `source` in a child interpreter.

        Returns None, after telling the user, when no interpreter is found;
        that check happens before any other work.
        """
        python_bin = find_runtime_binary()
        if python_bin is None:
            error_message(
                f"The {PYTHON_BIN} binary is not found\n"
                f"Set the environment variable {PYTHON_HOME_ENV_VAR} to its "
                "location and try again"
            )
            return None
        if source is None:
            raise DelveError("Argument 'sourceCode' is null")

        os.makedirs(dest_dir, exist_ok=True)
        validate_dir_to_write(dest_dir)
        instrumented = SourceRewriter(source).instrument(config)
        unit_name = delve_compiler.get_fully_qualified_unit_name(instrumented, package)
        program_file = pathlib.Path(dest_dir) / unit_name_to_relative_path(unit_name)
        program_file.parent.mkdir(parents=True, exist_ok=True)
        program_file.write_text(instrumented, encoding="utf-8")

        files = [str(program_file)]
        for pathname in config.source_files:
            copy = pathlib.Path(dest_dir) / os.path.basename(pathname)
            if pathlib.Path(pathname).resolve() != copy.resolve():
                shutil.copyfile(pathname, copy)
            files.append(str(copy))
        delve_compiler.compile(config.classpath, dest_dir, files)

        classpath = join_classpath([config.classpath, os.path.abspath(dest_dir)])
        cmd = [
            python_bin, "-m", "delve.delve_launch", "--classpath", classpath, unit_name,
            *program_args,
        ]
        extra = {TRACE_FILE_ENV_VAR: trace_file} if trace_file else None
        runtime_exec = RuntimeExec(
            cmd,
            env=child_env(extra),
            show_output=show_output,
            show_error=show_error,
            process_id=process_id,
            coordinator=coordinator,
        )
        return runtime_exec.run_command(timeout_seconds)
