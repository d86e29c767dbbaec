"""Run an external command under supervision.

`RuntimeExec` spawns the command, feeds it its input on an `InputWriter`
thread, drains its output and error streams on two `StreamReader` threads
and, when a timeout is given, lets a `RuntimeExecWorker` race the process
against the deadline. Runs that carry a registered process identifier are
serialized through a `RunCoordinator`.
"""

import os
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import IO, Dict, List, Optional, Sequence, TextIO

from delve.delve_errors import DelveError, ProcessError
from delve.delve_instrumentation_config import RunDescriptor
from delve.delve_run_coordinator import RunCoordinator, default_coordinator
from delve.delve_runtime_process import ProcessState, RuntimeProcess
from delve.delve_utility import validate_dir_to_read


@dataclass
class RunResult:
    state: ProcessState
    exit_code: Optional[int]
    output: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def timed_out(self) -> bool:
        return self.state == ProcessState.TIMEOUT

    def error_string(self) -> str:
        return "".join(line + "\n" for line in self.errors)


class StreamReader(threading.Thread):
    """Drain one stream of a child process line by line.

    Lines are buffered and echoed to `sink`, prefixed with `label>` if a
    label is given.
    """

    def __init__(
        self, stream: IO[str], label: Optional[str] = None, sink: Optional[TextIO] = None
    ) -> None:
        super().__init__(daemon=True)
        self.stream = stream
        self.label = label
        self.sink = sink
        self._lock = threading.Lock()
        self._buffer: List[str] = []

    def run(self) -> None:
        for line in iter(self.stream.readline, ""):
            line = line.rstrip("\r\n")
            with self._lock:
                self._buffer.append(line)
            if self.sink is not None:
                prefix = f"{self.label}>" if self.label else ""
                print(prefix + line, file=self.sink)
        try:
            self.stream.close()
        except OSError:
            pass

    def get_buffer(self) -> List[str]:
        with self._lock:
            return list(self._buffer)


class RuntimeExecWorker(threading.Thread):
    """Wait for a process; `exit_value` stays None until it exits."""

    def __init__(self, process: subprocess.Popen) -> None:
        super().__init__(daemon=True)
        self.process = process
        self.exit_value: Optional[int] = None

    def run(self) -> None:
        self.exit_value = self.process.wait()


class InputWriter(threading.Thread):
    """Feed input lines to a process; the first write failure is kept in `error`."""

    def __init__(self, stream: IO[str], input_lines: Sequence[str]) -> None:
        super().__init__(daemon=True)
        self.stream = stream
        self.input_lines = input_lines
        self.error: Optional[OSError] = None

    def run(self) -> None:
        try:
            for line in self.input_lines:
                self.stream.write(line if line.endswith("\n") else line + "\n")
                self.stream.flush()
        except OSError as e:
            self.error = e
        finally:
            try:
                self.stream.close()
            except OSError as e:
                if self.error is None:
                    print(
                        f"Error closing the process input. Details:\n{e}",
                        file=sys.stderr,
                    )


class RuntimeExec:
    """One external command and the way it is run."""

    debug = False

    def __init__(
        self,
        cmd: Sequence[str],
        working_dir: Optional[str] = None,
        input_lines: Optional[Sequence[str]] = None,
        env: Optional[Dict[str, str]] = None,
        show_output: bool = True,
        show_error: bool = True,
        label_streams: bool = False,
        process_id: Optional[str] = None,
        coordinator: Optional[RunCoordinator] = None,
        timeout: Optional[float] = None,
    ) -> None:
        if not cmd or not cmd[0] or not cmd[0].strip():
            raise DelveError("No command path")
        for index, arg in enumerate(cmd):
            if arg is None:
                raise DelveError(f"Command argument 'cmd[{index}]' is null")
        if working_dir is not None:
            validate_dir_to_read(working_dir)
        self.cmd = list(cmd)
        self.working_dir = working_dir
        self.input_lines = list(input_lines) if input_lines is not None else None
        self.env = env
        self.show_output = show_output
        self.show_error = show_error
        self.label_streams = label_streams
        self.process_id = process_id
        self.coordinator = coordinator if coordinator is not None else default_coordinator
        # Used by `run_command` when it is not given a timeout of its own.
        self.timeout = timeout

    @classmethod
    def from_descriptor(
        cls, descriptor: RunDescriptor, coordinator: Optional[RunCoordinator] = None
    ) -> "RuntimeExec":
        return cls(
            descriptor.command,
            working_dir=descriptor.working_dir,
            input_lines=descriptor.input_lines or None,
            env=descriptor.env,
            show_output=descriptor.show_output,
            show_error=descriptor.show_error,
            label_streams=descriptor.label_streams,
            process_id=descriptor.process_id,
            coordinator=coordinator,
            timeout=descriptor.timeout_seconds,
        )

    def get_cmd_description(self) -> str:
        description = "Cmd -->" + " ".join(self.cmd)
        if self.env:
            description += "\nEnv -->" + " ".join(
                f"{key}={value}" for key, value in self.env.items()
            )
        return description

    def __str__(self) -> str:
        return self.get_cmd_description()

    def _spawn(self, capture: bool = True) -> subprocess.Popen:
        shown = subprocess.PIPE if capture else None
        if self.debug:
            print(self.get_cmd_description())
        try:
            return subprocess.Popen(
                self.cmd,
                cwd=self.working_dir,
                env=self.env,
                stdin=subprocess.PIPE if self.input_lines is not None else subprocess.DEVNULL,
                stdout=shown if self.show_output else subprocess.DEVNULL,
                stderr=shown if self.show_error else subprocess.DEVNULL,
                text=True,
                errors="replace",
                close_fds=True,
                shell=False,
            )
        except OSError as e:
            raise ProcessError(
                f"Error executing '{' '.join(self.cmd)}'. Details: \n{e}"
            ) from e

    def _write_input(self, process: subprocess.Popen) -> Optional[InputWriter]:
        if self.input_lines is None or process.stdin is None:
            return None
        if self.debug:
            # Never trace the input itself: it can contain credentials.
            print(f"Input length={len(self.input_lines)}")
        writer = InputWriter(process.stdin, self.input_lines)
        writer.start()
        return writer

    def run_command_no_wait(self) -> RuntimeProcess:
        """Start the command and return at once; shown streams are inherited."""
        return RuntimeProcess(self._spawn(capture=False))

    def run_command(self, timeout: Optional[float] = None) -> RunResult:
        """Run the command to completion, or until `timeout` seconds pass.

        Without a `timeout` argument the one given at construction applies.
        """
        if timeout is None:
            timeout = self.timeout
        start = time.monotonic()
        semaphore = self.coordinator.acquire(self.process_id)
        if semaphore is not None and self.debug:
            print(f"Acquired semaphore after {time.monotonic() - start:.0f} seconds")
        try:
            return self._run(timeout)
        finally:
            if semaphore is not None:
                semaphore.release()

    def _run(self, timeout: Optional[float]) -> RunResult:
        process = self._spawn()
        label_out = "OUTPUT" if self.label_streams else None
        label_err = "ERROR" if self.label_streams else None
        output_reader = error_reader = None
        if self.show_output and process.stdout is not None:
            output_reader = StreamReader(process.stdout, label_out, sys.stdout)
            output_reader.start()
        if self.show_error and process.stderr is not None:
            error_reader = StreamReader(process.stderr, label_err, sys.stderr)
            error_reader.start()
        # The deadline covers feeding the input.
        writer = self._write_input(process)

        if timeout is not None and timeout > 0:
            worker = RuntimeExecWorker(process)
            worker.start()
            worker.join(timeout)
            if worker.exit_value is None:
                if self.debug:
                    print("run_command: process timed out")
                process.kill()
                process.wait()
                # The readers and the writer are abandoned; they finish once
                # the pipes close.
                return RunResult(
                    ProcessState.TIMEOUT,
                    None,
                    output_reader.get_buffer() if output_reader else [],
                    error_reader.get_buffer() if error_reader else [],
                )
            exit_code = worker.exit_value
        else:
            if self.debug:
                print("Waiting for the process to terminate")
            exit_code = process.wait()

        for reader in (output_reader, error_reader):
            if reader is not None:
                reader.join()
        if writer is not None:
            writer.join()
            if writer.error is not None:
                raise ProcessError(
                    f"Error processing the input. Details: \n{writer.error}"
                ) from writer.error
        result = RunResult(
            ProcessState.TERMINATED,
            exit_code,
            output_reader.get_buffer() if output_reader else [],
            error_reader.get_buffer() if error_reader else [],
        )
        if self.debug:
            print(f"run_command: process returns {exit_code}")
        return result


def child_env(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """The current environment, with `delve` importable and `extra` applied."""
    env = dict(os.environ)
    package_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    pythonpath = env.get("PYTHONPATH")
    env["PYTHONPATH"] = (
        package_root + os.pathsep + pythonpath if pythonpath else package_root
    )
    if extra:
        env.update(extra)
    return env
