import enum
import subprocess
import threading
from typing import Optional

from delve.delve_errors import ProcessError


class ProcessState(enum.Enum):
    RUNNING = "running"
    TERMINATED = "terminated"
    TERMINATED_BY_USER = "terminated by user"
    TIMEOUT = "timeout"


class RuntimeProcess:
    """Handle on an external process started without waiting for it."""

    def __init__(self, process: subprocess.Popen) -> None:
        self.process = process
        self._state = ProcessState.RUNNING
        self._lock = threading.Lock()

    @property
    def pid(self) -> int:
        return self.process.pid

    def terminate(self) -> ProcessState:
        """Kill the process if it is still alive."""
        with self._lock:
            if self.process.poll() is None:
                self.process.kill()
                self.process.wait()
                self._state = ProcessState.TERMINATED_BY_USER
            elif self._state != ProcessState.TERMINATED_BY_USER:
                self._state = ProcessState.TERMINATED
            return self._state

    def wait_for(self, timeout: Optional[float] = None) -> int:
        try:
            return self.process.wait(timeout)
        except subprocess.TimeoutExpired as e:
            raise ProcessError(
                "The process did not complete within "
                f"{timeout} seconds while waiting for it"
            ) from e
        except KeyboardInterrupt as e:
            raise ProcessError(
                "The process has been interrupted while waiting for completion"
            ) from e

    def get_process_state(self) -> ProcessState:
        with self._lock:
            if self._state == ProcessState.RUNNING and self.process.poll() is not None:
                self._state = ProcessState.TERMINATED
            return self._state

    def get_exit_value(self) -> Optional[int]:
        return self.process.poll()
