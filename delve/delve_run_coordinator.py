import contextlib
import sys
import threading
from typing import Dict, Iterable, Iterator, Optional


class RunCoordinator:
    """Serializes external runs that share a process identifier.

    Identifiers are case-insensitive. Only registered identifiers are
    serialized: `acquire` returns None for an unknown one and the run goes
    ahead concurrently. Register and reset between runs, not during them.
    """

    def __init__(self, process_ids: Optional[Iterable[str]] = None) -> None:
        self._lock = threading.Lock()
        self._semaphores: Dict[str, threading.Semaphore] = {}
        if process_ids is not None:
            self.register(process_ids)

    @staticmethod
    def key(process_id: str) -> str:
        return process_id.strip().lower()

    def register(self, process_ids: Iterable[str]) -> None:
        if process_ids is None:
            raise ValueError("The list with the process IDs is null")
        with self._lock:
            for process_id in process_ids:
                key = self.key(process_id)
                if key in self._semaphores:
                    print(
                        f'There already exists an execution semaphore for process ID "{process_id}"',
                        file=sys.stderr,
                    )
                    continue
                self._semaphores[key] = threading.Semaphore(1)

    def reset(self) -> None:
        with self._lock:
            self._semaphores.clear()

    def is_registered(self, process_id: Optional[str]) -> bool:
        if process_id is None:
            return False
        with self._lock:
            return self.key(process_id) in self._semaphores

    def semaphore(self, process_id: Optional[str]) -> Optional[threading.Semaphore]:
        if process_id is None:
            return None
        with self._lock:
            return self._semaphores.get(self.key(process_id))

    def acquire(self, process_id: Optional[str]) -> Optional[threading.Semaphore]:
        """Block until the run may start; return the semaphore to release, if any."""
        semaphore = self.semaphore(process_id)
        if semaphore is not None:
            semaphore.acquire()
        return semaphore

    def release(self, process_id: Optional[str]) -> None:
        semaphore = self.semaphore(process_id)
        if semaphore is not None:
            semaphore.release()

    @contextlib.contextmanager
    def serialized(self, process_id: Optional[str]) -> Iterator[None]:
        semaphore = self.acquire(process_id)
        try:
            yield
        finally:
            if semaphore is not None:
                semaphore.release()


# Shared by callers that do not pass their own coordinator.
default_coordinator = RunCoordinator()
