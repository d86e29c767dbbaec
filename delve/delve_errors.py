"""Exceptions raised by Delve.

Every failure surfaces as a `DelveError` (or a subclass) whose message is
human readable; the original cause, if any, is chained with `raise ... from`.
"""


class DelveError(Exception):
    """Base class for all Delve failures."""

    def details(self) -> str:
        """Return the message followed by the messages of all chained causes."""
        messages = [str(self)]
        cause = self.__cause__
        while cause is not None:
            messages.append(f"{type(cause).__name__}: {cause}")
            cause = cause.__cause__
        return "\n".join(messages)


class DelveParseError(DelveError):
    """The source text could not be parsed into a method model."""

    def __init__(self, message: str, source: str = "") -> None:
        super().__init__(message)
        self.source = source


class CompilationError(DelveError):
    """Compiling the materialized sources on disk failed."""


class UnitNotFoundError(DelveError):
    """A unit is neither in memory nor on any configured classpath entry."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unit not found: {name}")
        self.name = name


class ExecutionError(DelveError):
    """Invoking a discovered entry point failed."""


class InstantiationError(ExecutionError):
    """The execution class could not be instantiated with no arguments."""


class ProcessError(DelveError):
    """An external process could not be spawned or fed its input."""
