"""Runtime side of instrumentation.

Instrumented programs call `self.method_entry()` and
`self.method_exit("name")`; classes get those methods by inheriting from
`TracedProgram`. Every matched entry/exit pair is recorded as a
`PrePostConditionPair` of the receiver's attribute state.
"""

import os
import pickle
import sys
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, DefaultDict, Dict, List, Optional, Tuple

import cloudpickle

from delve.delve_config import TRACE_FILE_ENV_VAR
from delve.delve_instrumentation_config import InstrumentationConfig


@dataclass(frozen=True, order=True)
class State:
    """Snapshot of an object's attributes as (name, repr) pairs, sorted by name."""

    values: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def capture(cls, obj: Any) -> "State":
        try:
            attributes = vars(obj)
        except TypeError:
            # __slots__ classes
            attributes = {
                name: getattr(obj, name)
                for name in getattr(type(obj), "__slots__", ())
                if hasattr(obj, name)
            }
        values = []
        for name, value in sorted(attributes.items()):
            try:
                text = repr(value)
            except Exception as e:
                text = f"<{type(value).__name__}: repr failed with {e!r}>"
            values.append((name, text))
        return cls(tuple(values))

    def as_dict(self) -> Dict[str, str]:
        return dict(self.values)

    def __str__(self) -> str:
        return ", ".join(f"{name}={value}" for name, value in self.values)


@dataclass(frozen=True, order=True)
class PrePostConditionPair:
    precondition: State
    postcondition: State

    def __str__(self) -> str:
        return f"{self.precondition}\n{self.postcondition}"


class TraceRecorder:
    """Collects pre/post states per method name.

    Entries are kept on a per-thread stack together with the name of the
    method that made them; an exit pops back to the matching entry, so an
    entry whose exit never ran (an exception, a suppressed exit) is discarded.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._local = threading.local()
        self.pairs: DefaultDict[str, List[PrePostConditionPair]] = defaultdict(list)

    def _stack(self) -> List[Tuple[str, State]]:
        if not hasattr(self._local, "stack"):
            self._local.stack = []
        return self._local.stack  # type: ignore[no-any-return]

    def enter(self, obj: Any, method_name: str) -> None:
        self._stack().append((method_name, State.capture(obj)))

    def exit(self, obj: Any, method_name: str) -> Optional[PrePostConditionPair]:
        stack = self._stack()
        if not stack:
            return None
        names = [name for name, _ in stack]
        if method_name in names:
            index = len(names) - 1 - names[::-1].index(method_name)
        else:
            # A wrapper that traces a call on behalf of another method.
            index = len(stack) - 1
        precondition = stack[index][1]
        del stack[index:]
        pair = PrePostConditionPair(precondition, State.capture(obj))
        with self._lock:
            self.pairs[method_name].append(pair)
        return pair

    def method_names(self) -> List[str]:
        with self._lock:
            return sorted(self.pairs)

    def pairs_for(self, method_name: str) -> List[PrePostConditionPair]:
        with self._lock:
            return list(self.pairs.get(method_name, []))

    def clear(self) -> None:
        with self._lock:
            self.pairs.clear()
        self._local = threading.local()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(pairs) for pairs in self.pairs.values())

    def dump(self, pathname: str) -> None:
        """Write the recorded pairs to `pathname`."""
        with self._lock:
            payload = {name: list(pairs) for name, pairs in self.pairs.items()}
        with open(pathname, "wb") as out_file:
            cloudpickle.dump(payload, out_file)

    @classmethod
    def load(cls, pathname: str) -> "TraceRecorder":
        recorder = cls()
        with open(pathname, "rb") as file:
            unpickler = pickle.Unpickler(file)
            try:
                payload = unpickler.load()
            except EOFError:
                # The run died before dumping anything.
                payload = {}
        for name, pairs in payload.items():
            recorder.pairs[name].extend(pairs)
        return recorder


recorder = TraceRecorder()


def dump_if_requested() -> Optional[str]:
    """Dump the process-wide recorder if the trace file variable is set."""
    pathname = os.environ.get(TRACE_FILE_ENV_VAR)
    if pathname:
        recorder.dump(pathname)
    return pathname


class TracedProgram:
    """Mixin providing the calls inserted by the rewriter."""

    def method_entry(self) -> None:
        # The caller is the traced method itself.
        recorder.enter(self, sys._getframe(1).f_code.co_name)

    def method_exit(self, method_name: str) -> None:
        recorder.exit(self, method_name)


TRACING_IMPORT = "from delve.delve_tracer import TracedProgram"

# Make every top-level class inherit the trace calls. The mixin goes after
# the existing bases so a subclass of an already traced class keeps a
# consistent MRO; keyword arguments such as `metaclass=` stay last.
TRACING_REPLACEMENTS = {
    r"(?m)^class (\w+)\s*(?:\(\s*(?:object)?\s*\))?\s*:": r"class \1(TracedProgram):",
    (
        r"(?m)^class (\w+)\s*\((?![^()]*\bTracedProgram\b)\s*([^()=:]*?[^\s(),=:])"
        r"\s*(,\s*\w+\s*=[^()]*?)?,?\s*\)\s*:"
    ): r"class \1(\2, TracedProgram\3):",
    r"(?m)^class (\w+)\s*\((?![^()]*\bTracedProgram\b)\s*(\w+\s*=[^()]*?)\s*\)\s*:": (
        r"class \1(TracedProgram, \2):"
    ),
}


def tracing_config(**overrides: Any) -> InstrumentationConfig:
    """An `InstrumentationConfig` whose output runs against this module."""
    imports = (TRACING_IMPORT, *overrides.pop("imports", ()))
    replacements = {**TRACING_REPLACEMENTS, **overrides.pop("replacements", {})}
    return InstrumentationConfig(
        imports=imports, replacements=replacements, **overrides
    )
