from dataclasses import dataclass
from typing import Optional, Sequence, Union

from delve.delve_source_model import MethodDescriptor

MAIN_METHOD_NAME = "main"
RUN_METHOD_NAME = "run"


@dataclass(frozen=True)
class MainEntry:
    """`main(args)`: a module-level function or a static method of `owner`."""

    method: MethodDescriptor

    @property
    def owner(self) -> Optional[str]:
        return self.method.owner


@dataclass(frozen=True)
class InstanceEntry:
    """`run(self)` on an instance of `owner` built with no arguments."""

    method: MethodDescriptor

    @property
    def owner(self) -> str:
        assert self.method.owner is not None
        return self.method.owner


@dataclass(frozen=True)
class NoEntry:
    """No runnable entry point; a valid outcome, not an error."""


EntryPoint = Union[MainEntry, InstanceEntry, NoEntry]


def is_main_method(method: MethodDescriptor, owner: Optional[str]) -> bool:
    return (
        method.name == MAIN_METHOD_NAME
        and method.is_public
        and method.is_static
        and method.owner in (owner, None)
        and len(method.parameters) == 1
        and not method.parameters[0].startswith("*")
        and method.is_void
    )


def is_run_method(method: MethodDescriptor, owner: Optional[str]) -> bool:
    return (
        method.name == RUN_METHOD_NAME
        and method.is_public
        and not method.is_static
        and owner is not None
        and method.owner == owner
        and not method.parameters
        and method.is_void
    )


def classify_entry_point(
    methods: Sequence[MethodDescriptor], owner: Optional[str]
) -> EntryPoint:
    """Pick the entry point of the unit whose execution class is `owner`.

    A `main(args)` wins over `run(self)`; a static `main` of the class wins
    over a module-level one.
    """
    mains = [m for m in methods if is_main_method(m, owner)]
    if mains:
        mains.sort(key=lambda m: m.owner is None)
        return MainEntry(mains[0])
    for method in methods:
        if is_run_method(method, owner):
            return InstanceEntry(method)
    return NoEntry()
