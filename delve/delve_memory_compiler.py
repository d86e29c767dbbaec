"""Compile in-memory sources into marshalled code objects."""

import marshal
import sys
import warnings
from typing import Any, Callable, List, Optional, Sequence, TextIO

from delve.delve_errors import DelveError, UnitNotFoundError
from delve.delve_memory_loader import MemoryUnitLoader
from delve.delve_memory_units import CompiledOutputBuffer, CompiledUnitSet, UnitSource


class Diagnostic:
    def __init__(
        self, severity: str, location: str, line: Optional[int], message: str
    ) -> None:
        self.severity = severity
        self.location = location
        self.line = line
        self.message = message

    def __str__(self) -> str:
        where = self.location if self.line is None else f"{self.location}:{self.line}"
        return f"{self.severity} {where}: {self.message}"


class MemoryCompiler:
    """Compile a batch of `UnitSource`s without touching the filesystem.

    Options are fixed: every warning is recorded (deprecation warnings
    included) and reported as a diagnostic. A batch either compiles as a
    whole or not at all.
    """

    def __init__(self) -> None:
        self._units: Optional[CompiledUnitSet] = None
        self.diagnostics: List[Diagnostic] = []

    def compile(
        self,
        units: Sequence[UnitSource],
        err: Optional[TextIO] = None,
        sourcepath: Optional[str] = None,
        classpath: Optional[str] = None,
    ) -> Optional[CompiledUnitSet]:
        """Return the compiled units, or None after writing diagnostics to `err`.

        `sourcepath` and `classpath` only affect name resolution at load
        time; they are accepted so both compilation paths share one call shape.
        """
        if not units:
            raise DelveError("There are no units to compile")
        if err is None:
            err = sys.stderr
        self._units = CompiledUnitSet()
        self.diagnostics = []
        ok = True
        for unit in units:
            ok = self._compile_unit(unit) and ok
        for diagnostic in self.diagnostics:
            print(diagnostic, file=err)
        result, self._units = self._units, None
        return result if ok else None

    def _compile_unit(self, unit: UnitSource) -> bool:
        assert self._units is not None
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                code = compile(unit.text, unit.location, "exec", dont_inherit=True)
            except SyntaxError as e:
                self.diagnostics.append(
                    Diagnostic("ERROR", unit.location, e.lineno, e.msg)
                )
                return False
            except (ValueError, TypeError) as e:
                # e.g. null bytes in the source
                self.diagnostics.append(Diagnostic("ERROR", unit.location, None, str(e)))
                return False
        for warning in caught:
            self.diagnostics.append(
                Diagnostic(
                    "WARNING",
                    unit.location,
                    warning.lineno,
                    f"{warning.category.__name__}: {warning.message}",
                )
            )
        buffer = CompiledOutputBuffer(unit.name, self._units)
        buffer.write(marshal.dumps(code))
        buffer.close()
        return True

    def compile_static_method(
        self, method_name: str, unit_name: str, source: str
    ) -> Callable[..., Any]:
        """Compile and load `unit_name`, returning its static method `method_name`.

        The method is looked up among module-level functions first, then in
        the unit's classes.
        """
        units = self.compile([UnitSource(unit_name, source)])
        if units is None:
            raise UnitNotFoundError(unit_name)
        loader = MemoryUnitLoader(units)
        try:
            module = loader.load_unit(unit_name)
        finally:
            loader.close()
        candidates = [module] + [
            value for value in vars(module).values() if isinstance(value, type)
        ]
        for owner in candidates:
            method = vars(owner).get(method_name)
            if isinstance(method, (staticmethod, classmethod)):
                return getattr(owner, method_name)
            if owner is module and callable(method):
                return method
        raise DelveError(f"No static method '{method_name}' in '{unit_name}'")
