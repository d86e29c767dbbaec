import importlib
import importlib.abc
import importlib.machinery
import importlib.util
import marshal
import sys
from types import ModuleType
from typing import Dict, List, Optional, Sequence, Set

from delve.delve_errors import DelveError, UnitNotFoundError
from delve.delve_memory_units import CompiledUnitSet, UnitSource
from delve.delve_utility import classpath_entries


class MemoryUnitLoader(importlib.abc.MetaPathFinder, importlib.abc.Loader):
    """Define modules from a `CompiledUnitSet`.

    While installed (as a context manager) the loader sits first on
    `sys.meta_path`: compiled units resolve to their in-memory bytes, their
    parent packages are synthesized, and any other top-level name is looked
    up on the classpath before the normal import system.

    Each unit's bytes are taken out of the set when it is defined, so a unit
    can be defined only once; afterwards `load_unit` returns the cached
    module.
    """

    def __init__(
        self, units: CompiledUnitSet, classpath: Optional[str] = None
    ) -> None:
        self._units = units
        self._pending: Set[str] = set(units.names())
        self._packages: Set[str] = set()
        for name in self._pending:
            parts = name.split(".")
            for i in range(1, len(parts)):
                self._packages.add(".".join(parts[:i]))
        self._classpath: List[str] = classpath_entries(classpath)
        self._modules: Dict[str, ModuleType] = {}
        self._shadowed: Dict[str, ModuleType] = {}
        self._installed = 0

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #

    def __enter__(self) -> "MemoryUnitLoader":
        if not self._installed:
            sys.meta_path.insert(0, self)
        self._installed += 1
        return self

    def __exit__(self, *args: object) -> None:
        self._installed -= 1
        if not self._installed and self in sys.meta_path:
            sys.meta_path.remove(self)

    def close(self) -> None:
        """Uninstall and forget every module this loader defined."""
        self._installed = 0
        if self in sys.meta_path:
            sys.meta_path.remove(self)
        for name, module in self._modules.items():
            if sys.modules.get(name) is module:
                del sys.modules[name]
        sys.modules.update(self._shadowed)
        self._modules.clear()
        self._shadowed.clear()

    # ------------------------------------------------------------------ #
    # Loading                                                            #
    # ------------------------------------------------------------------ #

    @property
    def pending_units(self) -> List[str]:
        return sorted(self._pending)

    def load_unit(self, name: str) -> ModuleType:
        """Return the module `name`: cached, defined from memory, or imported."""
        if name in self._modules:
            return self._modules[name]
        if name in self._pending:
            return self.define_unit(name)
        with self:
            try:
                return importlib.import_module(name)
            except ModuleNotFoundError as e:
                if e.name is not None and name.startswith(e.name):
                    raise UnitNotFoundError(name) from e
                raise

    def define_unit(self, name: str) -> ModuleType:
        """Define `name` from its compiled bytes; the bytes are consumed."""
        if name not in self._pending:
            raise UnitNotFoundError(name)
        with self:
            self._ensure_parents(name)
            spec = self._spec(name, is_package=name in self._packages)
            module = importlib.util.module_from_spec(spec)
            self._register(name, module)
            try:
                self.exec_module(module)
            except BaseException:
                self._unregister(name)
                raise
            return module

    def load_all_units(self) -> List[ModuleType]:
        return [self.load_unit(name) for name in sorted(self._pending)]

    def _ensure_parents(self, name: str) -> None:
        parts = name.split(".")
        for i in range(1, len(parts)):
            parent = ".".join(parts[:i])
            if parent in self._pending:
                self.define_unit(parent)
                continue
            if parent in self._modules or parent in sys.modules:
                continue
            module = importlib.util.module_from_spec(self._spec(parent, True))
            self._register(parent, module)

    def _register(self, name: str, module: ModuleType) -> None:
        previous = sys.modules.get(name)
        if previous is not None and name not in self._shadowed:
            self._shadowed[name] = previous
        sys.modules[name] = module
        self._modules[name] = module

    def _unregister(self, name: str) -> None:
        self._modules.pop(name, None)
        sys.modules.pop(name, None)
        if name in self._shadowed:
            sys.modules[name] = self._shadowed.pop(name)

    def _spec(self, name: str, is_package: bool) -> importlib.machinery.ModuleSpec:
        origin = UnitSource(name, "").location
        spec = importlib.util.spec_from_loader(
            name, self, origin=origin, is_package=is_package
        )
        assert spec is not None
        return spec

    # ------------------------------------------------------------------ #
    # importlib protocol                                                 #
    # ------------------------------------------------------------------ #

    def find_spec(
        self,
        fullname: str,
        path: Optional[Sequence[str]] = None,
        target: Optional[ModuleType] = None,
    ) -> Optional[importlib.machinery.ModuleSpec]:
        if fullname in self._pending or fullname in self._packages:
            return self._spec(fullname, fullname in self._packages)
        if path is None and self._classpath:
            return importlib.machinery.PathFinder.find_spec(fullname, self._classpath)
        return None

    def create_module(self, spec: importlib.machinery.ModuleSpec) -> None:
        return None

    def exec_module(self, module: ModuleType) -> None:
        name = module.__name__
        if name not in self._pending:
            if name in self._packages:
                self._modules[name] = module
                return
            raise UnitNotFoundError(name)
        data = self._units.take(name)
        self._pending.discard(name)
        if data is None:
            raise UnitNotFoundError(name)
        self._modules[name] = module
        code = marshal.loads(data)
        try:
            exec(code, module.__dict__)
        except (SystemExit, KeyboardInterrupt):
            raise
        except Exception as e:
            raise DelveError(f"Error loading unit '{name}': {e}") from e
