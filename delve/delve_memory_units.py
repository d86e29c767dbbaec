import io
from typing import Dict, Iterator, List, Optional

from delve.delve_config import MEMORY_URI_SCHEME
from delve.delve_errors import DelveError
from delve.delve_utility import unit_name_to_relative_path


class UnitSource:
    """A named compilation unit whose text lives in memory."""

    def __init__(self, name: str, text: str) -> None:
        if not name:
            raise DelveError("The unit name is null or empty")
        if text is None:
            raise DelveError(f"The source of '{name}' is null")
        self.name = name
        self.text = text

    @property
    def location(self) -> str:
        """Synthetic, deterministic location: `mem:///a/b/Name.py`."""
        return f"{MEMORY_URI_SCHEME}:///{unit_name_to_relative_path(self.name).as_posix()}"

    def __repr__(self) -> str:
        return f"UnitSource({self.name!r})"


class CompiledUnitSet:
    """Compiled bytes keyed by unit name.

    Each name is written once; `take` moves the bytes out so the loader can
    define every unit exactly once.
    """

    def __init__(self) -> None:
        self._units: Dict[str, bytes] = {}

    def put(self, name: str, data: bytes) -> None:
        if name in self._units:
            raise DelveError(f"Unit '{name}' was already compiled")
        self._units[name] = data

    def take(self, name: str) -> Optional[bytes]:
        return self._units.pop(name, None)

    def names(self) -> List[str]:
        return list(self._units)

    def __contains__(self, name: object) -> bool:
        return name in self._units

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._units))


class CompiledOutputBuffer(io.BytesIO):
    """Collects the compiled bytes of one unit; closing commits them."""

    def __init__(self, name: str, units: CompiledUnitSet) -> None:
        super().__init__()
        self.name = name
        self._units = units
        self._committed = False

    def close(self) -> None:
        if not self._committed:
            self._committed = True
            self._units.put(self.name, self.getvalue())
        super().close()
