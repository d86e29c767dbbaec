import os
import pathlib
import shutil
import sys
import zipfile
from typing import Iterable, List, Optional

from delve.delve_config import SOURCE_FILE_EXTENSION
from delve.delve_errors import DelveError

# Archive suffixes accepted as classpath entries
ARCHIVE_SUFFIXES = (".zip", ".whl", ".egg", ".pyz")


def find_binary_on_env_var(
    env_var: str, subpath: Optional[str], binary: str
) -> Optional[str]:
    """Return the path of `binary` found under the directories listed in `env_var`.

    `subpath`, if given, is appended to every directory before looking for
    the binary (e.g. PYTHONHOME + "bin"). Returns None if not found.
    """
    value = os.environ.get(env_var)
    if not value:
        return None
    dirs = []
    for entry in value.split(os.pathsep):
        if not entry:
            continue
        dirs.append(os.path.join(entry, subpath) if subpath else entry)
    return shutil.which(binary, path=os.pathsep.join(dirs))


def validate_dir_to_read(pathname: str) -> None:
    if not os.path.isdir(pathname):
        raise DelveError(f"'{pathname}' is not a directory")
    if not os.access(pathname, os.R_OK):
        raise DelveError(f"'{pathname}' does not have read access")


def validate_dir_to_write(pathname: str) -> None:
    validate_dir_to_read(pathname)
    if not os.access(pathname, os.W_OK):
        raise DelveError(f"'{pathname}' does not have write access")


def validate_file_to_read(pathname: str) -> None:
    if not os.path.isfile(pathname):
        raise DelveError(f"'{pathname}' does not exist or is not a regular file")
    if not os.access(pathname, os.R_OK):
        raise DelveError(f"'{pathname}' does not have read access")


def assert_classpath(classpath: str) -> None:
    """Raise if any classpath entry is missing or unreadable."""
    for path in classpath.strip().split(os.pathsep):
        path = path.strip()
        if not os.path.exists(path):
            raise DelveError(f"'{path}' does not exist")
        if not os.access(path, os.R_OK):
            raise DelveError(f"'{path}' does not have read access")


def is_archive(path: str) -> bool:
    return path.lower().endswith(ARCHIVE_SUFFIXES) and zipfile.is_zipfile(path)


def classpath_entries(classpath: Optional[str]) -> List[str]:
    """Split a classpath into absolute entries, directories before archives.

    Each group keeps the order the caller gave. Tokens that are neither an
    existing directory nor a readable archive are skipped.
    """
    if not classpath:
        return []
    dirs: List[str] = []
    archives: List[str] = []
    for token in classpath.split(os.pathsep):
        token = token.strip()
        if not token:
            continue
        path = os.path.abspath(token)
        if os.path.isdir(path):
            dirs.append(path)
        elif os.path.isfile(path) and is_archive(path):
            archives.append(path)
    return dirs + archives


def join_classpath(entries: Iterable[Optional[str]]) -> str:
    return os.pathsep.join(str(e) for e in entries if e)


def unit_name_to_relative_path(unit_name: str) -> pathlib.Path:
    """`a.b.Unit` -> `a/b/Unit.py`."""
    parts = unit_name.split(".")
    return pathlib.Path(*parts[:-1], parts[-1] + SOURCE_FILE_EXTENSION)


def numbered_listing(source: str) -> str:
    """Return the source with every line prefixed by `L<number>` and a tab."""
    lines = source.split("\n")
    digits = len(str(len(lines)))
    return "\n".join(
        f"L{str(number).rjust(digits)}\t{line}"
        for number, line in enumerate(lines, 1)
    )


def error_message(message: str) -> None:
    """Report a user-facing problem."""
    print(f"Delve: {message}", file=sys.stderr)
