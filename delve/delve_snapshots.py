"""Organize a directory of student program snapshots.

Snapshot files are named ``<studentID>_<name>_<order>.py``. Their capture
times live in ``timestamps.txt`` files (anywhere under the directory), one
``<filename>#<epochSeconds>`` line per snapshot.
"""

import os
import pathlib
import shutil
from collections import Counter, defaultdict
from typing import DefaultDict, Dict, List, Tuple

from delve.delve_config import (
    EXTRA_FILES_DIR,
    SOURCE_FILE_EXTENSION,
    TIMESTAMP_DELIM,
    TIMESTAMP_FILENAME,
)
from delve.delve_errors import DelveError
from delve.delve_utility import validate_dir_to_write

UNDERSCORE = "_"


def parse_timestamp_line(line: str, pathname: str = TIMESTAMP_FILENAME) -> Tuple[str, str]:
    """Split a timestamp line into (filename, whole line)."""
    index = line.find(TIMESTAMP_DELIM)
    if index == -1:
        raise DelveError(
            f"File '{pathname}' is malformed. Line '{line}' has no delimiter "
            f"'{TIMESTAMP_DELIM}'"
        )
    return line[:index], line


def read_timestamps(pathname: str) -> Dict[str, str]:
    timestamps: Dict[str, str] = {}
    with open(pathname, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            filename, whole = parse_timestamp_line(line, pathname)
            timestamps[filename] = whole
    return timestamps


def snapshot_student(filename: str) -> str:
    return filename.split(UNDERSCORE)[0]


def snapshot_base(filename: str) -> str:
    """The filename up to and including the last underscore."""
    return filename[: filename.rfind(UNDERSCORE) + 1]


def snapshot_order(filename: str) -> str:
    return filename[filename.rfind(UNDERSCORE) + 1 : -len(SOURCE_FILE_EXTENSION)]


def is_snapshot(filename: str) -> bool:
    return (
        filename.endswith(SOURCE_FILE_EXTENSION)
        and len(filename.split(UNDERSCORE)) == 3
    )


def main_base(snapshots: List[pathlib.Path]) -> str:
    """The base of the file with the most snapshots."""
    histogram = Counter(snapshot_base(path.name) for path in snapshots)
    # Ties go to the alphabetically first base.
    return max(sorted(histogram), key=lambda base: histogram[base])


def padded_name(filename: str, width: int) -> str:
    order = snapshot_order(filename)
    try:
        number = int(order)
    except ValueError:
        raise DelveError(
            f"Invalid file name for '{filename}'. The snapshot order: {order} "
            "is not an integer"
        ) from None
    return f"{snapshot_base(filename)}{number:0{width}d}{SOURCE_FILE_EXTENSION}"


def sort_snapshots(submission_dir: str) -> Dict[str, List[str]]:
    """Move every student's snapshots into a subdirectory named after them.

    Snapshots of the student's main file (the one with the most snapshots)
    are renamed so that their orders have the same number of digits; any
    other file of the student goes to ``extra_files/``. Each student
    directory gets its own sorted ``timestamps.txt`` covering the main
    snapshots under their new names. Returns the new main snapshot paths
    per student.
    """
    validate_dir_to_write(submission_dir)
    root = pathlib.Path(submission_dir)

    timestamps: Dict[str, str] = {}
    by_student: DefaultDict[str, List[pathlib.Path]] = defaultdict(list)
    for dirpath, _, filenames in os.walk(root):
        for filename in sorted(filenames):
            path = pathlib.Path(dirpath) / filename
            if filename == TIMESTAMP_FILENAME:
                timestamps.update(read_timestamps(str(path)))
            elif is_snapshot(filename):
                by_student[snapshot_student(filename)].append(path)

    result: Dict[str, List[str]] = {}
    for student in sorted(by_student):
        snapshots = sorted(by_student[student])
        base = main_base(snapshots)
        width = len(str(sum(1 for path in snapshots if snapshot_base(path.name) == base)))
        dest_dir = root / student
        dest_dir.mkdir(exist_ok=True)

        timestamp_lines = set()
        moved: List[str] = []
        for path in snapshots:
            filename = path.name
            if snapshot_base(filename) == base:
                dest = dest_dir / padded_name(filename, width)
                line = timestamps.get(filename)
                if line is not None:
                    timestamp_lines.add(line.replace(filename, dest.name, 1))
                moved.append(str(dest))
            else:
                extra_dir = dest_dir / EXTRA_FILES_DIR
                extra_dir.mkdir(exist_ok=True)
                dest = extra_dir / filename
            if path.resolve() != dest.resolve():
                try:
                    shutil.move(str(path), str(dest))
                except OSError as e:
                    raise DelveError(
                        f"Error moving '{path}' to '{dest}'. Details:\n{e}"
                    ) from e

        timestamp_file = dest_dir / TIMESTAMP_FILENAME
        try:
            with open(timestamp_file, "w", encoding="utf-8") as out:
                for line in sorted(timestamp_lines):
                    out.write(line + "\n")
        except OSError as e:
            raise DelveError(
                f"Error writing '{timestamp_file}'. Details:\n{e}"
            ) from e
        result[student] = sorted(moved)
    return result
