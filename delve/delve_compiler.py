"""Compilation entry points: in memory, to disk, and compilability checks."""

import io
import os
import pathlib
import py_compile
from types import ModuleType
from typing import Iterable, List, Optional

from delve.delve_config import LISTING_SEPARATOR, SOURCE_FILE_EXTENSION
from delve.delve_errors import CompilationError, DelveError
from delve.delve_instrumentation_config import InstrumentationConfig
from delve.delve_memory_compiler import MemoryCompiler
from delve.delve_memory_loader import MemoryUnitLoader
from delve.delve_memory_units import CompiledUnitSet, UnitSource
from delve.delve_rewriter import SourceRewriter
from delve.delve_source_model import SourceModel
from delve.delve_utility import (
    assert_classpath,
    numbered_listing,
    validate_dir_to_write,
    validate_file_to_read,
)


def get_fully_qualified_unit_name(source: str, package: Optional[str] = None) -> str:
    """Name of the unit declared by `source`: its first top-level class.

    `package`, if given, qualifies the name (`package.ClassName`).
    """
    name = SourceModel(source).first_class_name
    if name is None:
        raise DelveError(f"There is no class declared in code:\n{source}")
    return f"{package}.{name}" if package else name


def get_fully_qualified_unit_name_of_file(
    pathname: str, package: Optional[str] = None
) -> str:
    validate_file_to_read(pathname)
    with open(pathname, encoding="utf-8") as f:
        source = f.read()
    try:
        return get_fully_qualified_unit_name(source, package)
    except DelveError as e:
        raise DelveError(
            f"There is no class declared in file '{os.path.basename(pathname)}'"
        ) from e


def required_units(files: Optional[Iterable[str]]) -> List[UnitSource]:
    """Units for the helper source files a program needs; named after the file."""
    units = []
    for pathname in files or ():
        if not pathname or not pathname.lower().endswith(SOURCE_FILE_EXTENSION):
            continue
        validate_file_to_read(pathname)
        with open(pathname, encoding="utf-8") as f:
            units.append(UnitSource(pathlib.Path(pathname).stem, f.read()))
    return units


def compile_units(
    source: str,
    unit_name: str,
    required_source_files: Optional[Iterable[str]] = None,
    classpath: Optional[str] = None,
) -> CompiledUnitSet:
    """Compile `source` (and its helpers) in memory or raise `CompilationError`."""
    if source is None:
        raise DelveError("Argument 'sourceCode' is null")
    if not source.strip():
        raise DelveError("String argument 'sourceCode' is empty")
    if not unit_name or not unit_name.strip():
        raise DelveError("The unit name is null or empty")
    if classpath and classpath.strip():
        assert_classpath(classpath)

    units = required_units(required_source_files)
    units.append(UnitSource(unit_name.strip(), source))
    err = io.StringIO()
    compiler = MemoryCompiler()
    compiled = compiler.compile(units, err=err, classpath=classpath)
    if compiled is None:
        raise CompilationError(
            "".join(
                f"Compilation error: Line {d.line} - {d.message}\n"
                for d in compiler.diagnostics
                if d.severity == "ERROR"
            )
        )
    return compiled


def compile_in_memory(
    source: str,
    unit_name: Optional[str] = None,
    required_source_files: Optional[Iterable[str]] = None,
    classpath: Optional[str] = None,
) -> List[ModuleType]:
    """Compile and load a program; return every module it defines."""
    if unit_name is None:
        unit_name = get_fully_qualified_unit_name(source)
    units = compile_units(source, unit_name, required_source_files, classpath)
    loader = MemoryUnitLoader(units, classpath)
    try:
        return loader.load_all_units()
    finally:
        loader.close()


def is_compilable(
    source: str,
    config: Optional[InstrumentationConfig] = None,
    classpath: Optional[str] = None,
) -> Optional[str]:
    """Return None if `source` compiles, else the errors and a numbered listing.

    With a `config`, the source is instrumented first and it is the
    instrumented text that must compile.
    """
    try:
        if config is not None:
            source = SourceRewriter(source).instrument(config)
            classpath = classpath or config.classpath
        unit_name = get_fully_qualified_unit_name(source)
    except DelveError as e:
        return str(e)
    try:
        compile_units(
            source,
            unit_name,
            config.source_files if config is not None else None,
            classpath,
        )
    except DelveError as e:
        return f"{e}\n{LISTING_SEPARATOR}\n{numbered_listing(source.rstrip())}\n"
    return None


def is_compilable_file(
    pathname: str,
    config: Optional[InstrumentationConfig] = None,
    classpath: Optional[str] = None,
) -> Optional[str]:
    try:
        validate_file_to_read(pathname)
    except DelveError as e:
        return str(e)
    with open(pathname, encoding="utf-8") as f:
        return is_compilable(f.read(), config, classpath)


def compile(
    classpath: Optional[str],
    dest_dir: Optional[str],
    files: Iterable[str],
) -> None:
    """Byte-compile source files on disk.

    Files under `dest_dir` get the usual `__pycache__` entry; any other file is
    compiled to a sourceless `dest_dir/<name>.pyc` so it can be imported from
    there.
    """
    if classpath and classpath.strip():
        assert_classpath(classpath)
    if dest_dir is not None:
        dest_dir = dest_dir.strip()
        validate_dir_to_write(dest_dir)
        dest = pathlib.Path(dest_dir).resolve()

    errors = []
    for pathname in files:
        validate_file_to_read(pathname)
        path = pathlib.Path(pathname).resolve()
        cfile = None
        if dest_dir is not None and dest not in path.parents:
            cfile = str(dest / (path.stem + ".pyc"))
        try:
            py_compile.compile(str(path), cfile=cfile, doraise=True)
        except py_compile.PyCompileError as e:
            line = getattr(e.exc_value, "lineno", None)
            message = getattr(e.exc_value, "msg", None) or e.msg
            errors.append(f"Compilation error: Line {line} - {message}\n")
    if errors:
        raise CompilationError("".join(errors))
