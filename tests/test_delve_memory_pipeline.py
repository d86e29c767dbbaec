import io
import sys

import pytest

from delve.delve_errors import DelveError, UnitNotFoundError
from delve.delve_memory_compiler import MemoryCompiler
from delve.delve_memory_loader import MemoryUnitLoader
from delve.delve_memory_units import CompiledOutputBuffer, CompiledUnitSet, UnitSource


@pytest.fixture
def cleanup_imports():
    # Fixture to clean up sys.modules after the test
    before = set(sys.modules.keys())
    yield
    after = set(sys.modules.keys())
    for extra in after - before:
        del sys.modules[extra]


def test_unit_location_is_deterministic():
    assert UnitSource("shapes.Circle", "").location == "mem:///shapes/Circle.py"
    assert UnitSource("Circle", "x = 1").location == UnitSource("Circle", "y = 2").location
    with pytest.raises(DelveError):
        UnitSource("", "x = 1")


def test_compiled_unit_set_take_once():
    units = CompiledUnitSet()
    units.put("A", b"data")
    with pytest.raises(DelveError):
        units.put("A", b"again")
    assert "A" in units and len(units) == 1
    assert units.take("A") == b"data"
    assert units.take("A") is None
    assert "A" not in units


def test_output_buffer_commits_on_first_close():
    units = CompiledUnitSet()
    buffer = CompiledOutputBuffer("Unit", units)
    buffer.write(b"abc")
    buffer.close()
    buffer.close()
    assert units.take("Unit") == b"abc"


def test_compile_success():
    err = io.StringIO()
    units = MemoryCompiler().compile([UnitSource("Ok", "x = 1\n")], err=err)
    assert units is not None
    assert units.names() == ["Ok"]
    assert err.getvalue() == ""


def test_compile_failure_reports_diagnostics():
    err = io.StringIO()
    compiler = MemoryCompiler()
    units = compiler.compile(
        [UnitSource("Good", "x = 1\n"), UnitSource("Bad", "def f(:\n    pass\n")],
        err=err,
    )
    assert units is None
    assert "ERROR mem:///Bad.py:1" in err.getvalue()
    assert [d.severity for d in compiler.diagnostics] == ["ERROR"]


def test_compile_warnings_are_diagnostics():
    err = io.StringIO()
    compiler = MemoryCompiler()
    units = compiler.compile([UnitSource("Warn", "x = 1 is 1\n")], err=err)
    assert units is not None
    assert any(d.severity == "WARNING" for d in compiler.diagnostics)
    assert "WARNING mem:///Warn.py" in err.getvalue()


def test_compile_nothing():
    with pytest.raises(DelveError):
        MemoryCompiler().compile([])


def test_compile_static_method():
    source = (
        "class MathUtil:\n"
        "    @staticmethod\n"
        "    def square(x):\n"
        "        return x * x\n"
    )
    square = MemoryCompiler().compile_static_method("square", "MathUtil", source)
    assert square(4) == 16
    assert "MathUtil" not in sys.modules


def test_compile_static_method_module_function():
    cube = MemoryCompiler().compile_static_method("cube", "Cubes", "def cube(x):\n    return x ** 3\n")
    assert cube(2) == 8
    with pytest.raises(DelveError):
        MemoryCompiler().compile_static_method("missing", "Cubes", "def cube(x):\n    return x\n")
    with pytest.raises(UnitNotFoundError):
        MemoryCompiler().compile_static_method("cube", "Cubes", "def cube(:\n")


def shapes():
    return MemoryCompiler().compile(
        [
            UnitSource("shapes.Circle", "class Circle:\n    sides = 0\n"),
            UnitSource(
                "Square",
                "from shapes.Circle import Circle\n\nclass Square(Circle):\n    sides = 4\n",
            ),
        ]
    )


def test_load_all_units_consumes_bytes(cleanup_imports):
    units = shapes()
    loader = MemoryUnitLoader(units)
    modules = loader.load_all_units()
    assert sorted(m.__name__ for m in modules) == ["Square", "shapes.Circle"]
    assert len(units) == 0
    assert loader.pending_units == []
    square = loader.load_unit("Square")
    assert square.Square.sides == 4
    assert square.Square.__mro__[1].__name__ == "Circle"
    # a second definition has no bytes left to use
    with pytest.raises(UnitNotFoundError):
        loader.define_unit("Square")
    loader.close()
    assert "Square" not in sys.modules
    assert "shapes.Circle" not in sys.modules


def test_loader_uninstalls_itself(cleanup_imports):
    loader = MemoryUnitLoader(shapes())
    with loader:
        assert sys.meta_path[0] is loader
    assert loader not in sys.meta_path
    loader.close()


def test_loader_error_is_wrapped(cleanup_imports):
    units = MemoryCompiler().compile([UnitSource("Boom", "raise ValueError('boom')\n")])
    loader = MemoryUnitLoader(units)
    with pytest.raises(DelveError) as excinfo:
        loader.load_unit("Boom")
    assert "boom" in str(excinfo.value)
    assert "Boom" not in sys.modules
    loader.close()


def test_loader_resolves_classpath(tmp_path, cleanup_imports):
    (tmp_path / "delve_test_helper.py").write_text("VALUE = 42\n")
    units = MemoryCompiler().compile(
        [
            UnitSource(
                "UsesHelper",
                "import delve_test_helper\n\nclass UsesHelper:\n    value = delve_test_helper.VALUE\n",
            )
        ]
    )
    loader = MemoryUnitLoader(units, str(tmp_path))
    module = loader.load_unit("UsesHelper")
    assert module.UsesHelper.value == 42
    loader.close()


def test_unknown_unit(cleanup_imports):
    loader = MemoryUnitLoader(CompiledUnitSet())
    with pytest.raises(UnitNotFoundError) as excinfo:
        loader.load_unit("NoSuchUnitAnywhere")
    assert str(excinfo.value) == "Unit not found: NoSuchUnitAnywhere"
    loader.close()
