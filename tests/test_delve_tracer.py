import re
import threading

import pytest
from hypothesis import given
import hypothesis.strategies as st

from delve.delve_config import TRACE_FILE_ENV_VAR
from delve.delve_tracer import (
    TRACING_IMPORT,
    TRACING_REPLACEMENTS,
    State,
    TraceRecorder,
    TracedProgram,
    dump_if_requested,
    recorder,
    tracing_config,
)


class Point:
    def __init__(self, x, y):
        self.x = x
        self.y = y


class Slotted:
    __slots__ = ("a", "b")

    def __init__(self):
        self.a = [1]


class Unprintable:
    def __repr__(self):
        raise RuntimeError("no")


def test_state_capture():
    state = State.capture(Point(1, "two"))
    assert state.values == (("x", "1"), ("y", "'two'"))
    assert str(state) == "x=1, y='two'"
    assert State.capture(Slotted()).as_dict() == {"a": "[1]"}
    holder = Point(Unprintable(), None)
    assert "repr failed" in State.capture(holder).as_dict()["x"]


def test_enter_exit_pairs():
    trace = TraceRecorder()
    point = Point(0, 0)
    trace.enter(point, "move")
    point.x = 5
    pair = trace.exit(point, "move")
    assert pair.precondition.as_dict()["x"] == "0"
    assert pair.postcondition.as_dict()["x"] == "5"
    assert trace.method_names() == ["move"]
    assert len(trace) == 1


def test_nested_and_unmatched_exits():
    trace = TraceRecorder()
    point = Point(0, 0)
    trace.enter(point, "outer")
    trace.enter(point, "inner")
    # the exit of `outer` discards the pending `inner` entry
    trace.exit(point, "outer")
    assert trace.method_names() == ["outer"]
    assert trace.exit(point, "outer") is None
    # an exit under another name pairs with the innermost entry
    trace.enter(point, "run2")
    trace.exit(point, "run")
    assert len(trace.pairs_for("run")) == 1


def test_stacks_are_per_thread():
    trace = TraceRecorder()
    point = Point(0, 0)
    trace.enter(point, "main")
    thread = threading.Thread(target=lambda: trace.exit(point, "main"))
    thread.start()
    thread.join()
    assert len(trace) == 0
    trace.exit(point, "main")
    assert len(trace) == 1


def test_dump_and_load(tmp_path):
    trace = TraceRecorder()
    point = Point(1, 2)
    for _ in range(3):
        trace.enter(point, "step")
        point.x += 1
        trace.exit(point, "step")
    path = str(tmp_path / "trace.pkl")
    trace.dump(path)
    loaded = TraceRecorder.load(path)
    assert loaded.pairs_for("step") == trace.pairs_for("step")


def test_load_empty_file(tmp_path):
    path = tmp_path / "empty.pkl"
    path.write_bytes(b"")
    assert len(TraceRecorder.load(str(path))) == 0


def test_dump_if_requested(tmp_path, monkeypatch):
    monkeypatch.delenv(TRACE_FILE_ENV_VAR, raising=False)
    assert dump_if_requested() is None
    path = str(tmp_path / "trace.pkl")
    monkeypatch.setenv(TRACE_FILE_ENV_VAR, path)
    assert dump_if_requested() == path
    TraceRecorder.load(path)


def test_traced_program_uses_caller_name():
    class Box(TracedProgram):
        def __init__(self):
            self.items = []

        def add(self, item):
            self.method_entry()
            self.items.append(item)
            self.method_exit("add")

    recorder.clear()
    try:
        Box().add(3)
        (pair,) = recorder.pairs_for("add")
        assert pair.postcondition.as_dict() == {"items": "[3]"}
    finally:
        recorder.clear()


def test_tracing_config_merges_overrides():
    config = tracing_config(insert_exit_call=False, imports=("json",), replacements={"a": "b"})
    assert config.imports == (TRACING_IMPORT, "json")
    assert list(config.replacements)[-1] == "a"
    assert not config.insert_exit_call


@given(st.lists(st.sampled_from(["a", "b", "c"]), max_size=20))
def test_balanced_calls_pair_up(names):
    trace = TraceRecorder()
    point = Point(0, 0)
    for name in names:
        trace.enter(point, name)
    for name in reversed(names):
        trace.exit(point, name)
    assert len(trace) == len(names)


def apply_tracing_replacements(text):
    for pattern, replacement in TRACING_REPLACEMENTS.items():
        text = re.sub(pattern, replacement, text)
    return text


@pytest.mark.parametrize(
    "header,expected",
    [
        ("class Plain:", "class Plain(TracedProgram):"),
        ("class Empty():", "class Empty(TracedProgram):"),
        ("class Legacy(object):", "class Legacy(TracedProgram):"),
        ("class Dog(Animal):", "class Dog(Animal, TracedProgram):"),
        ("class Pair(A, B,):", "class Pair(A, B, TracedProgram):"),
        ("class Meta(Base, metaclass=M):", "class Meta(Base, TracedProgram, metaclass=M):"),
        ("class Only(metaclass=M):", "class Only(TracedProgram, metaclass=M):"),
        ("class Done(Base, TracedProgram):", "class Done(Base, TracedProgram):"),
    ],
)
def test_tracing_replacements(header, expected):
    assert apply_tracing_replacements(header) == expected
    # applying them again changes nothing
    assert apply_tracing_replacements(expected) == expected


def test_traced_subclass_has_consistent_mro():
    namespace = {"TracedProgram": TracedProgram}
    exec(
        apply_tracing_replacements(
            "class Animal:\n    pass\n\n\nclass Dog(Animal):\n    pass\n"
        ),
        namespace,
    )
    dog = namespace["Dog"]
    assert dog.__mro__[1:3] == (namespace["Animal"], TracedProgram)
