import ast

import pytest
import hypothesis.strategies as st
from hypothesis import given

from delve.delve_errors import DelveError
from delve.delve_instrumentation_config import InstrumentationConfig
from delve.delve_rewriter import SourceRewriter, modified_run_code
from delve.delve_source_model import SourceModel

ENTRY = "self.method_entry()"


def exit_call(name):
    return f'self.method_exit("{name}")'


WORKER = """\
class Worker:
    def run(self):
        if self.x: return
        self.foo()
        self.bar()
"""

CALC = """\
class Calc:
    def sign(self, n):
        if n > 0: return 1
        if n < 0:
            return -1
        x = 0; return x

    def short(self):
        return 0

    @staticmethod
    def helper(a, b):
        total = a + b
        total *= 2
        return total
"""


def count(text, needle):
    return sum(1 for line in text.split("\n") if line.strip() == needle)


def test_inline_return_becomes_block():
    out = SourceRewriter(WORKER).get_instrumented_source()
    assert out == (
        "class Worker:\n"
        "    def run(self):\n"
        "        self.method_entry()\n"
        "        if self.x:\n"
        '            self.method_exit("run")\n'
        "            return\n"
        "        self.foo()\n"
        "        self.bar()\n"
        '        self.method_exit("run")\n'
    )


def test_one_exit_per_return():
    out = SourceRewriter(CALC).get_instrumented_source()
    ast.parse(out)
    assert count(out, ENTRY) == 1
    assert count(out, exit_call("sign")) == 3
    assert "        x = 0\n" in out
    # too short
    assert exit_call("short") not in out
    # static methods have no receiver to trace
    assert exit_call("helper") not in out


def test_entry_goes_after_docstring():
    source = (
        "class Doc:\n"
        "    def run(self):\n"
        '        """Does\n'
        '        things."""\n'
        "        self.a = 1\n"
        "        self.b = 2\n"
    )
    lines = SourceRewriter(source).get_instrumented_source().split("\n")
    assert lines[4] == "        " + ENTRY


def test_entry_only_and_exit_only():
    entry_only = SourceRewriter(WORKER).get_instrumented_source(True, False)
    assert count(entry_only, ENTRY) == 1
    assert "method_exit" not in entry_only
    exit_only = SourceRewriter(WORKER).get_instrumented_source(False, True)
    assert "method_entry" not in exit_only
    assert count(exit_only, exit_call("run")) == 2


def test_semicolon_statements_around_return():
    source = (
        "class Pair:\n"
        "    def pick(self, a):\n"
        "        if a: b = a * 2; return b\n"
        "        else: return 0\n"
        "        pass\n"
    )
    out = SourceRewriter(source).get_instrumented_source()
    ast.parse(out)
    assert (
        "        if a:\n"
        "            b = a * 2\n"
        '            self.method_exit("pick")\n'
        "            return b\n"
        "        else:\n"
        '            self.method_exit("pick")\n'
        "            return 0\n"
    ) in out


def test_infinite_loop_suppresses_exits():
    source = (
        "class Server:\n"
        "    def serve(self):\n"
        "        self.started = True\n"
        "        while True:\n"
        "            self.step()\n"
        "        return\n"
    )
    out = SourceRewriter(source).get_instrumented_source()
    assert count(out, ENTRY) == 1
    assert "method_exit" not in out


def test_returns_before_guard_are_traced():
    source = (
        "class Server:\n"
        "    def serve(self, ready):\n"
        "        if not ready:\n"
        "            return False\n"
        "        while 1:\n"
        "            self.step()\n"
    )
    out = SourceRewriter(source).get_instrumented_source()
    assert count(out, exit_call("serve")) == 1


def test_receiver_name_is_kept():
    source = (
        "class Odd:\n"
        "    def run(this):\n"
        "        this.a = 1\n"
        "        this.b = 2\n"
        "        this.c = 3\n"
    )
    out = SourceRewriter(source).get_instrumented_source()
    assert "        this.method_entry()\n" in out
    assert '        this.method_exit("run")\n' in out


def test_multi_line_void_block_gets_trailing_exit():
    source = (
        "class Loop:\n"
        "    def run(self):\n"
        "        self.total = 0\n"
        "        for i in range(3):\n"
        "            self.total += i\n"
    )
    out = SourceRewriter(source).get_instrumented_source()
    assert out.endswith('            self.total += i\n        self.method_exit("run")\n')


def test_imports_after_existing_imports():
    source = "import os\n\nclass Tool:\n    pass\n\n    def run(self):\n        a = 1\n        b = 2\n        c = 3\n"
    out = SourceRewriter(source).get_instrumented_source(
        imports=["os", "collections.OrderedDict", "from typing import List"]
    )
    assert out.startswith(
        "import os\nfrom collections import OrderedDict\nfrom typing import List\n\n"
    )
    assert count(out, "import os") == 1


def test_imports_after_module_docstring():
    source = '"""Tool."""\nclass Tool:\n    def run(self):\n        pass\n'
    out = SourceRewriter(source).get_instrumented_source(imports=["json"])
    assert out.startswith('"""Tool."""\nimport json\nclass Tool:\n')


def test_imports_prepended_without_header():
    out = SourceRewriter(WORKER).get_instrumented_source(imports=["json"])
    assert out.startswith("import json\nclass Worker:\n")


def test_invalid_import():
    with pytest.raises(DelveError):
        SourceRewriter(WORKER).get_instrumented_source(imports=["not valid!"])


def test_replacements_apply_first():
    out = SourceRewriter(WORKER).get_instrumented_source(
        False, False, replacements={r"\bfoo\b": "baz", r"^class Worker:": "class Worker(Base):"}
    )
    assert "self.baz()" in out
    assert "self.foo()" not in out
    assert out.startswith("class Worker(Base):\n")


def test_instrument_uses_config():
    config = InstrumentationConfig(insert_exit_call=False, imports=("json",))
    out = SourceRewriter(WORKER).instrument(config)
    assert out.startswith("import json\n")
    assert count(out, ENTRY) == 1
    assert "method_exit" not in out


def test_no_methods():
    with pytest.raises(DelveError) as excinfo:
        SourceRewriter("class Empty:\n    pass\n").get_instrumented_source()
    assert "does not have methods" in str(excinfo.value)


@pytest.mark.parametrize("source", [WORKER, CALC])
def test_no_op_config_is_idempotent(source):
    instrumented = SourceRewriter(source).get_instrumented_source()
    again = SourceRewriter(instrumented).get_instrumented_source(False, False)
    assert again == instrumented


@given(st.integers(min_value=3, max_value=12))
def test_void_method_entry_and_exit_counts(statements):
    body = "".join(f"        self.x{i} = {i}\n" for i in range(statements))
    source = "class Gen:\n    def run(self):\n" + body
    out = SourceRewriter(source).get_instrumented_source()
    assert count(out, ENTRY) == 1
    assert count(out, exit_call("run")) == 1
    assert out.rstrip("\n").split("\n")[-1] == "        " + exit_call("run")


@given(st.lists(st.booleans(), min_size=1, max_size=6))
def test_non_void_exits_match_returns(inline):
    lines = ["class Gen:", "    def pick(self, n):", "        total = n"]
    for i, one_line in enumerate(inline):
        if one_line:
            lines.append(f"        if n == {i}: return {i}")
        else:
            lines.append(f"        if n == {i}:")
            lines.append(f"            return {i}")
    lines.append("        return total")
    out = SourceRewriter("\n".join(lines) + "\n").get_instrumented_source()
    ast.parse(out)
    assert count(out, ENTRY) == 1
    assert count(out, exit_call("pick")) == len(inline) + 1


JOB = """\
class Job:
    def run(self):
        self.prepare()
        self.work()

    def run1(self):
        self.run()

    def work(self):
        self.done = True
"""


def test_run_alias_skips_existing_names():
    assert SourceRewriter(JOB).run_alias() == "run2"


@given(st.sets(st.integers(min_value=1, max_value=15)))
def test_run_alias_never_collides(taken):
    source = "class Job:\n    def run(self):\n        pass\n"
    for n in sorted(taken):
        source += f"\n    def run{n}(self):\n        pass\n"
    rewriter = SourceRewriter(source)
    assert rewriter.run_alias() not in rewriter.model.method_names()


def test_reentry_source():
    out = SourceRewriter(JOB).get_reentry_instrumented_source("work")
    model = SourceModel(out)
    assert model.method_names() == ["run", "run2", "run1", "work"]
    assert "\n".join(modified_run_code("work", "work", "    ")) in out
    # internal calls follow the renamed method
    assert "        self.run2()\n" in out
    assert out.count("def run(self):") == 1


def test_reentry_into_run_itself():
    out = SourceRewriter(JOB).get_reentry_instrumented_source("run")
    assert "        self.run2()\n" in out
    assert '        self.method_exit("run")\n' in out


def test_reentry_errors():
    with pytest.raises(DelveError):
        SourceRewriter(JOB).get_reentry_instrumented_source("")
    with pytest.raises(DelveError):
        SourceRewriter(CALC).get_reentry_instrumented_source("sign")


def test_body_replacement():
    out = SourceRewriter(CALC).get_body_replaced_source(
        "short", "value = 41\nreturn value + 1"
    )
    short = SourceModel(out).get_method("short")
    assert short.body_text == "        value = 41\n        return value + 1"
    # other eligible methods are still instrumented
    assert count(out, exit_call("sign")) == 3
    assert exit_call("short") not in out


def test_body_replacement_accepts_whole_method_and_empty_body():
    whole = "def short(self):\n    return 5\n"
    out = SourceRewriter(CALC).get_body_replaced_source("short", whole)
    assert SourceModel(out).get_method("short").body_text == "        return 5"
    out = SourceRewriter(CALC).get_body_replaced_source("short", "")
    assert SourceModel(out).get_method("short").body_text == "        pass"


def test_body_replacement_of_inline_body():
    source = "class One:\n    def get(self): return 1\n"
    out = SourceRewriter(source).get_body_replaced_source("get", "return 2")
    assert out == "class One:\n    def get(self):\n        return 2\n"
