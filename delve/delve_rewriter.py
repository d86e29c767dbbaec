"""Insert trace calls into student programs.

`SourceRewriter` walks the canonical text line by line, guided by the method
descriptors of a `SourceModel`, and emits a new program in which every
eligible method reports its entry and each of its exits to the receiver
(`self.method_entry()` / `self.method_exit("name")`).
"""

import ast
import itertools
import re
import textwrap
from typing import Dict, Iterable, List, Optional, Sequence, Union

from delve.delve_config import INDENT
from delve.delve_errors import DelveError
from delve.delve_instrumentation_config import InstrumentationConfig
from delve.delve_source_model import (
    MethodDescriptor,
    ReturnSite,
    SourceModel,
    import_names,
)
from delve.delve_utility import validate_file_to_read

METHOD_ENTRY = "method_entry"
METHOD_EXIT = "method_exit"
RUN_METHOD_NAME = "run"

# Methods with this many non-blank body lines or fewer are not traced.
MIN_TRACED_BODY_LINES = 2

_RUN_CALL = re.compile(r"\brun\(\)")


def method_entry_call(receiver: str = "self") -> str:
    return f"{receiver}.{METHOD_ENTRY}()"


def method_exit_call(method_name: str, receiver: str = "self") -> str:
    return f'{receiver}.{METHOD_EXIT}("{method_name}")'


def modified_run_code(method_name: str, target: str, indent: str) -> List[str]:
    """A `run` method that traces a single call to `target`."""
    body = indent + INDENT
    return [
        f"{indent}def {RUN_METHOD_NAME}(self):",
        body + method_entry_call(),
        f"{body}self.{target}()",
        body + method_exit_call(method_name),
    ]


def _signature_pattern(method: MethodDescriptor) -> "re.Pattern[str]":
    return re.compile(rf"\b(async\s+)?def\s+{re.escape(method.name)}\s*\(")


def _leading_whitespace(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


def _normalize_import(statement: str) -> str:
    """Turn `a.b.Name` into `from a.b import Name` and `name` into `import name`."""
    statement = statement.strip().rstrip(";").strip()
    if statement.startswith(("import ", "from ")):
        return statement
    if "." in statement:
        module, _, name = statement.rpartition(".")
        return f"from {module} import {name}"
    return f"import {statement}"


class SourceRewriter:
    """Rewrite one program's source text.

    The model may be given directly or built from text; the text is always
    canonicalized first, so all outputs share one layout.
    """

    def __init__(self, source: Union[str, SourceModel]) -> None:
        if isinstance(source, SourceModel):
            self.model = source
        else:
            self.model = SourceModel(source)

    @classmethod
    def from_file(cls, pathname: str) -> "SourceRewriter":
        validate_file_to_read(pathname)
        with open(pathname, encoding="utf-8") as f:
            return cls(f.read())

    @property
    def source(self) -> str:
        return self.model.text

    # ------------------------------------------------------------------ #
    # Entry/exit instrumentation                                         #
    # ------------------------------------------------------------------ #

    def instrument(self, config: InstrumentationConfig) -> str:
        return self.get_instrumented_source(
            insert_entry_call=config.insert_entry_call,
            insert_exit_call=config.insert_exit_call,
            imports=config.imports,
            replacements=config.replacements,
        )

    def get_instrumented_source(
        self,
        insert_entry_call: bool = True,
        insert_exit_call: bool = True,
        imports: Optional[Sequence[str]] = None,
        replacements: Optional[Dict[str, str]] = None,
    ) -> str:
        """Return the program with trace calls (and imports) inserted.

        Replacements are regular expressions applied to the whole text, in
        order, before anything else; the text is re-parsed if they changed it.
        """
        model = self._apply_replacements(replacements)
        if not model.methods:
            raise DelveError("The source code does not have methods")

        lines = model.lines
        out: List[str] = []
        import_block = self._import_block(model, imports or ())
        import_after = self._import_insertion_line(model)
        if import_block and import_after == 0:
            out.extend(import_block)
            import_block = []

        methods = iter(model.methods)
        method = next(methods, None)
        index = 0
        while index < len(lines):
            if method is not None and self._at_signature(lines, index, method):
                index = self._emit_method(
                    method, lines, index, out, insert_entry_call, insert_exit_call
                )
                method = next(methods, None)
                continue
            out.append(lines[index])
            index += 1
            if import_block and index == import_after:
                out.extend(import_block)
                import_block = []
        return "\n".join(out) + "\n"

    def _apply_replacements(
        self, replacements: Optional[Dict[str, str]]
    ) -> SourceModel:
        if not replacements:
            return self.model
        text = self.model.text
        for pattern, replacement in replacements.items():
            try:
                text = re.sub(pattern, replacement, text)
            except re.error as e:
                raise DelveError(f"Invalid replacement pattern '{pattern}'") from e
        if text == self.model.text:
            return self.model
        return SourceModel(text)

    @staticmethod
    def _at_signature(lines: List[str], index: int, method: MethodDescriptor) -> bool:
        line = lines[index]
        if index + 1 < method.lineno or line.lstrip().startswith("#"):
            return False
        return _signature_pattern(method).search(line) is not None

    def _emit_method(
        self,
        method: MethodDescriptor,
        lines: List[str],
        index: int,
        out: List[str],
        insert_entry_call: bool,
        insert_exit_call: bool,
    ) -> int:
        """Copy one method into `out`, instrumented; return the next line index."""
        # Multi-line headers are copied whole before anything is inserted.
        while index < method.header_end_line:
            out.append(lines[index])
            index += 1
        if method.body_start_line > method.end_lineno:
            # def f(self): return 1
            return index

        traced = not method.is_static and method.body_line_count > MIN_TRACED_BODY_LINES
        receiver = method.receiver or "self"
        exit_call = method_exit_call(method.name, receiver)

        if traced and insert_entry_call:
            if method.docstring_end_line:
                while index < method.docstring_end_line:
                    out.append(lines[index])
                    index += 1
            out.append(method.body_indent + method_entry_call(receiver))

        trace_exits = traced and insert_exit_call
        sites = {}
        for site in method.return_sites:
            sites.setdefault(site.line, site)
        guards = set(method.loop_guard_lines)
        while index < method.end_lineno:
            lineno = index + 1
            if lineno in guards:
                trace_exits = False
            site = sites.get(lineno)
            if trace_exits and site is not None:
                out.extend(self._exit_before_return(lines[index], site, exit_call))
            else:
                out.append(lines[index])
            index += 1

        if trace_exits and method.is_void and not method.ends_with_return:
            out.append(method.body_indent + exit_call)
        return index

    @staticmethod
    def _exit_before_return(line: str, site: ReturnSite, exit_call: str) -> List[str]:
        """Lines replacing `line` so that `exit_call` runs right before the return."""
        indent = _leading_whitespace(line)
        if site.column <= len(indent):
            return [indent + exit_call, line]
        if site.suite_column is not None:
            # Inline suite: `if x: ... return y` becomes an indented block.
            header = line[: site.suite_column].rstrip()
            indent += INDENT
            preceding = line[site.suite_column : site.column]
        else:
            header = None
            preceding = line[len(indent) : site.column]
        result = [header] if header is not None else []
        preceding = preceding.strip().rstrip(";").rstrip()
        if preceding:
            result.append(indent + preceding)
        result.append(indent + exit_call)
        result.append(indent + line[site.column :])
        return result

    # ------------------------------------------------------------------ #
    # Imports                                                            #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _import_block(model: SourceModel, imports: Iterable[str]) -> List[str]:
        """Import statements to insert; those already bound in the program are skipped."""
        existing = {name for imp in model.imports for name in imp.names}
        block = []
        for statement in imports:
            statement = _normalize_import(statement)
            try:
                nodes = ast.parse(statement).body
            except SyntaxError as e:
                raise DelveError(f"Invalid import statement '{statement}'") from e
            if len(nodes) != 1 or not isinstance(nodes[0], (ast.Import, ast.ImportFrom)):
                raise DelveError(f"Invalid import statement '{statement}'")
            names = set(import_names(nodes[0]))
            if names <= existing:
                continue
            existing |= names
            block.append(statement)
        return block

    @staticmethod
    def _import_insertion_line(model: SourceModel) -> int:
        """Line after which new imports go; 0 means before the first line."""
        if model.imports:
            return model.imports[-1].end_lineno
        return model.header_end_line

    # ------------------------------------------------------------------ #
    # Variants                                                           #
    # ------------------------------------------------------------------ #

    def run_alias(self) -> str:
        """First of `run1`, `run2`, ... that no method of the program uses."""
        names = set(self.model.method_names())
        return next(
            alias
            for alias in (f"{RUN_METHOD_NAME}{n}" for n in itertools.count(1))
            if alias not in names
        )

    def get_reentry_instrumented_source(self, method_name: str) -> str:
        """Make `run()` trace exactly one call to `method_name`.

        The existing `run` is renamed to a fresh alias (as are `run()` calls),
        and a new `run(self)` is inserted before it that calls the target
        between an entry and an exit call.
        """
        if not method_name:
            raise DelveError("The 'methodName' is null or empty")
        run = next(
            (
                m
                for m in self.model.methods
                if m.name == RUN_METHOD_NAME and not m.is_static
            ),
            None,
        )
        if run is None:
            raise DelveError(f"There is no '{RUN_METHOD_NAME}' method to re-enter")
        alias = self.run_alias()
        target = alias if method_name == RUN_METHOD_NAME else method_name

        out: List[str] = []
        signature = _signature_pattern(run)
        for lineno, line in enumerate(self.model.lines, 1):
            if lineno == run.first_line:
                indent = _leading_whitespace(line)
                out.extend(modified_run_code(method_name, target, indent))
                out.append("")
            if lineno == run.lineno:
                line = signature.sub(
                    lambda m: f"{m.group(1) or ''}def {alias}(", line, count=1
                )
            out.append(_RUN_CALL.sub(f"{alias}()", line))
        return "\n".join(out) + "\n"

    def get_body_replaced_source(self, method_name: str, new_body: str) -> str:
        """Replace the body of `method_name`; every other method is instrumented."""
        if method_name is None:
            raise DelveError("The 'methodName' is null")
        if new_body is None:
            raise DelveError("The 'newMethodBody' is null")
        model = self.model
        if not model.methods:
            raise DelveError("The source code does not have methods")

        lines = model.lines
        out: List[str] = []
        methods = iter(model.methods)
        method = next(methods, None)
        index = 0
        while index < len(lines):
            if method is None or not self._at_signature(lines, index, method):
                out.append(lines[index])
                index += 1
                continue
            if method.name != method_name:
                index = self._emit_method(method, lines, index, out, True, True)
            else:
                while index < method.header_end_line - 1:
                    out.append(lines[index])
                    index += 1
                header = lines[index]
                out.append(header[: method.header_end_column + 1])
                for body_line in self._body_lines(new_body):
                    out.append(method.body_indent + body_line if body_line else "")
                index = method.end_lineno
            method = next(methods, None)
        return "\n".join(out) + "\n"

    @staticmethod
    def _body_lines(new_body: str) -> List[str]:
        lines = textwrap.dedent(new_body).strip("\n").split("\n")
        if lines and re.match(r"\s*(async\s+)?def\s", lines[0]):
            # A whole method was given: drop its header.
            while lines and not lines[0].rstrip().endswith(":"):
                lines.pop(0)
            lines = textwrap.dedent("\n".join(lines[1:])).split("\n")
        lines = [line.rstrip() for line in lines]
        return lines if any(lines) else ["pass"]
