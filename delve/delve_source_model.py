"""Structured model of a student program.

`SourceModel` parses Python source with `ast` (and `tokenize` for comments and
header boundaries) and exposes the pieces the rewriter needs: the canonical
text, method descriptors in source order, classes, module-level imports and
comments, all with line positions in the canonical text.
"""

import ast
import io
import tokenize
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

from delve.delve_config import INDENT
from delve.delve_errors import DelveParseError

FunctionNode = Union[ast.FunctionDef, ast.AsyncFunctionDef]

_STATIC_DECORATORS = {"staticmethod", "classmethod"}


@dataclass(frozen=True)
class ReturnSite:
    line: int
    column: int
    has_value: bool
    # Column of the first statement of an inline suite holding this return
    # (`if x: a = 1; return a`), None when the suite starts on its own line.
    suite_column: Optional[int] = None


@dataclass(frozen=True)
class MethodDescriptor:
    name: str
    owner: Optional[str]
    is_static: bool
    receiver: Optional[str]
    parameters: Tuple[str, ...]
    is_public: bool
    is_void: bool
    signature_text: str
    first_line: int
    lineno: int
    header_end_line: int
    header_end_column: int
    body_start_line: int
    end_lineno: int
    body_indent: str
    docstring_end_line: Optional[int]
    ends_with_return: bool
    return_sites: Tuple[ReturnSite, ...]
    loop_guard_lines: Tuple[int, ...]
    calls: Tuple[str, ...]
    body_text: str
    body_line_count: int

    def __str__(self) -> str:
        owner = f"{self.owner}." if self.owner else ""
        return f"{owner}{self.name}({', '.join(self.parameters)})"


@dataclass(frozen=True)
class ClassDescriptor:
    name: str
    owner: Optional[str]
    lineno: int
    end_lineno: int
    bases: Tuple[str, ...]


@dataclass(frozen=True)
class ImportDescriptor:
    statement: str
    names: Tuple[str, ...]
    lineno: int
    end_lineno: int


@dataclass(frozen=True)
class Comment:
    line: int
    column: int
    text: str


def canonicalize(text: str) -> str:
    """Return `text` with a style-independent layout.

    Line endings become `\\n`, tabs are expanded, trailing whitespace is
    stripped and the text ends with exactly one newline. Idempotent.
    """
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    lines = [line.expandtabs(8).rstrip() for line in lines]
    while lines and not lines[-1]:
        lines.pop()
    return "\n".join(lines) + "\n" if lines else ""


def import_names(node: Union[ast.Import, ast.ImportFrom]) -> Tuple[str, ...]:
    """Fully qualified names bound by an import statement."""
    names = []
    for alias in node.names:
        if isinstance(node, ast.ImportFrom):
            module = "." * node.level + (node.module or "")
            name = f"{module}.{alias.name}"
        else:
            name = alias.name
        if alias.asname:
            name += f" as {alias.asname}"
        names.append(name)
    return tuple(names)


def _char_column(line: str, byte_column: int) -> int:
    """ast columns are UTF-8 byte offsets; convert to a str index."""
    return len(line.encode("utf-8")[:byte_column].decode("utf-8", errors="ignore"))


def _decorator_name(node: ast.expr) -> str:
    if isinstance(node, ast.Call):
        node = node.func
    if isinstance(node, ast.Attribute):
        return node.attr
    if isinstance(node, ast.Name):
        return node.id
    return ""


_SCOPES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda, ast.ClassDef)


def _walk_own_scope(node: ast.AST) -> Iterator[ast.AST]:
    """Like ast.walk over a function body, without entering nested scopes."""
    todo = list(ast.iter_child_nodes(node))
    while todo:
        child = todo.pop(0)
        yield child
        if isinstance(child, _SCOPES):
            continue
        todo.extend(ast.iter_child_nodes(child))


def _statement_lists(node: FunctionNode) -> Iterator[List[ast.stmt]]:
    """Every statement list (suite) that belongs to the function's own scope."""
    for owner in [node, *_walk_own_scope(node)]:
        if owner is not node and isinstance(owner, _SCOPES):
            continue
        for field in ("body", "orelse", "finalbody"):
            suite = getattr(owner, field, None)
            if isinstance(suite, list) and suite and isinstance(suite[0], ast.stmt):
                yield suite


def _is_literal_true(test: ast.expr) -> bool:
    return isinstance(test, ast.Constant) and test.value is not None and bool(test.value)


class SourceModel:
    """Parse result for one source text."""

    def __init__(self, text: str) -> None:
        if text is None or not text.strip():
            raise DelveParseError("'sourceCode' is null or empty", text or "")
        self.original_text = text
        self.text = canonicalize(text)
        self.lines = self.text.split("\n")[:-1]
        try:
            self.tree = ast.parse(self.text)
        except SyntaxError as e:
            raise DelveParseError(
                f"Error parsing source code (line {e.lineno}): {e.msg}\n{text}",
                text,
            ) from e
        self.methods: List[MethodDescriptor] = []
        self.classes: List[ClassDescriptor] = []
        self._collect(self.tree.body, None)
        self.methods.sort(key=lambda m: m.lineno)
        self.classes.sort(key=lambda c: c.lineno)
        self.imports = self._collect_imports()
        self.header_end_line = self._module_header_end_line()
        self.comments = self._collect_comments()

    # ------------------------------------------------------------------ #
    # Queries                                                            #
    # ------------------------------------------------------------------ #

    @property
    def first_class_name(self) -> Optional[str]:
        top_level = [c for c in self.classes if c.owner is None]
        return top_level[0].name if top_level else None

    def method_names(self) -> List[str]:
        return [method.name for method in self.methods]

    def get_method(
        self, name: str, owner: Optional[str] = None
    ) -> Optional[MethodDescriptor]:
        for method in self.methods:
            if method.name == name and (owner is None or method.owner == owner):
                return method
        return None

    def methods_of(self, owner: Optional[str]) -> List[MethodDescriptor]:
        return [method for method in self.methods if method.owner == owner]

    def comment_lines(self) -> Set[int]:
        return {comment.line for comment in self.comments}

    def method_callee_map(self) -> Dict[MethodDescriptor, Set[MethodDescriptor]]:
        """Map every method that is called within this source to its callers."""
        callee_map: Dict[MethodDescriptor, Set[MethodDescriptor]] = {}
        for caller in self.methods:
            for name in caller.calls:
                # Calls through the receiver resolve within the owner first.
                callee = self.get_method(name, caller.owner) or self.get_method(name)
                if callee is not None:
                    callee_map.setdefault(callee, set()).add(caller)
        return callee_map

    # ------------------------------------------------------------------ #
    # Collection                                                         #
    # ------------------------------------------------------------------ #

    def _collect(self, body: List[ast.stmt], owner: Optional[str]) -> None:
        for node in body:
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                self.methods.append(self._describe(node, owner))
            elif isinstance(node, ast.ClassDef):
                assert node.end_lineno
                self.classes.append(
                    ClassDescriptor(
                        name=node.name,
                        owner=owner,
                        lineno=node.lineno,
                        end_lineno=node.end_lineno,
                        bases=tuple(ast.unparse(base) for base in node.bases),
                    )
                )
                self._collect(node.body, node.name)

    def _describe(self, node: FunctionNode, owner: Optional[str]) -> MethodDescriptor:
        assert node.end_lineno
        decorators = {_decorator_name(d) for d in node.decorator_list}
        args = node.args.posonlyargs + node.args.args
        is_static = owner is None or bool(decorators & _STATIC_DECORATORS) or not args
        receiver = None if is_static else args[0].arg
        parameters = [a.arg for a in (args if is_static else args[1:])]
        if node.args.vararg:
            parameters.append("*" + node.args.vararg.arg)
        parameters.extend(a.arg for a in node.args.kwonlyargs)
        if node.args.kwarg:
            parameters.append("**" + node.args.kwarg.arg)

        header_end_line, header_end_column = self._header_end(node)
        body_start_line = header_end_line + 1
        first = node.body[0]
        if first.lineno > header_end_line:
            first_line = self.lines[first.lineno - 1]
            body_indent = " " * _char_column(first_line, first.col_offset)
        else:
            def_line = self.lines[node.lineno - 1]
            body_indent = def_line[: len(def_line) - len(def_line.lstrip())] + INDENT

        docstring_end_line = None
        if (
            isinstance(first, ast.Expr)
            and isinstance(first.value, ast.Constant)
            and isinstance(first.value.value, str)
            and first.lineno > header_end_line
        ):
            docstring_end_line = first.end_lineno

        return_sites = []
        for suite in _statement_lists(node):
            head = suite[0]
            for stmt in suite:
                if not isinstance(stmt, ast.Return):
                    continue
                line = self.lines[stmt.lineno - 1]
                indent = len(line) - len(line.lstrip())
                suite_column = None
                if head.lineno == stmt.lineno:
                    column = _char_column(line, head.col_offset)
                    if column > indent:
                        suite_column = column
                return_sites.append(
                    ReturnSite(
                        line=stmt.lineno,
                        column=_char_column(line, stmt.col_offset),
                        has_value=stmt.value is not None,
                        suite_column=suite_column,
                    )
                )

        loop_guard_lines = []
        calls: List[str] = []
        for child in _walk_own_scope(node):
            if isinstance(child, ast.While) and _is_literal_true(child.test):
                loop_guard_lines.append(child.lineno)
            elif isinstance(child, ast.Call):
                func = child.func
                name = None
                if (
                    isinstance(func, ast.Attribute)
                    and isinstance(func.value, ast.Name)
                    and func.value.id == receiver
                ):
                    name = func.attr
                elif isinstance(func, ast.Name):
                    name = func.id
                if name and name not in calls:
                    calls.append(name)
        return_sites.sort(key=lambda site: (site.line, site.column))

        body_lines = self.lines[body_start_line - 1 : node.end_lineno]
        prefix = "async def " if isinstance(node, ast.AsyncFunctionDef) else "def "
        return MethodDescriptor(
            name=node.name,
            owner=owner,
            is_static=is_static,
            receiver=receiver,
            parameters=tuple(parameters),
            is_public=not node.name.startswith("_"),
            is_void=not any(site.has_value for site in return_sites),
            signature_text=f"{prefix}{node.name}(",
            first_line=min([node.lineno] + [d.lineno for d in node.decorator_list]),
            lineno=node.lineno,
            header_end_line=header_end_line,
            header_end_column=header_end_column,
            body_start_line=body_start_line,
            end_lineno=node.end_lineno,
            body_indent=body_indent,
            docstring_end_line=docstring_end_line,
            ends_with_return=isinstance(node.body[-1], ast.Return),
            return_sites=tuple(return_sites),
            loop_guard_lines=tuple(sorted(loop_guard_lines)),
            calls=tuple(calls),
            body_text="\n".join(body_lines),
            body_line_count=sum(1 for line in body_lines if line.strip()),
        )

    def _header_end(self, node: FunctionNode) -> Tuple[int, int]:
        """Line and column of the colon closing a (possibly multi-line) def header."""
        assert node.end_lineno
        segment = "\n".join(self.lines[node.lineno - 1 : node.end_lineno]) + "\n"
        depth = 0
        try:
            for tok in tokenize.generate_tokens(io.StringIO(segment).readline):
                if tok.type != tokenize.OP:
                    continue
                if tok.string in "([{":
                    depth += 1
                elif tok.string in ")]}":
                    depth -= 1
                elif tok.string == ":" and depth == 0:
                    return node.lineno + tok.start[0] - 1, tok.start[1]
        except (tokenize.TokenError, IndentationError):
            pass
        def_line = self.lines[node.lineno - 1]
        return node.lineno, def_line.rfind(":")

    def _collect_imports(self) -> List[ImportDescriptor]:
        """Module-level imports that precede the first definition."""
        imports = []
        for node in self.tree.body:
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                break
            if isinstance(node, (ast.Import, ast.ImportFrom)):
                assert node.end_lineno
                imports.append(
                    ImportDescriptor(
                        statement=ast.unparse(node),
                        names=import_names(node),
                        lineno=node.lineno,
                        end_lineno=node.end_lineno,
                    )
                )
        return imports

    def _module_header_end_line(self) -> int:
        """Last line of the module docstring and `__future__` imports (0 if none)."""
        end = 0
        for index, node in enumerate(self.tree.body):
            is_docstring = (
                index == 0
                and isinstance(node, ast.Expr)
                and isinstance(node.value, ast.Constant)
                and isinstance(node.value.value, str)
            )
            is_future = isinstance(node, ast.ImportFrom) and node.module == "__future__"
            if not (is_docstring or is_future):
                break
            assert node.end_lineno
            end = node.end_lineno
        return end

    def _collect_comments(self) -> List[Comment]:
        comments = []
        try:
            for tok in tokenize.generate_tokens(io.StringIO(self.text).readline):
                if tok.type == tokenize.COMMENT:
                    comments.append(Comment(tok.start[0], tok.start[1], tok.string))
        except (tokenize.TokenError, IndentationError):
            pass
        return comments
