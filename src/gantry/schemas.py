from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum


@dataclass(slots=True, frozen=True)
class TypeExpr:
    """A type annotation that can be rendered against any package alias.

    ``expr`` is the annotation with its package qualifier removed and
    ``pkg_index`` marks where the qualifier belongs, so ``list[User]`` with
    index 5 renders as ``list[models.User]`` for alias ``models``.
    """

    expr: str
    pkg_name: str = ""
    pkg_index: int = 0

    def type_name(self, alias: str | None = None) -> str:
        pkg = self.pkg_name if alias is None else alias
        if not pkg:
            return self.expr
        return f"{self.expr[: self.pkg_index]}{pkg}.{self.expr[self.pkg_index :]}"


@dataclass(slots=True)
class MethodArg:
    name: str
    type_expr: TypeExpr
    import_path: str = ""


@dataclass(slots=True)
class RenderCall:
    line: int
    names: list[str] = field(default_factory=list)


@dataclass(slots=True)
class MethodSpec:
    name: str
    args: list[MethodArg] = field(default_factory=list)
    render_calls: list[RenderCall] = field(default_factory=list)
    line: int = 0

    @property
    def render_arg_names(self) -> dict[int, list[str]]:
        return {call.line: list(call.names) for call in self.render_calls}


@dataclass(slots=True)
class TypeInfo:
    struct_name: str
    import_path: str
    package_name: str
    file_path: str = ""
    line: int = 0
    method_specs: list[MethodSpec] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return (self.import_path, self.struct_name)


@dataclass(slots=True)
class SourceInfo:
    controllers: list[TypeInfo] = field(default_factory=list)
    test_suites: list[TypeInfo] = field(default_factory=list)
    validation_keys: dict[str, dict[int, str]] = field(default_factory=dict)
    init_import_paths: list[str] = field(default_factory=list)

    def controller_specs(self) -> list[TypeInfo]:
        return list(self.controllers)

    def test_suite_specs(self) -> list[TypeInfo]:
        return list(self.test_suites)


class ErrorKind(str, Enum):
    ANALYSIS = "analysis"
    IMPORT_NOT_FOUND = "import_not_found"
    COMPILE_DIAGNOSTIC = "compile_diagnostic"
    UNPARSEABLE_DIAGNOSTIC = "unparseable_diagnostic"
    PROCESS_START = "process_start"
    INTERNAL = "internal"


@dataclass(slots=True, frozen=True)
class CompileError:
    kind: ErrorKind
    title: str
    description: str
    source_type: str = "Python code"
    path: str = ""
    abs_path: str = ""
    line: int = 0
    column: int = 0
    source_lines: tuple[str, ...] = ()
    link: str = ""
    meta_error: str = ""

    @property
    def has_location(self) -> bool:
        return bool(self.path) and self.line > 0

    def with_link(self, template: str) -> CompileError:
        if not template or not self.has_location:
            return self
        link = template.replace("{path}", self.path).replace("{line}", str(self.line))
        return replace(self, link=link)

    def context_lines(self, radius: int = 5) -> list[tuple[int, str, bool]]:
        """Return ``(line_number, text, is_error_line)`` rows around the error."""
        if not self.source_lines or self.line <= 0:
            return []
        start = max(self.line - radius, 1)
        end = min(self.line + radius, len(self.source_lines))
        return [
            (number, self.source_lines[number - 1], number == self.line)
            for number in range(start, end + 1)
        ]

    def __str__(self) -> str:
        if self.has_location:
            return f"{self.title}: {self.path}:{self.line}: {self.description}"
        return f"{self.title}: {self.description}"
