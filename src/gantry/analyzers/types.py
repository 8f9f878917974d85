from __future__ import annotations

import ast
from dataclasses import dataclass

from gantry.schemas import TypeExpr

BUILTIN_TYPES = {
    "bool",
    "bytes",
    "complex",
    "dict",
    "float",
    "frozenset",
    "int",
    "list",
    "object",
    "set",
    "str",
    "tuple",
    "type",
}
GENERIC_TYPES = {"dict", "frozenset", "list", "set", "tuple", "type"}


@dataclass(slots=True)
class _Resolved:
    expr: str
    import_path: str = ""
    pkg_name: str = ""
    pkg_index: int = 0


def _dotted(node: ast.expr) -> str | None:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        base = _dotted(node.value)
        return f"{base}.{node.attr}" if base else None
    return None


def _qualified(dotted: str, names: dict[str, str], module: str, local_classes: set[str]) -> str | None:
    head, _, rest = dotted.partition(".")
    if head in names:
        target = names[head]
        return f"{target}.{rest}" if rest else target
    if head in local_classes and not rest:
        return f"{module}.{head}"
    return None


def _resolve(node: ast.expr, names: dict[str, str], module: str, local_classes: set[str]) -> _Resolved | None:
    if isinstance(node, ast.Constant):
        if node.value is None:
            return _Resolved(expr="None")
        if isinstance(node.value, str):
            try:
                parsed = ast.parse(node.value, mode="eval").body
            except SyntaxError:
                return None
            return _resolve(parsed, names, module, local_classes)
        return None

    if isinstance(node, (ast.Name, ast.Attribute)):
        dotted = _dotted(node)
        if dotted is None:
            return None
        if dotted in BUILTIN_TYPES and dotted not in names:
            return _Resolved(expr=dotted)
        qualified = _qualified(dotted, names, module, local_classes)
        if not qualified or "." not in qualified:
            return None
        import_path, type_name = qualified.rsplit(".", 1)
        if import_path == "builtins":
            return _Resolved(expr=type_name)
        return _Resolved(
            expr=type_name,
            import_path=import_path,
            pkg_name=import_path.rsplit(".", 1)[-1],
        )

    if isinstance(node, ast.Subscript):
        base = _resolve(node.value, names, module, local_classes)
        if base is None or base.import_path or base.expr not in GENERIC_TYPES:
            return None
        elements = node.slice.elts if isinstance(node.slice, ast.Tuple) else [node.slice]
        return _join(f"{base.expr}[", elements, ", ", "]", names, module, local_classes)

    if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
        return _join("", [node.left, node.right], " | ", "", names, module, local_classes)

    return None


def _join(
    prefix: str,
    elements: list[ast.expr],
    separator: str,
    suffix: str,
    names: dict[str, str],
    module: str,
    local_classes: set[str],
) -> _Resolved | None:
    result = _Resolved(expr=prefix)
    for index, element in enumerate(elements):
        part = _resolve(element, names, module, local_classes)
        if part is None:
            return None
        if index:
            result.expr += separator
        if part.import_path:
            # A single package qualifier per expression.
            if result.import_path and result.import_path != part.import_path:
                return None
            if not result.import_path:
                result.import_path = part.import_path
                result.pkg_name = part.pkg_name
                result.pkg_index = len(result.expr) + part.pkg_index
        result.expr += part.expr
    result.expr += suffix
    return result


def resolve_annotation(
    node: ast.expr | None,
    names: dict[str, str],
    module: str,
    local_classes: set[str],
) -> tuple[TypeExpr, str] | None:
    """Resolve a parameter annotation into a ``TypeExpr`` and its import path.

    Returns ``None`` when the annotation is missing or refers to something that
    cannot be imported by name from generated code.
    """
    if node is None:
        return None
    resolved = _resolve(node, names, module, local_classes)
    if resolved is None:
        return None
    type_expr = TypeExpr(
        expr=resolved.expr,
        pkg_name=resolved.pkg_name,
        pkg_index=resolved.pkg_index,
    )
    return type_expr, resolved.import_path
