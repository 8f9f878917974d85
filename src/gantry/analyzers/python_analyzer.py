from __future__ import annotations

import ast
from pathlib import Path

from gantry.analyzers.common import INIT_HOOKS, ClassScan, FileScan
from gantry.analyzers.types import resolve_annotation
from gantry.logging import get_logger
from gantry.schemas import MethodArg, MethodSpec, RenderCall

logger = get_logger("analyzers")

SKIPPED_DECORATORS = {"staticmethod", "classmethod", "property"}
VALIDATION_RULES = {
    "required",
    "min",
    "max",
    "range",
    "min_size",
    "max_size",
    "length",
    "match",
    "email",
    "check",
}


def _resolve_from_import(current_module_name: str, module_name: str | None, level: int, is_package: bool) -> str:
    if level == 0:
        return module_name or ""

    package_parts = current_module_name.split(".")
    if not is_package:
        package_parts = package_parts[:-1]

    up_count = max(level - 1, 0)
    if up_count:
        package_parts = package_parts[: len(package_parts) - up_count]
    if module_name:
        package_parts.extend(module_name.split("."))
    return ".".join([part for part in package_parts if part])


def _call_path(node: ast.expr) -> str:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return f"{_call_path(node.value)}.{node.attr}"
    return "<expr>"


def _import_names(tree: ast.Module, module_name: str, is_package: bool) -> dict[str, str]:
    names: dict[str, str] = {}
    for node in tree.body:
        if isinstance(node, ast.Import):
            for alias in node.names:
                if alias.asname:
                    names[alias.asname] = alias.name
                else:
                    head = alias.name.split(".", 1)[0]
                    names[head] = head
        elif isinstance(node, ast.ImportFrom):
            base_name = _resolve_from_import(module_name, node.module, node.level, is_package)
            for alias in node.names:
                if alias.name == "*":
                    continue
                target = f"{base_name}.{alias.name}" if base_name else alias.name
                names[alias.asname or alias.name] = target
    return names


def _qualify(path: str, names: dict[str, str], module_name: str) -> str:
    head, _, rest = path.partition(".")
    if head in names:
        target = names[head]
        return f"{target}.{rest}" if rest else target
    return f"{module_name}.{path}"


def _is_action_candidate(node: ast.FunctionDef | ast.AsyncFunctionDef) -> bool:
    if node.name.startswith("_"):
        return False
    for decorator in node.decorator_list:
        if _call_path(decorator).rsplit(".", 1)[-1] in SKIPPED_DECORATORS:
            return False
    return bool(node.args.posonlyargs or node.args.args)


def _render_calls(node: ast.FunctionDef | ast.AsyncFunctionDef) -> list[RenderCall]:
    calls: list[RenderCall] = []
    for child in ast.walk(node):
        if not isinstance(child, ast.Call):
            continue
        func = child.func
        if not (isinstance(func, ast.Attribute) and func.attr == "render"):
            continue
        if not (isinstance(func.value, ast.Name) and func.value.id == "self"):
            continue
        names = [arg.id for arg in child.args if isinstance(arg, ast.Name)]
        if names:
            calls.append(RenderCall(line=child.lineno, names=names))
    calls.sort(key=lambda item: item.line)
    return calls


def _method_spec(
    node: ast.FunctionDef | ast.AsyncFunctionDef,
    names: dict[str, str],
    module_name: str,
    local_classes: set[str],
) -> MethodSpec | None:
    if node.args.vararg or node.args.kwarg:
        return None
    params = [*node.args.posonlyargs, *node.args.args][1:] + list(node.args.kwonlyargs)
    args: list[MethodArg] = []
    for param in params:
        resolved = resolve_annotation(param.annotation, names, module_name, local_classes)
        if resolved is None:
            logger.debug("Skipping %s.%s: cannot resolve type of %r", module_name, node.name, param.arg)
            return None
        type_expr, import_path = resolved
        args.append(MethodArg(name=param.arg, type_expr=type_expr, import_path=import_path))
    return MethodSpec(name=node.name, args=args, render_calls=_render_calls(node), line=node.lineno)


def _validation_keys(tree: ast.Module) -> dict[int, str]:
    keys: dict[int, str] = {}
    for node in ast.walk(tree):
        if not isinstance(node, ast.Call) or not node.args:
            continue
        func = node.func
        if not isinstance(func, ast.Attribute) or func.attr not in VALIDATION_RULES:
            continue
        target = func.value
        on_validation = (isinstance(target, ast.Attribute) and target.attr == "validation") or (
            isinstance(target, ast.Name) and target.id in {"v", "validation"}
        )
        if on_validation:
            keys[node.lineno] = ast.unparse(node.args[0])
    return keys


def _has_init_hook(tree: ast.Module, names: dict[str, str], module_name: str) -> bool:
    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            for decorator in node.decorator_list:
                target = decorator.func if isinstance(decorator, ast.Call) else decorator
                if _qualify(_call_path(target), names, module_name) in INIT_HOOKS:
                    return True
        if isinstance(node, ast.Expr) and isinstance(node.value, ast.Call):
            if _qualify(_call_path(node.value.func), names, module_name) in INIT_HOOKS:
                return True
    return False


def analyze_python_file(file_path: Path, module_name: str) -> FileScan:
    """Scan one source file.

    Raises ``SyntaxError``, ``UnicodeDecodeError`` or ``OSError``; the caller turns those into
    an analysis failure for the whole build.
    """
    source = file_path.read_text(encoding="utf-8")
    tree = ast.parse(source, filename=str(file_path))

    is_package = file_path.name == "__init__.py"
    names = _import_names(tree, module_name, is_package)
    local_classes = {node.name for node in tree.body if isinstance(node, ast.ClassDef)}

    scan = FileScan(path=file_path, module=module_name)
    for node in tree.body:
        if not isinstance(node, ast.ClassDef):
            continue
        bases = [_qualify(_call_path(base), names, module_name) for base in node.bases]
        class_scan = ClassScan(name=node.name, module=module_name, bases=bases, line=node.lineno)
        for item in node.body:
            if isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef)) and _is_action_candidate(item):
                spec = _method_spec(item, names, module_name, local_classes)
                if spec is not None:
                    class_scan.methods.append(spec)
        scan.classes.append(class_scan)

    scan.validation_keys = _validation_keys(tree)
    scan.has_init_hook = _has_init_hook(tree, names, module_name)
    return scan
