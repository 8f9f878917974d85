from __future__ import annotations

import os
from pathlib import Path

from gantry.analyzers.common import CONTROLLER_BASES, TEST_SUITE_BASES, ClassScan, FileScan
from gantry.analyzers.python_analyzer import analyze_python_file
from gantry.context import GENERATED_DIRS, AppContext
from gantry.logging import get_logger
from gantry.schemas import CompileError, ErrorKind, SourceInfo, TypeInfo

logger = get_logger("analyzers")

SUPPORTED_SUFFIXES = {".py"}
IGNORED_DIRS = {"__pycache__", ".git", ".venv", ".pytest_cache", ".mypy_cache", ".ruff_cache", *GENERATED_DIRS}


def discover_source_files(root: Path) -> list[Path]:
    files: list[Path] = []
    for current, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(name for name in dirnames if name not in IGNORED_DIRS and not name.startswith("."))
        for filename in sorted(filenames):
            path = Path(current) / filename
            if path.suffix.lower() in SUPPORTED_SUFFIXES:
                files.append(path)
    return files


def _module_name(context: AppContext, file_path: Path, root: Path) -> str:
    try:
        return context.module_name(file_path)
    except ValueError:
        # Extra watch roots may sit outside the source root.
        parts = list(file_path.resolve().relative_to(root.resolve()).with_suffix("").parts)
        if parts and parts[-1] == "__init__":
            parts = parts[:-1]
        return ".".join(parts)


def _source_key(context: AppContext, file_path: Path) -> str:
    """Validation keys are looked up by source-root-relative path at runtime."""
    resolved = file_path.resolve()
    try:
        return resolved.relative_to(context.source_path).as_posix()
    except ValueError:
        return resolved.as_posix()


def _analysis_error(file_path: Path, exc: SyntaxError | UnicodeDecodeError | OSError) -> CompileError:
    title = "Python Syntax Error"
    line = 0
    column = 0
    if isinstance(exc, SyntaxError):
        line = exc.lineno or 0
        column = exc.offset or 0
        description = f"{type(exc).__name__}: {exc.msg}"
    elif isinstance(exc, UnicodeDecodeError):
        description = f"cannot decode source: {exc.reason}"
    else:
        title = "Unreadable Source File"
        description = f"cannot read source: {exc.strerror or exc}"

    try:
        source_lines = tuple(file_path.read_text(encoding="utf-8", errors="replace").splitlines())
        meta_error = ""
    except OSError as read_exc:
        source_lines = ()
        meta_error = f"{file_path}: {read_exc}"

    return CompileError(
        kind=ErrorKind.ANALYSIS,
        title=title,
        description=description,
        path=str(file_path),
        abs_path=str(file_path.resolve()),
        line=line,
        column=column,
        source_lines=source_lines,
        meta_error=meta_error,
    )


class _Hierarchy:
    """Transitive base-class lookups across every scanned module."""

    def __init__(self, scans: list[FileScan]) -> None:
        self.classes: dict[str, ClassScan] = {}
        for scan in scans:
            for item in scan.classes:
                self.classes.setdefault(item.qualified_name, item)
        self._memo: dict[tuple[str, frozenset[str]], bool] = {}

    def inherits(self, qualified_name: str, roots: set[str]) -> bool:
        return self._inherits(qualified_name, frozenset(roots), set())

    def _inherits(self, qualified_name: str, roots: frozenset[str], visiting: set[str]) -> bool:
        key = (qualified_name, roots)
        if key in self._memo:
            return self._memo[key]
        if qualified_name in visiting:
            return False
        visiting.add(qualified_name)
        item = self.classes.get(qualified_name)
        result = False
        if item is not None:
            result = any(base in roots or self._inherits(base, roots, visiting) for base in item.bases)
        self._memo[key] = result
        return result


def _type_info(item: ClassScan, file_path: Path) -> TypeInfo:
    return TypeInfo(
        struct_name=item.name,
        import_path=item.module,
        package_name=item.module.rsplit(".", 1)[-1],
        file_path=str(file_path),
        line=item.line,
        method_specs=list(item.methods),
    )


def process_source(code_paths: list[Path], context: AppContext) -> tuple[SourceInfo | None, CompileError | None]:
    """Parse every source file beneath ``code_paths`` into a ``SourceInfo``.

    The first file that fails to parse aborts the analysis.
    """
    scans: list[FileScan] = []
    seen: set[Path] = set()
    for root in code_paths:
        if not root.is_dir():
            logger.debug("Skipping missing code path %s", root)
            continue
        for file_path in discover_source_files(root):
            resolved = file_path.resolve()
            if resolved in seen:
                continue
            seen.add(resolved)
            module_name = _module_name(context, file_path, root)
            try:
                scans.append(analyze_python_file(file_path, module_name))
            except (SyntaxError, UnicodeDecodeError, OSError) as exc:
                logger.error("Failed to parse %s: %s", file_path, exc)
                return None, _analysis_error(file_path, exc)

    hierarchy = _Hierarchy(scans)
    info = SourceInfo()
    for scan in scans:
        for item in scan.classes:
            if hierarchy.inherits(item.qualified_name, CONTROLLER_BASES):
                info.controllers.append(_type_info(item, scan.path))
            elif hierarchy.inherits(item.qualified_name, TEST_SUITE_BASES):
                suite = _type_info(item, scan.path)
                suite.method_specs = []
                info.test_suites.append(suite)
        if scan.validation_keys:
            info.validation_keys[_source_key(context, scan.path)] = dict(scan.validation_keys)
        if scan.has_init_hook and scan.module not in info.init_import_paths:
            info.init_import_paths.append(scan.module)

    logger.debug(
        "Analyzed %d files: %d controllers, %d test suites",
        len(scans),
        len(info.controllers),
        len(info.test_suites),
    )
    return info, None
