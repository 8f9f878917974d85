"""Compile driver executed by the build interpreter.

``python -m gantry.toolchain build`` byte-compiles the application sources,
verifies that every absolute import can be resolved by that interpreter and
packs the result into an executable zip archive. Problems are reported on
stderr as ``path:line:col: message`` so the harness can locate them.
"""

from __future__ import annotations

import argparse
import ast
import importlib.util
import os
import shutil
import sys
import tempfile
import zipapp
from pathlib import Path

EXCLUDED_DIRS = {"__pycache__", "tmp", ".git", ".venv", ".pytest_cache", ".mypy_cache", ".ruff_cache"}
BUILD_INFO_MODULE = "_build_info.py"


def _iter_tree(base: Path) -> list[Path]:
    files: list[Path] = []
    for current, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(name for name in dirnames if name not in EXCLUDED_DIRS and not name.startswith("."))
        files.extend(Path(current) / name for name in sorted(filenames) if not name.startswith("."))
    return files


def _display(path: Path, src_path: Path) -> str:
    try:
        return path.relative_to(src_path).as_posix()
    except ValueError:
        return path.as_posix()


def _optional_imports(tree: ast.Module) -> set[int]:
    """ids of import nodes guarded by a ``try`` block."""
    guarded: set[int] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Try):
            for stmt in node.body:
                for child in ast.walk(stmt):
                    if isinstance(child, (ast.Import, ast.ImportFrom)):
                        guarded.add(id(child))
    return guarded


def _local_top_level(name: str, src_path: Path) -> bool:
    return (src_path / name).is_dir() or (src_path / f"{name}.py").is_file()


def check_source(path: Path, src_path: Path) -> list[str]:
    """Return diagnostics for one file: syntax first, then unresolved imports."""
    display = _display(path, src_path)
    try:
        source = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        return [f"{display}:1:1: SyntaxError: cannot decode source: {exc.reason}"]
    try:
        compile(source, str(path), "exec")
        tree = ast.parse(source, filename=str(path))
    except SyntaxError as exc:
        return [f"{display}:{exc.lineno or 1}:{exc.offset or 1}: {type(exc).__name__}: {exc.msg}"]

    guarded = _optional_imports(tree)
    diagnostics: list[str] = []
    for node in ast.walk(tree):
        if id(node) in guarded:
            continue
        if isinstance(node, ast.Import):
            modules = [alias.name for alias in node.names]
        elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
            modules = [node.module]
        else:
            continue
        for module in modules:
            top = module.split(".", 1)[0]
            if top in sys.builtin_module_names or _local_top_level(top, src_path):
                continue
            if importlib.util.find_spec(top) is None:
                diagnostics.append(
                    f"{display}:{node.lineno}:{node.col_offset + 1}: ModuleNotFoundError: No module named '{module}'"
                )
    return diagnostics


def _build_info(defines: list[str], tags: str) -> str:
    lines = ["# GENERATED CODE - DO NOT EDIT"]
    for item in defines:
        key, _, value = item.partition("=")
        lines.append(f"{key.strip()} = {value!r}")
    tag_list = tuple(tag for tag in tags.replace(",", " ").split() if tag)
    lines.append(f"BUILD_TAGS = {tag_list!r}")
    return "\n".join(lines) + "\n"


def build(args: argparse.Namespace) -> int:
    src_path = Path(args.src_path).resolve()
    base = src_path.joinpath(*args.import_path.split("."))
    entry = Path(args.entry).resolve()
    output = Path(args.output).resolve()

    if not entry.is_file():
        print(f"{_display(entry, src_path)}:1: entry point not found", file=sys.stderr)
        return 1

    sources = [path for path in _iter_tree(base) if path.suffix == ".py"]
    diagnostics: list[str] = []
    for path in [entry, *sources]:
        diagnostics.extend(check_source(path, src_path))
    if diagnostics:
        print("\n".join(diagnostics), file=sys.stderr)
        return 1

    with tempfile.TemporaryDirectory(prefix="gantry-build-") as staging_dir:
        staging = Path(staging_dir)
        for path in _iter_tree(base):
            target = staging / path.relative_to(src_path)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, target)
        # Every archived directory becomes a regular package.
        for path in sorted(staging.rglob("*.py")):
            for directory in path.relative_to(staging).parents:
                init_file = staging / directory / "__init__.py"
                if directory != Path(".") and not init_file.exists():
                    init_file.write_text("", encoding="utf-8")
        shutil.copy2(entry, staging / "__main__.py")
        (staging / BUILD_INFO_MODULE).write_text(_build_info(args.define, args.tags), encoding="utf-8")

        output.parent.mkdir(parents=True, exist_ok=True)
        partial = output.with_name(f"{output.name}.partial")
        zipapp.create_archive(
            staging,
            target=partial,
            interpreter=args.interpreter or None,
            compressed=not args.no_compress,
        )
        os.replace(partial, output)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m gantry.toolchain", description="Build a gantry application archive.")
    sub = parser.add_subparsers(dest="command", required=True)
    build_parser = sub.add_parser("build")
    build_parser.add_argument("--define", action="append", default=[], help="NAME=VALUE stored in _build_info.")
    build_parser.add_argument("--tags", default="", help="Build tags.")
    build_parser.add_argument("-o", "--output", required=True, help="Archive path.")
    build_parser.add_argument("--src-path", required=True, help="Source root.")
    build_parser.add_argument("--import-path", required=True, help="Application import path.")
    build_parser.add_argument("--interpreter", default="/usr/bin/env python3", help="Shebang interpreter.")
    build_parser.add_argument("--no-compress", action="store_true", help="Store files uncompressed.")
    build_parser.add_argument("entry", help="Bootstrap entry point.")
    args = parser.parse_args(argv)
    return build(args)


if __name__ == "__main__":
    raise SystemExit(main())
