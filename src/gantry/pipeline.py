from __future__ import annotations

import os
import shutil
import subprocess
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from gantry.analyzers.engine import process_source
from gantry.context import AppContext
from gantry.diagnostics import missing_package, new_compile_error
from gantry.errors import ToolchainMissingError
from gantry.git_utils import VERSION_ENV, app_version
from gantry.logging import get_logger
from gantry.render.aliases import calc_import_aliases
from gantry.render.renderer import generate_sources
from gantry.schemas import CompileError
from gantry.supervisor import App
from gantry.utils import clean_dir

logger = get_logger("build")

TARGET_OS_ENV = "GANTRY_TARGET_OS"


@dataclass(slots=True)
class BuildResult:
    app: App | None
    error: CompileError | None
    outputs: dict[str, Path] = field(default_factory=dict)


def resolve_python(context: AppContext) -> str:
    configured = context.config.build.python or sys.executable
    resolved = shutil.which(configured) if configured else None
    if resolved is None:
        raise ToolchainMissingError(f"Python executable {configured!r} not found in PATH.")
    return resolved


def binary_path(context: AppContext) -> Path:
    """``<bin_dir>/gantry.d/<import path>/<app base name>`` plus the platform suffix."""
    configured = context.config.build.bin_dir
    if configured:
        bin_dir = Path(configured)
        if not bin_dir.is_absolute():
            bin_dir = context.base_path / bin_dir
    else:
        bin_dir = context.source_path / "bin"

    name = context.base_path.name
    target_os = os.getenv(TARGET_OS_ENV, "") or ("windows" if os.name == "nt" else sys.platform)
    if target_os == "windows":
        name += ".pyz"
    return bin_dir / "gantry.d" / Path(*context.import_path.split(".")) / name


def clean_source(context: AppContext) -> None:
    for directory in (context.tmp_dir, context.routes_dir):
        logger.debug("Cleaning %s", directory)
        clean_dir(directory)


def _run_command(command: list[str], cwd: Path) -> tuple[int, str]:
    logger.debug("Exec: %s", command)
    proc = subprocess.run(
        command,
        cwd=cwd,
        check=False,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
    )
    return proc.returncode, proc.stdout or ""


def build_command(context: AppContext, python: str, bin_path: Path, version: str, build_flags: Sequence[str]) -> list[str]:
    return [
        python,
        "-m",
        "gantry.toolchain",
        "build",
        "--define",
        f"{VERSION_ENV}={version}",
        "--tags",
        context.config.build.tags,
        "-o",
        str(bin_path),
        "--src-path",
        str(context.source_path),
        "--import-path",
        context.import_path,
        *build_flags,
        str(context.entry_point),
    ]


def run_build(context: AppContext, build_flags: Sequence[str] = ()) -> BuildResult:
    """Analyze, generate and compile the application.

    A missing module is fetched with pip and the build retried, at most once per
    distinct module; anything else comes back as a ``CompileError``.
    Raises ``ToolchainMissingError`` when the build interpreter does not exist.
    """
    clean_source(context)

    source_info, error = process_source(context.code_paths, context)
    if error is not None or source_info is None:
        return BuildResult(app=None, error=error.with_link(context.config.error_link) if error is not None else None)

    if context.config.db_import and context.config.db_import not in source_info.init_import_paths:
        source_info.init_import_paths.append(context.config.db_import)

    aliases = calc_import_aliases(source_info)
    outputs = generate_sources(context, source_info, aliases)

    python = resolve_python(context)
    bin_path = binary_path(context)

    fetched: set[str] = set()
    while True:
        version = app_version(context.base_path)
        code, output = _run_command(build_command(context, python, bin_path, version, build_flags), context.source_path)
        if code == 0:
            logger.info("Built %s", bin_path)
            return BuildResult(app=App(bin_path, context, python), error=None, outputs=outputs)

        package = missing_package(output)
        if package is None or package in fetched:
            return BuildResult(
                app=None,
                error=new_compile_error(output, context.source_path, context.config.error_link),
                outputs=outputs,
            )
        fetched.add(package)

        logger.info("Fetching missing package %s", package)
        fetch_code, fetch_output = _run_command([python, "-m", "pip", "install", package], context.source_path)
        if fetch_code != 0:
            logger.error("Failed to fetch %s:\n%s", package, fetch_output)
            return BuildResult(
                app=None,
                error=new_compile_error(output, context.source_path, context.config.error_link),
                outputs=outputs,
            )
