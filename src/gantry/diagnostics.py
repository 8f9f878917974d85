from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from gantry.logging import get_logger
from gantry.schemas import CompileError, ErrorKind
from gantry.utils import read_lines

logger = get_logger("diagnostics")

WITH_COLUMN_RE = re.compile(r"^([^:#\n]+):(\d+):(\d+): (.*)$", re.MULTILINE)
WITHOUT_COLUMN_RE = re.compile(r"^(.*?):(\d+):\s(.*?)$", re.MULTILINE)
IMPORT_ERROR_RE = re.compile(r"No module named '([^']+)'")

COMPILE_TITLE = "Python Compilation Error"


@dataclass(slots=True, frozen=True)
class Diagnostic:
    path: str
    line: int
    column: int
    message: str


def _parse_with_column(output: str) -> Diagnostic | None:
    match = WITH_COLUMN_RE.search(output)
    if match is None:
        return None
    return Diagnostic(
        path=match.group(1),
        line=int(match.group(2)),
        column=int(match.group(3)),
        message=match.group(4),
    )


def _parse_without_column(output: str) -> Diagnostic | None:
    match = WITHOUT_COLUMN_RE.search(output)
    if match is None:
        return None
    return Diagnostic(path=match.group(1), line=int(match.group(2)), column=0, message=match.group(3))


PARSERS: tuple[Callable[[str], Diagnostic | None], ...] = (_parse_with_column, _parse_without_column)


def parse_diagnostic(output: str) -> Diagnostic | None:
    for parser in PARSERS:
        diagnostic = parser(output)
        if diagnostic is not None:
            return diagnostic
    return None


def missing_package(output: str) -> str | None:
    """Top-level distribution name of the first unresolved import, if any."""
    match = IMPORT_ERROR_RE.search(output)
    if match is None:
        return None
    return match.group(1).split(".", 1)[0]


def new_compile_error(output: str, base_dir: Path, error_link: str = "") -> CompileError:
    """Turn raw toolchain output into a ``CompileError``."""
    diagnostic = parse_diagnostic(output)
    if diagnostic is None:
        logger.error("Failed to parse build errors:\n%s", output)
        return CompileError(
            kind=ErrorKind.UNPARSEABLE_DIAGNOSTIC,
            title=COMPILE_TITLE,
            description="See console for build error.",
        )

    logger.error("Build errors:\n%s", output)
    kind = ErrorKind.IMPORT_NOT_FOUND if IMPORT_ERROR_RE.search(diagnostic.message) else ErrorKind.COMPILE_DIAGNOSTIC
    abs_path = Path(diagnostic.path)
    if not abs_path.is_absolute():
        abs_path = base_dir / abs_path

    source_lines: tuple[str, ...] = ()
    meta_error = ""
    try:
        source_lines = tuple(read_lines(abs_path))
    except (OSError, UnicodeDecodeError) as exc:
        meta_error = f"{abs_path}: {exc}"
        logger.error(meta_error)

    error = CompileError(
        kind=kind,
        title=COMPILE_TITLE,
        description=diagnostic.message,
        path=diagnostic.path,
        abs_path=str(abs_path),
        line=diagnostic.line,
        column=diagnostic.column,
        source_lines=source_lines,
        meta_error=meta_error,
    )
    return error.with_link(error_link)
