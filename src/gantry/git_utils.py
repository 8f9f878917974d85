from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path

from gantry.errors import GitError
from gantry.logging import get_logger

logger = get_logger("git")

VERSION_ENV = "APP_VERSION"
VCS_PREFIX = "git-"


def _run_git(git_dir: Path, args: list[str]) -> str:
    git = shutil.which("git")
    if git is None:
        raise GitError("git executable not found in PATH")
    command = [git, f"--git-dir={git_dir}", *args]
    logger.debug("Exec: %s", command)
    proc = subprocess.run(
        command,
        cwd=git_dir.parent,
        check=False,
        capture_output=True,
        text=True,
    )
    if proc.returncode != 0:
        raise GitError(proc.stderr.strip() or proc.stdout.strip())
    return proc.stdout.strip()


def describe(repo: Path) -> str:
    return _run_git(repo / ".git", ["describe", "--always", "--dirty"])


def app_version(repo: Path) -> str:
    """Version string embedded into the built binary.

    ``APP_VERSION`` wins; otherwise a git checkout yields ``git-<describe>``;
    otherwise the version is empty.
    """
    override = os.getenv(VERSION_ENV, "")
    if override:
        return override

    if not (repo / ".git").is_dir():
        return ""
    try:
        return f"{VCS_PREFIX}{describe(repo)}"
    except GitError as exc:
        logger.warning("Cannot determine git repository version: %s", exc)
        return ""
