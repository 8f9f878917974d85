from __future__ import annotations

import os
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from watchdog.utils.dirsnapshot import DirectorySnapshot, DirectorySnapshotDiff

from gantry.logging import get_logger
from gantry.schemas import CompileError

logger = get_logger("watch")

WATCH_SUFFIXES = {".py"}
DO_NOT_WATCH = {"tmp", "views", "routes"}
IGNORED_DIRS = {
    ".git",
    ".venv",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".ruff_cache",
    "node_modules",
}


def should_watch_dir(name: str) -> bool:
    return name not in DO_NOT_WATCH and name not in IGNORED_DIRS


def should_watch_file(name: str) -> bool:
    if name.startswith("."):
        return False
    return Path(name).suffix.lower() in WATCH_SUFFIXES


class ChangeWatcher:
    """Synchronous change detection that drives rebuilds.

    ``notify()`` compares a fresh snapshot of every root against the previous
    one and calls ``refresh`` when a relevant file changed. The first call
    always refreshes, and so does the call after a refresh that raised. Only one
    scan-and-refresh runs at a time.
    """

    def __init__(
        self,
        roots: list[Path],
        refresh: Callable[[], CompileError | None],
        watch_dir: Callable[[str], bool] = should_watch_dir,
        watch_file: Callable[[str], bool] = should_watch_file,
    ) -> None:
        self.roots = roots
        self.refresh = refresh
        self.watch_dir = watch_dir
        self.watch_file = watch_file
        self._lock = threading.Lock()
        self._snapshots: dict[Path, DirectorySnapshot] = {}
        self._dirty = True
        self.last_error: CompileError | None = None

    def _listdir(self, path: str) -> list[os.DirEntry[str]]:
        with os.scandir(path) as entries:
            return [
                entry
                for entry in entries
                if not (entry.is_dir(follow_symlinks=False) and not self.watch_dir(entry.name))
            ]

    def _scan(self) -> list[str]:
        changed: set[str] = set()
        for root in self.roots:
            if not root.is_dir():
                continue
            snapshot = DirectorySnapshot(str(root), recursive=True, listdir=self._listdir)
            previous = self._snapshots.get(root)
            self._snapshots[root] = snapshot
            if previous is None:
                continue

            diff = DirectorySnapshotDiff(previous, snapshot)
            paths = [*diff.files_created, *diff.files_deleted, *diff.files_modified]
            for src_path, dest_path in diff.files_moved:
                paths.extend([src_path, dest_path])
            changed.update(path for path in paths if self.watch_file(os.path.basename(path)))
        return sorted(changed)

    def notify(self) -> CompileError | None:
        """Rebuild if anything relevant changed since the last call.

        Returns the ``CompileError`` of a failed rebuild; while nothing changes
        afterwards the same error keeps being returned without rebuilding.
        """
        with self._lock:
            try:
                changed = self._scan()
            except OSError as exc:
                logger.error("Failed to scan watched paths: %s", exc)
                changed = []

            if not self._dirty and not changed:
                return self.last_error

            if changed:
                sample = ", ".join(changed[:8])
                suffix = "..." if len(changed) > 8 else ""
                logger.info("Rebuilding due to changes: %s%s", sample, suffix)
            self._dirty = True
            self.last_error = self.refresh()
            self._dirty = False
            return self.last_error

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the lock ``notify()`` uses, waiting for a running refresh to finish."""
        with self._lock:
            yield
