from __future__ import annotations

import threading

import pytest
from conftest import touch, write

from gantry.schemas import CompileError, ErrorKind
from gantry.watch.service import ChangeWatcher, should_watch_dir, should_watch_file


class _Refresh:
    def __init__(self, results: list[CompileError | None] | None = None) -> None:
        self.calls = 0
        self.results = list(results or [])

    def __call__(self) -> CompileError | None:
        self.calls += 1
        return self.results.pop(0) if self.results else None


def test_predicates() -> None:
    assert should_watch_dir("controllers")
    assert not should_watch_dir("tmp")
    assert not should_watch_dir("routes")
    assert not should_watch_dir("__pycache__")
    assert should_watch_file("app.py")
    assert not should_watch_file("notes.txt")
    assert not should_watch_file(".hidden.py")


def test_notify_is_idempotent_without_changes(tmp_path) -> None:
    write(tmp_path / "app" / "controllers" / "app.py", "x = 1\n")
    refresh = _Refresh()
    watcher = ChangeWatcher([tmp_path / "app"], refresh)

    assert watcher.notify() is None
    assert watcher.notify() is None
    assert refresh.calls == 1


def test_relevant_change_triggers_refresh(tmp_path) -> None:
    source = write(tmp_path / "app" / "controllers" / "app.py", "x = 1\n")
    refresh = _Refresh()
    watcher = ChangeWatcher([tmp_path / "app"], refresh)
    watcher.notify()

    source.write_text("x = 2\n", encoding="utf-8")
    touch(source)
    watcher.notify()
    assert refresh.calls == 2

    write(tmp_path / "app" / "models.py", "y = 1\n")
    watcher.notify()
    assert refresh.calls == 3


def test_irrelevant_changes_are_ignored(tmp_path) -> None:
    write(tmp_path / "app" / "controllers" / "app.py", "x = 1\n")
    refresh = _Refresh()
    watcher = ChangeWatcher([tmp_path / "app"], refresh)
    watcher.notify()

    write(tmp_path / "app" / "tmp" / "main.py", "generated = True\n")
    write(tmp_path / "app" / "routes" / "routes.py", "generated = True\n")
    write(tmp_path / "app" / "README.md", "docs\n")
    watcher.notify()

    assert refresh.calls == 1


def test_failed_refresh_is_cached_until_next_change(tmp_path) -> None:
    source = write(tmp_path / "app" / "app.py", "x = (\n")
    error = CompileError(kind=ErrorKind.ANALYSIS, title="Python Syntax Error", description="boom")
    refresh = _Refresh([error, None])
    watcher = ChangeWatcher([tmp_path / "app"], refresh)

    assert watcher.notify() is error
    assert watcher.notify() is error
    assert refresh.calls == 1

    source.write_text("x = 1\n", encoding="utf-8")
    touch(source)
    assert watcher.notify() is None
    assert refresh.calls == 2


def test_missing_root_is_skipped(tmp_path) -> None:
    refresh = _Refresh()
    watcher = ChangeWatcher([tmp_path / "missing"], refresh)

    assert watcher.notify() is None
    assert watcher.notify() is None
    assert refresh.calls == 1


def test_refresh_that_raises_is_retried(tmp_path) -> None:
    write(tmp_path / "app" / "app.py", "x = 1\n")
    calls: list[int] = []

    def _refresh() -> CompileError | None:
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("analyzer crashed")
        return None

    watcher = ChangeWatcher([tmp_path / "app"], _refresh)

    with pytest.raises(RuntimeError, match="analyzer crashed"):
        watcher.notify()
    assert watcher.notify() is None
    assert watcher.notify() is None
    assert len(calls) == 2


def test_exclusive_waits_for_running_refresh(tmp_path) -> None:
    write(tmp_path / "app" / "app.py", "x = 1\n")
    started = threading.Event()
    release = threading.Event()
    order: list[str] = []

    def _refresh() -> CompileError | None:
        started.set()
        release.wait(timeout=10)
        order.append("refresh")
        return None

    watcher = ChangeWatcher([tmp_path / "app"], _refresh)
    worker = threading.Thread(target=watcher.notify)
    worker.start()
    assert started.wait(timeout=10)

    def _hold() -> None:
        with watcher.exclusive():
            order.append("exclusive")

    holder = threading.Thread(target=_hold)
    holder.start()
    holder.join(timeout=0.2)
    assert holder.is_alive()

    release.set()
    worker.join(timeout=10)
    holder.join(timeout=10)
    assert order == ["refresh", "exclusive"]
