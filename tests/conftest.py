from __future__ import annotations

import os
from pathlib import Path

import pytest

from gantry.context import AppContext

APP_CONTROLLER = '''from gantry.runtime import Controller


class Application(Controller):
    def index(self):
        return self.render_text("ok")

    def show(self, id: int, name: str):
        greeting = "hi"
        return self.render(greeting, id)
'''

APP_CONFIG = """app:
  name: shop
http:
  port: 9000
"""


def write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def touch(path: Path) -> None:
    """Push the mtime forward so snapshot diffs see a modification."""
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))


@pytest.fixture
def app_tree(tmp_path) -> Path:
    """Source root holding a minimal ``myorg.shop`` application."""
    src = tmp_path / "src"
    base = src / "myorg" / "shop"
    write(base / "app" / "controllers" / "app.py", APP_CONTROLLER)
    write(base / "conf" / "app.yaml", APP_CONFIG)
    return src


@pytest.fixture
def context(app_tree: Path, monkeypatch) -> AppContext:
    for name in ("GANTRY_HTTP_ADDR", "GANTRY_HTTP_PORT", "GANTRY_HARNESS_PORT", "GANTRY_BUILD_TAGS", "GANTRY_PYTHON"):
        monkeypatch.delenv(name, raising=False)
    return AppContext.load("myorg.shop", run_mode="dev", src_path=app_tree)
