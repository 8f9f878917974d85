from __future__ import annotations

import pytest

from gantry.config import AppConfig
from gantry.context import AppContext
from gantry.errors import ContextError

CONFIG = """app:
  name: shop
http:
  addr: 0.0.0.0
  port: 9000
build:
  tags: base
watch:
  paths: [lib]
prod:
  http:
    port: 80
  watch:
    enabled: false
"""


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in ("GANTRY_HTTP_ADDR", "GANTRY_HTTP_PORT", "GANTRY_HARNESS_PORT", "GANTRY_BUILD_TAGS", "GANTRY_PYTHON"):
        monkeypatch.delenv(name, raising=False)


def test_missing_file_yields_defaults(tmp_path) -> None:
    config = AppConfig.from_path(tmp_path / "missing.yaml")

    assert config.http.port == 9000
    assert config.harness_port == 0
    assert config.watch.enabled is True
    assert config.start_timeout == 30.0


def test_run_mode_section_is_merged(tmp_path) -> None:
    path = tmp_path / "app.yaml"
    path.write_text(CONFIG, encoding="utf-8")

    dev = AppConfig.from_path(path, run_mode="dev")
    prod = AppConfig.from_path(path, run_mode="prod")

    assert dev.http.port == 9000
    assert dev.watch.enabled is True
    assert prod.http.port == 80
    assert prod.http.addr == "0.0.0.0"
    assert prod.watch.enabled is False
    assert prod.build.tags == "base"


def test_env_overrides(tmp_path, monkeypatch) -> None:
    path = tmp_path / "app.yaml"
    path.write_text(CONFIG, encoding="utf-8")
    monkeypatch.setenv("GANTRY_HTTP_ADDR", "127.0.0.1")
    monkeypatch.setenv("GANTRY_HTTP_PORT", "not-a-port")
    monkeypatch.setenv("GANTRY_HARNESS_PORT", "9101")
    monkeypatch.setenv("GANTRY_BUILD_TAGS", "dev,debug")
    monkeypatch.setenv("GANTRY_PYTHON", "python3.12")

    config = AppConfig.from_path(path, run_mode="dev")

    assert config.http.addr == "127.0.0.1"
    assert config.http.port == 9000
    assert config.harness_port == 9101
    assert config.build.tags == "dev,debug"
    assert config.build.python == "python3.12"


def test_context_resolves_application(app_tree) -> None:
    (app_tree / "myorg" / "shop" / "conf" / "app.yaml").write_text(CONFIG, encoding="utf-8")

    context = AppContext.load("myorg.shop", run_mode="prod", src_path=app_tree)

    assert context.base_path == (app_tree / "myorg" / "shop").resolve()
    assert context.source_path == app_tree.resolve()
    assert context.app_name == "shop"
    assert context.config.http.port == 80
    assert context.code_paths == [context.app_path, (context.base_path / "lib").resolve()]
    assert context.entry_point == context.app_path / "tmp" / "main.py"
    assert context.module_name(context.app_path / "controllers" / "app.py") == "myorg.shop.app.controllers.app"


def test_context_rejects_unknown_application(tmp_path) -> None:
    with pytest.raises(ContextError):
        AppContext.load("nowhere.app", src_path=tmp_path)
    with pytest.raises(ContextError):
        AppContext.load(".relative", src_path=tmp_path)
