from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG = """app:
  name: ""
  start_timeout: 30.0
http:
  addr: ""
  port: 9000
  ssl: false
  ssl_cert: ""
  ssl_key: ""
harness:
  port: 0
watch:
  enabled: true
  code: true
  paths: []
build:
  tags: ""
  python: ""
  bin_dir: ""
error:
  link: ""
db:
  import: ""
"""


@dataclass(slots=True)
class HttpConfig:
    addr: str = ""
    port: int = 9000
    ssl: bool = False
    ssl_cert: str = ""
    ssl_key: str = ""


@dataclass(slots=True)
class WatchConfig:
    enabled: bool = True
    code: bool = True
    paths: list[str] = field(default_factory=list)


@dataclass(slots=True)
class BuildConfig:
    tags: str = ""
    python: str = ""
    bin_dir: str = ""


@dataclass(slots=True)
class AppConfig:
    app_name: str
    start_timeout: float
    http: HttpConfig
    harness_port: int
    watch: WatchConfig
    build: BuildConfig
    error_link: str
    db_import: str

    @classmethod
    def default(cls, run_mode: str = "") -> AppConfig:
        return cls.from_dict(yaml.safe_load(DEFAULT_CONFIG), run_mode=run_mode)

    @classmethod
    def from_path(cls, path: Path, run_mode: str = "") -> AppConfig:
        if not path.exists():
            return cls.default(run_mode=run_mode)
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        return cls.from_dict(data, run_mode=run_mode)

    @classmethod
    def from_dict(cls, data: dict[str, Any], run_mode: str = "") -> AppConfig:
        overrides = data.get(run_mode) if run_mode else None
        if isinstance(overrides, dict):
            data = _merge(data, overrides)

        app_data = data.get("app", {}) or {}
        http_data = data.get("http", {}) or {}
        watch_data = data.get("watch", {}) or {}
        build_data = data.get("build", {}) or {}

        http = HttpConfig(
            addr=str(http_data.get("addr", "") or ""),
            port=int(http_data.get("port", 9000)),
            ssl=bool(http_data.get("ssl", False)),
            ssl_cert=str(http_data.get("ssl_cert", "") or ""),
            ssl_key=str(http_data.get("ssl_key", "") or ""),
        )
        watch = WatchConfig(
            enabled=bool(watch_data.get("enabled", True)),
            code=bool(watch_data.get("code", True)),
            paths=[str(item) for item in watch_data.get("paths", []) or []],
        )
        build = BuildConfig(
            tags=str(build_data.get("tags", "") or ""),
            python=str(build_data.get("python", "") or ""),
            bin_dir=str(build_data.get("bin_dir", "") or ""),
        )
        harness_port = int((data.get("harness", {}) or {}).get("port", 0))

        env_addr = os.getenv("GANTRY_HTTP_ADDR", "").strip()
        env_port = os.getenv("GANTRY_HTTP_PORT", "").strip()
        env_harness_port = os.getenv("GANTRY_HARNESS_PORT", "").strip()
        env_tags = os.getenv("GANTRY_BUILD_TAGS", "").strip()
        env_python = os.getenv("GANTRY_PYTHON", "").strip()

        if env_addr:
            http.addr = env_addr
        if env_port:
            try:
                http.port = int(env_port)
            except ValueError:
                pass
        if env_harness_port:
            try:
                harness_port = int(env_harness_port)
            except ValueError:
                pass
        if env_tags:
            build.tags = env_tags
        if env_python:
            build.python = env_python

        return cls(
            app_name=str(app_data.get("name", "") or ""),
            start_timeout=float(app_data.get("start_timeout", 30.0)),
            http=http,
            harness_port=harness_port,
            watch=watch,
            build=build,
            error_link=str((data.get("error", {}) or {}).get("link", "") or ""),
            db_import=str((data.get("db", {}) or {}).get("import", "") or ""),
        )


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged
