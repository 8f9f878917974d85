from __future__ import annotations

from pathlib import Path

import pytest
from conftest import write

from gantry import pipeline
from gantry.errors import ToolchainMissingError
from gantry.schemas import ErrorKind


class _FakeCommands:
    """Replays canned toolchain results and records every command."""

    def __init__(self, builds: list[tuple[int, str]], fetch: tuple[int, str] = (0, "")) -> None:
        self.builds = list(builds)
        self.fetch = fetch
        self.build_calls: list[list[str]] = []
        self.fetch_calls: list[list[str]] = []

    def __call__(self, command: list[str], cwd: Path) -> tuple[int, str]:
        if command[1:3] == ["-m", "pip"]:
            self.fetch_calls.append(command)
            return self.fetch
        self.build_calls.append(command)
        return self.builds.pop(0) if len(self.builds) > 1 else self.builds[0]


@pytest.fixture
def fake_toolchain(monkeypatch):
    monkeypatch.setattr(pipeline, "resolve_python", lambda context: "/usr/bin/python3")
    monkeypatch.setattr(pipeline, "app_version", lambda repo: "git-abc123")

    def _install(builds: list[tuple[int, str]], fetch: tuple[int, str] = (0, "")) -> _FakeCommands:
        fake = _FakeCommands(builds, fetch)
        monkeypatch.setattr(pipeline, "_run_command", fake)
        return fake

    return _install


def _missing(name: str) -> tuple[int, str]:
    return 1, f"myorg/shop/app/controllers/app.py:1:1: ModuleNotFoundError: No module named '{name}'\n"


def test_successful_build_returns_app(context, fake_toolchain) -> None:
    fake = fake_toolchain([(0, "")])

    result = pipeline.run_build(context, ["--no-compress"])

    assert result.error is None
    assert result.app is not None
    assert result.app.bin_path == pipeline.binary_path(context)
    assert result.outputs["main"].is_file()
    assert result.outputs["routes"].is_file()
    command = fake.build_calls[0]
    assert command[:4] == ["/usr/bin/python3", "-m", "gantry.toolchain", "build"]
    assert "APP_VERSION=git-abc123" in command
    assert "--no-compress" in command
    assert command[-1] == str(context.entry_point)


def test_same_missing_package_is_fetched_once(context, fake_toolchain) -> None:
    fake = fake_toolchain([_missing("requests")])

    result = pipeline.run_build(context)

    assert result.app is None
    assert result.error is not None
    assert result.error.kind is ErrorKind.IMPORT_NOT_FOUND
    assert len(fake.build_calls) == 2
    assert fake.fetch_calls == [["/usr/bin/python3", "-m", "pip", "install", "requests"]]


def test_each_distinct_package_is_fetched(context, fake_toolchain) -> None:
    fake = fake_toolchain([_missing("requests"), _missing("yaml.loader"), (0, "")])

    result = pipeline.run_build(context)

    assert result.error is None
    assert result.app is not None
    assert [call[-1] for call in fake.fetch_calls] == ["requests", "yaml"]


def test_fetch_failure_stops_the_loop(context, fake_toolchain) -> None:
    fake = fake_toolchain([_missing("requests")], fetch=(1, "no matching distribution"))

    result = pipeline.run_build(context)

    assert result.app is None
    assert result.error is not None
    assert len(fake.build_calls) == 1
    assert len(fake.fetch_calls) == 1


def test_analysis_error_skips_toolchain(context, fake_toolchain) -> None:
    fake = fake_toolchain([(0, "")])
    write(context.app_path / "controllers" / "broken.py", "def broken(:\n")
    context.config.error_link = "editor://{path}:{line}"

    result = pipeline.run_build(context)

    assert result.app is None
    assert result.error.kind is ErrorKind.ANALYSIS
    assert result.error.link.startswith("editor://")
    assert fake.build_calls == []


def test_db_import_is_added_to_bootstrap(context, fake_toolchain) -> None:
    fake_toolchain([(0, "")])
    context.config.db_import = "myorg.shop.db"

    result = pipeline.run_build(context)

    assert "import myorg.shop.db  # noqa: F401" in result.outputs["main"].read_text(encoding="utf-8")


def test_binary_path_layout(context, monkeypatch) -> None:
    monkeypatch.setenv(pipeline.TARGET_OS_ENV, "linux")
    assert pipeline.binary_path(context) == context.source_path / "bin" / "gantry.d" / "myorg" / "shop" / "shop"

    monkeypatch.setenv(pipeline.TARGET_OS_ENV, "windows")
    assert pipeline.binary_path(context).name == "shop.pyz"

    context.config.build.bin_dir = "out"
    assert pipeline.binary_path(context).parent == context.base_path / "out" / "gantry.d" / "myorg" / "shop"


def test_resolve_python_missing(context) -> None:
    context.config.build.python = "definitely-not-a-python-binary"

    with pytest.raises(ToolchainMissingError):
        pipeline.resolve_python(context)


def test_clean_source_empties_generated_dirs(context) -> None:
    write(context.tmp_dir / "main.py", "x = 1\n")
    write(context.routes_dir / "routes.py", "x = 1\n")

    pipeline.clean_source(context)

    assert list(context.tmp_dir.iterdir()) == []
    assert list(context.routes_dir.iterdir()) == []
