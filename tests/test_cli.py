from __future__ import annotations

from conftest import write
from typer.testing import CliRunner

from gantry import cli
from gantry.pipeline import BuildResult
from gantry.schemas import CompileError, ErrorKind

runner = CliRunner()


class _FakeApp:
    def __init__(self, bin_path) -> None:
        self.bin_path = bin_path
        self.ports: list[int] = []

    def run(self, port: int) -> int:
        self.ports.append(port)
        return 0


def test_clean_empties_generated_dirs(app_tree) -> None:
    base = app_tree / "myorg" / "shop" / "app"
    write(base / "tmp" / "main.py", "x = 1\n")
    write(base / "routes" / "routes.py", "x = 1\n")

    result = runner.invoke(cli.app, ["clean", "myorg.shop", "--src-path", str(app_tree)])

    assert result.exit_code == 0
    assert "[gantry] cleaned" in result.output
    assert list((base / "tmp").iterdir()) == []
    assert list((base / "routes").iterdir()) == []


def test_log_file_receives_log_records(app_tree, tmp_path) -> None:
    log_file = tmp_path / "logs" / "gantry.log"

    result = runner.invoke(
        cli.app,
        ["clean", "myorg.shop", "--src-path", str(app_tree), "--verbose", "--log-file", str(log_file)],
    )

    assert result.exit_code == 0
    text = log_file.read_text(encoding="utf-8")
    assert "DEBUG gantry.build: Cleaning" in text


def test_build_success(app_tree, tmp_path, monkeypatch) -> None:
    seen: dict[str, object] = {}

    def _build(context, build_flags):
        seen["flags"] = list(build_flags)
        return BuildResult(app=_FakeApp(tmp_path / "bin" / "shop"), error=None, outputs={"main": tmp_path / "main.py"})

    monkeypatch.setattr(cli, "run_build", _build)

    result = runner.invoke(
        cli.app,
        ["build", "myorg.shop", "--src-path", str(app_tree), "--build-flag=--no-compress"],
    )

    assert result.exit_code == 0
    assert "[gantry] build complete" in result.output
    assert f"- binary: {tmp_path / 'bin' / 'shop'}" in result.output
    assert seen["flags"] == ["--no-compress"]


def test_build_failure_exits_nonzero(app_tree, monkeypatch) -> None:
    error = CompileError(kind=ErrorKind.UNPARSEABLE_DIAGNOSTIC, title="Python Compilation Error", description="See console for build error.")
    monkeypatch.setattr(cli, "run_build", lambda context, build_flags: BuildResult(app=None, error=error))

    result = runner.invoke(cli.app, ["build", "myorg.shop", "--src-path", str(app_tree)])

    assert result.exit_code == 1
    assert "build failed" in result.output


def test_unknown_application(tmp_path) -> None:
    result = runner.invoke(cli.app, ["build", "no.such.app", "--src-path", str(tmp_path)])

    assert result.exit_code == 1


def test_run_uses_harness_when_watching(app_tree, monkeypatch) -> None:
    created: list[object] = []

    class _FakeHarness:
        def __init__(self, context, build_flags=()) -> None:
            self.context = context
            created.append(self)

        def run(self) -> int:
            return 0

    monkeypatch.setattr(cli, "Harness", _FakeHarness)

    result = runner.invoke(cli.app, ["run", "myorg.shop", "prod", "9200", "--src-path", str(app_tree)])

    assert result.exit_code == 0
    assert len(created) == 1
    assert created[0].context.run_mode == "prod"
    assert created[0].context.config.http.port == 9200


def test_run_without_watch_builds_once(app_tree, tmp_path, monkeypatch) -> None:
    write(app_tree / "myorg" / "shop" / "conf" / "app.yaml", "http:\n  port: 9300\nwatch:\n  enabled: false\n")
    fake = _FakeApp(tmp_path / "bin" / "shop")
    monkeypatch.setattr(cli, "run_build", lambda context, build_flags: BuildResult(app=fake, error=None))

    result = runner.invoke(cli.app, ["run", "myorg.shop", "--src-path", str(app_tree)])

    assert result.exit_code == 0
    assert fake.ports == [9300]
