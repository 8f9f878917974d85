from __future__ import annotations

from pathlib import Path

import typer

from gantry.context import AppContext
from gantry.errors import ContextError, ToolchainMissingError
from gantry.harness.server import Harness
from gantry.logging import configure_logging
from gantry.pipeline import clean_source, run_build

app = typer.Typer(help="gantry: build, run and hot-reload gantry web applications")


def _load_context(import_path: str, run_mode: str, src_path: Path | None) -> AppContext:
    try:
        return AppContext.load(import_path, run_mode=run_mode, src_path=src_path.resolve() if src_path else None)
    except ContextError as exc:
        typer.echo(f"[gantry] {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def run(
    import_path: str = typer.Argument(..., help="Import path of the application, e.g. myorg.shop"),
    run_mode: str = typer.Argument("dev", help="Run mode used to select config overrides"),
    port: int = typer.Argument(0, help="Port to listen on (defaults to http.port)"),
    src_path: Path | None = typer.Option(None, help="Source root containing the application"),
    build_flag: list[str] = typer.Option([], "--build-flag", help="Extra flag passed to the build toolchain"),
    verbose: bool = typer.Option(False, help="Enable debug logging"),
    log_file: Path | None = typer.Option(None, help="Also write log records to this file"),
) -> None:
    configure_logging(verbose=verbose, log_file=log_file)
    context = _load_context(import_path, run_mode, src_path)
    if port:
        context.config.http.port = port

    watch = context.config.watch
    if watch.enabled and watch.code:
        typer.echo(f"[gantry] running {import_path} ({run_mode}) with hot reload on port {context.config.http.port}")
        code = Harness(context, build_flags=build_flag).run()
        raise typer.Exit(code=code)

    try:
        result = run_build(context, build_flag)
    except ToolchainMissingError as exc:
        typer.echo(f"[gantry] {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if result.error is not None or result.app is None:
        typer.echo(f"[gantry] build failed\n{result.error}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"[gantry] running {result.app.bin_path} on port {context.config.http.port}")
    raise typer.Exit(code=result.app.run(context.config.http.port))


@app.command()
def build(
    import_path: str = typer.Argument(..., help="Import path of the application"),
    run_mode: str = typer.Option("dev", help="Run mode used to select config overrides"),
    src_path: Path | None = typer.Option(None, help="Source root containing the application"),
    build_flag: list[str] = typer.Option([], "--build-flag", help="Extra flag passed to the build toolchain"),
    verbose: bool = typer.Option(False, help="Enable debug logging"),
    log_file: Path | None = typer.Option(None, help="Also write log records to this file"),
) -> None:
    configure_logging(verbose=verbose, log_file=log_file)
    context = _load_context(import_path, run_mode, src_path)
    try:
        result = run_build(context, build_flag)
    except ToolchainMissingError as exc:
        typer.echo(f"[gantry] {exc}", err=True)
        raise typer.Exit(code=1) from exc

    if result.error is not None or result.app is None:
        typer.echo("[gantry] build failed")
        typer.echo(str(result.error))
        raise typer.Exit(code=1)

    typer.echo("[gantry] build complete")
    typer.echo(f"- binary: {result.app.bin_path}")
    for name, path in sorted(result.outputs.items()):
        typer.echo(f"- {name}: {path}")


@app.command()
def clean(
    import_path: str = typer.Argument(..., help="Import path of the application"),
    src_path: Path | None = typer.Option(None, help="Source root containing the application"),
    verbose: bool = typer.Option(False, help="Enable debug logging"),
    log_file: Path | None = typer.Option(None, help="Also write log records to this file"),
) -> None:
    configure_logging(verbose=verbose, log_file=log_file)
    context = _load_context(import_path, "dev", src_path)
    clean_source(context)
    typer.echo(f"[gantry] cleaned {context.tmp_dir} and {context.routes_dir}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
