from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from gantry.config import AppConfig
from gantry.errors import ContextError

GENERATED_DIRS = ("tmp", "routes")


@dataclass(slots=True)
class AppContext:
    """Where the application lives and how it is configured.

    One instance is built at startup and handed to every collaborator; nothing
    here is process-global.
    """

    import_path: str
    run_mode: str
    source_path: Path
    base_path: Path
    config: AppConfig
    extra_code_paths: list[Path] = field(default_factory=list)

    @classmethod
    def load(cls, import_path: str, run_mode: str = "dev", src_path: Path | None = None) -> AppContext:
        if not import_path or import_path.startswith("."):
            raise ContextError(f"invalid import path: {import_path!r}")
        rel = Path(*import_path.split("."))

        candidates = [src_path] if src_path is not None else [Path.cwd(), *(Path(item) for item in sys.path if item)]
        for candidate in candidates:
            base = (candidate / rel).resolve()
            if base.is_dir():
                source_path = candidate.resolve()
                break
        else:
            raise ContextError(f"failed to find application {import_path!r}")

        config = AppConfig.from_path(base / "conf" / "app.yaml", run_mode=run_mode)
        extra = [(base / item).resolve() for item in config.watch.paths]
        return cls(
            import_path=import_path,
            run_mode=run_mode,
            source_path=source_path,
            base_path=base,
            config=config,
            extra_code_paths=extra,
        )

    @property
    def app_name(self) -> str:
        return self.config.app_name or self.base_path.name

    @property
    def app_path(self) -> Path:
        return self.base_path / "app"

    @property
    def code_paths(self) -> list[Path]:
        return [self.app_path, *self.extra_code_paths]

    @property
    def tmp_dir(self) -> Path:
        return self.app_path / "tmp"

    @property
    def routes_dir(self) -> Path:
        return self.app_path / "routes"

    @property
    def entry_point(self) -> Path:
        return self.tmp_dir / "main.py"

    def module_name(self, file_path: Path) -> str:
        """Dotted import path of a source file relative to the source root."""
        rel = PurePosixPath(file_path.resolve().relative_to(self.source_path).as_posix())
        parts = list(rel.with_suffix("").parts)
        if parts and parts[-1] == "__init__":
            parts = parts[:-1]
        return ".".join(parts)
