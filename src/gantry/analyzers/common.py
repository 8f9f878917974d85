from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from gantry.schemas import MethodSpec

FRAMEWORK_MODULE = "gantry.runtime"
CONTROLLER_BASES = {f"{FRAMEWORK_MODULE}.Controller"}
TEST_SUITE_BASES = {f"{FRAMEWORK_MODULE}.TestSuite"}
INIT_HOOKS = {f"{FRAMEWORK_MODULE}.on_app_start"}


@dataclass(slots=True)
class ClassScan:
    name: str
    module: str
    bases: list[str]
    line: int
    methods: list[MethodSpec] = field(default_factory=list)

    @property
    def qualified_name(self) -> str:
        return f"{self.module}.{self.name}"


@dataclass(slots=True)
class FileScan:
    path: Path
    module: str
    classes: list[ClassScan] = field(default_factory=list)
    validation_keys: dict[int, str] = field(default_factory=dict)
    has_init_hook: bool = False
