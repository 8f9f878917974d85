from __future__ import annotations

from gantry.schemas import SourceInfo
from gantry.utils import contains_value

DISCARD_ALIAS = "_"
# Names the generated bootstrap binds itself; an import alias must not shadow them.
RESERVED_NAMES = frozenset({"main", "args", "parser", "_argparse", "_runtime"})


def make_package_alias(aliases: dict[str, str], pkg_name: str) -> str:
    index = 0
    alias = pkg_name
    while alias in RESERVED_NAMES or contains_value(aliases, alias):
        alias = f"{pkg_name}{index}"
        index += 1
    return alias


def add_alias(aliases: dict[str, str], import_path: str, pkg_name: str) -> None:
    if import_path in aliases:
        return
    aliases[import_path] = make_package_alias(aliases, pkg_name)


def calc_import_aliases(src: SourceInfo) -> dict[str, str]:
    """Assign every import path referenced by generated code a unique alias.

    Paths are visited in source order (controllers, then test suites; each type
    followed by its methods' argument types) so the first path to claim a
    package name keeps it and later ones get ``name0``, ``name1`` and so on.
    Side-effect-only imports that are not otherwise referenced get ``_``.
    """
    aliases: dict[str, str] = {}
    for specs in (src.controller_specs(), src.test_suite_specs()):
        for spec in specs:
            add_alias(aliases, spec.import_path, spec.package_name)
            for method in spec.method_specs:
                for arg in method.args:
                    if not arg.import_path:
                        continue
                    add_alias(aliases, arg.import_path, arg.type_expr.pkg_name)

    for import_path in src.init_import_paths:
        if import_path not in aliases:
            aliases[import_path] = DISCARD_ALIAS

    return aliases
