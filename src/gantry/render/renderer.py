from __future__ import annotations

from collections import Counter
from pathlib import Path

from gantry.context import AppContext
from gantry.render.aliases import DISCARD_ALIAS
from gantry.schemas import MethodArg, SourceInfo, TypeInfo
from gantry.utils import recreate_dir, write_text

HEADER = "# GENERATED CODE - DO NOT EDIT"
RUNTIME_IMPORT = "import gantry.runtime as _runtime"


def _controller_names(controllers: list[TypeInfo], aliases: dict[str, str]) -> dict[tuple[str, str], str]:
    """Registration name per controller; shared class names are qualified by alias."""
    counts = Counter(item.struct_name for item in controllers)
    names: dict[tuple[str, str], str] = {}
    for item in controllers:
        if counts[item.struct_name] > 1:
            names[item.key] = f"{aliases[item.import_path]}.{item.struct_name}"
        else:
            names[item.key] = item.struct_name
    return names


def _import_lines(aliases: dict[str, str]) -> list[str]:
    lines: list[str] = []
    for import_path, alias in aliases.items():
        if alias == DISCARD_ALIAS:
            lines.append(f"import {import_path}  # noqa: F401")
        elif import_path == alias:
            lines.append(f"import {import_path}")
        else:
            lines.append(f"import {import_path} as {alias}")
    return lines


def _arg_type(arg: MethodArg, aliases: dict[str, str]) -> str:
    if arg.import_path:
        return arg.type_expr.type_name(aliases[arg.import_path])
    return arg.type_expr.type_name("")


def render_main(src: SourceInfo, aliases: dict[str, str]) -> str:
    controllers = src.controller_specs()
    names = _controller_names(controllers, aliases)

    lines: list[str] = [HEADER, "import argparse as _argparse", "", RUNTIME_IMPORT]
    lines.extend(_import_lines(aliases))
    lines.extend(
        [
            "",
            "",
            "def main(argv=None):",
            "    parser = _argparse.ArgumentParser()",
            '    parser.add_argument("--run-mode", default="", help="Run mode.")',
            '    parser.add_argument("--port", type=int, default=0, help="By default, read from app.yaml.")',
            '    parser.add_argument("--import-path", default="", help="Import path of the app.")',
            '    parser.add_argument("--src-path", default="", help="Path to the source root.")',
            "    args = parser.parse_args(argv)",
            "",
            "    _runtime.init(args.run_mode, args.import_path, args.src_path)",
            '    _runtime.logger.info("Running gantry server")',
        ]
    )

    for controller in controllers:
        alias = aliases[controller.import_path]
        lines.append("    _runtime.register_controller(")
        lines.append(f"        {alias}.{controller.struct_name},")
        lines.append("        [")
        for method in controller.method_specs:
            lines.append("            _runtime.MethodType(")
            lines.append(f"                name={method.name!r},")
            lines.append("                args=[")
            for arg in method.args:
                lines.append(f"                    _runtime.MethodArg(name={arg.name!r}, type={_arg_type(arg, aliases)}),")
            lines.append("                ],")
            lines.append("                render_arg_names={")
            for line_no, names_at_line in method.render_arg_names.items():
                lines.append(f"                    {line_no}: {names_at_line!r},")
            lines.append("                },")
            lines.append("            ),")
        lines.append("        ],")
        lines.append(f"        name={names[controller.key]!r},")
        lines.append("    )")

    lines.append("    _runtime.default_validation_keys = {")
    for path in sorted(src.validation_keys):
        lines.append(f"        {path!r}: {{")
        for line_no in sorted(src.validation_keys[path]):
            lines.append(f"            {line_no}: {src.validation_keys[path][line_no]!r},")
        lines.append("        },")
    lines.append("    }")

    lines.append("    _runtime.test_suites = [")
    for suite in src.test_suite_specs():
        lines.append(f"        {aliases[suite.import_path]}.{suite.struct_name},")
    lines.append("    ]")

    lines.extend(
        [
            "",
            "    _runtime.run(args.port)",
            "",
            "",
            'if __name__ == "__main__":',
            "    main()",
        ]
    )
    return "\n".join(lines) + "\n"


def render_routes(src: SourceInfo, aliases: dict[str, str]) -> str:
    controllers = src.controller_specs()
    names = _controller_names(controllers, aliases)

    lines: list[str] = [HEADER, RUNTIME_IMPORT]
    for controller in controllers:
        name = names[controller.key]
        helper = name.replace(".", "_")
        lines.extend(["", "", f"class t{helper}:"])
        if not controller.method_specs:
            lines.append("    pass")
        for index, method in enumerate(controller.method_specs):
            params = ["self"]
            for arg in method.args:
                params.append(arg.name if arg.import_path else f"{arg.name}: {arg.type_expr.type_name('')}")
            if index:
                lines.append("")
            lines.append(f"    def {method.name}({', '.join(params)}) -> str:")
            lines.append("        _args: dict[str, str] = {}")
            for arg in method.args:
                lines.append(f"        _runtime.unbind(_args, {arg.name!r}, {arg.name})")
            action = f"{name}.{method.name}"
            lines.append(f"        return _runtime.main_router.reverse({action!r}, _args).url")
        lines.extend(["", "", f"{helper} = t{helper}()"])
    return "\n".join(lines) + "\n"


def generate_sources(context: AppContext, src: SourceInfo, aliases: dict[str, str]) -> dict[str, Path]:
    """Write the bootstrap and route helper into freshly recreated directories."""
    outputs = {
        "main": (context.tmp_dir, "main.py", render_main(src, aliases)),
        "routes": (context.routes_dir, "routes.py", render_routes(src, aliases)),
    }
    written: dict[str, Path] = {}
    for key, (directory, filename, content) in outputs.items():
        recreate_dir(directory)
        target = directory / filename
        write_text(target, content)
        written[key] = target
    return written
