from __future__ import annotations

import html

from gantry.schemas import CompileError

STYLE = """
body { font-family: Helvetica, Arial, sans-serif; margin: 0; background: #f5f6f8; color: #222; }
header { background: #a8262b; color: #fff; padding: 16px 24px; }
header h1 { margin: 0; font-size: 22px; }
header p { margin: 6px 0 0; font-size: 15px; }
section { padding: 16px 24px; }
.source { background: #fff; border: 1px solid #ddd; font-family: Menlo, Consolas, monospace; font-size: 13px; }
.source div { white-space: pre; padding: 1px 8px; }
.source .line-number { display: inline-block; width: 48px; color: #999; text-align: right; margin-right: 12px; }
.source .error { background: #fde2e2; font-weight: bold; }
.meta { color: #666; font-size: 13px; }
"""


def render_error_page(error: CompileError, radius: int = 5) -> str:
    """HTML page for a failed build, with source context when it has a location."""
    lines: list[str] = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '<meta charset="utf-8">',
        f"<title>{html.escape(error.title)}</title>",
        f"<style>{STYLE}</style>",
        "</head>",
        "<body>",
        "<header>",
        f"<h1>{html.escape(error.title)}</h1>",
        f"<p>{html.escape(error.description)}</p>",
        "</header>",
        "<section>",
    ]

    if error.has_location:
        location = f"{error.path}:{error.line}"
        if error.link:
            lines.append(
                f'<h2>In <a href="{html.escape(error.link, quote=True)}">{html.escape(location)}</a></h2>'
            )
        else:
            lines.append(f"<h2>In {html.escape(location)}</h2>")
        lines.append(f'<p class="meta">{html.escape(error.source_type)}</p>')

        rows = error.context_lines(radius)
        if rows:
            lines.append('<div class="source">')
            for number, text, is_error in rows:
                css = ' class="error"' if is_error else ""
                lines.append(
                    f'<div{css}><span class="line-number">{number}:</span>{html.escape(text)}</div>'
                )
            lines.append("</div>")

    if error.meta_error:
        lines.append(f'<p class="meta">Additionally, an error occurred while handling this error: {html.escape(error.meta_error)}</p>')

    lines.extend(["</section>", "</body>", "</html>"])
    return "\n".join(lines) + "\n"
