from __future__ import annotations

import os
import sys
import textwrap
from typing import Any, Dict, List, Sequence, Tuple

from .config import Config
from .drafting import normalize_str


def supports_color() -> bool:
    return sys.stdout.isatty() and not bool(os.getenv("NO_COLOR"))


def _ui_palette() -> Dict[str, str]:
    if not supports_color():
        return {
            "reset": "",
            "bold": "",
            "dim": "",
            "blue": "",
            "green": "",
            "yellow": "",
            "magenta": "",
        }
    return {
        "reset": "\033[0m",
        "bold": "\033[1m",
        "dim": "\033[2m",
        "blue": "\033[1;34m",
        "green": "\033[1;32m",
        "yellow": "\033[1;33m",
        "magenta": "\033[1;35m",
    }


def _ui_paint(text: str, tone: str = "", bold: bool = False) -> str:
    palette = _ui_palette()
    reset = palette["reset"]
    if not reset:
        return text
    chunks: List[str] = []
    if bold:
        chunks.append(palette["bold"])
    if tone:
        chunks.append(palette.get(tone, ""))
    chunks.append(text)
    chunks.append(reset)
    return "".join(chunks)


def _ui_wrap_lines(value: Any, width: int) -> List[str]:
    text = normalize_str(value).strip()
    if width < 8:
        width = 8
    if not text:
        return [""]
    out: List[str] = []
    for raw_line in text.splitlines():
        line = raw_line.rstrip()
        if not line:
            out.append("")
            continue
        out.extend(textwrap.wrap(line, width=width, break_long_words=True, break_on_hyphens=False) or [""])
    return out or [""]


def render_panel(title: str, rows: Sequence[Tuple[str, Any]], width: int = 74) -> List[str]:
    inner = max(30, width - 4)
    border = "+" + ("-" * (inner + 2)) + "+"
    title_text = normalize_str(title).strip() or "INFO"
    lines = [border, f"| {title_text:<{inner}} |", border]
    for key, value in rows:
        label = normalize_str(key).strip()
        value_lines = _ui_wrap_lines(value, width=(inner - (len(label) + 2) if label else inner))
        for idx, line in enumerate(value_lines):
            if label:
                prefix = f"{label}: " if idx == 0 else (" " * (len(label) + 2))
            else:
                prefix = ""
            content = f"{prefix}{line}"
            lines.append(f"| {content:<{inner}} |")
    lines.append(border)
    return lines


def _ui_print_panel(title: str, rows: Sequence[Tuple[str, Any]], tone: str = "blue", width: int = 74) -> None:
    lines = render_panel(title, rows, width=width)
    print("")
    for idx, line in enumerate(lines):
        if idx < 2:
            print(_ui_paint(line, tone=tone, bold=True))
        elif idx == 2 or idx == len(lines) - 1:
            print(_ui_paint(line, tone=tone))
        else:
            print(line)
    print("")


def print_runtime_banner(cfg: Config, personas: int, scheduled: int) -> None:
    _ui_print_panel(
        title="MARGINALIA AUTONOMY",
        rows=[
            ("site", cfg.site_url),
            ("personas", f"{personas} configured | {scheduled} scheduled"),
            ("poll", f"every {max(1, cfg.poll_seconds)}s | max_cycles={cfg.max_cycles or 'forever'}"),
        ],
        tone="magenta",
    )


def print_success_banner(comment_id: int, post_id: int, author: str, title: str = "") -> None:
    rows: List[Tuple[str, Any]] = [("comment_id", comment_id), ("post_id", post_id)]
    if title:
        rows.append(("title", title))
    rows.append(("author", author))
    _ui_print_panel(title="[SUCCESS] COMMENT", rows=rows, tone="green")
