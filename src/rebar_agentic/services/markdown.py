"""Markdown clean-up applied to research answers before they are shown or saved."""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

ORDERED_ITEM_RE = re.compile(r"^(\s{0,3})(\d+)([.)])\s+(.*)$")
URL_RE = re.compile(r"https?:[^\s)\]]+")
SOURCES_HEADING_RE = re.compile(r"\n##\s+Sources\n", re.IGNORECASE)
MAX_APPENDED_SOURCES = 8

HEADING_REPAIRS: List[Tuple[str, str]] = [
    (r"^\s*summary\s*\n", "Executive Summary"),
    (r"^\s*recent\s+signals[\s:]*\n", "Recent Signals"),
    (r"^\s*(?:next\s+actions|recommended\s+next\s+actions)[\s:]*\n", "Recommended Next Actions"),
    (r"^\s*(?:tech\s*/\s*footprint|tech|footprint)[\s:]*\n", "Tech/Footprint"),
]


def _renumber_ordered_lists(text: str) -> str:
    out: List[str] = []
    in_code = False
    counter = 0
    current_indent: Optional[str] = None

    for line in text.split("\n"):
        if line.strip().startswith("```"):
            in_code = not in_code
            counter = 0
            current_indent = None
            out.append(line)
            continue
        if in_code:
            out.append(line)
            continue

        match = ORDERED_ITEM_RE.match(line)
        if match:
            indent, _, delim, body = match.groups()
            if current_indent is None or indent != current_indent:
                counter = 1
                current_indent = indent
            else:
                counter += 1
            out.append(f"{indent}{counter}{delim} {body}")
        else:
            counter = 0
            current_indent = None
            out.append(line)

    return "\n".join(out)


def _ensure_heading(text: str, label_pattern: str, heading: str) -> str:
    existing = re.compile(rf"^#{{1,3}}\s+{re.escape(heading)}", re.IGNORECASE | re.MULTILINE)
    if existing.search(text):
        return text
    label = re.compile(label_pattern, re.IGNORECASE | re.MULTILINE)
    return label.sub(f"\n## {heading}\n", text, count=1)


def _append_sources(text: str) -> str:
    if SOURCES_HEADING_RE.search(text) or not re.search(r"https?://", text):
        return text
    urls: List[str] = []
    for url in URL_RE.findall(text):
        if url not in urls:
            urls.append(url)
    if not urls:
        return text
    bullets = "\n".join(f"- {u}" for u in urls[:MAX_APPENDED_SOURCES])
    return f"{text}\n\n## Sources\n{bullets}"


def normalize_markdown(raw: Optional[str]) -> str:
    """Renumber ordered lists, repair missing section headings, add a Sources list."""

    if not raw:
        return ""
    text = _renumber_ordered_lists(raw)
    for label_pattern, heading in HEADING_REPAIRS:
        text = _ensure_heading(text, label_pattern, heading)
    return _append_sources(text)
