"""Shared memory log kept as one markdown document.

The document is split into ``## Heading`` sections. Each fixed section holds
dated bullet entries in insertion order (oldest first) and is capped at
``MAX_ENTRIES``; older entries fall off the front.

Every mutation is a full read-modify-write of the document. Two personas
appending at the same moment can lose one of the entries (last writer wins).
"""

from __future__ import annotations

import re
from typing import Dict, List, Mapping, Optional

from .drafting import normalize_str
from .state import OptionStore, utc_date_str, utc_iso


OPTION_KEY = "memory"
UPDATED_AT_KEY = "memory_updated_at"

MAX_ENTRIES = 20

SECTIONS: Mapping[str, str] = {
    "recent_activities": "Recent Activities",
    "ongoing_topics": "Ongoing Topics",
    "commentary_log": "Commentary Log",
    "notes": "Notes",
}

_HEADING_RE = re.compile(r"^## (.+)$")


def default_document(sections: Mapping[str, str] = SECTIONS) -> str:
    return "\n".join(f"## {heading}\n" for heading in sections.values())


def parse_sections(markdown: str) -> Dict[str, str]:
    sections: Dict[str, str] = {}
    current: Optional[str] = None
    lines: List[str] = []
    for line in normalize_str(markdown).split("\n"):
        match = _HEADING_RE.match(line)
        if match:
            if current is not None:
                sections[current] = "\n".join(lines).strip()
            current = match.group(1).strip()
            lines = []
        else:
            lines.append(line)
    if current is not None:
        sections[current] = "\n".join(lines).strip()
    return sections


def extract_entries(body: str) -> List[str]:
    # Only bullet lines survive a rewrite; free text in a section is dropped.
    return [line.strip() for line in normalize_str(body).split("\n") if line.strip().startswith("- ")]


def build_markdown(sections: Dict[str, str], fixed: Mapping[str, str] = SECTIONS) -> str:
    headings = list(fixed.values())
    parts = [f"## {heading}\n\n{sections.get(heading, '')}" for heading in headings]
    for heading, body in sections.items():
        if heading not in headings:
            parts.append(f"## {heading}\n\n{body}")
    return "\n\n".join(parts) + "\n"


class MemoryLog:
    def __init__(
        self,
        store: OptionStore,
        *,
        sections: Mapping[str, str] = SECTIONS,
        max_entries: int = MAX_ENTRIES,
    ):
        self.store = store
        self.sections = dict(sections)
        self.max_entries = max(1, int(max_entries))

    def read(self) -> str:
        memory = normalize_str(self.store.get(OPTION_KEY, ""))
        if not memory:
            memory = default_document(self.sections)
            self.replace(memory)
        return memory

    def updated_at(self) -> str:
        return normalize_str(self.store.get(UPDATED_AT_KEY)) or utc_iso()

    def replace(self, document: str) -> None:
        self.store.set(UPDATED_AT_KEY, utc_iso())
        self.store.set(OPTION_KEY, normalize_str(document))

    def read_section(self, key: str) -> str:
        heading = self.sections.get(key)
        if heading is None:
            return ""
        return parse_sections(self.read()).get(heading, "")

    def append_entry(self, key: str, text: str) -> bool:
        heading = self.sections.get(key)
        if heading is None:
            return False

        parsed = parse_sections(self.read())
        entries = extract_entries(parsed.get(heading, ""))
        # One entry per line, otherwise the tail would be dropped on the next rewrite.
        line = re.sub(r"\s*\n\s*", " ", normalize_str(text).strip())
        entries.append(f"- [{utc_date_str()}] {line}")
        if len(entries) > self.max_entries:
            entries = entries[-self.max_entries:]
        parsed[heading] = "\n".join(entries)

        self.replace(build_markdown(parsed, self.sections))
        return True

    def uninstall(self) -> None:
        self.store.delete(OPTION_KEY)
        self.store.delete(UPDATED_AT_KEY)
