"""``[HEADING]``-delimited script sections."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Sequence


SECTION_MARKER_RE = re.compile(r"^\[([^\]]+)\]\s*$")


@dataclass(frozen=True)
class ScriptSection:
    heading: str
    body: str


def parse_script_sections(script: str) -> List[ScriptSection]:
    """Split a script on marker lines; text before the first marker is dropped."""
    sections: List[ScriptSection] = []
    heading = None
    lines: List[str] = []

    for line in str(script or "").splitlines():
        marker = SECTION_MARKER_RE.match(line)
        if marker:
            if heading is not None:
                sections.append(ScriptSection(heading, "\n".join(lines).strip()))
            heading = marker.group(1).strip()
            lines = []
            continue
        if heading is not None:
            lines.append(line)

    if heading is not None:
        sections.append(ScriptSection(heading, "\n".join(lines).strip()))
    return sections


def render_script_sections(sections: Sequence[ScriptSection]) -> str:
    return "\n\n".join(f"[{section.heading}]\n{section.body.strip()}" for section in sections).strip()


def sections_chars_breakdown(script: str) -> Dict[str, int]:
    return {section.heading: len(section.body) for section in parse_script_sections(script)}
