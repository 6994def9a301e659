"""
Inline tool markers.

In the ``markers`` routing mode the conversational reply itself carries tool
requests as self-closing tags::

    Let's get you organized. <tool kind="checklist" theme="exam prep"/>

``find_markers`` reads them and ``strip_markers`` removes them. The two are
independent: a reply is always stripped, whether or not any tool was built.
Malformed tags and unknown kinds are never errors; they are skipped by the
finder and removed by the stripper all the same.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from aura.tools.models import ToolKind

# Any <tool ...> tag, self-closing or not, well-formed or not.
_TAG_RE = re.compile(r"</?\s*tool\b[^<>]*>", re.IGNORECASE)
_ATTR_RE = re.compile(r"""(\w+)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_SPACE_RUN_RE = re.compile(r"[ \t]{2,}")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class ToolMarker:
    kind: ToolKind
    theme: Optional[str] = None


def _parse_tag(tag: str) -> Optional[ToolMarker]:
    attrs = {
        match.group(1).lower(): match.group(2) if match.group(2) is not None else match.group(3)
        for match in _ATTR_RE.finditer(tag)
    }
    kind_value = (attrs.get("kind") or "").strip().lower()
    try:
        kind = ToolKind(kind_value)
    except ValueError:
        return None
    theme = (attrs.get("theme") or "").strip() or None
    return ToolMarker(kind=kind, theme=theme)


def find_markers(text: str) -> list[ToolMarker]:
    """All valid markers in ``text``, in order of appearance."""
    markers = []
    for match in _TAG_RE.finditer(text):
        marker = _parse_tag(match.group(0))
        if marker is not None:
            markers.append(marker)
    return markers


def distinct_kinds(markers: list[ToolMarker]) -> list[ToolKind]:
    """Kinds in first-appearance order, each once."""
    kinds: list[ToolKind] = []
    for marker in markers:
        if marker.kind not in kinds:
            kinds.append(marker.kind)
    return kinds


def strip_markers(text: str) -> str:
    """Remove every ``<tool .../>`` tag and tidy the whitespace it leaves."""
    stripped = _TAG_RE.sub("", text)
    stripped = _SPACE_RUN_RE.sub(" ", stripped)
    stripped = _BLANK_LINES_RE.sub("\n\n", stripped)
    return "\n".join(line.rstrip() for line in stripped.splitlines()).strip()


MARKER_INSTRUCTIONS = """[Tool Instructions]:
You can give the user an interactive tool by writing a marker anywhere in your reply:
<tool kind="KIND" theme="SHORT THEME"/>
KIND is one of: {kinds}.
- breathing_exercise: the user is panicking, anxious or overwhelmed.
- checklist: the user wants a plan, a list, or to organize a goal or project.
- mood_tracker: the user states a simple, direct emotion.
- affirmation_card: the user doubts themselves or needs motivation.
Use a marker only when it clearly helps. Most replies need none.""".format(
    kinds=", ".join(kind.value for kind in ToolKind)
)
