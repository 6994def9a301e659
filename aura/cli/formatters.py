"""CLI formatters — consoles, tables, and tool rendering."""

from __future__ import annotations

import time
from typing import Any

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from aura.tools.models import (
    AffirmationCard,
    BreathingExercise,
    Checklist,
    MoodTracker,
    ToolInstance,
    ToolKind,
)


def get_console(no_color: bool = False) -> Console:
    """Get a Rich Console, optionally with color disabled."""
    return Console(no_color=no_color)


def build_table(title: str, columns: list[str], rows: list[list[Any]]) -> Table:
    """Build a Rich table with standard styling."""
    table = Table(title=title, show_header=True, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*(str(v) for v in row))
    return table


def format_created(conversation_id: str) -> str:
    """Render a millisecond conversation id as a local date and time."""
    try:
        seconds = int(conversation_id) / 1000
    except ValueError:
        return "-"
    return time.strftime("%Y-%m-%d %H:%M", time.localtime(seconds))


def _checklist_body(tool: Checklist) -> Text:
    text = Text()
    for i, item in enumerate(tool.items):
        text.append(f"[{i}] ", style="dim")
        text.append(f"{item.text}\n")
    return text


def _mood_body(tool: MoodTracker) -> Text:
    text = Text(" | ".join(tool.options), style="bold")
    if tool.history:
        recent = ", ".join(entry.mood for entry in tool.history[-5:])
        text.append(f"\nrecent: {recent}", style="dim")
    return text


def _breathing_body(tool: BreathingExercise) -> Text:
    cycle = tool.cycle
    return Text(
        f"inhale {cycle.inhale}s  hold {cycle.hold}s  exhale {cycle.exhale}s  "
        f"({cycle.total_seconds}s per breath)"
    )


def _affirmation_body(tool: AffirmationCard) -> Text:
    text = Text()
    for line in tool.text:
        text.append(f"{line}\n", style="italic")
    text.append(f"[{tool.button_text}]", style="dim")
    return text


_BODY_RENDERERS = {
    ToolKind.CHECKLIST: _checklist_body,
    ToolKind.MOOD_TRACKER: _mood_body,
    ToolKind.BREATHING_EXERCISE: _breathing_body,
    ToolKind.AFFIRMATION_CARD: _affirmation_body,
}

_BORDER_STYLES = {
    ToolKind.CHECKLIST: "cyan",
    ToolKind.MOOD_TRACKER: "magenta",
    ToolKind.BREATHING_EXERCISE: "green",
    ToolKind.AFFIRMATION_CARD: "yellow",
}

if set(_BODY_RENDERERS) != set(ToolKind) or set(_BORDER_STYLES) != set(ToolKind):  # pragma: no cover
    raise RuntimeError("Every ToolKind needs a terminal renderer")


def render_tool(tool: ToolInstance) -> Panel:
    """A bordered panel for one tool instance."""
    kind = ToolKind(tool.type)
    return Panel(
        _BODY_RENDERERS[kind](tool),
        title=f"{tool.title}",
        subtitle=f"{kind.label} · {tool.id}",
        border_style=_BORDER_STYLES[kind],
        expand=False,
    )


def render_toolbox(tools: dict[ToolKind, list[ToolInstance]]) -> Group | Text:
    panels = [render_tool(tool) for kind in ToolKind for tool in tools.get(kind, [])]
    if not panels:
        return Text("The toolbox is empty.", style="dim")
    return Group(*panels)
