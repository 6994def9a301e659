"""
Response Assembler — building the prompt for a conversational reply.

Every reply Aura writes is grounded in the same context, assembled in a fixed
order:

    persona and style guide
    tool instructions            (markers routing only)
    [Current Toolbox State]
    [Relevant Memories for this Chat]
    [Conversation History]
    [Additional Context from a Web Search]   (when a search ran)
    [System Note: ...]                       (when following up on a tool action)

A system note tells the model what just happened ("the user completed X") so
it can react without deciding anything itself. There is never more than one
note per prompt: simultaneous effects are merged into a single note.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Union

from aura.tools.markers import MARKER_INSTRUCTIONS
from aura.tools.models import ToolInstance, ToolKind
from aura.tools.registry import render_tool_state
from aura.types import Message, history_to_string

DEFAULT_PERSONA = """You are a friendly and helpful companion named Aura. You are an expert in two \
areas: 1) mental and physical wellbeing, and 2) project planning and task management. You are \
supportive, empathetic and engaging, and you talk like a person, not a manual.

**Your Vibe**: Warm, encouraging and relaxed, like a face-to-face chat with a friend.
**Natural Language**: Use contractions ("you're", "it's", "let's") and the occasional "Well," \
or "So," where it feels natural.
**Expressive Language**: No emojis. Carry tone through your words instead: "Oh, that's genuinely \
wonderful to hear."
**Be Proactive**: Offer to help or brainstorm. When a useful action exists, such as a checklist \
item or a breathing exercise, take it and then tell the user what you did instead of asking permission.

**Greeting Protocol**: Introduce yourself briefly only in the very first reply of a chat. Never \
introduce yourself again in the same chat.
**Sign-offs and Questions**: End warmly ("Take care!", "Talk soon!"). Do not end every message \
with a question; only ask one when you genuinely need more information."""


# ---------------------------------------------------------------------------
# System notes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToolsCreated:
    kinds: tuple[ToolKind, ...]

    def sentence(self) -> str:
        names = " and ".join(f'"{kind.label}"' for kind in self.kinds)
        return (
            f"You just created {names} tool(s) for the user. Tell them they are available "
            "in their Toolbox and continue the conversation."
        )


@dataclass(frozen=True)
class ItemAdded:
    text: str

    def sentence(self) -> str:
        return f'You added "{self.text}" to the user\'s checklist. Briefly confirm this.'


@dataclass(frozen=True)
class MoreItemsAdded:
    count: int

    def sentence(self) -> str:
        return (
            f"You just brainstormed and added {self.count} new item(s) to the user's "
            "checklist. Confirm this."
        )


@dataclass(frozen=True)
class ChecklistItemCompleted:
    text: str

    def sentence(self) -> str:
        return (
            f'The user just completed the task "{self.text}" from their checklist. '
            "Acknowledge this specific accomplishment and gently ask how they feel now."
        )


@dataclass(frozen=True)
class MoodLogged:
    mood: str

    def sentence(self) -> str:
        return (
            f'The user just logged their mood as "{self.mood}". Respond with empathy and '
            "ask an open-ended question about it."
        )


@dataclass(frozen=True)
class BreathingComplete:
    def sentence(self) -> str:
        return "The user just finished a breathing exercise. Gently ask how they are feeling now."


@dataclass(frozen=True)
class AffirmationCommitted:
    text: str

    def sentence(self) -> str:
        return (
            f'The user just committed to the affirmation "{self.text}". Offer a short, '
            "encouraging reinforcement."
        )


SystemNote = Union[
    ToolsCreated,
    ItemAdded,
    MoreItemsAdded,
    ChecklistItemCompleted,
    MoodLogged,
    BreathingComplete,
    AffirmationCommitted,
]


def merge_notes(notes: Sequence[SystemNote]) -> Optional[str]:
    """Fold every effect of one turn into a single ``[System Note: ...]`` line."""
    if not notes:
        return None
    return "[System Note: " + " ".join(note.sentence() for note in notes) + "]"


class ResponseAssembler:
    """Builds the full prompt for conversational replies."""

    def __init__(self, system_prompt: Optional[str] = None, routing_mode: str = "router"):
        self.persona = system_prompt or DEFAULT_PERSONA
        self.routing_mode = routing_mode

    def build(
        self,
        history: Iterable[Message],
        tools: dict[ToolKind, list[ToolInstance]],
        memories: Sequence[str] = (),
        notes: Sequence[SystemNote] = (),
        search_context: Optional[str] = None,
    ) -> str:
        sections = [self.persona]
        if self.routing_mode == "markers":
            sections.append(MARKER_INSTRUCTIONS)
        sections.append(f"[Current Toolbox State]:\n{render_tool_state(tools)}")
        sections.append(
            "[Relevant Memories for this Chat]:\n" + ("\n".join(memories) if memories else "None")
        )
        sections.append(f"[Conversation History]:\n{history_to_string(list(history)) or 'None'}")
        if search_context:
            sections.append(f"[Additional Context from a Web Search]:\n{search_context}")
        note = merge_notes(notes)
        if note:
            sections.append(note)
        sections.append("Assistant:")
        return "\n\n".join(sections)
