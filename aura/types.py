"""
Core data types shared across Aura subsystems.

These are the persisted shapes: a conversation with its message history, its
toolbox, its memories and its completed-task log, and the root document that
holds every conversation plus the active id. They live here rather than in the
store so the router, assembler and agent can use them without importing the
persistence layer.

The JSON layout uses camelCase for ``activeId``, ``completedTasks`` and
``buttonText``; Python attributes stay snake_case.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from aura.tools.models import ToolInstance, ToolKind


class Role(str, Enum):
    USER = "user"
    AGENT = "agent"


class Message(BaseModel):
    """One history entry. Content is text, or a tool payload shown in-chat."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: Union[ToolInstance, str]

    @property
    def is_tool(self) -> bool:
        return not isinstance(self.content, str)


class MemoryEntry(BaseModel):
    """A durable fact about the user, with its embedding when one was computed."""

    text: str
    embedding: Optional[list[float]] = None


class Conversation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str = "New Chat"
    history: list[Message] = Field(default_factory=list)
    tools: dict[ToolKind, list[ToolInstance]] = Field(default_factory=dict)
    memories: list[MemoryEntry] = Field(default_factory=list)
    completed_tasks: list[str] = Field(default_factory=list, alias="completedTasks")

    @property
    def created_at_ms(self) -> int:
        """Creation token as an integer (ids are millisecond timestamps)."""
        try:
            return int(self.id)
        except ValueError:
            return 0

    @property
    def has_tools(self) -> bool:
        return any(self.tools.values())


class StoreState(BaseModel):
    """The single persisted root document."""

    model_config = ConfigDict(populate_by_name=True)

    conversations: dict[str, Conversation] = Field(default_factory=dict)
    active_id: Optional[str] = Field(None, alias="activeId")


def history_to_string(history: list[Message]) -> str:
    """Render history as ``User:`` / ``Assistant:`` lines.

    Tool-bearing messages are summarized rather than inlined.
    """
    lines = []
    for message in history:
        speaker = "User" if message.role == Role.USER else "Assistant"
        if isinstance(message.content, str):
            lines.append(f"{speaker}: {message.content}")
        else:
            kind = ToolKind(message.content.type)
            lines.append(f"{speaker}: [displayed a {kind.label} tool]")
    return "\n".join(lines)
