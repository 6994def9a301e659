"""
Conversation Store — Aura's Persistence Layer.

Owns the durable state: every conversation with its ordered history, its
toolbox (several instances per tool kind), its bounded completed-task log and
its memories, plus the id of the one active conversation.

The whole state is a single JSON document. Every mutating call rewrites that
document before returning, through a temp file and an atomic rename, so a
crash can never leave a half-written store behind. There is exactly one writer
(the turn pipeline holds "the turn"), so no locking is done here.
"""

from __future__ import annotations

import os
import tempfile
import time
from pathlib import Path
from typing import Optional, Union

import structlog
from pydantic import ValidationError

from aura.tools.models import (
    Checklist,
    ChecklistItem,
    MoodEntry,
    MoodTracker,
    ToolInstance,
    ToolKind,
    kind_of,
)
from aura.types import Conversation, MemoryEntry, Message, Role, StoreState

logger = structlog.get_logger(__name__)

DEFAULT_TITLE = "New Chat"
TITLE_PREVIEW_CHARS = 20


class ConversationStore:
    """
    Durable multi-conversation state with self-healing active selection.

    Construct once per process, call ``initialize()``, then hand the instance
    to every component that needs it.
    """

    def __init__(
        self,
        state_path: Path,
        max_completed_tasks: int = 20,
        max_mood_history: int = 10,
    ) -> None:
        self.state_path = state_path
        self.max_completed_tasks = max(1, int(max_completed_tasks))
        self.max_mood_history = max(1, int(max_mood_history))
        self._state: Optional[StoreState] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Load the persisted state, or create a first conversation."""
        if self._state is not None:
            logger.debug("conversation_store.already_initialized")
            return

        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        self._best_effort_chmod(self.state_path.parent, 0o700)

        self._state = self._load() or StoreState()
        healed = self._heal_active()
        if healed:
            self._save()
        logger.info(
            "conversation_store.initialized",
            path=str(self.state_path),
            conversations=len(self._state.conversations),
            active_id=self._state.active_id,
        )

    def _require_state(self) -> StoreState:
        if self._state is None:
            raise RuntimeError("ConversationStore is not initialized. Call initialize() first.")
        return self._state

    def _load(self) -> Optional[StoreState]:
        if not self.state_path.exists():
            return None
        try:
            raw = self.state_path.read_text(encoding="utf-8")
            return StoreState.model_validate_json(raw)
        except (OSError, ValidationError, ValueError) as e:
            backup = self.state_path.with_name(self.state_path.name + ".corrupt")
            logger.error(
                "conversation_store.load_failed",
                path=str(self.state_path),
                backup=str(backup),
                error=str(e)[:200],
            )
            try:
                os.replace(self.state_path, backup)
            except OSError:
                logger.warning("conversation_store.backup_failed", path=str(backup))
            return None

    def _save(self) -> None:
        """Write the whole document atomically."""
        state = self._require_state()
        payload = state.model_dump_json(by_alias=True, indent=2)
        fd, tmp_name = tempfile.mkstemp(
            prefix=self.state_path.name + ".",
            suffix=".tmp",
            dir=str(self.state_path.parent),
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, self.state_path)
        except OSError as e:
            logger.error("conversation_store.write_failed", path=str(self.state_path), error=str(e))
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
        self._best_effort_chmod(self.state_path, 0o600)
        logger.debug("conversation_store.saved", bytes=len(payload))

    def _heal_active(self) -> bool:
        """Make sure the active id references an existing conversation."""
        state = self._require_state()
        if state.active_id in state.conversations:
            return False
        successor = self._most_recent_id()
        if successor is None:
            self._new_conversation()
        else:
            state.active_id = successor
        logger.info("conversation_store.active_healed", active_id=state.active_id)
        return True

    def _most_recent_id(self) -> Optional[str]:
        state = self._require_state()
        if not state.conversations:
            return None
        return max(state.conversations.values(), key=lambda c: c.created_at_ms).id

    def _next_id(self) -> str:
        """Millisecond creation token, strictly greater than every existing one."""
        state = self._require_state()
        now_ms = int(time.time() * 1000)
        newest = max((c.created_at_ms for c in state.conversations.values()), default=0)
        return str(max(now_ms, newest + 1))

    def _new_conversation(self) -> Conversation:
        state = self._require_state()
        conversation = Conversation(id=self._next_id(), title=DEFAULT_TITLE)
        state.conversations[conversation.id] = conversation
        state.active_id = conversation.id
        return conversation

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(self) -> Conversation:
        """Create an empty conversation and make it active."""
        conversation = self._new_conversation()
        self._save()
        logger.info("conversation_store.created", conversation_id=conversation.id)
        return conversation

    def set_active(self, conversation_id: str) -> bool:
        state = self._require_state()
        if conversation_id not in state.conversations:
            logger.warning("conversation_store.unknown_conversation", conversation_id=conversation_id)
            return False
        state.active_id = conversation_id
        self._save()
        return True

    def delete(self, conversation_id: str) -> bool:
        """Delete a conversation. Deleting the active one selects a successor."""
        state = self._require_state()
        if conversation_id not in state.conversations:
            return False
        del state.conversations[conversation_id]
        if state.active_id == conversation_id:
            state.active_id = None
            self._heal_active()
        self._save()
        logger.info(
            "conversation_store.deleted",
            conversation_id=conversation_id,
            active_id=state.active_id,
        )
        return True

    @property
    def active_id(self) -> str:
        state = self._require_state()
        assert state.active_id is not None
        return state.active_id

    @property
    def active(self) -> Conversation:
        return self._require_state().conversations[self.active_id]

    def get(self, conversation_id: str) -> Optional[Conversation]:
        return self._require_state().conversations.get(conversation_id)

    def conversations(self) -> list[Conversation]:
        """All conversations, newest first."""
        return sorted(
            self._require_state().conversations.values(),
            key=lambda c: c.created_at_ms,
            reverse=True,
        )

    def _resolve(self, conversation_id: Optional[str]) -> Optional[Conversation]:
        if conversation_id is None:
            return self.active
        return self.get(conversation_id)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def append_message(
        self,
        role: Role,
        content: Union[str, ToolInstance],
        conversation_id: Optional[str] = None,
    ) -> Optional[Message]:
        """Append a message. Tool payloads are snapshotted so history stays immutable."""
        conversation = self._resolve(conversation_id)
        if conversation is None:
            logger.warning("conversation_store.append_to_missing", conversation_id=conversation_id)
            return None
        if not isinstance(content, str):
            content = content.model_copy(deep=True)
        message = Message(role=role, content=content)
        conversation.history.append(message)
        if (
            len(conversation.history) == 1
            and role == Role.USER
            and isinstance(content, str)
        ):
            conversation.title = content[:TITLE_PREVIEW_CHARS] + "..."
        self._save()
        return message

    def history(self) -> list[Message]:
        return list(self.active.history)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def add_tool(
        self,
        kind: ToolKind,
        instance: ToolInstance,
        conversation_id: Optional[str] = None,
    ) -> None:
        """Append a tool instance to its kind's array. Never overwrites."""
        if kind_of(instance) != kind:
            raise ValueError(f"Tool instance of type {instance.type!r} cannot be filed as {kind.value!r}")
        conversation = self._resolve(conversation_id)
        if conversation is None:
            logger.warning("conversation_store.add_tool_to_missing", conversation_id=conversation_id)
            return
        conversation.tools.setdefault(kind, []).append(instance)
        self._save()
        logger.info(
            "conversation_store.tool_added",
            kind=kind.value,
            tool_id=instance.id,
            conversation_id=conversation.id,
        )

    def tools(self) -> dict[ToolKind, list[ToolInstance]]:
        return {kind: list(items) for kind, items in self.active.tools.items() if items}

    def tools_of(self, kind: ToolKind) -> list[ToolInstance]:
        return list(self.active.tools.get(kind, []))

    def find_tool(self, tool_id: str) -> Optional[ToolInstance]:
        for instances in self.active.tools.values():
            for instance in instances:
                if instance.id == tool_id:
                    return instance
        return None

    def latest_checklist(self) -> Optional[Checklist]:
        """The most recently created checklist of the active conversation."""
        checklists = self.active.tools.get(ToolKind.CHECKLIST, [])
        return checklists[-1] if checklists else None

    def complete_checklist_item(self, tool_id: str, index: int) -> Optional[str]:
        """
        Complete (remove) one checklist item and log it as a completed task.

        The checklist is resolved by id first and the index is validated
        against its current length, so a stale or repeated call returns None
        instead of removing some other item.
        """
        conversation = self.active
        checklists = conversation.tools.get(ToolKind.CHECKLIST, [])
        position = next((i for i, c in enumerate(checklists) if c.id == tool_id), None)
        if position is None:
            logger.debug("conversation_store.checklist_not_found", tool_id=tool_id)
            return None
        checklist = checklists[position]
        if not 0 <= index < len(checklist.items):
            logger.debug(
                "conversation_store.checklist_index_invalid",
                tool_id=tool_id,
                index=index,
                size=len(checklist.items),
            )
            return None

        completed = checklist.items.pop(index)
        if not checklist.items:
            checklists.pop(position)

        conversation.completed_tasks.append(completed.text)
        if len(conversation.completed_tasks) > self.max_completed_tasks:
            del conversation.completed_tasks[: -self.max_completed_tasks]

        self._save()
        logger.info(
            "conversation_store.checklist_item_completed",
            tool_id=tool_id,
            remaining=len(checklist.items),
        )
        return completed.text

    def add_checklist_items(self, items: list[Union[ChecklistItem, str]]) -> Optional[Checklist]:
        """Append items to the most recent checklist. None when there is no checklist."""
        checklist = self.latest_checklist()
        if checklist is None:
            return None
        new_items = [
            item if isinstance(item, ChecklistItem) else ChecklistItem(text=item)
            for item in items
        ]
        if not new_items:
            return checklist
        checklist.items.extend(new_items)
        self._save()
        logger.info(
            "conversation_store.checklist_items_added",
            tool_id=checklist.id,
            added=len(new_items),
        )
        return checklist

    def log_mood(self, mood: str, tool_id: Optional[str] = None) -> Optional[MoodEntry]:
        """
        Record a mood on a tracker (the given one, else the most recent).

        The mood must be one of the tracker's options, matched case-insensitively;
        the option's own spelling is stored. None when there is no such tracker
        or the mood is not an option.
        """
        trackers: list[MoodTracker] = self.active.tools.get(ToolKind.MOOD_TRACKER, [])
        if tool_id is not None:
            tracker = next((t for t in trackers if t.id == tool_id), None)
        else:
            tracker = trackers[-1] if trackers else None
        if tracker is None:
            return None
        wanted = mood.strip().casefold()
        option = next((o for o in tracker.options if o.casefold() == wanted), None)
        if option is None:
            logger.info("conversation_store.mood_not_an_option", tool_id=tracker.id, mood=mood)
            return None

        entry = MoodEntry(mood=option)
        tracker.history.append(entry)
        if len(tracker.history) > self.max_mood_history:
            del tracker.history[: -self.max_mood_history]
        self._save()
        logger.info("conversation_store.mood_logged", tool_id=tracker.id, mood=entry.mood)
        return entry

    def completed_tasks(self) -> list[str]:
        return list(self.active.completed_tasks)

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    def add_memory(self, entry: MemoryEntry, conversation_id: Optional[str] = None) -> bool:
        conversation = self._resolve(conversation_id)
        if conversation is None:
            # The conversation was deleted while extraction was in flight.
            logger.info("conversation_store.memory_dropped", conversation_id=conversation_id)
            return False
        conversation.memories.append(entry)
        self._save()
        return True

    def memories(self, conversation_id: Optional[str] = None) -> list[MemoryEntry]:
        conversation = self._resolve(conversation_id)
        return list(conversation.memories) if conversation else []

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _best_effort_chmod(path: Path, mode: int) -> None:
        """Attempt to harden permissions without failing on unsupported filesystems."""
        try:
            path.chmod(mode)
        except OSError:
            logger.debug("conversation_store.chmod_skipped", path=str(path), mode=oct(mode))
