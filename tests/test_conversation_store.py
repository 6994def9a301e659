"""
Tests for aura.memory.store — ConversationStore.

Covers:
- initialize: fresh state, reload, self-healing of a dangling active id,
  corrupt files moved aside
- conversation lifecycle: create, set_active, delete with successor selection
- titles from the first user message
- tool arrays: append-only, kind checked
- checklist completion: stale indexes, empty checklist removal, 20-entry log
- mood history bound
- round-trip persistence
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from aura.tools.models import (
    AffirmationCard,
    BreathingExercise,
    Checklist,
    ChecklistItem,
    MoodTracker,
    ToolKind,
)
from aura.memory.store import ConversationStore
from aura.types import MemoryEntry, Role


def _checklist(tool_id: str, *texts: str) -> Checklist:
    return Checklist(id=tool_id, title="Plan", items=[ChecklistItem(text=t) for t in texts])


def _reload(store: ConversationStore) -> ConversationStore:
    fresh = ConversationStore(store.state_path)
    fresh.initialize()
    return fresh


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestInitialize:

    def test_fresh_store_has_one_active_conversation(self, store):
        conversations = store.conversations()
        assert len(conversations) == 1
        assert store.active_id == conversations[0].id
        assert store.active.title == "New Chat"
        assert store.state_path.exists()

    def test_operations_before_initialize_raise(self, tmp_path: Path):
        s = ConversationStore(tmp_path / "state.json")
        with pytest.raises(RuntimeError):
            s.create_conversation()

    def test_dangling_active_id_heals_to_most_recent(self, store):
        older = store.active_id
        newer = store.create_conversation().id
        data = json.loads(store.state_path.read_text())
        data["activeId"] = "does-not-exist"
        store.state_path.write_text(json.dumps(data))

        reloaded = _reload(store)
        assert reloaded.active_id == newer
        assert reloaded.get(older) is not None

    def test_empty_conversation_set_heals_to_fresh(self, store):
        store.state_path.write_text(json.dumps({"conversations": {}, "activeId": None}))
        reloaded = _reload(store)
        assert len(reloaded.conversations()) == 1
        assert reloaded.get(reloaded.active_id) is not None

    def test_corrupt_file_is_moved_aside(self, store):
        store.state_path.write_text("{not json")
        reloaded = _reload(store)
        assert len(reloaded.conversations()) == 1
        backup = store.state_path.with_name(store.state_path.name + ".corrupt")
        assert backup.read_text() == "{not json"

    def test_persisted_keys_are_camel_case(self, store):
        data = json.loads(store.state_path.read_text())
        assert "activeId" in data
        conversation = next(iter(data["conversations"].values()))
        assert "completedTasks" in conversation


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

class TestConversations:

    def test_new_ids_are_strictly_increasing(self, store):
        ids = [int(store.active_id)]
        for _ in range(5):
            ids.append(int(store.create_conversation().id))
        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)

    def test_create_makes_active(self, store):
        created = store.create_conversation()
        assert store.active_id == created.id

    def test_conversations_newest_first(self, store):
        second = store.create_conversation()
        third = store.create_conversation()
        assert [c.id for c in store.conversations()][:2] == [third.id, second.id]

    def test_set_active_unknown_is_noop(self, store):
        before = store.active_id
        assert store.set_active("nope") is False
        assert store.active_id == before

    def test_set_active_known(self, store):
        first = store.active_id
        store.create_conversation()
        assert store.set_active(first) is True
        assert store.active_id == first

    def test_delete_active_selects_most_recent_remaining(self, store):
        first = store.active_id
        second = store.create_conversation().id
        third = store.create_conversation().id
        store.set_active(second)
        assert store.delete(second) is True
        assert store.active_id == third
        assert {c.id for c in store.conversations()} == {first, third}

    def test_delete_last_conversation_creates_fresh(self, store):
        only = store.active_id
        assert store.delete(only) is True
        assert store.active_id != only
        assert len(store.conversations()) == 1
        assert store.get(store.active_id) is not None

    def test_delete_inactive_keeps_active(self, store):
        first = store.active_id
        second = store.create_conversation().id
        store.delete(first)
        assert store.active_id == second

    def test_delete_unknown_returns_false(self, store):
        assert store.delete("missing") is False

    @pytest.mark.parametrize("count", [1, 2, 5])
    def test_exactly_one_valid_active_after_deleting_all(self, store, count):
        for _ in range(count - 1):
            store.create_conversation()
        for conversation in store.conversations():
            store.delete(conversation.id)
            assert store.get(store.active_id) is not None


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

class TestHistory:

    def test_title_from_first_user_message(self, store):
        store.append_message(Role.USER, "I need help planning my week please")
        assert store.active.title == "I need help planning..."

    def test_title_only_set_by_first_message(self, store):
        store.append_message(Role.USER, "Hello there")
        store.append_message(Role.USER, "Something else entirely")
        assert store.active.title == "Hello there..."

    def test_agent_first_message_keeps_default_title(self, store):
        store.append_message(Role.AGENT, "Welcome!")
        assert store.active.title == "New Chat"

    def test_tool_message_is_a_snapshot(self, store):
        tracker = MoodTracker(id="mood-1", title="How are you?")
        store.add_tool(ToolKind.MOOD_TRACKER, tracker)
        store.append_message(Role.AGENT, tracker)
        store.log_mood("Happy")
        message = store.history()[-1]
        assert message.is_tool
        assert message.content.history == []

    def test_append_to_missing_conversation(self, store):
        assert store.append_message(Role.USER, "hi", conversation_id="gone") is None


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

class TestTools:

    def test_add_tool_appends_never_replaces(self, store):
        store.add_tool(ToolKind.CHECKLIST, _checklist("c1", "a"))
        store.add_tool(ToolKind.CHECKLIST, _checklist("c2", "b"))
        assert [t.id for t in store.tools_of(ToolKind.CHECKLIST)] == ["c1", "c2"]

    def test_add_tool_kind_mismatch_raises(self, store):
        with pytest.raises(ValueError):
            store.add_tool(ToolKind.AFFIRMATION_CARD, _checklist("c1", "a"))

    def test_tools_omits_empty_kinds(self, store):
        store.add_tool(ToolKind.BREATHING_EXERCISE, BreathingExercise(id="b1", title="Breathe"))
        assert list(store.tools()) == [ToolKind.BREATHING_EXERCISE]

    def test_add_checklist_items_targets_most_recent(self, store):
        store.add_tool(ToolKind.CHECKLIST, _checklist("old", "a"))
        store.add_tool(ToolKind.CHECKLIST, _checklist("new", "b"))
        updated = store.add_checklist_items(["c", ChecklistItem(text="d")])
        assert updated.id == "new"
        assert [i.text for i in store.latest_checklist().items] == ["b", "c", "d"]
        assert [i.text for i in store.tools_of(ToolKind.CHECKLIST)[0].items] == ["a"]

    def test_add_checklist_items_without_checklist(self, store):
        assert store.add_checklist_items(["x"]) is None

    def test_find_tool(self, store):
        card = AffirmationCard(id="a1", title="You can", text=["I am capable."])
        store.add_tool(ToolKind.AFFIRMATION_CARD, card)
        assert store.find_tool("a1").title == "You can"
        assert store.find_tool("zzz") is None


class TestChecklistCompletion:

    def test_completes_item_and_logs_task(self, store):
        store.add_tool(ToolKind.CHECKLIST, _checklist("c1", "a", "b", "c"))
        assert store.complete_checklist_item("c1", 1) == "b"
        assert [i.text for i in store.latest_checklist().items] == ["a", "c"]
        assert store.completed_tasks() == ["b"]

    def test_repeated_stale_index_is_not_found(self, store):
        store.add_tool(ToolKind.CHECKLIST, _checklist("c1", "a", "b"))
        assert store.complete_checklist_item("c1", 1) == "b"
        assert store.complete_checklist_item("c1", 1) is None
        assert store.completed_tasks() == ["b"]
        assert [i.text for i in store.latest_checklist().items] == ["a"]

    def test_unknown_tool_is_not_found(self, store):
        assert store.complete_checklist_item("nope", 0) is None

    def test_negative_index_is_not_found(self, store):
        store.add_tool(ToolKind.CHECKLIST, _checklist("c1", "a"))
        assert store.complete_checklist_item("c1", -1) is None

    def test_last_item_removes_checklist(self, store):
        store.add_tool(ToolKind.CHECKLIST, _checklist("c1", "only"))
        store.add_tool(ToolKind.CHECKLIST, _checklist("c2", "x"))
        assert store.complete_checklist_item("c1", 0) == "only"
        assert [t.id for t in store.tools_of(ToolKind.CHECKLIST)] == ["c2"]
        assert store.complete_checklist_item("c1", 0) is None

    def test_completed_log_never_exceeds_twenty(self, store):
        store.add_tool(ToolKind.CHECKLIST, _checklist("c1", *[f"task {i}" for i in range(25)]))
        for _ in range(25):
            store.complete_checklist_item("c1", 0)
            assert len(store.completed_tasks()) <= 20
        assert store.completed_tasks()[0] == "task 5"
        assert store.completed_tasks()[-1] == "task 24"
        assert store.tools_of(ToolKind.CHECKLIST) == []


class TestMood:

    def test_log_mood_on_latest_tracker(self, store):
        store.add_tool(ToolKind.MOOD_TRACKER, MoodTracker(id="m1", title="Mood"))
        entry = store.log_mood("Sad")
        assert entry.mood == "Sad"
        assert store.tools_of(ToolKind.MOOD_TRACKER)[0].history[0].mood == "Sad"

    def test_log_mood_without_tracker(self, store):
        assert store.log_mood("Happy") is None

    def test_log_mood_unknown_tracker(self, store):
        store.add_tool(ToolKind.MOOD_TRACKER, MoodTracker(id="m1", title="Mood"))
        assert store.log_mood("Happy", tool_id="m2") is None

    def test_mood_history_bounded_to_ten(self, store):
        store.add_tool(ToolKind.MOOD_TRACKER, MoodTracker(id="m1", title="Mood"))
        moods = ["Happy", "Okay", "Neutral", "Sad", "Angry"] * 3
        for mood in moods[:14]:
            store.log_mood(mood)
        history = store.tools_of(ToolKind.MOOD_TRACKER)[0].history
        assert len(history) == 10
        assert [e.mood for e in history] == moods[4:14]

    def test_mood_matched_to_option_spelling(self, store):
        store.add_tool(ToolKind.MOOD_TRACKER, MoodTracker(id="m1", title="Mood"))
        entry = store.log_mood("  happy ")
        assert entry.mood == "Happy"

    def test_mood_outside_options_rejected(self, store):
        store.add_tool(ToolKind.MOOD_TRACKER, MoodTracker(id="m1", title="Mood"))
        assert store.log_mood("ecstatic") is None
        assert store.log_mood("   ") is None
        assert store.tools_of(ToolKind.MOOD_TRACKER)[0].history == []


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class TestRoundTrip:

    def test_reload_reproduces_state(self, store):
        first = store.active_id
        store.append_message(Role.USER, "Plan my trip")
        store.add_tool(ToolKind.CHECKLIST, _checklist("c1", "Book flights", "Pack"))
        store.add_tool(
            ToolKind.AFFIRMATION_CARD,
            AffirmationCard(id="a1", title="You got this", text=["I am ready."]),
        )
        tracker = MoodTracker(id="m1", title="Mood")
        store.add_tool(ToolKind.MOOD_TRACKER, tracker)
        store.append_message(Role.AGENT, tracker)
        store.log_mood("Okay")
        store.complete_checklist_item("c1", 1)
        store.add_memory(MemoryEntry(text="The user is going to Lisbon", embedding=[0.1, 0.2]))
        store.add_memory(MemoryEntry(text="No vector", embedding=None))
        second = store.create_conversation().id

        reloaded = _reload(store)
        assert reloaded.active_id == second
        assert {c.id for c in reloaded.conversations()} == {first, second}
        assert reloaded.get(first) == store.get(first)
        assert reloaded.get(second) == store.get(second)

    def test_every_mutation_is_on_disk(self, store):
        store.append_message(Role.USER, "hello")
        on_disk = json.loads(store.state_path.read_text())
        history = on_disk["conversations"][store.active_id]["history"]
        assert history == [{"role": "user", "content": "hello"}]

    def test_no_temp_files_left_behind(self, store):
        store.append_message(Role.USER, "hello")
        leftovers = [p for p in store.state_path.parent.iterdir() if p.suffix == ".tmp"]
        assert leftovers == []
