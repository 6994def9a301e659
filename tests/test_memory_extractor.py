"""Tests for aura.memory.extractor — fact parsing and background extraction."""

from __future__ import annotations

import asyncio

import pytest

from aura.api.ollama import TransportFailure
from aura.events import EventBus, MemoryExtractedEvent
from aura.memory.extractor import MemoryExtractor, parse_facts
from aura.memory.index import MemoryIndex


@pytest.fixture()
def extractor(store, engine) -> MemoryExtractor:
    return MemoryExtractor(engine, MemoryIndex(store, engine))


# ---------------------------------------------------------------------------
# parse_facts
# ---------------------------------------------------------------------------

class TestParseFacts:

    @pytest.mark.parametrize("answer", ["NONE", "none", "  None.  ", '"NONE"'])
    def test_sentinel_means_nothing(self, answer):
        assert parse_facts(answer) == []

    def test_hyphen_lines(self):
        answer = "- The user's favorite color is blue.\n- The user has a dog named Rex."
        assert parse_facts(answer) == [
            "The user's favorite color is blue.",
            "The user has a dog named Rex.",
        ]

    def test_other_bullets_and_numbering(self):
        answer = "* Likes tea\n• Lives in Oslo\n1. Works nights\n2) Has a sister"
        assert parse_facts(answer) == ["Likes tea", "Lives in Oslo", "Works nights", "Has a sister"]

    def test_blank_lines_and_duplicates_skipped(self):
        answer = "- Likes tea\n\n-   \n- Likes tea"
        assert parse_facts(answer) == ["Likes tea"]

    def test_empty_answer(self):
        assert parse_facts("") == []


# ---------------------------------------------------------------------------
# MemoryExtractor
# ---------------------------------------------------------------------------

class TestMemoryExtractor:

    @pytest.mark.asyncio
    async def test_each_fact_indexed_independently(self, extractor, store, engine):
        engine.extraction_answer = "- The user has a dog\n- The user drinks coffee"
        stored = await extractor.extract("I walk my dog", "Lovely!", store.active_id)
        assert [m.text for m in stored] == ["The user has a dog", "The user drinks coffee"]
        assert [m.text for m in store.memories()] == ["The user has a dog", "The user drinks coffee"]
        assert "User: I walk my dog" in engine.extraction_prompts[0]
        assert "NONE" in engine.extraction_prompts[0]

    @pytest.mark.asyncio
    async def test_failed_embedding_drops_only_that_fact(self, extractor, store, engine):
        engine.extraction_answer = "- The user has a cat\n- The user runs"
        engine.embedding_overrides["The user has a cat"] = TransportFailure("down")
        stored = await extractor.extract("u", "a", store.active_id)
        assert [m.text for m in stored] == ["The user runs"]

    @pytest.mark.asyncio
    async def test_sentinel_stores_nothing(self, extractor, store, engine):
        engine.extraction_answer = "NONE"
        assert await extractor.extract("hi", "hello", store.active_id) == []
        assert store.memories() == []
        assert engine.embedded == []

    @pytest.mark.asyncio
    async def test_generation_failure_yields_nothing(self, extractor, store, engine):
        engine.extraction_answer = TransportFailure("offline")
        assert await extractor.extract("hi", "hello", store.active_id) == []

    @pytest.mark.asyncio
    async def test_lands_in_origin_conversation_after_switch(self, extractor, store, engine):
        engine.extraction_answer = "- The user has an exam"
        origin = store.active_id
        task = extractor.schedule("exam tomorrow", "Good luck!", origin)
        store.create_conversation()
        await task
        assert [m.text for m in store.memories(origin)] == ["The user has an exam"]
        assert store.memories() == []

    @pytest.mark.asyncio
    async def test_deleted_origin_drops_facts(self, extractor, store, engine):
        engine.extraction_answer = "- The user has an exam"
        origin = store.active_id
        task = extractor.schedule("exam tomorrow", "Good luck!", origin)
        store.delete(origin)
        assert await task == []
        assert store.memories() == []

    @pytest.mark.asyncio
    async def test_schedule_returns_task(self, extractor, store):
        task = extractor.schedule("u", "a", store.active_id)
        assert isinstance(task, asyncio.Task)
        await task

    @pytest.mark.asyncio
    async def test_emits_memory_extracted_event(self, store, engine):
        bus = EventBus()
        await bus.start()
        received = []
        bus.subscribe("memory.*", received.append)
        extractor = MemoryExtractor(engine, MemoryIndex(store, engine), bus)
        engine.extraction_answer = "- The user has a dog"
        await extractor.extract("u", "a", store.active_id)
        await bus.stop()
        assert len(received) == 1
        assert isinstance(received[0], MemoryExtractedEvent)
        assert received[0].count == 1
