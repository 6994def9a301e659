"""
Memory Extractor — distilling durable facts from an exchange.

After every reply is persisted, the latest user/agent exchange is handed to
the model with one question: what here is worth remembering about the user?
The answer is either the literal sentinel ``NONE`` or one fact per line. Each
line is indexed on its own, so one failed embedding only loses that fact.

Extraction runs as a detached asyncio task. It never blocks the reply, and it
may finish after the next turn has already started.
"""

from __future__ import annotations

import asyncio
import re
from typing import Optional

import structlog

from aura.api.ollama import EndpointError, OllamaEngine
from aura.events import EventBus, MemoryExtractedEvent
from aura.memory.index import MemoryIndex
from aura.types import MemoryEntry

logger = structlog.get_logger(__name__)

NOTHING_TO_REMEMBER = "NONE"

EXTRACTION_PROMPT = """You are a memory extraction bot. Analyze the following conversation snippet \
and extract key facts about the user that would be useful for a conversational AI to remember. \
Focus on personal details, preferences, and important context. Only keep facts that will still be \
true and useful in later conversations.

If there are no key facts to remember, respond with "{sentinel}".
Format each fact as a single line, starting with a hyphen.
Example: - The user's favorite color is blue.

Conversation:
User: {user_text}
Assistant: {agent_text}"""

# "- fact", "* fact", "• fact", "1. fact", "2) fact"
_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")


def parse_facts(response_text: str) -> list[str]:
    """Split an extraction answer into clean fact lines.

    The sentinel (on its own, in any case, optionally wrapped in quotes or a
    trailing period) means no facts. Blank lines and bare bullets are skipped.
    """
    text = response_text.strip()
    if text.strip("\"'.").upper() == NOTHING_TO_REMEMBER:
        return []

    facts: list[str] = []
    for line in text.splitlines():
        fact = _BULLET_RE.sub("", line, count=1).strip()
        if not fact or fact.strip("\"'.").upper() == NOTHING_TO_REMEMBER:
            continue
        if fact not in facts:
            facts.append(fact)
    return facts


class MemoryExtractor:
    """Turns finished exchanges into indexed memories."""

    def __init__(
        self,
        engine: OllamaEngine,
        index: MemoryIndex,
        event_bus: Optional[EventBus] = None,
    ):
        self._engine = engine
        self._index = index
        self._event_bus = event_bus

    async def extract(
        self,
        user_text: str,
        agent_text: str,
        conversation_id: str,
    ) -> list[MemoryEntry]:
        """Extract, embed and store facts from one exchange."""
        prompt = EXTRACTION_PROMPT.format(
            sentinel=NOTHING_TO_REMEMBER,
            user_text=user_text,
            agent_text=agent_text,
        )
        try:
            answer = await self._engine.generate(prompt)
        except EndpointError as e:
            logger.warning("memory_extractor.generation_failed", error=str(e))
            return []

        stored: list[MemoryEntry] = []
        for fact in parse_facts(answer):
            entry = await self._index.index(fact, conversation_id=conversation_id)
            if entry is not None:
                stored.append(entry)

        logger.info(
            "memory_extractor.complete",
            conversation_id=conversation_id,
            stored=len(stored),
        )
        if stored and self._event_bus is not None:
            self._event_bus.emit(
                MemoryExtractedEvent(conversation_id=conversation_id, count=len(stored))
            )
        return stored

    def schedule(
        self,
        user_text: str,
        agent_text: str,
        conversation_id: str,
    ) -> asyncio.Task[list[MemoryEntry]]:
        """Run ``extract`` as a detached task. The caller must keep a reference."""
        return asyncio.create_task(
            self.extract(user_text, agent_text, conversation_id),
            name=f"aura-memory-extract-{conversation_id}",
        )
