"""
Memory Index — semantic recall over extracted facts.

Facts are embedded once, when they are indexed, and stored on the
conversation they came from. Retrieval embeds the query and ranks every stored
fact by cosine similarity. The ranking is a brute-force scan; per-conversation
memory stays small enough that no vector index is needed.
"""

from __future__ import annotations

from typing import Iterable, Optional

import structlog

from aura.api.ollama import EndpointError, OllamaEngine
from aura.memory._utils import cosine_similarity
from aura.memory.store import ConversationStore
from aura.types import MemoryEntry

logger = structlog.get_logger(__name__)


def rank(
    query_vector: list[float],
    entries: Iterable[MemoryEntry],
    top_k: int,
) -> list[MemoryEntry]:
    """
    Order entries by similarity to ``query_vector``, best first.

    Entries without an embedding score 0 and sit behind embedded entries of
    equal score. ``sorted`` is stable, so remaining ties keep insertion order.
    """
    if top_k <= 0:
        return []
    scored = [
        (cosine_similarity(query_vector, entry.embedding), entry.embedding is not None, entry)
        for entry in entries
    ]
    scored = sorted(scored, key=lambda row: (row[0], row[1]), reverse=True)
    return [entry for _, _, entry in scored[:top_k]]


class MemoryIndex:
    """Embeds facts on the way in and ranks them on the way out."""

    def __init__(self, store: ConversationStore, engine: OllamaEngine):
        self._store = store
        self._engine = engine

    async def index(
        self,
        text: str,
        conversation_id: Optional[str] = None,
    ) -> Optional[MemoryEntry]:
        """Embed ``text`` and store it. Returns None when the fact was dropped."""
        text = text.strip()
        if not text:
            return None
        try:
            embedding = await self._engine.embed(text)
        except EndpointError as e:
            logger.warning("memory_index.embedding_failed", fact=text, error=str(e))
            return None

        entry = MemoryEntry(text=text, embedding=embedding)
        if not self._store.add_memory(entry, conversation_id=conversation_id):
            return None
        logger.debug("memory_index.indexed", fact=text, dims=len(embedding))
        return entry

    async def retrieve(
        self,
        query: str,
        top_k: int = 4,
        conversation_id: Optional[str] = None,
    ) -> list[str]:
        """Return up to ``top_k`` fact texts most relevant to ``query``."""
        memories = self._store.memories(conversation_id)
        if not memories or top_k <= 0:
            return []
        try:
            query_vector = await self._engine.embed(query)
        except EndpointError as e:
            logger.warning("memory_index.query_embedding_failed", query=query, error=str(e))
            return []
        return [entry.text for entry in rank(query_vector, memories, top_k)]
