"""Memory — durable conversation state and semantic recall of user facts."""
from aura.memory.extractor import MemoryExtractor
from aura.memory.index import MemoryIndex
from aura.memory.store import ConversationStore

__all__ = [
    "ConversationStore",
    "MemoryIndex",
    "MemoryExtractor",
]
