"""
Shared fixtures for the Aura test suite.

Provides a scripted stand-in for the Ollama engine, a canned search client,
and config/store/agent fixtures backed by a temp directory, so individual test
modules can focus on behavior rather than setup.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import pytest
import pytest_asyncio

from aura.agent import AuraAgent
from aura.api.ollama import SchemaFailure, TransportFailure
from aura.config import AuraConfig
from aura.memory.store import ConversationStore

# Toy embedding space: one dimension per keyword.
VOCABULARY = ("dog", "cat", "exam", "coffee", "running", "sister")


def keyword_embedding(text: str) -> list[float]:
    lowered = text.lower()
    return [float(lowered.count(word)) for word in VOCABULARY]


class FakeEngine:
    """
    Scripted generation/embedding endpoint.

    Plain generation is answered by prompt type: router prompts get
    ``router_answer``, extraction prompts get ``extraction_answer``, everything
    else gets ``reply_text``. Structured generation pops ``json_answers`` in
    order; an Exception in any slot is raised instead of returned.
    """

    model = "fake-model"
    embedding_model = "fake-embedding"

    def __init__(self) -> None:
        self.router_answer: Any = "CHAT"
        self.extraction_answer: Any = "NONE"
        self.reply_text: Any = "I'm here for you."
        self.json_answers: list[Any] = []
        self.embedding_overrides: dict[str, Any] = {}
        self.fail_embeddings = False

        self.router_prompts: list[str] = []
        self.reply_prompts: list[str] = []
        self.extraction_prompts: list[str] = []
        self.json_prompts: list[str] = []
        self.embedded: list[str] = []
        self.closed = False

    @staticmethod
    def _resolve(value: Any) -> Any:
        if isinstance(value, BaseException):
            raise value
        return value

    async def generate(self, prompt: str, *, structured: bool = False, model: Optional[str] = None) -> str:
        if "tool-selection AI" in prompt:
            self.router_prompts.append(prompt)
            return self._resolve(self.router_answer)
        if "memory extraction bot" in prompt:
            self.extraction_prompts.append(prompt)
            return self._resolve(self.extraction_answer)
        self.reply_prompts.append(prompt)
        return self._resolve(self.reply_text)

    async def generate_json(self, prompt: str, *, model: Optional[str] = None) -> Any:
        self.json_prompts.append(prompt)
        if not self.json_answers:
            raise SchemaFailure("no scripted JSON answer")
        return self._resolve(self.json_answers.pop(0))

    async def embed(self, text: str, *, model: Optional[str] = None) -> list[float]:
        self.embedded.append(text)
        if self.fail_embeddings:
            raise TransportFailure("embedding endpoint down")
        if text in self.embedding_overrides:
            return self._resolve(self.embedding_overrides[text])
        return keyword_embedding(text)

    async def aclose(self) -> None:
        self.closed = True


class FakeSearch:
    """Search client that answers every query with ``answer``."""

    def __init__(self, answer: Optional[str] = "Search says: start early.") -> None:
        self.answer = answer
        self.queries: list[str] = []

    @property
    def is_available(self) -> bool:
        return self.answer is not None

    async def try_search(self, query: str) -> Optional[str]:
        self.queries.append(query)
        return self.answer

    async def aclose(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AuraConfig:
    """An AuraConfig whose data directory lives under tmp_path."""
    monkeypatch.setenv("AURA_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("AURA_STATE_FILE", raising=False)
    monkeypatch.delenv("AURA_ROUTING_MODE", raising=False)
    monkeypatch.delenv("AURA_SYSTEM_PROMPT", raising=False)
    monkeypatch.delenv("TAVILY_API_KEY", raising=False)
    return AuraConfig()


@pytest.fixture()
def store(tmp_path: Path) -> ConversationStore:
    """An initialized store backed by a temp file."""
    s = ConversationStore(tmp_path / "state.json")
    s.initialize()
    return s


@pytest.fixture()
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture()
def search() -> FakeSearch:
    return FakeSearch()


@pytest_asyncio.fixture
async def agent(config: AuraConfig, engine: FakeEngine, search: FakeSearch):
    """An initialized AuraAgent wired to the fakes."""
    a = AuraAgent(config, engine=engine, search=search)
    await a.initialize()
    yield a
    await a.aclose()
