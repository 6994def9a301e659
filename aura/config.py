# aura/config.py
"""
Configuration for Aura.

All configuration flows through this module. Values are loaded from environment
variables (and a ``.env`` file at the project root) and validated with Pydantic.
Components never read the environment themselves; they receive the section of
config they need from ``AuraConfig``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above aura/ package),
# so the config works regardless of the user's current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

ROUTING_MODES = frozenset({"router", "markers"})


class OllamaConfig(BaseSettings):
    """Connection to the local Ollama server (generation + embeddings)."""

    base_url: str = Field("http://localhost:11434", alias="OLLAMA_BASE_URL")
    model: str = Field("gemma3:4b", alias="AURA_MODEL")
    embedding_model: str = Field("mxbai-embed-large:latest", alias="AURA_EMBEDDING_MODEL")
    # 0 disables the HTTP timeout; local generation can legitimately take minutes.
    request_timeout_seconds: float = Field(0.0, alias="AURA_REQUEST_TIMEOUT_SECONDS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize(self) -> "OllamaConfig":
        self.base_url = self.base_url.strip().rstrip("/") or "http://localhost:11434"
        self.model = self.model.strip() or "gemma3:4b"
        self.embedding_model = self.embedding_model.strip() or "mxbai-embed-large:latest"
        self.request_timeout_seconds = max(0.0, float(self.request_timeout_seconds))
        return self

    @property
    def timeout(self) -> Optional[float]:
        """Timeout to hand to httpx, or None when disabled."""
        return self.request_timeout_seconds or None


class StoreConfig(BaseSettings):
    """Where and how the conversation state is persisted."""

    data_dir: Path = Field(Path("./aura_data"), alias="AURA_DATA_DIR")
    state_file: Path = Field(Path("./aura_data/state.json"), alias="AURA_STATE_FILE")
    max_completed_tasks: int = Field(20, alias="AURA_MAX_COMPLETED_TASKS")
    max_mood_history: int = Field(10, alias="AURA_MAX_MOOD_HISTORY")

    # Factory default used for detecting whether the user explicitly set a path.
    _DEFAULT_STATE_FILE: Path = Path("./aura_data/state.json")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def derive_paths_from_data_dir(self) -> "StoreConfig":
        """Derive the state file from data_dir when it hasn't been overridden."""
        if self.state_file == self._DEFAULT_STATE_FILE:
            self.state_file = self.data_dir / "state.json"
        self.max_completed_tasks = max(1, int(self.max_completed_tasks))
        self.max_mood_history = max(1, int(self.max_mood_history))
        return self


class SearchConfig(BaseSettings):
    """Web search collaborator (Tavily). Optional: disabled without a key."""

    api_key: Optional[str] = Field(None, alias="TAVILY_API_KEY")
    url: str = Field("https://api.tavily.com/search", alias="AURA_SEARCH_URL")
    max_results: int = Field(3, alias="AURA_SEARCH_MAX_RESULTS")
    search_depth: str = Field("basic", alias="AURA_SEARCH_DEPTH")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "env_ignore_empty": True}

    @model_validator(mode="after")
    def normalize(self) -> "SearchConfig":
        if isinstance(self.api_key, str):
            self.api_key = self.api_key.strip() or None
        self.max_results = max(1, min(10, int(self.max_results)))
        if self.search_depth not in {"basic", "advanced"}:
            self.search_depth = "basic"
        return self

    @property
    def is_available(self) -> bool:
        return bool(self.api_key)


class AgentConfig(BaseSettings):
    """Behavior of the turn pipeline."""

    system_prompt: Optional[str] = Field(None, alias="AURA_SYSTEM_PROMPT")
    routing_mode: str = Field("router", alias="AURA_ROUTING_MODE")
    memory_top_k: int = Field(4, alias="AURA_MEMORY_TOP_K")
    max_user_text_chars: int = Field(8000, alias="AURA_MAX_USER_TEXT_CHARS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "env_ignore_empty": True}

    @model_validator(mode="after")
    def normalize(self) -> "AgentConfig":
        self.routing_mode = self.routing_mode.strip().lower()
        if self.routing_mode not in ROUTING_MODES:
            raise ValueError("AURA_ROUTING_MODE must be one of: router, markers.")
        if isinstance(self.system_prompt, str):
            self.system_prompt = self.system_prompt.strip() or None
        self.memory_top_k = max(1, int(self.memory_top_k))
        self.max_user_text_chars = max(1, int(self.max_user_text_chars))
        return self


class AuraConfig:
    """
    Master configuration that composes all section configs.

    This is the single source of truth. Every component receives its config
    from here; nothing reaches for ambient settings.
    """

    def __init__(self):
        self.ollama = OllamaConfig()
        self.store = StoreConfig()
        self.search = SearchConfig()
        self.agent = AgentConfig()

        # Resolve all Path fields to absolute so CWD changes don't break them.
        self._resolve_paths()

        self.store.data_dir.mkdir(parents=True, exist_ok=True)

    def _resolve_paths(self) -> None:
        """Resolve relative paths against the project root (where .env lives)."""
        def _resolve(p: Path) -> Path:
            if p.is_absolute():
                return p
            return (_PROJECT_ROOT / p).resolve()

        self.store.data_dir = _resolve(self.store.data_dir)
        self.store.state_file = _resolve(self.store.state_file)

    def __repr__(self) -> str:
        return (
            f"AuraConfig(model={self.ollama.model}, "
            f"embedding_model={self.ollama.embedding_model}, "
            f"routing={self.agent.routing_mode}, "
            f"search={'on' if self.search.is_available else 'off'})"
        )
