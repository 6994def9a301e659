"""Endpoint clients — the language model (Ollama) and web search (Tavily)."""
from aura.api.ollama import EndpointError, OllamaEngine, SchemaFailure, TransportFailure
from aura.api.search import SearchClient

__all__ = [
    "OllamaEngine",
    "SearchClient",
    "EndpointError",
    "TransportFailure",
    "SchemaFailure",
]
