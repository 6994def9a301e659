"""
Ollama Client — Aura's generation and embedding endpoint.

Every reply, every routing decision, every tool payload and every memory
embedding passes through this module. It speaks the Ollama HTTP API:

- ``POST /api/generate``   prompt -> text (optionally constrained to JSON)
- ``POST /api/embeddings`` text -> vector

Calls are awaited once and never retried. Failures surface as typed errors so
each caller can degrade the way it needs to (plain chat, no tool, no memory).
"""

from __future__ import annotations

import json
import math
import time
from typing import Any, Optional

import httpx
import structlog

from aura.config import OllamaConfig

logger = structlog.get_logger(__name__)


class EndpointError(RuntimeError):
    """Base class for failures talking to the model endpoints."""


class TransportFailure(EndpointError):
    """The endpoint was unreachable, answered with an error status, or sent a broken envelope."""


class SchemaFailure(EndpointError):
    """A structured response did not parse as the expected JSON shape."""


class OllamaEngine:
    """
    Thin async wrapper around a local Ollama server.

    The engine holds no conversation state. It receives a prompt and returns
    text, JSON, or a vector. State lives in the store and the agent above.
    """

    def __init__(
        self,
        config: OllamaConfig,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = config.base_url
        self._model = config.model
        self._embedding_model = config.embedding_model
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

        # Telemetry
        self._total_calls = 0
        self._total_failures = 0
        self._last_call_time: Optional[float] = None

        logger.info(
            "ollama_engine.initialized",
            base_url=self._base_url,
            model=self._model,
            embedding_model=self._embedding_model,
        )

    @property
    def model(self) -> str:
        return self._model

    @property
    def embedding_model(self) -> str:
        return self._embedding_model

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    async def generate(
        self,
        prompt: str,
        *,
        structured: bool = False,
        model: Optional[str] = None,
    ) -> str:
        """
        Generate text for a prompt.

        When ``structured`` is set, Ollama is asked to constrain its output to
        JSON. The raw text is still returned; use ``generate_json`` to parse it.
        """
        payload: dict[str, Any] = {
            "model": model or self._model,
            "prompt": prompt,
            "stream": False,
        }
        if structured:
            payload["format"] = "json"

        data = await self._post("/api/generate", payload)
        text = data.get("response")
        if not isinstance(text, str):
            self._total_failures += 1
            raise TransportFailure("Generation response is missing the 'response' field")
        return text.strip()

    async def generate_json(self, prompt: str, *, model: Optional[str] = None) -> Any:
        """Generate a structured response and parse it as JSON."""
        text = await self.generate(prompt, structured=True, model=model)
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("ollama_engine.invalid_json", error=str(e), length=len(text))
            raise SchemaFailure(f"Structured response is not valid JSON: {e}") from e

    # -------------------------------------------------------------------------
    # Embeddings
    # -------------------------------------------------------------------------

    async def embed(self, text: str, *, model: Optional[str] = None) -> list[float]:
        """Return the embedding vector for ``text``."""
        data = await self._post(
            "/api/embeddings",
            {"model": model or self._embedding_model, "prompt": text},
        )
        vector = data.get("embedding")
        if not isinstance(vector, list) or not vector:
            raise SchemaFailure("Embedding response has no vector")
        try:
            values = [float(v) for v in vector]
        except (TypeError, ValueError) as e:
            raise SchemaFailure(f"Embedding vector is not numeric: {e}") from e
        if not all(math.isfinite(v) for v in values):
            raise SchemaFailure("Embedding vector contains non-finite values")
        return values

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        start_time = time.monotonic()
        self._total_calls += 1
        try:
            response = await self._client.post(url, json=payload)
        except httpx.HTTPError as e:
            self._total_failures += 1
            logger.error("ollama_engine.connection_error", url=url, error=str(e))
            raise TransportFailure(f"Could not reach {url}: {e}") from e
        finally:
            self._last_call_time = time.monotonic() - start_time

        if response.status_code >= 400:
            self._total_failures += 1
            logger.error(
                "ollama_engine.api_error",
                url=url,
                status=response.status_code,
                body=response.text[:200],
            )
            raise TransportFailure(f"{url} answered with HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            self._total_failures += 1
            raise TransportFailure(f"{url} returned a non-JSON body") from e
        if not isinstance(data, dict):
            self._total_failures += 1
            raise TransportFailure(f"{url} returned an unexpected body")
        return data

    @property
    def stats(self) -> dict[str, Any]:
        """Return call telemetry."""
        return {
            "model": self._model,
            "embedding_model": self._embedding_model,
            "total_calls": self._total_calls,
            "total_failures": self._total_failures,
            "last_call_seconds": self._last_call_time,
        }
