"""
Search Client — the outbound web search collaborator.

Aura treats search as opaque context: a query goes out, a short answer comes
back, and that answer is folded into a generation prompt (a checklist prompt,
or the follow-up reply). The collaborator is Tavily's search API, asked for its
concise ``answer`` rather than raw result lists.

Search is optional. Without an API key the client reports itself unavailable
and every lookup returns None.
"""

from __future__ import annotations

from typing import Optional

import httpx
import structlog

from aura.api.ollama import TransportFailure
from aura.config import SearchConfig

logger = structlog.get_logger(__name__)

NO_ANSWER = "No specific answer found, but search results are available."


class SearchClient:
    """Query -> answer text, via Tavily."""

    def __init__(
        self,
        config: SearchConfig,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = config.api_key
        self._url = config.url
        self._max_results = config.max_results
        self._search_depth = config.search_depth
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=30.0)

    @property
    def is_available(self) -> bool:
        return bool(self._api_key)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def search(self, query: str) -> str:
        """
        Return Tavily's concise answer for ``query``.

        Raises TransportFailure when the collaborator cannot be reached or
        answers with an error, and ValueError for an empty query.
        """
        query = (query or "").strip()
        if not query:
            raise ValueError("Search query is required")
        if not self._api_key:
            raise TransportFailure("Search is not configured (TAVILY_API_KEY is unset)")

        logger.info("search_client.searching", query=query)
        try:
            response = await self._client.post(
                self._url,
                json={
                    "api_key": self._api_key,
                    "query": query,
                    "search_depth": self._search_depth,
                    "include_answer": True,
                    "max_results": self._max_results,
                },
            )
        except httpx.HTTPError as e:
            logger.error("search_client.connection_error", error=str(e))
            raise TransportFailure(f"Search request failed: {e}") from e

        if response.status_code >= 400:
            logger.error("search_client.api_error", status=response.status_code)
            raise TransportFailure(f"Search answered with HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise TransportFailure("Search returned a non-JSON body") from e

        answer = data.get("answer") if isinstance(data, dict) else None
        if isinstance(answer, str) and answer.strip():
            return answer.strip()
        return NO_ANSWER

    async def try_search(self, query: str) -> Optional[str]:
        """Best-effort lookup: None when search is unavailable or fails."""
        if not self.is_available or not (query or "").strip():
            return None
        try:
            return await self.search(query)
        except TransportFailure as e:
            logger.warning("search_client.lookup_failed", query=query, error=str(e))
            return None
