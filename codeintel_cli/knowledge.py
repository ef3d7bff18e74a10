"""Knowledge-source clients: fuzzy ranked search over indexed code.

Results carry free-form metadata; consumers read it with ``.get`` only.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from .config import KNOWLEDGE_API_KEY, KNOWLEDGE_ENDPOINT
from .errors import EnrichmentError
from .models import SearchResult

logger = logging.getLogger(__name__)


class KnowledgeSource(ABC):
    """Ranked semantic search over an external code index."""

    @abstractmethod
    async def search(self, query: str, limit: int = 10, domain: Optional[str] = None) -> List[SearchResult]:
        """Return results for *query*, best first.

        Raises :class:`EnrichmentError` when the backend cannot be queried.
        """
        ...


class NullKnowledgeSource(KnowledgeSource):
    """Knowledge source used when no endpoint is configured."""

    async def search(self, query: str, limit: int = 10, domain: Optional[str] = None) -> List[SearchResult]:
        return []


class HttpKnowledgeSource(KnowledgeSource):
    """Client for a GraphRAG-style ``/graphrag/api/search`` endpoint.

    The response groups hits into ``memories``, ``documents`` and
    ``entities``; all three are merged into one score-sorted list.
    """

    def __init__(self, endpoint: str, api_key: str = "", timeout: float = 20.0):
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    async def search(self, query: str, limit: int = 10, domain: Optional[str] = None) -> List[SearchResult]:
        return await asyncio.to_thread(self._search, query, limit, domain)

    def _search(self, query: str, limit: int, domain: Optional[str]) -> List[SearchResult]:
        payload: Dict[str, Any] = {"query": query, "limit": limit}
        if domain:
            payload["filters"] = {"domain": domain}

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = requests.post(
                f"{self.endpoint}/graphrag/api/search",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise EnrichmentError(f"Knowledge search failed: {exc}") from exc

        if not isinstance(data, dict):
            raise EnrichmentError("Knowledge search returned an unexpected payload")

        results = [
            *self._collect(data.get("memories"), "memory"),
            *self._collect(data.get("documents"), "document"),
            *self._collect(data.get("entities"), "entity"),
        ]
        results.sort(key=lambda r: r.score, reverse=True)
        logger.debug("Knowledge search %r returned %d results", query, len(results))
        return results

    @staticmethod
    def _collect(items: Any, kind: str) -> List[SearchResult]:
        if not isinstance(items, list):
            return []
        collected: List[SearchResult] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                score = float(item.get("relevance") or item.get("score") or 0)
            except (TypeError, ValueError):
                logger.warning("Skipping %s %r with malformed score", kind, item.get("id"))
                continue
            metadata: Dict[str, Optional[Any]] = {"type": kind}
            if kind == "memory":
                metadata["tags"] = item.get("tags") or []
            else:
                if kind == "entity":
                    metadata["entity_type"] = item.get("entity_type")
                extra = item.get("metadata")
                if isinstance(extra, dict):
                    metadata.update(extra)
            collected.append(SearchResult(
                id=str(item.get("id", "")),
                content=item.get("content") or item.get("text") or item.get("name") or "",
                score=score,
                metadata=metadata,
            ))
        return collected


def default_knowledge_source() -> KnowledgeSource:
    """HTTP client when an endpoint is configured, otherwise the null source."""
    if KNOWLEDGE_ENDPOINT:
        return HttpKnowledgeSource(KNOWLEDGE_ENDPOINT, KNOWLEDGE_API_KEY)
    return NullKnowledgeSource()
