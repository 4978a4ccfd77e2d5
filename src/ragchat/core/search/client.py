"""Search collaborator: HTTP client for the hybrid search service."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx
from pydantic import AliasChoices, BaseModel, Field

from ragchat.core.service.collaborators import (
    FILTER_LIMIT,
    FILTER_RERANK,
    EmbedFunction,
    SearchFunction,
)
from ragchat.core.service.models import SearchResult
from ragchat.infra.cache.embedding import INPUT_TYPE_SEARCH_QUERY
from ragchat.infra.cache.search import SearchCache

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


class _SearchHit(BaseModel):
    """One result as returned by the search service (camel or snake case)."""

    id: str
    content: str
    document_id: str = Field(validation_alias=AliasChoices("documentId", "document_id"))
    filename: str
    page_number: int | None = Field(
        default=None, validation_alias=AliasChoices("pageNumber", "page_number")
    )
    relevance_score: float = Field(
        validation_alias=AliasChoices("relevanceScore", "relevance_score", "score")
    )

    def to_result(self) -> SearchResult:
        return SearchResult(
            id=self.id,
            content=self.content,
            document_id=self.document_id,
            filename=self.filename,
            page_number=self.page_number,
            relevance_score=min(1.0, max(0.0, self.relevance_score)),
        )


class _SearchResponse(BaseModel):
    results: list[_SearchHit] = Field(default_factory=list)


class HttpSearchClient:
    """POSTs ``{query, limit, rerank, filters[, embedding]}`` to the search endpoint.

    When an *embed* function is given, the query vector is computed here
    and sent along, so the search service can skip its own embedding step.
    """

    def __init__(
        self,
        endpoint: str,
        http_client: httpx.AsyncClient,
        *,
        embed: EmbedFunction | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._http = http_client
        self._embed = embed

    async def __call__(
        self, query: str, filters: Mapping[str, Any]
    ) -> list[SearchResult]:
        extra = {
            k: v for k, v in filters.items() if k not in (FILTER_LIMIT, FILTER_RERANK)
        }
        payload: dict[str, Any] = {
            "query": query,
            "limit": int(filters.get(FILTER_LIMIT, DEFAULT_LIMIT)),
            "rerank": bool(filters.get(FILTER_RERANK, True)),
            "filters": extra,
        }
        if self._embed is not None:
            vectors = await self._embed([query], INPUT_TYPE_SEARCH_QUERY)
            payload["embedding"] = vectors[0]

        response = await self._http.post(self._endpoint, json=payload)
        response.raise_for_status()
        parsed = _SearchResponse.model_validate(response.json())
        results = [hit.to_result() for hit in parsed.results]
        logger.debug(
            "Search returned %d results for %d-char query", len(results), len(query)
        )
        return results


class CachedSearch:
    """Serves repeated searches from :class:`SearchCache`."""

    def __init__(self, inner: SearchFunction, cache: SearchCache) -> None:
        self._inner = inner
        self._cache = cache

    async def __call__(
        self, query: str, filters: Mapping[str, Any]
    ) -> list[SearchResult]:
        limit = int(filters.get(FILTER_LIMIT, DEFAULT_LIMIT))
        rerank = bool(filters.get(FILTER_RERANK, True))
        extra = {
            k: v for k, v in filters.items() if k not in (FILTER_LIMIT, FILTER_RERANK)
        }

        cached = await self._cache.get(query, extra, limit, rerank)
        if cached is not None:
            return cached

        results = await self._inner(query, filters)
        await self._cache.set(query, extra, limit, rerank, results)
        return results
