"""Short-lived cache for search results."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ragchat.core.service.models import SearchResult

from .base import fingerprint
from .manager import CacheManager

logger = logging.getLogger(__name__)

SEARCH_KEY_PREFIX = "search"
SEARCH_TTL_SECONDS = 5 * 60

_RESULTS = TypeAdapter(list[SearchResult])


def search_cache_key(
    query: str,
    filters: Mapping[str, Any] | None,
    limit: int,
    rerank: bool,
) -> str:
    digest = fingerprint(
        {
            "query": query,
            "filters": dict(filters or {}),
            "limit": limit,
            "rerank": rerank,
        }
    )
    return f"{SEARCH_KEY_PREFIX}:{digest}"


class SearchCache:
    def __init__(self, cache: CacheManager, ttl_seconds: int = SEARCH_TTL_SECONDS) -> None:
        self._cache = cache
        self._ttl = ttl_seconds

    async def get(
        self,
        query: str,
        filters: Mapping[str, Any] | None,
        limit: int,
        rerank: bool,
    ) -> list[SearchResult] | None:
        key = search_cache_key(query, filters, limit, rerank)
        cached = await self._cache.get(key)
        if cached is None:
            return None
        try:
            return _RESULTS.validate_python(cached)
        except PydanticValidationError:
            logger.warning("Malformed cached search results under %s; evicting", key)
            await self._cache.delete(key)
            return None

    async def set(
        self,
        query: str,
        filters: Mapping[str, Any] | None,
        limit: int,
        rerank: bool,
        results: list[SearchResult],
    ) -> None:
        await self._cache.set(
            search_cache_key(query, filters, limit, rerank),
            _RESULTS.dump_python(results, mode="json"),
            self._ttl,
        )
