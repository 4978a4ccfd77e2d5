"""Fingerprinted cache for embedding requests."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .base import fingerprint
from .manager import CacheManager

logger = logging.getLogger(__name__)

EMBEDDING_KEY_PREFIX = "embedding"

INPUT_TYPE_SEARCH_DOCUMENT = "search_document"
INPUT_TYPE_SEARCH_QUERY = "search_query"
INPUT_TYPE_CLASSIFICATION = "classification"
INPUT_TYPE_CLUSTERING = "clustering"

INPUT_TYPES = (
    INPUT_TYPE_SEARCH_DOCUMENT,
    INPUT_TYPE_SEARCH_QUERY,
    INPUT_TYPE_CLASSIFICATION,
    INPUT_TYPE_CLUSTERING,
)

EMBEDDING_TTL_SECONDS = 2 * 60 * 60
LARGE_BATCH_TTL_SECONDS = 4 * 60 * 60
LARGE_BATCH_SIZE = 10


class EmbeddingRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    texts: tuple[str, ...]
    model: str
    input_type: str = INPUT_TYPE_SEARCH_DOCUMENT


class EmbeddingUsage(BaseModel):
    total_tokens: int = Field(ge=0)


class EmbeddingResponse(BaseModel):
    embeddings: list[list[float]] = Field(min_length=1)
    model: str
    usage: EmbeddingUsage


def embedding_cache_key(request: EmbeddingRequest) -> str:
    """``embedding:<hash16>:<input_type>:<n>``.

    The hash covers ``{texts, model, input_type}`` as canonical JSON, so
    it does not depend on field order; text order is significant because
    the response lists vectors in input order.
    """
    digest = fingerprint(
        {
            "texts": list(request.texts),
            "model": request.model,
            "input_type": request.input_type,
        }
    )
    return f"{EMBEDDING_KEY_PREFIX}:{digest}:{request.input_type}:{len(request.texts)}"


def embedding_ttl(request: EmbeddingRequest) -> int:
    if len(request.texts) > LARGE_BATCH_SIZE:
        return LARGE_BATCH_TTL_SECONDS
    return EMBEDDING_TTL_SECONDS


class EmbeddingCache:
    """Embedding responses keyed by request fingerprint."""

    def __init__(self, cache: CacheManager) -> None:
        self._cache = cache

    async def get_cached_embedding(
        self, request: EmbeddingRequest
    ) -> EmbeddingResponse | None:
        key = embedding_cache_key(request)
        cached = await self._cache.get(key)
        if cached is None:
            return None
        try:
            response = EmbeddingResponse.model_validate(cached)
        except PydanticValidationError:
            logger.warning("Malformed cached embedding under %s; evicting", key)
            await self._cache.delete(key)
            return None
        if len(response.embeddings) != len(request.texts):
            logger.warning("Cached embedding count mismatch under %s; evicting", key)
            await self._cache.delete(key)
            return None
        return response

    async def cache_embedding(
        self, request: EmbeddingRequest, response: EmbeddingResponse
    ) -> None:
        await self._cache.set(
            embedding_cache_key(request),
            response.model_dump(mode="json"),
            embedding_ttl(request),
        )

    async def invalidate(self, texts: list[str], model: str) -> int:
        """Drop the single-text entries of *texts* for every input type."""
        removed = 0
        for text in texts:
            for input_type in INPUT_TYPES:
                key = embedding_cache_key(
                    EmbeddingRequest(texts=(text,), model=model, input_type=input_type)
                )
                if await self._cache.delete(key):
                    removed += 1
        logger.debug("Invalidated %d embedding cache entries", removed)
        return removed
