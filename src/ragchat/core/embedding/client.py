"""EmbeddingClient -- cache-fronted OpenAI-compatible embeddings."""

import asyncio
import logging
from typing import Sequence

import openai

from ragchat.configs.system import EmbeddingConfig
from ragchat.errors import COLLABORATOR_EMBEDDING, UpstreamFailure
from ragchat.infra.cache.embedding import (
    INPUT_TYPE_SEARCH_QUERY,
    EmbeddingCache,
    EmbeddingRequest,
    EmbeddingResponse,
    EmbeddingUsage,
)
from ragchat.infra.telemetry import (
    ATTR_EMBEDDING_BATCH_SIZE,
    ATTR_EMBEDDING_CACHE_HIT,
    ATTR_EMBEDDING_MODEL,
    SPAN_EMBEDDING_EMBED,
    tracer,
)

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """OpenAI-compatible embedding client with an optional fingerprint cache.

    ``embed(texts, input_type)``
        Cache lookup by request fingerprint; on miss, one API call for the
        whole batch under ``config.timeout_seconds``, then a cache write.
        Failures and timeouts surface as ``UpstreamFailure``; no retries.
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        cache: EmbeddingCache | None = None,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self._config = config
        self._cache = cache
        self._openai = client or openai.AsyncOpenAI(
            base_url=config.endpoint,
            api_key=config.api_key or "unused",
            max_retries=0,
        )

    @property
    def model_name(self) -> str:
        return self._config.model_name

    async def embed(
        self, texts: Sequence[str], input_type: str = INPUT_TYPE_SEARCH_QUERY
    ) -> list[list[float]]:
        if not texts:
            return []
        request = EmbeddingRequest(
            texts=tuple(texts), model=self._config.model_name, input_type=input_type
        )

        with tracer.start_as_current_span(SPAN_EMBEDDING_EMBED) as span:
            span.set_attribute(ATTR_EMBEDDING_MODEL, request.model)
            span.set_attribute(ATTR_EMBEDDING_BATCH_SIZE, len(request.texts))

            if self._cache is not None:
                cached = await self._cache.get_cached_embedding(request)
                if cached is not None:
                    span.set_attribute(ATTR_EMBEDDING_CACHE_HIT, True)
                    return cached.embeddings
            span.set_attribute(ATTR_EMBEDDING_CACHE_HIT, False)

            response = await self._call(request)
            if self._cache is not None:
                await self._cache.cache_embedding(request, response)
            return response.embeddings

    __call__ = embed

    async def _call(self, request: EmbeddingRequest) -> EmbeddingResponse:
        try:
            raw = await asyncio.wait_for(
                self._openai.embeddings.create(
                    input=list(request.texts), model=request.model
                ),
                timeout=self._config.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamFailure(
                COLLABORATOR_EMBEDDING,
                f"Embedding call timed out after {self._config.timeout_seconds}s",
                timed_out=True,
                cause=exc,
            ) from exc
        except openai.OpenAIError as exc:
            raise UpstreamFailure(
                COLLABORATOR_EMBEDDING, f"Embedding call failed: {exc}", cause=exc
            ) from exc

        data = sorted(raw.data, key=lambda item: item.index)
        total_tokens = raw.usage.total_tokens if raw.usage is not None else 0
        logger.debug(
            "Embedded %d texts with %s (%d tokens)",
            len(data),
            request.model,
            total_tokens,
        )
        return EmbeddingResponse(
            embeddings=[item.embedding for item in data],
            model=raw.model or request.model,
            usage=EmbeddingUsage(total_tokens=total_tokens),
        )

    async def aclose(self) -> None:
        await self._openai.close()
