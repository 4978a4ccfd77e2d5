"""FastAPI dependency factories for the RAG pipeline.

``build_pipeline`` runs in the lifespan: it wires the search, embedding
and generation collaborators (cache-fronted when a cache is configured)
into one ``RagPipeline`` on ``app.state``.  ``get_rag_pipeline`` is the
per-request accessor.
"""

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

import httpx
from fastapi import Depends, FastAPI, Request

from ragchat.configs.config import AppConfig, get_app_config
from ragchat.core.embedding import EmbeddingClient
from ragchat.core.llm import ChatModelGenerator, build_chat_model
from ragchat.core.search import CachedSearch, HttpSearchClient
from ragchat.infra.cache import CacheManager, EmbeddingCache, SearchCache, build_cache
from ragchat.infra.lifespan import get_app

from .collaborators import SearchFunction
from .metrics import RagMetrics, build_metrics
from .pipeline import RagPipeline

logger = logging.getLogger(__name__)


async def build_pipeline(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
    rag_metrics: Annotated[RagMetrics, Depends(build_metrics)],
    cache: Annotated[CacheManager | None, Depends(build_cache)],
) -> AsyncGenerator[RagPipeline, None]:
    """Create the ``RagPipeline`` and its collaborators; close them on shutdown."""
    http_client = httpx.AsyncClient(timeout=config.search.timeout_seconds)
    embedding_client = EmbeddingClient(
        config.embedding,
        cache=EmbeddingCache(cache) if cache is not None else None,
    )

    search: SearchFunction = HttpSearchClient(
        config.third_party.search_endpoint,
        http_client,
        embed=embedding_client,
    )
    if cache is not None:
        search = CachedSearch(
            search, SearchCache(cache, ttl_seconds=config.search.cache_ttl_seconds)
        )

    generator = ChatModelGenerator(build_chat_model(config))
    pipeline = RagPipeline(search, generator, config, metrics=rag_metrics)

    app.state.embedding_client = embedding_client
    app.state.pipeline = pipeline
    logger.info(
        "RAG pipeline ready (model=%s, search=%s, cache=%s)",
        config.llm.model_name,
        config.third_party.search_endpoint,
        "on" if cache is not None else "off",
    )
    yield pipeline

    await embedding_client.aclose()
    await http_client.aclose()


def get_rag_pipeline(request: Request) -> RagPipeline:
    """FastAPI dependency -- reads from ``app.state``."""
    return request.app.state.pipeline
