"""Two-level cache: in-process L1 in front of an optional shared L2."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Request
from redis.asyncio import Redis

from ragchat.configs.config import AppConfig, get_app_config
from ragchat.core.service.metrics import RagMetrics, build_metrics
from ragchat.infra.lifespan import get_app
from ragchat.infra.redis import build_redis

from .base import CacheBackend, encode_value
from .local_backend import LocalCacheBackend
from .redis_backend import RedisCacheBackend

logger = logging.getLogger(__name__)

# Per-request hit tally.  A mutable cell so that hits recorded inside child
# tasks (which run on a copy of the context) are still seen by the caller.
_request_hits: ContextVar[list[int] | None] = ContextVar(
    "ragchat_cache_request_hits", default=None
)


@contextmanager
def track_cache_hits() -> Iterator[list[int]]:
    """Count cache hits recorded while the block runs; read ``cell[0]``."""
    cell = [0]
    token = _request_hits.set(cell)
    try:
        yield cell
    finally:
        _request_hits.reset(token)


class CacheManager:
    """L1 hit -> return; L1 miss -> L2; an L2 hit repopulates L1.

    ``set`` writes through both levels.  ``clear`` only empties L1: the
    shared level belongs to every process using it.
    """

    def __init__(
        self,
        l1: LocalCacheBackend,
        l2: CacheBackend | None = None,
        *,
        l1_ttl_seconds: int = 300,
        l2_ttl_seconds: int = 3600,
        metrics: RagMetrics | None = None,
        name: str = "default",
    ) -> None:
        self._l1 = l1
        self._l2 = l2
        self._l1_ttl = l1_ttl_seconds
        self._l2_ttl = l2_ttl_seconds
        self._metrics = metrics
        self.name = name

    @property
    def has_l2(self) -> bool:
        return self._l2 is not None

    def _record(self, hit: bool) -> None:
        cell = _request_hits.get()
        if hit and cell is not None:
            cell[0] += 1
        if self._metrics is not None:
            self._metrics.cache_lookup(self.name, hit)

    async def get(self, key: str) -> Any | None:
        value = await self._l1.get(key)
        if value is not None:
            self._record(True)
            return value

        if self._l2 is not None:
            value = await self._l2.get(key)
            if value is not None:
                await self._l1.set(key, value, self._l1_ttl)
                self._record(True)
                return value

        self._record(False)
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store *value* in both levels.  Raises ``ValidationError`` if unserializable."""
        encode_value(value)
        l1_ttl = self._l1_ttl if ttl_seconds is None else min(ttl_seconds, self._l1_ttl)
        await self._l1.set(key, value, l1_ttl)
        if self._l2 is not None:
            await self._l2.set(key, value, ttl_seconds or self._l2_ttl)

    async def delete(self, key: str) -> bool:
        removed = await self._l1.delete(key)
        if self._l2 is not None:
            removed = await self._l2.delete(key) or removed
        return removed

    async def clear(self) -> None:
        await self._l1.clear()
        logger.info("Cache %s: L1 cleared", self.name)

    def stats(self) -> dict[str, Any]:
        l2_stats = None
        if isinstance(self._l2, (LocalCacheBackend, RedisCacheBackend)):
            l2_stats = self._l2.stats()
        return {"name": self.name, "l1": self._l1.stats(), "l2": l2_stats}

    async def aclose(self) -> None:
        await self._l1.aclose()
        if self._l2 is not None:
            await self._l2.aclose()


def create_cache_manager(
    config: AppConfig,
    redis_client: Redis | None,
    metrics: RagMetrics | None = None,
    name: str = "default",
) -> CacheManager:
    cc = config.cache
    l1 = LocalCacheBackend(max_size=cc.l1_max_size, default_ttl_seconds=cc.l1_ttl_seconds)
    l2: CacheBackend | None = None
    if cc.use_redis and redis_client is not None:
        l2 = RedisCacheBackend(
            redis=redis_client,
            key_prefix=cc.key_prefix,
            default_ttl_seconds=cc.l2_ttl_seconds,
        )
        logger.info("Cache %s: L1 + Redis L2 (prefix=%s)", name, cc.key_prefix)
    else:
        logger.info("Cache %s: L1 only (max_size=%d)", name, cc.l1_max_size)

    return CacheManager(
        l1,
        l2,
        l1_ttl_seconds=cc.l1_ttl_seconds,
        l2_ttl_seconds=cc.l2_ttl_seconds,
        metrics=metrics,
        name=name,
    )


# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_cache(
    app: Annotated[FastAPI, Depends(get_app)],
    redis_client: Annotated[Redis | None, Depends(build_redis)],
    rag_metrics: Annotated[RagMetrics, Depends(build_metrics)],
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[CacheManager | None, None]:
    """Create the ``CacheManager`` on ``app.state``; ``None`` when disabled."""
    if not config.cache.enabled:
        logger.info("Cache disabled")
        app.state.cache = None
        yield None
        return

    manager = create_cache_manager(config, redis_client, rag_metrics)
    app.state.cache = manager
    yield manager
    await manager.aclose()


def get_cache(request: Request) -> CacheManager | None:
    """Return the ``CacheManager`` stored on ``app.state`` by the lifespan."""
    return request.app.state.cache
