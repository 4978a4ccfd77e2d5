"""Shared cache backend on ``redis.asyncio``.

Redis outages never fail a request: every error is logged and turned
into a miss (reads) or a no-op (writes).
"""

from __future__ import annotations

import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .base import CacheBackend, decode_value, encode_value

logger = logging.getLogger(__name__)

_SCAN_BATCH = 500


class RedisCacheBackend(CacheBackend):
    """JSON values under ``<key_prefix><key>`` with ``SET ... EX ttl``."""

    def __init__(
        self, redis: Redis, key_prefix: str = "rag:cache:", default_ttl_seconds: int = 3600
    ) -> None:
        self._redis = redis
        self._prefix = key_prefix
        self._default_ttl = default_ttl_seconds

        self.hits = 0
        self.misses = 0
        self.errors = 0

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._redis.get(self._key(key))
        except RedisError:
            self.errors += 1
            logger.warning("Redis cache GET failed for %s; treating as miss", key)
            self.misses += 1
            return None
        if raw is None:
            self.misses += 1
            return None
        try:
            value = decode_value(raw)
        except ValueError:
            logger.warning("Undecodable Redis cache entry %s; evicting", key)
            await self.delete(key)
            self.misses += 1
            return None
        self.hits += 1
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        payload = encode_value(value)
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        try:
            await self._redis.set(self._key(key), payload, ex=max(1, int(ttl)))
        except RedisError:
            self.errors += 1
            logger.warning("Redis cache SET failed for %s", key)

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._redis.delete(self._key(key)))
        except RedisError:
            self.errors += 1
            logger.warning("Redis cache DELETE failed for %s", key)
            return False

    async def clear(self) -> None:
        """Delete every key under this backend's prefix."""
        try:
            batch: list[Any] = []
            async for key in self._redis.scan_iter(
                match=f"{self._prefix}*", count=_SCAN_BATCH
            ):
                batch.append(key)
                if len(batch) >= _SCAN_BATCH:
                    await self._redis.delete(*batch)
                    batch.clear()
            if batch:
                await self._redis.delete(*batch)
        except RedisError:
            self.errors += 1
            logger.warning("Redis cache CLEAR failed for prefix %s", self._prefix)

    def stats(self) -> dict[str, Any]:
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "hit_rate": self.hits / total if total else 0.0,
        }

    async def aclose(self) -> None:
        # Redis client lifecycle is managed by infra/redis.py.
        pass
