"""Shared ``redis.asyncio`` client for the L2 cache.

``build_redis`` yields a verified client, or ``None`` when Redis is
disabled or unreachable, in which case the cache runs L1-only.
"""

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ragchat.configs.config import AppConfig, get_app_config

logger = logging.getLogger(__name__)


async def build_redis(
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[Redis | None, None]:
    """Create a Redis client; yield ``None`` if not wanted or unreachable."""
    if not (config.cache.enabled and config.cache.use_redis):
        yield None
        return

    client = Redis.from_url(config.third_party.redis_uri, decode_responses=True)
    verified: Redis | None = None
    try:
        await client.ping()
        verified = client
    except (RedisError, OSError):
        logger.warning(
            "Redis unavailable at %s -- caching in-process only.",
            config.third_party.redis_uri,
        )
        await client.aclose()

    yield verified

    if verified is not None:
        await verified.aclose()
