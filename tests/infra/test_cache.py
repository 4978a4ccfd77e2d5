"""Tests for the cache backends, the two-level manager and domain caches."""

import math
from unittest.mock import AsyncMock, MagicMock

import pytest
from fakeredis import FakeAsyncRedis
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import make_config
from ragchat.configs.system import CacheConfig
from ragchat.core.service.metrics import MetricsCollector, RagMetrics
from ragchat.core.service.models import SearchResult
from ragchat.errors import ValidationError
from ragchat.infra.cache import (
    CacheManager,
    EmbeddingCache,
    EmbeddingRequest,
    EmbeddingResponse,
    EmbeddingUsage,
    LocalCacheBackend,
    RedisCacheBackend,
    SearchCache,
    create_cache_manager,
    embedding_cache_key,
    fingerprint,
    search_cache_key,
    track_cache_hits,
)
from ragchat.infra.cache.embedding import (
    EMBEDDING_TTL_SECONDS,
    LARGE_BATCH_TTL_SECONDS,
    embedding_ttl,
)

# =========================================================================
# Local backend
# =========================================================================


class TestLocalCacheBackend:
    @pytest.mark.asyncio
    async def test_hit_is_equal_copy(self):
        backend = LocalCacheBackend()
        value = {"a": [1, 2, {"b": "c"}]}

        await backend.set("k", value)
        cached = await backend.get("k")

        assert cached == value
        assert cached is not value

    @pytest.mark.asyncio
    async def test_miss(self):
        backend = LocalCacheBackend()

        assert await backend.get("missing") is None
        assert backend.stats()["misses"] == 1

    @pytest.mark.asyncio
    async def test_ttl_expiry(self):
        backend = LocalCacheBackend()

        await backend.set("k", "v", ttl_seconds=0)

        assert await backend.get("k") is None
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_lru_eviction(self):
        backend = LocalCacheBackend(max_size=2)
        await backend.set("a", 1)
        await backend.set("b", 2)
        await backend.get("a")

        await backend.set("c", 3)

        assert await backend.get("b") is None
        assert await backend.get("a") == 1
        assert await backend.get("c") == 3
        assert backend.stats()["evictions"] == 1

    @pytest.mark.asyncio
    async def test_delete_and_clear(self):
        backend = LocalCacheBackend()
        await backend.set("a", 1)
        await backend.set("b", 2)

        assert await backend.delete("a") is True
        assert await backend.delete("a") is False
        await backend.clear()
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_unserializable_value_rejected(self):
        backend = LocalCacheBackend()

        with pytest.raises(ValidationError):
            await backend.set("k", {"when": object()})
        with pytest.raises(ValidationError):
            await backend.set("k", math.nan)
        assert len(backend) == 0

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            LocalCacheBackend(max_size=0)


# =========================================================================
# Redis backend
# =========================================================================


class TestRedisCacheBackend:
    @pytest.mark.asyncio
    async def test_set_get_with_prefix_and_ttl(self):
        redis = FakeAsyncRedis(decode_responses=True)
        backend = RedisCacheBackend(redis, key_prefix="t:", default_ttl_seconds=60)

        await backend.set("k", {"x": 1})

        assert await backend.get("k") == {"x": 1}
        assert await redis.get("t:k") == '{"x":1}'
        assert 0 < await redis.ttl("t:k") <= 60

    @pytest.mark.asyncio
    async def test_undecodable_entry_evicted(self):
        redis = FakeAsyncRedis(decode_responses=True)
        backend = RedisCacheBackend(redis, key_prefix="t:")
        await redis.set("t:k", "{not json")

        assert await backend.get("k") is None
        assert await redis.exists("t:k") == 0

    @pytest.mark.asyncio
    async def test_clear_only_own_prefix(self):
        redis = FakeAsyncRedis(decode_responses=True)
        backend = RedisCacheBackend(redis, key_prefix="t:")
        await backend.set("a", 1)
        await backend.set("b", 2)
        await redis.set("other:c", "3")

        await backend.clear()

        assert await redis.exists("t:a", "t:b") == 0
        assert await redis.get("other:c") == "3"

    @pytest.mark.asyncio
    async def test_redis_errors_degrade_to_miss(self):
        redis = MagicMock()
        redis.get = AsyncMock(side_effect=RedisConnectionError("down"))
        redis.set = AsyncMock(side_effect=RedisConnectionError("down"))
        backend = RedisCacheBackend(redis)

        await backend.set("k", 1)
        assert await backend.get("k") is None
        assert backend.stats()["errors"] == 2
        assert backend.stats()["misses"] == 1


# =========================================================================
# Manager
# =========================================================================


class TestCacheManager:
    @pytest.mark.asyncio
    async def test_l2_hit_repopulates_l1(self):
        l1 = LocalCacheBackend()
        l2 = LocalCacheBackend()
        manager = CacheManager(l1, l2)
        await l2.set("k", {"v": 1})

        assert await manager.get("k") == {"v": 1}
        assert await l1.get("k") == {"v": 1}

    @pytest.mark.asyncio
    async def test_set_writes_through(self):
        l1 = LocalCacheBackend()
        l2 = LocalCacheBackend()
        manager = CacheManager(l1, l2)

        await manager.set("k", [1, 2])

        assert await l1.get("k") == [1, 2]
        assert await l2.get("k") == [1, 2]

    @pytest.mark.asyncio
    async def test_clear_only_l1(self):
        l1 = LocalCacheBackend()
        l2 = LocalCacheBackend()
        manager = CacheManager(l1, l2)
        await manager.set("k", 1)

        await manager.clear()

        assert len(l1) == 0
        assert await manager.get("k") == 1

    @pytest.mark.asyncio
    async def test_delete_from_both(self):
        l1 = LocalCacheBackend()
        l2 = LocalCacheBackend()
        manager = CacheManager(l1, l2)
        await manager.set("k", 1)

        assert await manager.delete("k") is True
        assert await manager.get("k") is None

    @pytest.mark.asyncio
    async def test_unserializable_value_rejected_before_any_write(self):
        l1 = LocalCacheBackend()
        manager = CacheManager(l1, LocalCacheBackend())

        with pytest.raises(ValidationError):
            await manager.set("k", {1, 2, 3})
        assert len(l1) == 0

    @pytest.mark.asyncio
    async def test_hits_and_misses_recorded(self):
        collector = MetricsCollector()
        manager = CacheManager(LocalCacheBackend(), metrics=RagMetrics(collector), name="x")
        await manager.set("k", 1)

        with track_cache_hits() as hits:
            await manager.get("k")
            await manager.get("k")
            await manager.get("missing")

        assert hits[0] == 2
        counters = collector.get_metrics()["counters"]
        assert counters['cache_hits_total{cache="x"}'] == 2
        assert counters['cache_misses_total{cache="x"}'] == 1

    @pytest.mark.asyncio
    async def test_with_fakeredis_l2(self):
        redis = FakeAsyncRedis(decode_responses=True)
        config = make_config(cache=CacheConfig(use_redis=True, key_prefix="m:"))

        writer = create_cache_manager(config, redis)
        reader = create_cache_manager(config, redis)
        await writer.set("shared", {"n": 1})

        assert writer.has_l2 is True
        assert await reader.get("shared") == {"n": 1}

    def test_l1_only_without_redis(self):
        config = make_config(cache=CacheConfig(use_redis=True))

        assert create_cache_manager(config, None).has_l2 is False


# =========================================================================
# Domain caches
# =========================================================================


def _embedding_response(n: int) -> EmbeddingResponse:
    return EmbeddingResponse(
        embeddings=[[0.1 * i, 0.2] for i in range(n)],
        model="embed-v1",
        usage=EmbeddingUsage(total_tokens=5 * n),
    )


class TestEmbeddingCacheKey:
    def test_independent_of_field_order(self):
        first = EmbeddingRequest(texts=("a", "b"), model="embed-v1", input_type="search_query")
        second = EmbeddingRequest(input_type="search_query", model="embed-v1", texts=("a", "b"))

        assert embedding_cache_key(first) == embedding_cache_key(second)

    def test_format(self):
        key = embedding_cache_key(
            EmbeddingRequest(texts=("a", "b", "c"), model="m", input_type="clustering")
        )

        prefix, digest, input_type, count = key.split(":")
        assert prefix == "embedding"
        assert len(digest) == 16
        assert input_type == "clustering"
        assert count == "3"

    def test_relevant_fields_change_key(self):
        base = EmbeddingRequest(texts=("a", "b"), model="m")

        assert embedding_cache_key(base) != embedding_cache_key(
            EmbeddingRequest(texts=("b", "a"), model="m")
        )
        assert embedding_cache_key(base) != embedding_cache_key(
            EmbeddingRequest(texts=("a", "b"), model="other")
        )

    def test_fingerprint_sorts_keys(self):
        assert fingerprint({"a": 1, "b": 2}) == fingerprint({"b": 2, "a": 1})

    def test_ttl(self):
        assert embedding_ttl(EmbeddingRequest(texts=("a",) * 10, model="m")) == (
            EMBEDDING_TTL_SECONDS
        )
        assert embedding_ttl(EmbeddingRequest(texts=("a",) * 11, model="m")) == (
            LARGE_BATCH_TTL_SECONDS
        )


class TestEmbeddingCache:
    def setup_method(self):
        self.manager = CacheManager(LocalCacheBackend())
        self.cache = EmbeddingCache(self.manager)

    @pytest.mark.asyncio
    async def test_hit_equals_fresh_response(self):
        request = EmbeddingRequest(texts=("x", "y"), model="embed-v1")
        response = _embedding_response(2)

        assert await self.cache.get_cached_embedding(request) is None
        await self.cache.cache_embedding(request, response)

        assert await self.cache.get_cached_embedding(request) == response

    @pytest.mark.asyncio
    async def test_malformed_entry_evicted(self):
        request = EmbeddingRequest(texts=("x",), model="embed-v1")
        await self.manager.set(embedding_cache_key(request), {"embeddings": "nope"})

        assert await self.cache.get_cached_embedding(request) is None
        assert await self.manager.get(embedding_cache_key(request)) is None

    @pytest.mark.asyncio
    async def test_count_mismatch_evicted(self):
        request = EmbeddingRequest(texts=("x", "y"), model="embed-v1")
        await self.manager.set(
            embedding_cache_key(request),
            _embedding_response(1).model_dump(mode="json"),
        )

        assert await self.cache.get_cached_embedding(request) is None

    @pytest.mark.asyncio
    async def test_invalidate(self):
        for input_type in ("search_query", "search_document"):
            request = EmbeddingRequest(texts=("x",), model="embed-v1", input_type=input_type)
            await self.cache.cache_embedding(request, _embedding_response(1))

        assert await self.cache.invalidate(["x", "unknown"], "embed-v1") == 2


class TestSearchCache:
    @pytest.mark.asyncio
    async def test_round_trip(self):
        cache = SearchCache(CacheManager(LocalCacheBackend()))
        results = [
            SearchResult(
                id="c1",
                content="text",
                document_id="d1",
                filename="f.pdf",
                page_number=None,
                relevance_score=0.5,
            )
        ]

        await cache.set("q", {"doc": "d1"}, 5, True, results)

        assert await cache.get("q", {"doc": "d1"}, 5, True) == results
        assert await cache.get("q", {"doc": "d1"}, 5, False) is None

    def test_key_depends_on_every_field(self):
        base = search_cache_key("q", {"a": 1}, 5, True)

        assert base == search_cache_key("q", {"a": 1}, 5, True)
        assert base != search_cache_key("q2", {"a": 1}, 5, True)
        assert base != search_cache_key("q", {"a": 2}, 5, True)
        assert base != search_cache_key("q", {"a": 1}, 6, True)
        assert base.startswith("search:")
