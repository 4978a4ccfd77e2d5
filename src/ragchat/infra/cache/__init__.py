from .base import CacheBackend, fingerprint
from .embedding import (
    EmbeddingCache,
    EmbeddingRequest,
    EmbeddingResponse,
    EmbeddingUsage,
    embedding_cache_key,
)
from .local_backend import LocalCacheBackend
from .manager import (
    CacheManager,
    build_cache,
    create_cache_manager,
    get_cache,
    track_cache_hits,
)
from .redis_backend import RedisCacheBackend
from .search import SearchCache, search_cache_key

__all__ = [
    "CacheBackend",
    "CacheManager",
    "EmbeddingCache",
    "EmbeddingRequest",
    "EmbeddingResponse",
    "EmbeddingUsage",
    "LocalCacheBackend",
    "RedisCacheBackend",
    "SearchCache",
    "build_cache",
    "create_cache_manager",
    "embedding_cache_key",
    "fingerprint",
    "get_cache",
    "search_cache_key",
    "track_cache_hits",
]
