"""Search collaborator -- HTTP client and result cache wrapper."""

from .client import CachedSearch, HttpSearchClient

__all__ = [
    "CachedSearch",
    "HttpSearchClient",
]
