"""Cache backend interface and value codec."""

from __future__ import annotations

import hashlib
import json
from abc import ABC, abstractmethod
from typing import Any

from ragchat.errors import ValidationError


def encode_value(value: Any) -> str:
    """Serialize *value* to JSON; anything JSON cannot hold is rejected."""
    try:
        return json.dumps(value, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"Cache value of type {type(value).__name__} is not JSON-serializable"
        ) from exc


def decode_value(raw: str | bytes) -> Any:
    return json.loads(raw)


def fingerprint(payload: Any, length: int = 16) -> str:
    """Truncated sha256 of the canonical (key-sorted) JSON of *payload*."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:length]


# ---------------------------------------------------------------------------
# Abstract backend
# ---------------------------------------------------------------------------


class CacheBackend(ABC):
    """Interface for key/value cache backends.

    Values cross the interface as Python objects; backends store their
    JSON encoding, so a hit returns an equal copy, never the stored object.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` on miss or expiry."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store *value* under *key* for *ttl_seconds* (backend default if ``None``)."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove *key*.  Returns whether it was present."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry owned by this backend."""

    async def aclose(self) -> None:
        """Release any resources held by the backend."""
