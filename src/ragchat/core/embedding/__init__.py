"""Embedding collaborator -- OpenAI-compatible client with fingerprint cache."""

from .client import EmbeddingClient

__all__ = [
    "EmbeddingClient",
]
