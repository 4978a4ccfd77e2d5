"""Call signatures of the upstream collaborators.

The pipeline treats each as a one-shot async call and owns the timeout;
implementations live in ``ragchat.core.search``, ``ragchat.core.embedding``
and ``ragchat.core.llm``.

``filters`` passed to a search function may carry the reserved keys
``limit`` (int) and ``rerank`` (bool); everything else is forwarded to
the search service as-is.
"""

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from .models import GenerationResult, LLMRequest, SearchResult

FILTER_LIMIT = "limit"
FILTER_RERANK = "rerank"


class SearchFunction(Protocol):
    async def __call__(
        self, query: str, filters: Mapping[str, Any]
    ) -> list[SearchResult]: ...


class EmbedFunction(Protocol):
    async def __call__(
        self, texts: Sequence[str], input_type: str
    ) -> list[list[float]]: ...


class GenerateFunction(Protocol):
    async def __call__(self, request: LLMRequest) -> GenerationResult: ...
