"""Token-budgeted context assembly from search results and history.

The document block numbering assigned here (``[1]``, ``[2]``, ...) is
the citation-index contract: ``AssembledContext.sources[k - 1]`` is the
passage the model cites as ``[k]``.  Nothing downstream reorders
``sources``.

A leading ``system`` turn in the history is rendered first and charged to
the history budget before any other turn; the recency window never drops
it.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from ragchat.errors import ValidationError
from ragchat.infra.tokens import estimate_tokens, truncate_to_tokens

from .models import ROLE_SYSTEM, AssembledContext, Message, SearchResult

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_SHARE = 0.7
DEFAULT_HISTORY_WINDOW = 6

DOCUMENT_SEPARATOR = "\n\n"
TURN_SEPARATOR = "\n"
PAGE_UNKNOWN = "N/A"


def format_source_block(index: int, result: SearchResult) -> str:
    page = result.page_number if result.page_number is not None else PAGE_UNKNOWN
    return f"[{index}] {result.filename} (Page {page}): {result.content}"


def format_turn(message: Message) -> str:
    return f"{message.role}: {message.content}"


def rank_search_results(
    search_results: Sequence[SearchResult], min_relevance: float = 0.0
) -> list[SearchResult]:
    """Relevance-descending, stable on ties, below-threshold results removed."""
    ranked = sorted(search_results, key=lambda r: r.relevance_score, reverse=True)
    return [r for r in ranked if r.relevance_score >= min_relevance]


def _build_document_context(
    ranked: list[SearchResult], budget: int
) -> tuple[str, list[SearchResult], int, bool]:
    blocks: list[str] = []
    sources: list[SearchResult] = []
    tokens = 0
    for result in ranked:
        block = format_source_block(len(sources) + 1, result)
        candidate_tokens = estimate_tokens(DOCUMENT_SEPARATOR.join([*blocks, block]))
        if candidate_tokens > budget:
            return DOCUMENT_SEPARATOR.join(blocks), sources, tokens, True
        blocks.append(block)
        sources.append(result)
        tokens = candidate_tokens
    return DOCUMENT_SEPARATOR.join(blocks), sources, tokens, False


def _split_system_turn(
    history: Sequence[Message],
) -> tuple[Message | None, list[Message]]:
    if history and history[0].role == ROLE_SYSTEM:
        return history[0], list(history[1:])
    return None, list(history)


def _render_system_turn(system: Message | None, budget: int) -> tuple[list[str], bool]:
    """Leading system line, shortened to *budget*; dropped only with no budget left."""
    if system is None:
        return [], False
    line = format_turn(system)
    if estimate_tokens(line) <= budget:
        return [line], False
    if budget < 1:
        return [], True
    return [truncate_to_tokens(line, budget)], True


def _build_conversation_context(
    history: Sequence[Message],
    budget: int,
    prioritize_recent: bool,
    history_window: int,
) -> tuple[str, int, bool]:
    system, turns = _split_system_turn(history)
    header, truncated = _render_system_turn(system, budget)

    body: list[str] = []
    if prioritize_recent:
        candidates = turns[-history_window:] if history_window else []
        # Fill from the newest turn backwards, render chronologically.
        for message in reversed(candidates):
            candidate = [format_turn(message), *body]
            if estimate_tokens(TURN_SEPARATOR.join([*header, *candidate])) > budget:
                truncated = True
                break
            body = candidate
    else:
        for message in turns:
            candidate = [*body, format_turn(message)]
            if estimate_tokens(TURN_SEPARATOR.join([*header, *candidate])) > budget:
                truncated = True
                break
            body = candidate

    text = TURN_SEPARATOR.join([*header, *body])
    return text, estimate_tokens(text), truncated


def assemble_context(
    search_results: Sequence[SearchResult],
    conversation_history: Sequence[Message],
    max_context_length: int,
    prioritize_recent: bool = True,
    *,
    document_share: float = DEFAULT_DOCUMENT_SHARE,
    min_relevance: float = 0.0,
    history_window: int = DEFAULT_HISTORY_WINDOW,
) -> AssembledContext:
    """Merge ranked passages and history into one bounded context.

    Documents get ``floor(max_context_length * document_share)`` tokens;
    history gets whatever the documents left unused.  ``was_truncated``
    is set only when a candidate was excluded for budget.
    """
    if max_context_length < 1:
        raise ValidationError(
            f"max_context_length must be positive, got {max_context_length}"
        )
    if not 0.0 < document_share <= 1.0:
        raise ValidationError(
            f"document_share must be in (0, 1], got {document_share}"
        )

    ranked = rank_search_results(search_results, min_relevance)
    document_budget = math.floor(max_context_length * document_share)
    document_context, sources, document_tokens, docs_truncated = (
        _build_document_context(ranked, document_budget)
    )

    conversation_budget = max_context_length - document_tokens
    conversation_context, conversation_tokens, history_truncated = (
        _build_conversation_context(
            conversation_history,
            conversation_budget,
            prioritize_recent,
            history_window,
        )
    )

    context = AssembledContext(
        document_context=document_context,
        conversation_context=conversation_context,
        sources=tuple(sources),
        document_tokens=document_tokens,
        conversation_tokens=conversation_tokens,
        total_tokens=document_tokens + conversation_tokens,
        was_truncated=docs_truncated or history_truncated,
    )
    logger.debug(
        "Context assembled: %d/%d sources, %d tokens (truncated=%s)",
        len(sources),
        len(ranked),
        context.total_tokens,
        context.was_truncated,
    )
    return context
