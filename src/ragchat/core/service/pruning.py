"""Conversation-history pruning under simultaneous count and budget limits.

The count cap (``max_messages``), the character budget
(``max_context_chars``) and the token budget (``max_context_tokens``) all
hold at once.  ``budget_unit`` names the budget an injected estimator
replaces; the other keeps its built-in estimator.

Two explicit paths:

* **Primary** (:func:`prune_conversation_history`) -- system-message
  retention, count cap, oversize-message shortening, then budget trimming
  down to a recency floor.
* **Fallback** (:func:`fallback_prune`) -- count-only "keep the last N"
  with the same system-message rule.

:class:`HistoryPruner` runs the primary path and switches to the fallback
only when the primary path raises.  The switch is reported as a
``DegradedResult`` and never propagates the error.

The two paths deliberately use different selection policies (budget +
recency vs. count only).  Whether that divergence is intended product
behaviour is an open question; both are kept as they are.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ragchat.configs.system import PruningConfig
from ragchat.errors import DegradedResult, ValidationError
from ragchat.infra.tokens import estimate_chars, estimate_tokens, truncate_message

from .models import ROLE_SYSTEM, Message

logger = logging.getLogger(__name__)

COMPONENT_NAME = "history_pruner"

BUDGET_UNIT_TOKENS = "tokens"
BUDGET_UNIT_CHARS = "chars"

# Single messages longer than this are shortened before budgeting.
MAX_MESSAGE_CHARS = 4000

CostFunction = Callable[[str], int]


class PruningOptions(BaseModel):
    """Every recognised pruning option with its default."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_messages: int = Field(default=20, ge=1)
    max_context_chars: int = Field(default=6000, ge=1)
    max_context_tokens: int = Field(default=2000, ge=1)
    budget_unit: Literal["tokens", "chars"] = BUDGET_UNIT_TOKENS
    preserve_system_message: bool = True
    min_recent_messages: int = Field(default=3, ge=0)
    prioritize_recent: bool = True

    @classmethod
    def from_overrides(cls, **overrides: object) -> PruningOptions:
        """Build options, failing fast with :class:`ValidationError`."""
        try:
            return cls(**overrides)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid pruning options: {exc}") from exc

    @classmethod
    def from_config(cls, config: PruningConfig, **overrides: object) -> PruningOptions:
        return cls.from_overrides(**{**config.model_dump(), **overrides})

    def budgets(
        self, cost_fn: CostFunction | None = None
    ) -> list[tuple[CostFunction, int]]:
        """Every (estimator, limit) pair; *cost_fn* replaces the ``budget_unit`` one."""
        char_fn: CostFunction = estimate_chars
        token_fn: CostFunction = estimate_tokens
        if cost_fn is not None:
            if self.budget_unit == BUDGET_UNIT_CHARS:
                char_fn = cost_fn
            else:
                token_fn = cost_fn
        return [(char_fn, self.max_context_chars), (token_fn, self.max_context_tokens)]


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _split_system_message(
    messages: Sequence[Message], options: PruningOptions
) -> tuple[Message | None, list[Message]]:
    if options.preserve_system_message and messages and messages[0].role == ROLE_SYSTEM:
        return messages[0], list(messages[1:])
    return None, list(messages)


def _reattach(system: Message | None, kept: list[Message]) -> list[Message]:
    return [system, *kept] if system is not None else kept


def estimate_history_cost(
    messages: Sequence[Message], cost_fn: CostFunction = estimate_tokens
) -> int:
    return sum(cost_fn(message.content) for message in messages)


def exceeds_limits(
    messages: Sequence[Message],
    options: PruningOptions,
    *,
    cost_fn: CostFunction | None = None,
) -> bool:
    """Whether *messages* break the count cap or either budget as-is.

    A preserved system message counts toward neither, as in pruning.
    """
    _, rest = _split_system_message(messages, options)
    if len(rest) > options.max_messages:
        return True
    if any(len(m.content) > MAX_MESSAGE_CHARS for m in rest):
        return True
    return any(
        estimate_history_cost(rest, fn) > limit for fn, limit in options.budgets(cost_fn)
    )


def _shorten(message: Message) -> Message:
    if len(message.content) <= MAX_MESSAGE_CHARS:
        return message
    return message.model_copy(
        update={"content": truncate_message(message.content, MAX_MESSAGE_CHARS)}
    )


# ---------------------------------------------------------------------------
# Primary path
# ---------------------------------------------------------------------------


def prune_conversation_history(
    messages: Sequence[Message],
    options: PruningOptions | None = None,
    *,
    cost_fn: CostFunction | None = None,
) -> list[Message]:
    """Reduce *messages* to fit *options*.  Never mutates the input.

    The result never holds fewer than ``min_recent_messages`` non-system
    messages unless the input itself had fewer, and pruning an
    already-pruned list with the same options returns it unchanged.
    """
    options = options or PruningOptions()
    budgets = options.budgets(cost_fn)

    system, kept = _split_system_message(messages, options)

    cap = max(options.max_messages, options.min_recent_messages)
    if len(kept) > cap:
        kept = kept[-cap:] if options.prioritize_recent else kept[:cap]
    kept = [_shorten(message) for message in kept]

    costs = [[fn(message.content) for fn, _ in budgets] for message in kept]
    limits = [limit for _, limit in budgets]
    totals = [sum(column) for column in zip(*costs)] or [0] * len(budgets)
    while len(kept) > options.min_recent_messages and any(
        total > limit for total, limit in zip(totals, limits)
    ):
        kept.pop(0)
        dropped = costs.pop(0)
        totals = [total - cost for total, cost in zip(totals, dropped)]

    return _reattach(system, kept)


# ---------------------------------------------------------------------------
# Fallback path
# ---------------------------------------------------------------------------


def fallback_prune(
    messages: Sequence[Message], options: PruningOptions | None = None
) -> list[Message]:
    """Count-only pruning: keep the system message and the last N messages."""
    options = options or PruningOptions()
    system, kept = _split_system_message(messages, options)
    if len(kept) > options.max_messages:
        kept = kept[-options.max_messages :]
    return _reattach(system, kept)


# ---------------------------------------------------------------------------
# Two-path machine
# ---------------------------------------------------------------------------


class PruningPath(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class PruneResult:
    messages: list[Message]
    path: PruningPath
    reason: str | None = None

    @property
    def degraded(self) -> DegradedResult | None:
        if self.path is PruningPath.PRIMARY:
            return None
        return DegradedResult(
            component=COMPONENT_NAME,
            reason=PruningPath.FALLBACK.value,
            detail=self.reason or "",
        )


class HistoryPruner:
    """Runs the primary pruning path, switching to the fallback on error.

    *cost_fn* overrides the estimator selected by ``budget_unit``.
    """

    def __init__(self, cost_fn: CostFunction | None = None) -> None:
        self._cost_fn = cost_fn

    def prune(
        self,
        messages: Sequence[Message],
        options: PruningOptions | None = None,
    ) -> PruneResult:
        options = options or PruningOptions()
        if not messages:
            return PruneResult(messages=[], path=PruningPath.PRIMARY)

        try:
            if not exceeds_limits(messages, options, cost_fn=self._cost_fn):
                return PruneResult(messages=list(messages), path=PruningPath.PRIMARY)
            pruned = prune_conversation_history(
                messages, options, cost_fn=self._cost_fn
            )
        except Exception as exc:
            reason = f"primary_error: {type(exc).__name__}"
            logger.warning(
                "Primary history pruning failed (%s); using count-only fallback "
                "for %d messages",
                reason,
                len(messages),
                exc_info=True,
            )
            return PruneResult(
                messages=fallback_prune(messages, options),
                path=PruningPath.FALLBACK,
                reason=reason,
            )

        logger.debug(
            "Conversation pruned: %d -> %d messages", len(messages), len(pruned)
        )
        return PruneResult(messages=pruned, path=PruningPath.PRIMARY)


def create_context_summary(
    original_count: int,
    pruned_count: int,
    total_chars: int,
    total_tokens: int,
) -> str:
    """One-line human summary of what pruning kept."""
    if original_count == pruned_count:
        return (
            f"Full conversation history included "
            f"({pruned_count} messages, ~{total_tokens} tokens)"
        )
    omitted = original_count - pruned_count
    return (
        f"Conversation summary: {pruned_count} of {original_count} messages "
        f"included ({omitted} messages omitted for context length). "
        f"Total: ~{total_tokens} tokens, {total_chars} characters."
    )
