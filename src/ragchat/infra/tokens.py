"""Lightweight token estimation and truncation.

Uses a fixed chars-per-token ratio.  The estimate is shared by every
budgeted component (history pruning, context assembly, request
metadata) so that all of them agree on what "one token" costs.
"""

import math
import re

CHARS_PER_TOKEN = 4
"""GPT-style approximation (~4 chars per token for English)."""

ELLIPSIS = "..."

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_WHITESPACE = re.compile(r"\s+")

# Room left for the trailing ellipsis when truncating at a boundary.
_BOUNDARY_SLACK = 10


def estimate_tokens(text: str) -> int:
    """Return an estimated token count for *text* (0 for empty text)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_chars(text: str) -> int:
    """Return the character cost of *text*."""
    return len(text)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Truncate *text* so its estimated token count fits *max_tokens*."""
    max_chars = max_tokens * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text
    return text[: max(0, max_chars - len(ELLIPSIS))] + ELLIPSIS


def truncate_message(content: str, max_chars: int) -> str:
    """Shorten *content* to at most *max_chars* while preserving meaning.

    Tries sentence boundaries first, then word boundaries, then a hard
    cut.  An ellipsis is appended whenever the text was shortened.
    """
    if len(content) <= max_chars:
        return content

    limit = max_chars - _BOUNDARY_SLACK
    truncated = ""
    for sentence in _SENTENCE_SPLIT.split(content):
        candidate = truncated + sentence + "."
        if len(candidate) > limit:
            break
        truncated = candidate

    if not truncated:
        for word in _WHITESPACE.split(content):
            candidate = f"{truncated} {word}" if truncated else word
            if len(candidate) > limit:
                break
            truncated = candidate

    if not truncated:
        truncated = content[: max(0, max_chars - len(ELLIPSIS))]

    return truncated.strip() + ELLIPSIS
