"""Citation-marker resolution and validation for model output."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from ragchat.errors import DegradedResult

from .models import Citation, SearchResult

logger = logging.getLogger(__name__)

COMPONENT_NAME = "response_parser"

CITATION_MARKER = re.compile(r"\[(\d+)\]")
_ANY_BRACKET = re.compile(r"\[[^\]]+\]")
_WHITESPACE = re.compile(r"\s+")

# Characters either side of a claim phrase searched for a marker.
CLAIM_CITATION_WINDOW = 100
UNCITED_PARAGRAPH_RATIO = 0.6

CLAIM_INDICATORS = (
    "according to",
    "research shows",
    "studies indicate",
    "data suggests",
    "evidence shows",
    "findings reveal",
    "analysis demonstrates",
    "experts say",
)


@dataclass(frozen=True, slots=True)
class ParsedResponse:
    content: str
    citations: list[Citation]
    dropped_markers: list[int] = field(default_factory=list)

    @property
    def degraded(self) -> DegradedResult | None:
        if not self.dropped_markers:
            return None
        return DegradedResult(
            component=COMPONENT_NAME,
            reason="dropped_citation_markers",
            detail=",".join(str(m) for m in self.dropped_markers),
        )


@dataclass(slots=True)
class CitationValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


def parse_llm_response(
    raw_text: str, sources: Sequence[SearchResult]
) -> ParsedResponse:
    """Resolve every ``[k]`` marker in *raw_text* against *sources*.

    Marker ``k`` binds to ``sources[k - 1]``.  One citation is produced per
    occurrence, in order of appearance.  Out-of-range markers are dropped
    and reported in ``dropped_markers``; the content is returned as-is.
    """
    citations: list[Citation] = []
    dropped: list[int] = []
    for match in CITATION_MARKER.finditer(raw_text):
        index = int(match.group(1))
        if 1 <= index <= len(sources):
            citations.append(Citation.from_source(index, sources[index - 1]))
        else:
            dropped.append(index)

    if dropped:
        logger.debug(
            "Dropped %d citation markers with no matching source (have %d): %s",
            len(dropped),
            len(sources),
            dropped,
        )
    return ParsedResponse(content=raw_text, citations=citations, dropped_markers=dropped)


def strip_citation_markers(text: str) -> str:
    """Remove bracketed markers and collapse whitespace."""
    cleaned = _ANY_BRACKET.sub("", text)
    return _WHITESPACE.sub(" ", cleaned).strip()


def _has_nearby_citation(text: str, phrase_start: int, phrase_len: int) -> bool:
    start = max(0, phrase_start - CLAIM_CITATION_WINDOW)
    end = min(len(text), phrase_start + phrase_len + CLAIM_CITATION_WINDOW)
    return _ANY_BRACKET.search(text[start:end]) is not None


def validate_citations(raw_text: str, source_count: int) -> CitationValidation:
    """Check marker numbering and citation coverage of an answer."""
    result = CitationValidation(valid=True)

    for match in CITATION_MARKER.finditer(raw_text):
        index = int(match.group(1))
        if index == 0:
            result.errors.append(
                f"Citation [{index}] uses invalid numbering (must be positive)"
            )
        elif index > source_count:
            result.errors.append(
                f"Citation [{index}] refers to non-existent source "
                f"(only {source_count} sources available)"
            )

    lower = raw_text.lower()
    for indicator in CLAIM_INDICATORS:
        position = lower.find(indicator)
        if position == -1:
            continue
        if not _has_nearby_citation(raw_text, position, len(indicator)):
            result.warnings.append(
                f'Claim with "{indicator}" may need a citation for verification'
            )

    paragraphs = [p for p in raw_text.split("\n\n") if p.strip()]
    uncited = sum(1 for p in paragraphs if _ANY_BRACKET.search(p) is None)
    if len(paragraphs) > 1 and uncited > len(paragraphs) * UNCITED_PARAGRAPH_RATIO:
        result.suggestions.append(
            "Consider adding more citations to support your claims"
        )

    result.valid = not result.errors
    return result


def format_citations_for_display(citations: Sequence[Citation]) -> list[str]:
    """One line per distinct citation index, ascending."""
    by_index: dict[int, Citation] = {}
    for citation in citations:
        by_index.setdefault(citation.citation_index, citation)

    lines = []
    for index in sorted(by_index):
        citation = by_index[index]
        line = f"[{index}] {citation.filename}"
        if citation.page_number is not None:
            line += f" (p. {citation.page_number})"
        lines.append(line)
    return lines
