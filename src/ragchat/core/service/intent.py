"""Query-intent classification by keyword and pattern heuristics.

Pure functions, no I/O.  Ambiguous input degrades to a low-confidence
``general_query`` rather than failing.
"""

from __future__ import annotations

import re

from .models import IntentType, QueryIntent

MAX_KEY_TERMS = 8
MIN_TERM_LENGTH = 3

CONFIDENCE_GREETING = 0.95
CONFIDENCE_CLARIFICATION = 0.9
CONFIDENCE_FOLLOW_UP = 0.85
CONFIDENCE_DOCUMENT = 0.8
CONFIDENCE_GENERAL = 0.7
CONFIDENCE_AMBIGUOUS = 0.5

# A greeting is short: longer messages that open with "hi" are questions.
_GREETING_MAX_WORDS = 6

GREETING_PHRASES = (
    "hello",
    "hi",
    "hey",
    "greetings",
    "good morning",
    "good afternoon",
    "good evening",
    "how are you",
    "how's it going",
    "what's up",
    "thanks",
    "thank you",
)

DOCUMENT_KEYWORDS = (
    "document",
    "paper",
    "report",
    "file",
    "uploaded",
    "says",
    "according to",
    "in the document",
    "research shows",
    "study indicates",
    "based on",
    "what does",
    "summarize",
    "summarise",
    "extract",
    "find information",
)

FOLLOW_UP_KEYWORDS = (
    "elaborate",
    "continue",
    "explain further",
    "what about",
    "how does this relate",
    "can you expand",
    "tell me more",
    "more about",
    "what's the second",
    "next point",
    "previously mentioned",
)

CLARIFICATION_KEYWORDS = (
    "what do you mean",
    "clarify",
    "explain what",
    "i don't understand",
    "can you rephrase",
    "what exactly",
    "be more specific",
)

STOP_WORDS = frozenset(
    {
        "the", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "what", "how", "is", "are", "does", "do", "can",
        "will", "would", "should", "this", "that", "these", "those", "a",
        "an", "as", "it", "its", "be", "been", "have", "has", "had", "was",
        "were", "am", "you", "your", "we", "our", "they", "their", "them",
        "there", "from", "about", "which", "who", "when", "where", "why",
        "tell", "please", "me", "my", "any", "some", "into", "than", "then",
    }
)

# Pronouns that, standing alone, only make sense against a prior turn.
_REFERENCE_PRONOUNS = frozenset({"it", "this", "that", "they", "them", "those", "these"})

_NON_WORD = re.compile(r"[^\w\s]")
_WORDS = re.compile(r"\w+")


def _contains_phrase(text: str, phrase: str, *, whole_word: bool = False) -> bool:
    """Match *phrase* at a word start ("document" also matches "documents")."""
    end = r"\b" if whole_word else ""
    return re.search(rf"\b{re.escape(phrase)}{end}", text) is not None


def _is_greeting(lower: str, words: list[str]) -> bool:
    if not words or len(words) > _GREETING_MAX_WORDS:
        return False
    return any(
        _contains_phrase(lower, phrase, whole_word=True) for phrase in GREETING_PHRASES
    )


def _is_pronoun_reference(words: list[str], key_terms: tuple[str, ...]) -> bool:
    """A query like "why is that?" carries no subject of its own."""
    return not key_terms and any(word in _REFERENCE_PRONOUNS for word in words)


def extract_key_terms(query: str) -> tuple[str, ...]:
    """Return up to ``MAX_KEY_TERMS`` distinct content words, first-seen order."""
    cleaned = _NON_WORD.sub(" ", query.lower())
    terms: dict[str, None] = {}
    for term in cleaned.split():
        if len(term) < MIN_TERM_LENGTH or term in STOP_WORDS:
            continue
        terms.setdefault(term, None)
        if len(terms) == MAX_KEY_TERMS:
            break
    return tuple(terms)


def detect_query_intent(query: str) -> QueryIntent:
    """Classify *query* into a :class:`QueryIntent`."""
    lower = query.lower().strip()
    words = _WORDS.findall(lower)
    key_terms = extract_key_terms(query)
    has_document_cue = any(_contains_phrase(lower, k) for k in DOCUMENT_KEYWORDS)

    if _is_greeting(lower, words) and not has_document_cue:
        return QueryIntent(
            type=IntentType.GREETING,
            requires_documents=False,
            requires_context=False,
            confidence=CONFIDENCE_GREETING,
            key_terms=key_terms,
        )

    if any(_contains_phrase(lower, k) for k in CLARIFICATION_KEYWORDS):
        return QueryIntent(
            type=IntentType.CLARIFICATION,
            requires_documents=False,
            requires_context=True,
            confidence=CONFIDENCE_CLARIFICATION,
            key_terms=key_terms,
        )

    if any(_contains_phrase(lower, k) for k in FOLLOW_UP_KEYWORDS) or (
        _is_pronoun_reference(words, key_terms)
    ):
        return QueryIntent(
            type=IntentType.FOLLOW_UP,
            requires_documents=False,
            requires_context=True,
            confidence=CONFIDENCE_FOLLOW_UP,
            key_terms=key_terms,
        )

    if has_document_cue:
        return QueryIntent(
            type=IntentType.DOCUMENT_QUERY,
            requires_documents=True,
            requires_context=False,
            confidence=CONFIDENCE_DOCUMENT,
            key_terms=key_terms,
        )

    ambiguous = len(key_terms) < 2
    return QueryIntent(
        type=IntentType.GENERAL_QUERY,
        requires_documents=True,
        requires_context=False,
        confidence=CONFIDENCE_AMBIGUOUS if ambiguous else CONFIDENCE_GENERAL,
        key_terms=key_terms,
    )
