"""Deterministic follow-up question suggestions."""

from __future__ import annotations

import re

from .intent import extract_key_terms
from .models import IntentType, QueryIntent

DEFAULT_MAX_QUESTIONS = 3
LONG_ANSWER_CHARS = 500

# Templates with a {term} slot are used only when a subject is known: the
# first slot takes the query key term, the next an entity from the answer.
_TERM_TEMPLATES: dict[IntentType, tuple[str, ...]] = {
    IntentType.DOCUMENT_QUERY: (
        "What else do the documents say about {term}?",
        "Which sources discuss {term} in the most detail?",
    ),
    IntentType.GENERAL_QUERY: (
        "How is {term} used in practice?",
        "What are the main challenges with {term}?",
    ),
    IntentType.FOLLOW_UP: ("What are the limitations of {term}?",),
    IntentType.CLARIFICATION: ("Can you give a simple example of {term}?",),
}

_GENERIC_TEMPLATES: dict[IntentType, tuple[str, ...]] = {
    IntentType.DOCUMENT_QUERY: (
        "Can you provide more details about this topic?",
        "What are the key takeaways from these documents?",
        "Are there any related topics I should explore?",
    ),
    IntentType.GENERAL_QUERY: (
        "Can you elaborate on this topic?",
        "What are some practical applications?",
        "How does this relate to current trends?",
    ),
    IntentType.FOLLOW_UP: (
        "How does this connect to what we discussed earlier?",
        "What are the practical implications?",
    ),
    IntentType.CLARIFICATION: (
        "Can you explain this with an example?",
        "What are the key terms I should know?",
    ),
}

_CONTENT_CUES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("however", " but "), "What are the contrasting viewpoints on this topic?"),
    (("for example", "such as", "example"), "Can you provide more specific examples?"),
    (("important", "significant"), "Why is this particularly important or significant?"),
)

_ENTITY = re.compile(r"^[A-Z][a-zA-Z0-9]{2,}$")
_SENTENCE_END = re.compile(r"[.!?]\s+")
_CITATION = re.compile(r"\[\d+\]")


def _answer_entity(answer_content: str) -> str | None:
    # Skip sentence-initial words: capitalised only by position.
    for sentence in _SENTENCE_END.split(_CITATION.sub("", answer_content)):
        for word in sentence.split()[1:]:
            word = word.strip(",;:()\"'")
            if _ENTITY.match(word):
                return word
    return None


def _subjects(
    original_query: str, answer_content: str, intent: QueryIntent
) -> list[str]:
    """Query key term first, then a distinct answer entity; either may be absent."""
    terms = intent.key_terms or extract_key_terms(original_query)
    subjects = [terms[0]] if terms else []
    entity = _answer_entity(answer_content)
    if entity and all(entity.lower() != s.lower() for s in subjects):
        subjects.append(entity)
    return subjects


def generate_follow_up_questions(
    original_query: str,
    answer_content: str,
    intent: QueryIntent,
    max_questions: int = DEFAULT_MAX_QUESTIONS,
) -> list[str]:
    """Suggest up to *max_questions* distinct questions.  Greetings get none."""
    if intent.type is IntentType.GREETING or max_questions <= 0:
        return []

    candidates: list[str] = []
    subjects = _subjects(original_query, answer_content, intent)
    templates = _TERM_TEMPLATES.get(intent.type, ())
    if subjects and templates:
        # Slot i takes subject i; the last subject fills any remaining slots.
        for i in range(max(len(templates), len(subjects))):
            template = templates[min(i, len(templates) - 1)]
            subject = subjects[min(i, len(subjects) - 1)]
            candidates.append(template.format(term=subject))
    candidates.extend(_GENERIC_TEMPLATES.get(intent.type, ()))

    lower = f" {answer_content.lower()} "
    for cues, question in _CONTENT_CUES:
        if any(cue in lower for cue in cues):
            candidates.append(question)
    if len(answer_content) > LONG_ANSWER_CHARS:
        candidates.append("Can you summarize the key points?")

    return list(dict.fromkeys(candidates))[:max_questions]
