"""Tests for query-intent classification."""

from ragchat.core.service.intent import (
    CONFIDENCE_AMBIGUOUS,
    CONFIDENCE_GENERAL,
    MAX_KEY_TERMS,
    detect_query_intent,
    extract_key_terms,
)
from ragchat.core.service.models import IntentType


class TestDetectQueryIntent:
    def test_greeting(self):
        intent = detect_query_intent("Hello, how are you?")

        assert intent.type is IntentType.GREETING
        assert intent.requires_documents is False
        assert intent.requires_context is False

    def test_long_message_starting_with_hi_is_not_greeting(self):
        intent = detect_query_intent(
            "hi can you summarize the quarterly revenue figures in the report"
        )
        assert intent.type is IntentType.DOCUMENT_QUERY
        assert intent.requires_documents is True

    def test_document_query(self):
        intent = detect_query_intent("What does the uploaded report say about revenue?")

        assert intent.type is IntentType.DOCUMENT_QUERY
        assert intent.requires_documents is True
        assert "revenue" in intent.key_terms

    def test_clarification(self):
        intent = detect_query_intent("What do you mean by embeddings?")

        assert intent.type is IntentType.CLARIFICATION
        assert intent.requires_context is True
        assert intent.requires_documents is False

    def test_follow_up_keyword(self):
        intent = detect_query_intent("Can you elaborate on that?")

        assert intent.type is IntentType.FOLLOW_UP
        assert intent.requires_context is True

    def test_pronoun_only_query_is_follow_up(self):
        assert detect_query_intent("Why is that?").type is IntentType.FOLLOW_UP

    def test_general_query(self):
        intent = detect_query_intent("Explain gradient descent optimization")

        assert intent.type is IntentType.GENERAL_QUERY
        assert intent.requires_documents is True
        assert intent.confidence == CONFIDENCE_GENERAL

    def test_ambiguous_query_has_low_confidence(self):
        intent = detect_query_intent("why?")

        assert intent.type is IntentType.GENERAL_QUERY
        assert intent.confidence == CONFIDENCE_AMBIGUOUS

    def test_empty_query_does_not_raise(self):
        intent = detect_query_intent("")

        assert intent.type is IntentType.GENERAL_QUERY
        assert 0.0 <= intent.confidence <= 1.0


class TestExtractKeyTerms:
    def test_drops_stop_words_and_short_tokens(self):
        assert extract_key_terms("What is an AI model?") == ("model",)

    def test_deduplicates_in_first_seen_order(self):
        terms = extract_key_terms("The transformer architecture and the Transformer model")
        assert terms == ("transformer", "architecture", "model")

    def test_strips_punctuation(self):
        assert extract_key_terms("latency, throughput; (caching)!") == (
            "latency",
            "throughput",
            "caching",
        )

    def test_capped(self):
        query = " ".join(f"term{i:02d}" for i in range(20))
        assert len(extract_key_terms(query)) == MAX_KEY_TERMS
