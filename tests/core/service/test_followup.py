"""Tests for follow-up question generation."""

from ragchat.core.service.followup import generate_follow_up_questions
from ragchat.core.service.models import IntentType, QueryIntent


def _intent(kind: IntentType, key_terms: tuple[str, ...] = ()) -> QueryIntent:
    return QueryIntent(
        type=kind,
        requires_documents=kind is not IntentType.GREETING,
        requires_context=False,
        confidence=0.8,
        key_terms=key_terms,
    )


class TestGenerateFollowUpQuestions:
    def test_greeting_yields_none(self):
        assert generate_follow_up_questions("hi", "Hello!", _intent(IntentType.GREETING)) == []

    def test_term_templates_use_first_key_term(self):
        questions = generate_follow_up_questions(
            "What does the report say about revenue?",
            "Revenue grew 10% [1].",
            _intent(IntentType.DOCUMENT_QUERY, ("revenue", "report")),
        )

        assert questions == [
            "What else do the documents say about revenue?",
            "Which sources discuss revenue in the most detail?",
            "Can you provide more details about this topic?",
        ]

    def test_entity_from_answer_when_query_has_no_terms(self):
        questions = generate_follow_up_questions(
            "why?",
            "The results from Kubernetes clusters show steady latency.",
            _intent(IntentType.GENERAL_QUERY),
        )

        assert questions[0] == "How is Kubernetes used in practice?"

    def test_content_cues(self):
        questions = generate_follow_up_questions(
            "",
            "However, for example this matters.",
            _intent(IntentType.CLARIFICATION),
            max_questions=5,
        )

        assert questions == [
            "Can you explain this with an example?",
            "What are the key terms I should know?",
            "What are the contrasting viewpoints on this topic?",
            "Can you provide more specific examples?",
        ]

    def test_long_answer_asks_for_summary(self):
        questions = generate_follow_up_questions(
            "", "word " * 120, _intent(IntentType.FOLLOW_UP), max_questions=10
        )

        assert questions[-1] == "Can you summarize the key points?"

    def test_capped_and_distinct(self):
        questions = generate_follow_up_questions(
            "Explain caching strategies",
            "However, caching is important, for example in search. " * 20,
            _intent(IntentType.GENERAL_QUERY, ("caching", "strategies")),
            max_questions=3,
        )

        assert len(questions) == 3
        assert len(set(questions)) == 3

    def test_deterministic(self):
        args = (
            "Explain caching",
            "Caching is important [1].",
            _intent(IntentType.GENERAL_QUERY, ("caching",)),
        )

        assert generate_follow_up_questions(*args) == generate_follow_up_questions(*args)

    def test_zero_max_questions(self):
        result = generate_follow_up_questions(
            "q", "a", _intent(IntentType.GENERAL_QUERY), max_questions=0
        )
        assert result == []

    def test_answer_entity_fills_second_slot(self):
        questions = generate_follow_up_questions(
            "How do we reduce latency?",
            "The team moved workloads onto Kubernetes for scale [1].",
            _intent(IntentType.GENERAL_QUERY, ("latency", "reduce")),
        )

        assert questions[:2] == [
            "How is latency used in practice?",
            "What are the main challenges with Kubernetes?",
        ]

    def test_answer_entity_matching_key_term_not_repeated(self):
        questions = generate_follow_up_questions(
            "Tell me about kubernetes",
            "Teams run Kubernetes everywhere.",
            _intent(IntentType.GENERAL_QUERY, ("kubernetes",)),
        )

        assert questions[:2] == [
            "How is kubernetes used in practice?",
            "What are the main challenges with kubernetes?",
        ]

    def test_single_slot_intent_still_uses_answer_entity(self):
        questions = generate_follow_up_questions(
            "and the cost?",
            "Pricing for Snowflake depends on credits.",
            _intent(IntentType.FOLLOW_UP, ("cost",)),
        )

        assert questions[:2] == [
            "What are the limitations of cost?",
            "What are the limitations of Snowflake?",
        ]
