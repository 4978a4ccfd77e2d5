"""Tests for RagPipeline with fake collaborators."""

import asyncio
from typing import Any, Mapping

import pytest

from conftest import make_config
from ragchat.configs.system import LLMConfig, SearchConfig
from ragchat.core.search import CachedSearch
from ragchat.core.service.metrics import MetricsCollector, RagMetrics
from ragchat.core.service.models import (
    GenerationResult,
    LLMRequest,
    Message,
    SearchResult,
)
from ragchat.core.service.pipeline import RagPipeline
from ragchat.core.service.pruning import HistoryPruner
from ragchat.errors import UpstreamFailure
from ragchat.infra.cache import CacheManager, LocalCacheBackend, SearchCache


def _result(idx: int, score: float) -> SearchResult:
    return SearchResult(
        id=f"chunk-{idx}",
        content=f"Passage {idx} about the capital of France.",
        document_id=f"doc-{idx}",
        filename=f"file{idx}.pdf",
        page_number=idx,
        relevance_score=score,
    )


class FakeSearch:
    def __init__(self, results: list[SearchResult] | None = None, delay: float = 0.0):
        self.results = results or []
        self.delay = delay
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def __call__(self, query: str, filters: Mapping[str, Any]) -> list[SearchResult]:
        self.calls.append((query, dict(filters)))
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.results)


class FakeGenerate:
    def __init__(self, text: str = "Answer.", error: Exception | None = None):
        self.text = text
        self.error = error
        self.requests: list[LLMRequest] = []

    async def __call__(self, request: LLMRequest) -> GenerationResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return GenerationResult(text=self.text, tokens_used=42)


class TestRagPipeline:
    def setup_method(self):
        self.collector = MetricsCollector()
        self.metrics = RagMetrics(self.collector)

    def _pipeline(self, search, generate, config=None, **kwargs) -> RagPipeline:
        return RagPipeline(
            search, generate, config or make_config(), metrics=self.metrics, **kwargs
        )

    @pytest.mark.asyncio
    async def test_citation_indices_follow_assembly_order(self):
        search = FakeSearch([_result(1, 0.5), _result(2, 0.9)])
        generate = FakeGenerate("Paris is the capital [1], as noted in [2].")

        answer = await self._pipeline(search, generate).answer(
            "What does the document say about the capital of France?"
        )

        final_prompt = generate.requests[0].messages[-1].content
        assert "[1] file2.pdf (Page 2)" in final_prompt
        assert "[2] file1.pdf (Page 1)" in final_prompt
        assert [(c.citation_index, c.filename) for c in answer.citations] == [
            (1, "file2.pdf"),
            (2, "file1.pdf"),
        ]
        assert answer.citations[0].relevance_score == 0.9
        assert answer.content == "Paris is the capital [1], as noted in [2]."
        assert answer.metadata.documents_found == 2
        assert answer.metadata.tokens_used == 42
        assert answer.metadata.intent == "document_query"
        assert answer.metadata.degraded == []
        assert answer.follow_up_questions

    @pytest.mark.asyncio
    async def test_search_filters(self):
        search = FakeSearch([_result(1, 0.9)])

        await self._pipeline(search, FakeGenerate()).answer(
            "Summarize the report",
            enable_reranking=False,
            max_results=4,
            filters={"document_id": "doc-1"},
        )

        query, filters = search.calls[0]
        assert query == "Summarize the report"
        assert filters == {"document_id": "doc-1", "limit": 4, "rerank": False}

    @pytest.mark.asyncio
    async def test_default_limit_from_config(self):
        search = FakeSearch()
        config = make_config(search=SearchConfig(max_results=7, min_relevance=0.0))

        await self._pipeline(search, FakeGenerate(), config).answer("Summarize the report")

        assert search.calls[0][1]["limit"] == 7

    @pytest.mark.asyncio
    async def test_greeting_skips_search(self):
        search = FakeSearch([_result(1, 0.9)])
        generate = FakeGenerate("Hi there!")

        answer = await self._pipeline(search, generate).answer("Hello, how are you?")

        assert search.calls == []
        assert answer.metadata.intent == "greeting"
        assert answer.metadata.documents_found == 0
        assert answer.citations == []
        assert answer.follow_up_questions == []

    @pytest.mark.asyncio
    async def test_response_mode_drives_request(self):
        generate = FakeGenerate()

        await self._pipeline(FakeSearch(), generate).answer("hello", response_mode="concise")

        assert generate.requests[0].max_tokens == 500
        assert generate.requests[0].model == "test-model"

    @pytest.mark.asyncio
    async def test_history_included_and_excluded(self):
        history = [
            Message(role="user", content="What is RAG?"),
            Message(role="assistant", content="Retrieval-augmented generation."),
        ]
        generate = FakeGenerate()
        pipeline = self._pipeline(FakeSearch(), generate)

        await pipeline.answer("Tell me more", history)
        await pipeline.answer("Tell me more", history, include_history=False)

        with_history, without_history = generate.requests
        assert with_history.messages[1].content.startswith("Previous conversation:")
        assert "What is RAG?" in with_history.messages[1].content
        assert len(without_history.messages) == 2

    @pytest.mark.asyncio
    async def test_search_timeout_raises_upstream_failure(self):
        config = make_config(search=SearchConfig(timeout_seconds=0.01, min_relevance=0.0))
        generate = FakeGenerate()
        pipeline = self._pipeline(FakeSearch(delay=1.0), generate, config)

        with pytest.raises(UpstreamFailure) as exc_info:
            await pipeline.answer("Summarize the report")

        assert exc_info.value.collaborator == "search"
        assert exc_info.value.timed_out is True
        assert exc_info.value.code == "SEARCH_TIMEOUT"
        assert generate.requests == []
        counters = self.collector.get_metrics()["counters"]
        assert counters['rag_upstream_failures_total{collaborator="search",timed_out="true"}'] == 1
        assert (
            counters[
                'rag_queries_total{intent="document_query",response_mode="detailed",status="error"}'
            ]
            == 1
        )

    @pytest.mark.asyncio
    async def test_generation_error_raises_upstream_failure(self):
        cause = ConnectionError("model server down")
        pipeline = self._pipeline(FakeSearch(), FakeGenerate(error=cause))

        with pytest.raises(UpstreamFailure) as exc_info:
            await pipeline.answer("hello")

        assert exc_info.value.collaborator == "generation"
        assert exc_info.value.timed_out is False
        assert exc_info.value.cause is cause

    @pytest.mark.asyncio
    async def test_generation_timeout(self):
        class SlowGenerate(FakeGenerate):
            async def __call__(self, request):
                await asyncio.sleep(1.0)
                return await super().__call__(request)

        config = make_config(llm=LLMConfig(model_name="m", timeout_seconds=0.01))

        with pytest.raises(UpstreamFailure) as exc_info:
            await self._pipeline(FakeSearch(), SlowGenerate(), config).answer("hello")

        assert exc_info.value.code == "GENERATION_TIMEOUT"

    @pytest.mark.asyncio
    async def test_dropped_citation_is_degraded_not_error(self):
        search = FakeSearch([_result(1, 0.9)])
        generate = FakeGenerate("Claim [1] and invented claim [7].")

        answer = await self._pipeline(search, generate).answer("Summarize the report")

        assert [c.citation_index for c in answer.citations] == [1]
        assert answer.metadata.degraded == ["response_parser"]
        assert self.collector.get_metrics()["counters"]["rag_citations_dropped_total"] == 1

    @pytest.mark.asyncio
    async def test_pruning_fallback_is_degraded_not_error(self):
        def broken_cost(text: str) -> int:
            raise RuntimeError("boom")

        history = [Message(role="user", content=f"turn {i}") for i in range(30)]
        pipeline = self._pipeline(
            FakeSearch(), FakeGenerate(), pruner=HistoryPruner(cost_fn=broken_cost)
        )

        answer = await pipeline.answer("hello", history)

        assert answer.metadata.degraded == ["history_pruner"]
        assert (
            self.collector.get_metrics()["counters"]["history_pruning_fallbacks_total"]
            == 1
        )

    @pytest.mark.asyncio
    async def test_cache_hits_reported_per_answer(self):
        inner = FakeSearch([_result(1, 0.9)])
        cache = CacheManager(LocalCacheBackend(), metrics=self.metrics)
        pipeline = self._pipeline(
            CachedSearch(inner, SearchCache(cache)), FakeGenerate("Fact [1].")
        )

        first = await pipeline.answer("Summarize the report")
        second = await pipeline.answer("Summarize the report")

        assert len(inner.calls) == 1
        assert first.metadata.cache_hits == 0
        assert second.metadata.cache_hits == 1
        assert second.citations[0].document_id == "doc-1"

    @pytest.mark.asyncio
    async def test_success_metrics(self):
        search = FakeSearch([_result(1, 0.8), _result(2, 0.6)])

        await self._pipeline(search, FakeGenerate()).answer("Summarize the report")

        metrics = self.collector.get_metrics()
        assert (
            metrics["counters"][
                'rag_queries_total{intent="document_query",response_mode="detailed",status="ok"}'
            ]
            == 1
        )
        assert metrics["histograms"]["rag_search_relevance"]["values"] == [0.8, 0.6]
        assert 'rag_stage_duration_ms{stage="generate"}' in metrics["histograms"]
        assert "rag_context_utilization" in metrics["gauges"]

    @pytest.mark.asyncio
    async def test_history_summary_reported(self):
        history = [Message(role="user", content=f"turn {i}") for i in range(30)]
        pipeline = self._pipeline(FakeSearch(), FakeGenerate())

        pruned = await pipeline.answer("Tell me more", history)
        full = await pipeline.answer("Tell me more", history[:2])
        none = await pipeline.answer("Tell me more")

        assert "20 of 30 messages included (10 messages omitted" in (
            pruned.metadata.history_summary
        )
        assert full.metadata.history_summary.startswith(
            "Full conversation history included (2 messages"
        )
        assert none.metadata.history_summary == ""

    @pytest.mark.asyncio
    async def test_uncited_claim_reported_as_warning(self):
        search = FakeSearch([_result(1, 0.9)])
        generate = FakeGenerate("According to the report, revenue doubled.")

        answer = await self._pipeline(search, generate).answer("Summarize the report")

        assert answer.metadata.citation_warnings == [
            'Claim with "according to" may need a citation for verification'
        ]

    @pytest.mark.asyncio
    async def test_cited_claim_has_no_warning(self):
        search = FakeSearch([_result(1, 0.9)])
        generate = FakeGenerate("According to the report [1], revenue doubled.")

        answer = await self._pipeline(search, generate).answer("Summarize the report")

        assert answer.metadata.citation_warnings == []
