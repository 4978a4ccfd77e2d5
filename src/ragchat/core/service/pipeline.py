"""RagPipeline -- drives one query through the context pipeline.

    query -> intent -> (history -> pruner) + (search -> assembler)
          -> request builder -> generate -> parse citations -> follow-ups

Each stage is timed into the ``rag_stage_duration_ms`` histogram and
wrapped in a tracing span.  The two suspending stages (search and
generation) run under ``asyncio.wait_for`` with the configured timeout;
any failure there becomes an ``UpstreamFailure`` immediately, without
retries.  Everything else degrades instead of failing.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Mapping, Sequence
from typing import Any, TypeVar

from ragchat.configs.config import AppConfig
from ragchat.errors import (
    COLLABORATOR_GENERATION,
    COLLABORATOR_SEARCH,
    UpstreamFailure,
)
from ragchat.infra.cache.manager import track_cache_hits
from ragchat.infra.logging import bind_query_context
from ragchat.infra.telemetry import (
    ATTR_RAG_CITATION_COUNT,
    ATTR_RAG_CONTEXT_TOKENS,
    ATTR_RAG_INTENT,
    ATTR_RAG_PRUNE_PATH,
    ATTR_RAG_QUERY_LEN,
    ATTR_RAG_RESPONSE_MODE,
    ATTR_RAG_RESULT_COUNT,
    ATTR_RAG_SOURCE_COUNT,
    ATTR_RAG_TRUNCATED,
    SPAN_RAG_ASSEMBLE,
    SPAN_RAG_GENERATE,
    SPAN_RAG_INTENT,
    SPAN_RAG_PARSE,
    SPAN_RAG_PIPELINE,
    SPAN_RAG_PRUNE,
    SPAN_RAG_SEARCH,
    tracer,
)
from ragchat.infra.tokens import estimate_chars

from .citations import parse_llm_response, strip_citation_markers, validate_citations
from .collaborators import (
    FILTER_LIMIT,
    FILTER_RERANK,
    GenerateFunction,
    SearchFunction,
)
from .context import assemble_context
from .followup import generate_follow_up_questions
from .intent import detect_query_intent
from .metrics import RagMetrics
from .models import (
    AnswerMetadata,
    GenerationResult,
    LLMRequest,
    Message,
    QueryIntent,
    RagAnswer,
    SearchResult,
)
from .prompt import build_llm_request, get_response_mode_config
from .pruning import (
    HistoryPruner,
    PruningOptions,
    create_context_summary,
    estimate_history_cost,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

STAGE_INTENT = "intent"
STAGE_PRUNE = "prune"
STAGE_SEARCH = "search"
STAGE_ASSEMBLE = "assemble"
STAGE_GENERATE = "generate"
STAGE_PARSE = "parse"

STATUS_OK = "ok"
STATUS_ERROR = "error"


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


class RagPipeline:
    """Grounded, citation-linked answers from search results and history.

    Configuration is resolved once, at construction.  The instance is
    stateless between calls and safe to share across concurrent requests.
    """

    def __init__(
        self,
        search: SearchFunction,
        generate: GenerateFunction,
        config: AppConfig,
        metrics: RagMetrics | None = None,
        pruner: HistoryPruner | None = None,
    ) -> None:
        self._search = search
        self._generate = generate
        self._metrics = metrics
        self._pruner = pruner or HistoryPruner()

        self._pruning_options = PruningOptions.from_config(config.pruning)
        self._context = config.context
        self._search_config = config.search
        self._search_timeout = config.search.timeout_seconds
        self._generate_timeout = config.llm.timeout_seconds
        self._model = config.llm.model_name

    # ------------------------------------------------------------------
    # Upstream calls
    # ------------------------------------------------------------------

    async def _call_upstream(
        self, collaborator: str, call: Awaitable[T], timeout: float
    ) -> T:
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise UpstreamFailure(
                collaborator,
                f"{collaborator} call timed out after {timeout}s",
                timed_out=True,
                cause=exc,
            ) from exc
        except UpstreamFailure:
            raise
        except Exception as exc:
            raise UpstreamFailure(
                collaborator, f"{collaborator} call failed: {exc}", cause=exc
            ) from exc

    async def _run_search(
        self, query: str, filters: Mapping[str, Any]
    ) -> list[SearchResult]:
        with tracer.start_as_current_span(SPAN_RAG_SEARCH) as span:
            results = await self._call_upstream(
                COLLABORATOR_SEARCH,
                self._search(query, filters),
                self._search_timeout,
            )
            span.set_attribute(ATTR_RAG_RESULT_COUNT, len(results))
            return results

    async def _run_generate(self, request: LLMRequest) -> GenerationResult:
        with tracer.start_as_current_span(SPAN_RAG_GENERATE):
            return await self._call_upstream(
                COLLABORATOR_GENERATION,
                self._generate(request),
                self._generate_timeout,
            )

    # ------------------------------------------------------------------
    # Metrics helpers
    # ------------------------------------------------------------------

    def _stage(self, stage: str, start: float) -> float:
        elapsed = _elapsed_ms(start)
        if self._metrics is not None:
            self._metrics.stage_duration(stage, elapsed)
        return elapsed

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def answer(
        self,
        query: str,
        history: Sequence[Message] = (),
        response_mode: str | None = None,
        *,
        enable_reranking: bool = True,
        include_history: bool = True,
        max_results: int | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> RagAnswer:
        """Answer *query*; raises ``UpstreamFailure`` on search/generation outages."""
        mode = get_response_mode_config(response_mode).name
        total_start = time.perf_counter()

        with (
            tracer.start_as_current_span(SPAN_RAG_PIPELINE) as span,
            track_cache_hits() as hits,
        ):
            span.set_attribute(ATTR_RAG_QUERY_LEN, len(query))
            span.set_attribute(ATTR_RAG_RESPONSE_MODE, mode)

            start = time.perf_counter()
            with tracer.start_as_current_span(SPAN_RAG_INTENT):
                intent = detect_query_intent(query)
            self._stage(STAGE_INTENT, start)
            span.set_attribute(ATTR_RAG_INTENT, intent.type.value)

            try:
                with bind_query_context(
                    query_intent=intent.type.value, response_mode=mode
                ):
                    answer = await self._answer(
                        query,
                        intent,
                        history,
                        mode,
                        total_start,
                        enable_reranking=enable_reranking,
                        include_history=include_history,
                        max_results=max_results,
                        filters=filters,
                    )
            except UpstreamFailure as exc:
                logger.warning(
                    "RAG query failed: %s (collaborator=%s, timed_out=%s)",
                    exc,
                    exc.collaborator,
                    exc.timed_out,
                )
                if self._metrics is not None:
                    self._metrics.upstream_failure(exc.collaborator, exc.timed_out)
                    self._metrics.query(intent.type.value, mode, STATUS_ERROR)
                raise

            answer.metadata.cache_hits = hits[0]
            if self._metrics is not None:
                self._metrics.query(intent.type.value, mode, STATUS_OK)
            return answer

    async def _answer(
        self,
        query: str,
        intent: QueryIntent,
        history: Sequence[Message],
        mode: str,
        total_start: float,
        *,
        enable_reranking: bool,
        include_history: bool,
        max_results: int | None,
        filters: Mapping[str, Any] | None,
    ) -> RagAnswer:
        degraded: list[str] = []

        # History
        pruned: list[Message] = []
        history_summary = ""
        if include_history and history:
            start = time.perf_counter()
            with tracer.start_as_current_span(SPAN_RAG_PRUNE) as prune_span:
                result = self._pruner.prune(history, self._pruning_options)
                prune_span.set_attribute(ATTR_RAG_PRUNE_PATH, result.path.value)
            self._stage(STAGE_PRUNE, start)
            pruned = result.messages
            history_summary = create_context_summary(
                len(history),
                len(pruned),
                estimate_history_cost(pruned, estimate_chars),
                estimate_history_cost(pruned),
            )
            logger.debug("History (%s path): %s", result.path.value, history_summary)
            if result.degraded is not None:
                degraded.append(result.degraded.component)
                if self._metrics is not None:
                    self._metrics.pruning_fallback()

        # Search
        results: list[SearchResult] = []
        search_ms = 0.0
        if intent.requires_documents:
            search_filters = {
                **(filters or {}),
                FILTER_LIMIT: max_results or self._search_config.max_results,
                FILTER_RERANK: enable_reranking,
            }
            start = time.perf_counter()
            results = await self._run_search(query, search_filters)
            search_ms = self._stage(STAGE_SEARCH, start)
            if self._metrics is not None:
                self._metrics.search_results(r.relevance_score for r in results)

        # Context
        start = time.perf_counter()
        with tracer.start_as_current_span(SPAN_RAG_ASSEMBLE) as ctx_span:
            context = assemble_context(
                results,
                pruned,
                self._context.max_context_length,
                self._pruning_options.prioritize_recent,
                document_share=self._context.document_share,
                min_relevance=self._search_config.min_relevance,
                history_window=self._context.history_window,
            )
            ctx_span.set_attribute(ATTR_RAG_SOURCE_COUNT, len(context.sources))
            ctx_span.set_attribute(ATTR_RAG_CONTEXT_TOKENS, context.total_tokens)
            ctx_span.set_attribute(ATTR_RAG_TRUNCATED, context.was_truncated)
        self._stage(STAGE_ASSEMBLE, start)
        if self._metrics is not None:
            self._metrics.context(context.total_tokens, self._context.max_context_length)

        # Generation
        request = build_llm_request(query, context, intent, mode, model=self._model)
        start = time.perf_counter()
        generation = await self._run_generate(request)
        llm_ms = self._stage(STAGE_GENERATE, start)

        # Citations and follow-ups
        start = time.perf_counter()
        with tracer.start_as_current_span(SPAN_RAG_PARSE) as parse_span:
            parsed = parse_llm_response(generation.text, context.sources)
            parse_span.set_attribute(ATTR_RAG_CITATION_COUNT, len(parsed.citations))
        if parsed.degraded is not None:
            degraded.append(parsed.degraded.component)
            if self._metrics is not None:
                self._metrics.citations_dropped(len(parsed.dropped_markers))
        validation = validate_citations(generation.text, len(context.sources))
        follow_ups = generate_follow_up_questions(
            query, strip_citation_markers(parsed.content), intent
        )
        self._stage(STAGE_PARSE, start)

        metadata = AnswerMetadata(
            search_time_ms=search_ms,
            llm_time_ms=llm_ms,
            total_time_ms=_elapsed_ms(total_start),
            tokens_used=generation.tokens_used,
            documents_found=len(results),
            intent=intent.type.value,
            context_truncated=context.was_truncated,
            history_summary=history_summary,
            citation_warnings=[*validation.warnings, *validation.suggestions],
            degraded=degraded,
        )
        logger.info(
            "RAG query answered: intent=%s mode=%s sources=%d citations=%d %.0fms",
            intent.type.value,
            mode,
            len(context.sources),
            len(parsed.citations),
            metadata.total_time_ms,
        )
        return RagAnswer(
            content=parsed.content,
            citations=parsed.citations,
            metadata=metadata,
            follow_up_questions=follow_ups,
        )
