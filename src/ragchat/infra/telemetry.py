"""OpenTelemetry bootstrap -- tracing initialisation and helpers.

Configures a ``TracerProvider`` with an OTLP HTTP exporter when tracing is
enabled via ``TracingConfig``.  When disabled the module is a graceful no-op
and ``tracer`` hands out non-recording spans.

Auto-instrumentations wired here:

- **FastAPI** (inbound HTTP spans)
- **httpx** (outbound HTTP spans -- covers the search client and
  ``langchain-openai`` generation calls)

Usage::

    from ragchat.infra.telemetry import SPAN_RAG_PIPELINE, tracer

    with tracer.start_as_current_span(SPAN_RAG_PIPELINE) as span:
        ...
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated, Any

from fastapi import Depends, FastAPI
from opentelemetry import trace
from opentelemetry.trace import format_trace_id

from ragchat.configs.config import AppConfig, get_app_config
from ragchat.configs.system import TracingConfig
from ragchat.infra.lifespan import get_app

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("ragchat")

# ---------------------------------------------------------------------------
# Span names -- single source of truth for all custom spans
# ---------------------------------------------------------------------------

SPAN_RAG_PIPELINE = "rag.pipeline"
SPAN_RAG_INTENT = "rag.intent"
SPAN_RAG_SEARCH = "rag.search"
SPAN_RAG_PRUNE = "rag.prune_history"
SPAN_RAG_ASSEMBLE = "rag.assemble_context"
SPAN_RAG_GENERATE = "rag.generate"
SPAN_RAG_PARSE = "rag.parse_response"
SPAN_EMBEDDING_EMBED = "embedding.embed"

# ---------------------------------------------------------------------------
# Span attribute keys
# ---------------------------------------------------------------------------

ATTR_RAG_QUERY_LEN = "rag.query_len"
ATTR_RAG_INTENT = "rag.intent"
ATTR_RAG_RESPONSE_MODE = "rag.response_mode"
ATTR_RAG_RESULT_COUNT = "rag.result_count"
ATTR_RAG_SOURCE_COUNT = "rag.source_count"
ATTR_RAG_CONTEXT_TOKENS = "rag.context_tokens"
ATTR_RAG_TRUNCATED = "rag.truncated"
ATTR_RAG_CITATION_COUNT = "rag.citation_count"
ATTR_RAG_PRUNE_PATH = "rag.prune_path"

ATTR_EMBEDDING_MODEL = "embedding.model"
ATTR_EMBEDDING_BATCH_SIZE = "embedding.batch_size"
ATTR_EMBEDDING_CACHE_HIT = "embedding.cache_hit"


def _build_provider(settings: TracingConfig) -> Any:
    """SDK provider exporting batched spans over OTLP/HTTP."""
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
        OTLPSpanExporter,
    )
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

    provider = TracerProvider(
        resource=Resource.create({"service.name": settings.service_name}),
        sampler=ParentBased(root=TraceIdRatioBased(settings.sample_rate)),
    )
    exporter = OTLPSpanExporter(
        endpoint=settings.endpoint, headers=dict(settings.headers) or None
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def _instrument(app: object | None, settings: TracingConfig) -> None:
    """Inbound spans for the app, outbound spans for every httpx client."""
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

    if app is not None:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(
            app, excluded_urls=",".join(settings.excluded_urls)
        )
    HTTPXClientInstrumentor().instrument()


def init_telemetry(
    app: object | None = None,
    settings: TracingConfig | None = None,
) -> bool:
    """Initialise the OTEL ``TracerProvider`` and auto-instrumentations.

    Returns ``True`` when tracing was enabled.  Disabled settings, or an
    enabled config without an endpoint, leave the no-op provider in place.
    """
    if settings is None or not settings.enabled:
        logger.info("OpenTelemetry tracing disabled.")
        return False
    if not settings.endpoint:
        logger.warning("Tracing enabled without an OTLP endpoint; not exporting.")
        return False

    trace.set_tracer_provider(_build_provider(settings))
    _instrument(app, settings)
    logger.info(
        "OpenTelemetry tracing initialised (service=%s, sample_rate=%.2f).",
        settings.service_name,
        settings.sample_rate,
    )
    return True


def get_current_trace_id() -> str | None:
    """Return the active OTEL trace ID as a 32-char hex string, or ``None``."""
    span = trace.get_current_span()
    ctx = span.get_span_context()
    if ctx is None or not ctx.is_valid:
        return None
    return format_trace_id(ctx.trace_id)


# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_telemetry(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[bool, None]:
    """Initialise OTEL tracing for the lifetime of the app.

    On shutdown the SDK provider is flushed so the last queries' spans are
    exported before the process exits.
    """
    enabled = init_telemetry(app, config.tracing)
    yield enabled
    if enabled:
        provider = trace.get_tracer_provider()
        shutdown = getattr(provider, "shutdown", None)
        if shutdown is not None:
            shutdown()
            logger.info("OpenTelemetry tracer provider flushed.")
