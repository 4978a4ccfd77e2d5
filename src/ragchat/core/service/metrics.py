"""In-process metrics for the RAG pipeline.

``MetricsCollector`` is an explicitly constructed, injectable instance
(held on ``app.state.metrics``), never a module-level singleton.  Its
state is exported in two read-only shapes: a JSON snapshot and the
Prometheus text exposition, the latter rendered by ``prometheus_client``
through a custom collector over the same state.

All metric names used by the pipeline are bound in :class:`RagMetrics`.
"""

from __future__ import annotations

import logging
import math
import re
import threading
import time
from collections.abc import AsyncGenerator, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Request
from prometheus_client import CollectorRegistry, Histogram, generate_latest
from prometheus_client.metrics_core import Metric
from prometheus_client.registry import Collector
from prometheus_client.utils import floatToGoString

from ragchat.errors import ValidationError
from ragchat.infra.lifespan import get_app

logger = logging.getLogger(__name__)

METRIC_NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_.]*$")
LABEL_KEY_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

DEFAULT_BUCKETS: tuple[float, ...] = Histogram.DEFAULT_BUCKETS

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

LabelSet = tuple[tuple[str, str], ...]

KIND_COUNTER = "counter"
KIND_GAUGE = "gauge"
KIND_HISTOGRAM = "histogram"

# Set by the exporter on every bucket sample.
BUCKET_LABEL = "le"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_metric_name(name: str) -> None:
    """Raise :class:`ValidationError` unless *name* is a legal metric name."""
    if not isinstance(name, str) or not METRIC_NAME_PATTERN.match(name):
        raise ValidationError(f"Invalid metric name: {name!r}")


def validate_labels(labels: Mapping[str, Any] | None) -> None:
    """Raise :class:`ValidationError` on any illegal label key."""
    for key in labels or {}:
        if not isinstance(key, str) or not LABEL_KEY_PATTERN.match(key):
            raise ValidationError(f"Invalid label key: {key!r}")


def _label_set(labels: Mapping[str, Any] | None) -> LabelSet:
    validate_labels(labels)
    return tuple(sorted((k, str(v)) for k, v in (labels or {}).items()))


def series_key(name: str, labels: LabelSet) -> str:
    """``name{k="v",...}`` with label keys sorted; bare name when unlabelled."""
    if not labels:
        return name
    rendered = ",".join(f'{k}="{v}"' for k, v in labels)
    return f"{name}{{{rendered}}}"


def exposition_name(name: str) -> str:
    return name.replace(".", "_")


def exported_names(kind: str, name: str) -> tuple[str, tuple[str, ...]]:
    """Family name and every sample name *name* is exported under."""
    base = exposition_name(name)
    if kind == KIND_COUNTER:
        base = base.removesuffix("_total")
        return base, (f"{base}_total",)
    if kind == KIND_HISTOGRAM:
        return base, (f"{base}_bucket", f"{base}_count", f"{base}_sum")
    return base, (base,)


def default_help(kind: str, name: str) -> str:
    readable = exposition_name(name).replace("_", " ")
    if kind == KIND_COUNTER:
        return f"Total count of {readable}"
    if kind == KIND_GAUGE:
        return f"Current value of {readable}"
    return f"Histogram of {readable}"


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class HistogramData:
    count: int = 0
    sum: float = 0.0
    values: list[float] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {"count": self.count, "sum": self.sum, "values": list(self.values)}


class MetricsCollector:
    """Counters, gauges and histograms keyed by ``(name, label-set)``.

    Every mutation and snapshot holds one lock, so concurrent updates to
    the same series are never lost.
    A name is bound to one kind on first use; a second name that would
    export under the same Prometheus name is rejected.
    """

    def __init__(self, buckets: Iterable[float] = DEFAULT_BUCKETS) -> None:
        self._lock = threading.Lock()
        self._buckets = tuple(sorted(b for b in buckets if not math.isinf(b)))
        self._counters: dict[str, dict[LabelSet, float]] = {}
        self._gauges: dict[str, dict[LabelSet, float]] = {}
        self._histograms: dict[str, dict[LabelSet, HistogramData]] = {}
        self._help: dict[str, str] = {}
        self._owners: dict[str, tuple[str, str]] = {}

        self._registry = CollectorRegistry(auto_describe=False)
        self._registry.register(_PrometheusBridge(self))

    @property
    def buckets(self) -> tuple[float, ...]:
        return self._buckets

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _claim(self, kind: str, name: str) -> None:
        # Caller holds the lock.
        family, samples = exported_names(kind, name)
        for exported in (family, *samples):
            owner = self._owners.get(exported)
            if owner is not None and owner != (kind, name):
                raise ValidationError(
                    f"{kind} {name!r} collides with {owner[0]} {owner[1]!r} "
                    f"when exported as {exported!r}"
                )
        for exported in (family, *samples):
            self._owners[exported] = (kind, name)

    def describe(self, name: str, help_text: str) -> None:
        validate_metric_name(name)
        with self._lock:
            self._help[name] = help_text

    def increment_counter(
        self,
        name: str,
        labels: Mapping[str, Any] | None = None,
        value: float = 1,
    ) -> None:
        validate_metric_name(name)
        if value < 0:
            raise ValidationError(f"Counter {name!r} cannot decrease (got {value})")
        key = _label_set(labels)
        with self._lock:
            self._claim(KIND_COUNTER, name)
            series = self._counters.setdefault(name, {})
            series[key] = series.get(key, 0) + value

    def set_gauge(
        self, name: str, value: float, labels: Mapping[str, Any] | None = None
    ) -> None:
        validate_metric_name(name)
        key = _label_set(labels)
        with self._lock:
            self._claim(KIND_GAUGE, name)
            self._gauges.setdefault(name, {})[key] = float(value)

    def record_histogram(
        self, name: str, value: float, labels: Mapping[str, Any] | None = None
    ) -> None:
        validate_metric_name(name)
        if labels and BUCKET_LABEL in labels:
            raise ValidationError(
                f"Histogram {name!r} cannot use the reserved label {BUCKET_LABEL!r}"
            )
        key = _label_set(labels)
        with self._lock:
            self._claim(KIND_HISTOGRAM, name)
            data = self._histograms.setdefault(name, {}).setdefault(
                key, HistogramData()
            )
            data.count += 1
            data.sum += value
            data.values.append(value)

    def reset(self) -> None:
        """Drop all recorded series and name bindings.  Help texts are kept."""
        with self._lock:
            self._owners.clear()
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
        logger.debug("Metrics reset")

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def get_metrics(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {
                "counters": {
                    series_key(name, labels): value
                    for name, series in self._counters.items()
                    for labels, value in series.items()
                },
                "gauges": {
                    series_key(name, labels): value
                    for name, series in self._gauges.items()
                    for labels, value in series.items()
                },
                "histograms": {
                    series_key(name, labels): data.as_dict()
                    for name, series in self._histograms.items()
                    for labels, data in series.items()
                },
            }

    def to_json(self) -> dict[str, Any]:
        """JSON-ready snapshot with an epoch-millisecond ``timestamp``."""
        snapshot: dict[str, Any] = dict(self.get_metrics())
        snapshot["timestamp"] = int(time.time() * 1000)
        return snapshot

    def to_prometheus_format(self) -> str:
        return generate_latest(self._registry).decode("utf-8")

    def _copy_state(self) -> tuple[
        dict[str, dict[LabelSet, float]],
        dict[str, dict[LabelSet, float]],
        dict[str, dict[LabelSet, HistogramData]],
        dict[str, str],
    ]:
        with self._lock:
            return (
                {n: dict(s) for n, s in self._counters.items()},
                {n: dict(s) for n, s in self._gauges.items()},
                {
                    n: {
                        k: HistogramData(d.count, d.sum, list(d.values))
                        for k, d in s.items()
                    }
                    for n, s in self._histograms.items()
                },
                dict(self._help),
            )


class _PrometheusBridge(Collector):
    """Exposes a ``MetricsCollector`` snapshot as Prometheus metric families."""

    def __init__(self, owner: MetricsCollector) -> None:
        self._owner = owner

    def collect(self) -> Iterable[Metric]:
        counters, gauges, histograms, help_texts = self._owner._copy_state()

        for name, series in sorted(counters.items()):
            base, (sample,) = exported_names(KIND_COUNTER, name)
            family = Metric(
                base,
                help_texts.get(name, default_help(KIND_COUNTER, name)),
                KIND_COUNTER,
            )
            for labels, value in series.items():
                family.add_sample(sample, dict(labels), value)
            yield family

        for name, series in sorted(gauges.items()):
            base = exposition_name(name)
            family = Metric(
                base,
                help_texts.get(name, default_help(KIND_GAUGE, name)),
                KIND_GAUGE,
            )
            for labels, value in series.items():
                family.add_sample(base, dict(labels), value)
            yield family

        for name, series in sorted(histograms.items()):
            base = exposition_name(name)
            family = Metric(
                base,
                help_texts.get(name, default_help(KIND_HISTOGRAM, name)),
                KIND_HISTOGRAM,
            )
            for labels, data in series.items():
                label_dict = dict(labels)
                for bound in self._owner.buckets:
                    cumulative = sum(1 for v in data.values if v <= bound)
                    family.add_sample(
                        f"{base}_bucket",
                        {**label_dict, BUCKET_LABEL: floatToGoString(bound)},
                        cumulative,
                    )
                family.add_sample(
                    f"{base}_bucket", {**label_dict, BUCKET_LABEL: "+Inf"}, data.count
                )
                family.add_sample(f"{base}_count", label_dict, data.count)
                family.add_sample(f"{base}_sum", label_dict, data.sum)
            yield family


# ---------------------------------------------------------------------------
# Domain metrics
# ---------------------------------------------------------------------------

RAG_QUERIES_TOTAL = "rag_queries_total"
RAG_STAGE_DURATION_MS = "rag_stage_duration_ms"
RAG_DOCUMENTS_FOUND = "rag_documents_found"
RAG_SEARCH_RELEVANCE = "rag_search_relevance"
RAG_CONTEXT_TOKENS = "rag_context_tokens"
RAG_CONTEXT_UTILIZATION = "rag_context_utilization"
RAG_CITATIONS_DROPPED_TOTAL = "rag_citations_dropped_total"
RAG_UPSTREAM_FAILURES_TOTAL = "rag_upstream_failures_total"
CACHE_HITS_TOTAL = "cache_hits_total"
CACHE_MISSES_TOTAL = "cache_misses_total"
HISTORY_PRUNING_FALLBACKS_TOTAL = "history_pruning_fallbacks_total"

_DOMAIN_HELP = {
    RAG_QUERIES_TOTAL: "RAG queries processed, by intent, response mode and status",
    RAG_STAGE_DURATION_MS: "Duration of each pipeline stage in milliseconds",
    RAG_DOCUMENTS_FOUND: "Search results returned per query",
    RAG_SEARCH_RELEVANCE: "Relevance score of every search result",
    RAG_CONTEXT_TOKENS: "Estimated tokens in the assembled context",
    RAG_CONTEXT_UTILIZATION: "Share of the context budget used by the last query",
    RAG_CITATIONS_DROPPED_TOTAL: "Citation markers with no matching source",
    RAG_UPSTREAM_FAILURES_TOTAL: "Failed or timed-out collaborator calls",
    CACHE_HITS_TOTAL: "Cache lookups served from cache",
    CACHE_MISSES_TOTAL: "Cache lookups that missed",
    HISTORY_PRUNING_FALLBACKS_TOTAL: "History pruning runs that used the fallback path",
}


class RagMetrics:
    """Thin helper binding the pipeline's metric names to a collector."""

    def __init__(self, collector: MetricsCollector) -> None:
        self.collector = collector
        for name, help_text in _DOMAIN_HELP.items():
            collector.describe(name, help_text)

    def query(self, intent: str, response_mode: str, status: str) -> None:
        self.collector.increment_counter(
            RAG_QUERIES_TOTAL,
            {"intent": intent, "response_mode": response_mode, "status": status},
        )

    def stage_duration(self, stage: str, duration_ms: float) -> None:
        self.collector.record_histogram(
            RAG_STAGE_DURATION_MS, duration_ms, {"stage": stage}
        )

    def search_results(self, relevance_scores: Iterable[float]) -> None:
        scores = list(relevance_scores)
        self.collector.record_histogram(RAG_DOCUMENTS_FOUND, len(scores))
        for score in scores:
            self.collector.record_histogram(RAG_SEARCH_RELEVANCE, score)

    def context(self, total_tokens: int, max_context_length: int) -> None:
        self.collector.record_histogram(RAG_CONTEXT_TOKENS, total_tokens)
        self.collector.set_gauge(
            RAG_CONTEXT_UTILIZATION, total_tokens / max_context_length
        )

    def cache_lookup(self, cache: str, hit: bool) -> None:
        name = CACHE_HITS_TOTAL if hit else CACHE_MISSES_TOTAL
        self.collector.increment_counter(name, {"cache": cache})

    def citations_dropped(self, count: int) -> None:
        if count:
            self.collector.increment_counter(RAG_CITATIONS_DROPPED_TOTAL, value=count)

    def pruning_fallback(self) -> None:
        self.collector.increment_counter(HISTORY_PRUNING_FALLBACKS_TOTAL)

    def upstream_failure(self, collaborator: str, timed_out: bool) -> None:
        self.collector.increment_counter(
            RAG_UPSTREAM_FAILURES_TOTAL,
            {"collaborator": collaborator, "timed_out": str(timed_out).lower()},
        )


# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_metrics(
    app: Annotated[FastAPI, Depends(get_app)],
) -> AsyncGenerator[RagMetrics, None]:
    """Create the app's ``MetricsCollector`` and attach it to ``app.state``."""
    collector = MetricsCollector()
    rag_metrics = RagMetrics(collector)
    app.state.metrics = collector
    app.state.rag_metrics = rag_metrics
    logger.info("Metrics collector initialised")
    yield rag_metrics


def get_metrics_collector(request: Request) -> MetricsCollector:
    """Return the ``MetricsCollector`` stored on ``app.state`` by the lifespan."""
    return request.app.state.metrics
