"""Health and metrics endpoints (read-only snapshots)."""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from ragchat.core.service.metrics import PROMETHEUS_CONTENT_TYPE

from .deps import CacheDep, MetricsCollectorDep
from .models import HealthResponse

router = APIRouter(tags=["observability"])


@router.get("/health", response_model=HealthResponse)
async def health(cache: CacheDep) -> HealthResponse:
    if cache is None:
        cache_mode = "off"
    else:
        cache_mode = "l1+redis" if cache.has_l2 else "l1"
    return HealthResponse(timestamp=datetime.now(timezone.utc), cache=cache_mode)


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics_text(metrics: MetricsCollectorDep) -> PlainTextResponse:
    """Prometheus text exposition of the collector state."""
    return PlainTextResponse(
        metrics.to_prometheus_format(), media_type=PROMETHEUS_CONTENT_TYPE
    )


@router.get("/metrics/json")
async def metrics_json(metrics: MetricsCollectorDep) -> dict[str, Any]:
    """The same state as ``/metrics``, as JSON with a millisecond timestamp."""
    return metrics.to_json()
