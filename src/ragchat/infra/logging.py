"""Logging bootstrap for the RAG service.

``setup_logging`` installs a single stdout handler on the root logger and
on uvicorn's loggers.  Output is JSON lines (``json_output=True``) or
coloured text for local runs.

Every record is tagged with:

* ``trace_id`` / ``span_id`` of the active OpenTelemetry span, and
* ``query_intent`` / ``response_mode`` of the query being answered, bound
  by ``RagPipeline.answer`` through :func:`bind_query_context`.

Fields are empty strings outside a query or span.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from opentelemetry import trace
from pythonjsonlogger.json import JsonFormatter
from uvicorn.logging import DefaultFormatter

from ragchat.configs.system import LoggingConfig

QUERY_FIELDS = ("query_intent", "response_mode")
TRACE_FIELDS = ("trace_id", "span_id")

_query_context: ContextVar[dict[str, str] | None] = ContextVar(
    "ragchat_query_log_context", default=None
)


@contextmanager
def bind_query_context(**fields: str) -> Iterator[None]:
    """Attach query fields to every record logged inside the block."""
    current = _query_context.get() or {}
    token = _query_context.set({**current, **fields})
    try:
        yield
    finally:
        _query_context.reset(token)


class _RecordContextFilter(logging.Filter):
    """Copies trace ids and bound query fields onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = trace.get_current_span().get_span_context()
        valid = ctx is not None and ctx.is_valid
        record.trace_id = format(ctx.trace_id, "032x") if valid else ""  # type: ignore[attr-defined]
        record.span_id = format(ctx.span_id, "016x") if valid else ""  # type: ignore[attr-defined]

        bound = _query_context.get() or {}
        for field in QUERY_FIELDS:
            setattr(record, field, bound.get(field, ""))
        return True


def _json_formatter() -> logging.Formatter:
    extra = " ".join(f"%({f})s" for f in TRACE_FIELDS + QUERY_FIELDS)
    return JsonFormatter(
        fmt=f"%(asctime)s %(levelname)s %(name)s %(message)s {extra}",
        rename_fields={
            "asctime": "timestamp",
            "levelname": "level",
            "name": "logger",
        },
        defaults={f: "" for f in TRACE_FIELDS + QUERY_FIELDS},
    )


def _text_formatter() -> logging.Formatter:
    return DefaultFormatter(
        fmt="%(levelprefix)s %(asctime)s [%(query_intent)s] %(name)s  %(message)s",
        datefmt="%H:%M:%S",
        use_colors=True,
    )


def setup_logging(config: LoggingConfig | None = None) -> logging.Handler:
    """Configure root and uvicorn loggers; returns the installed handler."""
    config = config or LoggingConfig()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(_RecordContextFilter())
    handler.setFormatter(
        _json_formatter() if config.json_output else _text_formatter()
    )

    root = logging.getLogger()
    root.setLevel(config.level.upper())
    root.handlers = [handler]

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False

    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    return handler
