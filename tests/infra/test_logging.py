"""Tests for the logging bootstrap and query log context."""

import json
import logging

import pytest

from ragchat.configs.system import LoggingConfig
from ragchat.infra.logging import bind_query_context, setup_logging


def _record(msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord("ragchat.test", logging.INFO, __file__, 1, msg, None, None)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


class TestQueryContext:
    def test_fields_empty_outside_query(self, restore_root_logger):
        handler = setup_logging(LoggingConfig(json_output=True))
        record = _record()

        handler.filter(record)

        assert record.query_intent == ""
        assert record.response_mode == ""
        assert record.trace_id == ""

    def test_bound_fields_reach_record(self, restore_root_logger):
        handler = setup_logging(LoggingConfig(json_output=True))

        with bind_query_context(query_intent="factual", response_mode="concise"):
            record = _record()
            handler.filter(record)

        assert record.query_intent == "factual"
        assert record.response_mode == "concise"

    def test_nested_binding_restores_outer(self, restore_root_logger):
        with bind_query_context(query_intent="factual", response_mode="detailed"):
            with bind_query_context(response_mode="concise"):
                pass
            with bind_query_context():
                record = _record()
                handler = setup_logging(LoggingConfig())
                handler.filter(record)

        assert record.response_mode == "detailed"

    def test_json_line_carries_query_fields(self, restore_root_logger):
        handler = setup_logging(LoggingConfig(json_output=True))

        with bind_query_context(query_intent="comparison", response_mode="detailed"):
            record = _record("answered")
            handler.filter(record)
            line = json.loads(handler.format(record))

        assert line["message"] == "answered"
        assert line["level"] == "INFO"
        assert line["logger"] == "ragchat.test"
        assert line["query_intent"] == "comparison"


class TestSetupLogging:
    def test_single_root_handler(self, restore_root_logger):
        handler = setup_logging(LoggingConfig(level="debug"))

        root = logging.getLogger()
        assert root.handlers == [handler]
        assert root.level == logging.DEBUG
        assert logging.getLogger("uvicorn.access").propagate is False

    def test_quiet_loggers_capped(self, restore_root_logger):
        setup_logging(LoggingConfig(quiet_loggers=["ragchat.noisy"]))

        assert logging.getLogger("ragchat.noisy").level == logging.WARNING
