"""Tests for logging configuration and trace id binding."""

import logging
from typing import Generator

import pytest
import structlog

from mailgate.core.logging import NOISY_LOGGERS, configure_logging, set_trace_id


@pytest.fixture(autouse=True)
def clean_logging() -> Generator[None, None, None]:
    structlog.contextvars.clear_contextvars()
    levels = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


class TestSetTraceId:
    def test_binds_trace_id(self) -> None:
        set_trace_id("exec_a1")
        assert structlog.contextvars.get_contextvars() == {"trace_id": "exec_a1"}

    def test_rebinding_replaces_value(self) -> None:
        set_trace_id("exec_a1")
        set_trace_id("exec_b2")
        assert structlog.contextvars.get_contextvars()["trace_id"] == "exec_b2"

    def test_none_unbinds(self) -> None:
        set_trace_id("exec_a1")
        set_trace_id(None)
        assert "trace_id" not in structlog.contextvars.get_contextvars()

    def test_none_without_binding_is_harmless(self) -> None:
        set_trace_id(None)
        assert structlog.contextvars.get_contextvars() == {}

    def test_bound_id_merged_into_events(self) -> None:
        set_trace_id("exec_a1")
        event = structlog.contextvars.merge_contextvars(None, "info", {"event": "x"})
        assert event["trace_id"] == "exec_a1"

    def test_explicit_trace_id_wins(self) -> None:
        set_trace_id("exec_a1")
        event = structlog.contextvars.merge_contextvars(
            None, "info", {"event": "x", "trace_id": "exec_other"}
        )
        assert event["trace_id"] == "exec_other"


class TestConfigureLogging:
    def test_quiets_noisy_loggers(self) -> None:
        configure_logging(log_level="INFO")
        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_debug_keeps_noisy_loggers(self) -> None:
        configure_logging(log_level="DEBUG", json_output=False)
        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.DEBUG

    def test_json_renderer_selected(self) -> None:
        configure_logging(log_level="INFO", json_output=True)
        processors = structlog.get_config()["processors"]
        assert processors[0] is structlog.contextvars.merge_contextvars
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
