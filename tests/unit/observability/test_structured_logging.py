"""Tests for structlog configuration and correlation id propagation."""

import io
import json

import pytest

from divecoach.observability.logging import (
    clear_correlation_id,
    configure_logging,
    correlation_id_context,
    get_correlation_id,
    get_logger,
    set_correlation_id,
)


@pytest.fixture
def log_stream():
    stream = io.StringIO()
    configure_logging(level="DEBUG", stream=stream, force=True, service_name="divecoach-test")
    yield stream
    configure_logging(force=True, service_name="divecoach")
    clear_correlation_id()


def lines(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


class TestConfigureLogging:
    def test_emits_json_with_standard_keys(self, log_stream) -> None:
        get_logger("divecoach.tests").info("circuit opened", endpoint="/api/openai/chat")

        [event] = lines(log_stream)
        assert event["event"] == "circuit opened"
        assert event["endpoint"] == "/api/openai/chat"
        assert event["level"] == "info"
        assert event["logger"] == "divecoach.tests"
        assert event["service"] == "divecoach-test"
        assert "timestamp" in event
        assert "log_level" not in event
        assert "correlation_id" not in event

    def test_level_filters_lower_events(self) -> None:
        stream = io.StringIO()
        configure_logging(level="WARNING", stream=stream, force=True)
        try:
            logger = get_logger("divecoach.tests")
            logger.info("cache hit")
            logger.warning("retrying request")
        finally:
            configure_logging(force=True)

        assert [e["event"] for e in lines(stream)] == ["retrying request"]

    def test_second_call_without_force_is_noop(self, log_stream) -> None:
        other = io.StringIO()
        configure_logging(level="DEBUG", stream=other)

        get_logger("divecoach.tests").info("still here")

        assert other.getvalue() == ""
        assert lines(log_stream)[0]["event"] == "still here"

    def test_exception_rendered(self, log_stream) -> None:
        try:
            raise ValueError("bad depth")
        except ValueError:
            get_logger("divecoach.tests").exception("parse failed")

        [event] = lines(log_stream)
        assert event["level"] == "error"
        assert "ValueError: bad depth" in event["exception"]


class TestCorrelationId:
    def test_context_binds_and_restores(self, log_stream) -> None:
        logger = get_logger("divecoach.tests")

        with correlation_id_context("req-12345"):
            assert get_correlation_id() == "req-12345"
            logger.info("coaching reply sent")
        logger.info("idle")

        inside, outside = lines(log_stream)
        assert inside["correlation_id"] == "req-12345"
        assert "correlation_id" not in outside
        assert get_correlation_id() is None

    def test_nested_context_restores_outer(self) -> None:
        with correlation_id_context("outer"):
            with correlation_id_context("inner"):
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"

    def test_set_and_clear(self) -> None:
        set_correlation_id("manual")
        assert get_correlation_id() == "manual"
        clear_correlation_id()
        assert get_correlation_id() is None
