"""Tests for the structured logging system (filing_kernel/logging_config.py)."""

import json
import logging
from datetime import date
from io import StringIO
from uuid import uuid4

import pytest

from filing_kernel.exceptions import ConcurrentModificationError
from filing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Start each test unconfigured, then restore the suite-wide configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "filing_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "obligation_transitioned", extra={"version": 3, "to_stage": "PAPERWORK_CHASED"}
        )

        record = _parse_log(stream)
        assert record["version"] == 3
        assert record["to_stage"] == "PAPERWORK_CHASED"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", job_id="job-1")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["job_id"] == "job-1"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_kernel_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ConcurrentModificationError("ob-1", 2, 3)
        except ConcurrentModificationError:
            get_logger("test").error("transition_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "CONCURRENT_MODIFICATION"
        assert record["exc_obligation_id"] == "ob-1"
        assert record["exc_expected_version"] == 2
        assert record["exc_actual_version"] == 3

    def test_dates_and_uuids_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "with_values",
            extra={"obligation_id": uid, "period_end": date(2024, 4, 30)},
        )

        record = _parse_log(stream)
        assert record["obligation_id"] == str(uid)
        assert record["period_end"] == "2024-04-30"

    def test_level_filters_debug(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(correlation_id="x", obligation_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "obligation_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(job_id="outer")
        with LogContext.bind(job_id="inner"):
            assert LogContext.get_all()["job_id"] == "inner"
        assert LogContext.get_all()["job_id"] == "outer"

    def test_bind_restores_none(self):
        with LogContext.bind(correlation_id="temp"):
            assert LogContext.get_all()["correlation_id"] == "temp"
        assert "correlation_id" not in LogContext.get_all()

    def test_bind_ignores_none_values(self):
        with LogContext.bind(job_id="j", correlation_id=None):
            assert LogContext.get_all() == {"job_id": "j"}

    def test_bind_rejects_unknown_fields(self):
        with pytest.raises(ValueError, match="Unknown log context fields"):
            LogContext.bind(tenant="t")


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        assert len(logging.getLogger("filing_kernel").handlers) == 1

    def test_does_not_propagate(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        assert logging.getLogger("filing_kernel").propagate is False

    def test_get_logger_returns_child(self):
        assert get_logger("services.rollover").name == "filing_kernel.services.rollover"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("batch.scheduler").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "filing_kernel.batch.scheduler"
