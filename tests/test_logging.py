"""Tests for the structured logging system (tip_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from tip_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's config."""
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
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "tip_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("transfer_settled", extra={"recipients": 4, "kind": "role"})

        record = _parse_log(stream)
        assert record["recipients"] == 4
        assert record["kind"] == "role"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(request_id="req-1", reactdrop_id="rd-9")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["request_id"] == "req-1"
        assert record["reactdrop_id"] == "rd-9"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_kernel_exception_code_extracted(self):
        """Kernel exceptions carry a .code attribute and structured fields."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        from tip_kernel.exceptions import InsufficientFundsError

        try:
            raise InsufficientFundsError("alice", requested=12, available=5)
        except InsufficientFundsError:
            logger.error("tip_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INSUFFICIENT_FUNDS"
        assert record["exc_type"] == "InsufficientFundsError"
        assert record["exc_account_id"] == "alice"
        assert record["exc_requested"] == 12
        assert record["exc_available"] == 5

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "request_id" not in record
        assert "event_id" not in record

    def test_uuid_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_uuid", extra={"event_id_extra": uid})

        record = _parse_log(stream)
        assert record["event_id_extra"] == str(uid)

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # Default level is INFO, so the debug line is dropped
        assert len(logs) == 2
        for record in logs:
            assert {"ts", "level", "logger", "message"} <= record.keys()


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(request_id="x", event_id="y")
        assert LogContext.get_all() == {"request_id": "x", "event_id": "y"}

    def test_clear(self):
        LogContext.set(request_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(account_id="outer")
        with LogContext.bind(account_id="inner"):
            assert LogContext.get_all()["account_id"] == "inner"
        assert LogContext.get_all()["account_id"] == "outer"

    def test_bind_restores_none(self):
        assert "request_id" not in LogContext.get_all()
        with LogContext.bind(request_id="temp"):
            assert LogContext.get_all()["request_id"] == "temp"
        assert "request_id" not in LogContext.get_all()

    def test_unknown_field_rejected_before_anything_is_set(self):
        with pytest.raises(ValueError):
            LogContext.bind(request_id="r", not_a_field="x")
        assert LogContext.get_all() == {}

    def test_all_fields(self):
        LogContext.set(
            request_id="r",
            account_id="a",
            event_id="e",
            reactdrop_id="d",
        )
        assert LogContext.get_all() == {
            "request_id": "r",
            "account_id": "a",
            "event_id": "e",
            "reactdrop_id": "d",
        }


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for initialization."""

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)  # second call is no-op
        assert len(logging.getLogger("tip_kernel").handlers) == 1

    def test_get_logger_returns_child(self):
        assert get_logger("services.tipping").name == "tip_kernel.services.tipping"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "tip_kernel.deep.nested.module"
