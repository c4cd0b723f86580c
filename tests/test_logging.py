"""Tests for the structured logging system (firestock_kernel/logging_config.py)."""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from firestock_kernel.domain.values import CheckStatus
from firestock_kernel.exceptions import CheckNotActiveError, ResumeWindowExpiredError
from firestock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


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
    """Parse all JSON log lines from a stream."""
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
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "firestock_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("item_verified", extra={"verified_count": 3, "status": "PRESENT"})

        record = _parse_log(stream)
        assert record["verified_count"] == 3
        assert record["status"] == "PRESENT"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        check_id = str(uuid4())
        with LogContext.bind(correlation_id="corr-1", check_id=check_id):
            get_logger("test").info("check_started")

        record = _parse_log(stream)
        assert record["correlation_id"] == "corr-1"
        assert record["check_id"] == check_id

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            get_logger("test").exception("sweep_check_failed")

        record = _parse_log(stream)
        assert record["exc_type"] == "RuntimeError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_kernel_exception_code_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise CheckNotActiveError("chk-1", CheckStatus.COMPLETED.value)
        except CheckNotActiveError:
            get_logger("test").exception("verify_item_failed")

        record = _parse_log(stream)
        assert record["exc_code"] == "CHECK_NOT_ACTIVE"
        assert record["exc_check_id"] == "chk-1"
        assert record["exc_status"] == "COMPLETED"

    def test_exception_datetime_attribute_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        abandoned_at = datetime(2024, 3, 1, 11, 0, tzinfo=timezone.utc)
        try:
            raise ResumeWindowExpiredError("chk-1", "app-1", abandoned_at, 30)
        except ResumeWindowExpiredError:
            get_logger("test").exception("resume_check_refused")

        record = _parse_log(stream)
        assert record["exc_abandoned_at"] == abandoned_at.isoformat()
        assert record["exc_window_minutes"] == 30

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("no_context")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "check_id" not in record

    def test_uuid_decimal_and_enum_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "typed",
            extra={
                "apparatus_uuid": uid,
                "quantity_found": Decimal("7.50"),
                "check_status": CheckStatus.ABANDONED,
            },
        )

        record = _parse_log(stream)
        assert record["apparatus_uuid"] == str(uid)
        assert record["quantity_found"] == "7.50"
        assert record["check_status"] == "ABANDONED"

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        for i in range(5):
            logger.info("line", extra={"i": i})

        records = _parse_all_logs(stream)
        assert [r["i"] for r in records] == [0, 1, 2, 3, 4]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_bind_and_get(self):
        with LogContext.bind(correlation_id="abc"):
            assert LogContext.get_all() == {"correlation_id": "abc"}

    def test_clear(self):
        with LogContext.bind(correlation_id="abc", actor_id="u1"):
            LogContext.clear()
            assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        with LogContext.bind(apparatus_id="eng-1"):
            assert LogContext.get_all()["apparatus_id"] == "eng-1"
        assert "apparatus_id" not in LogContext.get_all()

    def test_bind_restores_outer_value(self):
        with LogContext.bind(check_id="outer"):
            with LogContext.bind(check_id="inner"):
                assert LogContext.get_all()["check_id"] == "inner"
            assert LogContext.get_all()["check_id"] == "outer"

    def test_bind_skips_none(self):
        with LogContext.bind(actor_id="u1", check_id=None):
            assert LogContext.get_all() == {"actor_id": "u1"}

    def test_nested_bind_is_additive(self):
        with LogContext.bind(correlation_id="c1"):
            with LogContext.bind(actor_id="u1"):
                assert LogContext.get_all() == {"correlation_id": "c1", "actor_id": "u1"}

    def test_bind_stringifies_values(self):
        check_id = uuid4()
        with LogContext.bind(check_id=check_id):
            assert LogContext.get_all() == {"check_id": str(check_id)}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError, match="station"):
            with LogContext.bind(station="st-1"):
                pass


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=handler)
        assert len(logging.getLogger("firestock_kernel").handlers) == 1

    def test_does_not_propagate(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        assert logging.getLogger("firestock_kernel").propagate is False

    def test_get_logger_returns_child(self):
        assert get_logger("services.inventory_check").name == (
            "firestock_kernel.services.inventory_check"
        )

    def test_level_filters_debug(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.INFO, handler=handler)
        logger = get_logger("test")
        logger.debug("check_touched")
        logger.info("check_started")

        messages = [r["message"] for r in _parse_all_logs(stream)]
        assert messages == ["check_started"]
