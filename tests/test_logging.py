"""Tests for the structured logging system (mortuary_kernel/logging_config.py)."""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from mortuary_kernel.domain.types import CaseStatus
from mortuary_kernel.exceptions import BalanceRefreshError, CaseNotFoundError
from mortuary_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


class _Opaque:
    def __str__(self) -> str:
        return "opaque"


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "mortuary_kernel.test"
        assert "ts" in record

    def test_money_and_time_serialization(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        when = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)
        actor = uuid4()

        get_logger("test").info(
            "case_reconciled",
            extra={
                "total_charge": Decimal("3000.00"),
                "as_of": when,
                "actor": actor,
                "status": CaseStatus.ADMITTED,
            },
        )

        record = _parse_log(stream)
        assert record["total_charge"] == "3000.00"
        assert record["as_of"] == "2024-03-01T08:00:00+00:00"
        assert record["actor"] == str(actor)
        assert record["status"] == "admitted"

    def test_unknown_objects_fall_back_to_str(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        get_logger("test").info("odd", extra={"thing": _Opaque()})

        assert _parse_log(stream)["thing"] == "opaque"

    def test_context_fields_stamped(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(case_id="MC-001", job_id="job-1")

        get_logger("test").info("with context")

        record = _parse_log(stream)
        assert record["case_id"] == "MC-001"
        assert record["job_id"] == "job-1"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")

        try:
            raise BalanceRefreshError("MC-001", "db down", last_known_balance=Decimal("1500"))
        except BalanceRefreshError:
            logger.exception("refresh_failed")

        record = _parse_log(stream)
        assert record["exc_type"] == "BalanceRefreshError"
        assert record["exc_code"] == "BALANCE_REFRESH_FAILED"
        assert record["exc_last_known_balance"] == "1500"
        assert "traceback" in record

    def test_exception_attributes_without_code(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        try:
            raise ValueError("bad")
        except ValueError:
            get_logger("test").exception("failed")

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert "exc_code" not in record


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_ignores_none(self):
        LogContext.set(case_id="MC-001")
        LogContext.set(case_id=None, job_id="job-1")
        assert LogContext.get_all() == {"case_id": "MC-001", "job_id": "job-1"}

    def test_clear(self):
        LogContext.set(correlation_id="abc")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_values(self):
        LogContext.set(case_id="MC-001")
        with LogContext.bind(case_id="MC-002", job_id="job-9"):
            assert LogContext.get_all() == {"case_id": "MC-002", "job_id": "job-9"}
        assert LogContext.get_all() == {"case_id": "MC-001"}

    def test_bind_stringifies_values(self):
        job_id = uuid4()
        with LogContext.bind(job_id=job_id):
            assert LogContext.get_all()["job_id"] == str(job_id)

    def test_bind_ignores_unknown_keys(self):
        with LogContext.bind(tenant="x", case_id="MC-001"):
            assert LogContext.get_all() == {"case_id": "MC-001"}


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        first, first_stream = _make_handler()
        second, second_stream = _make_handler()
        configure_logging(handler=first)
        configure_logging(handler=second)

        get_logger("test").info("once")

        assert len(_parse_all_logs(first_stream)) == 1
        assert second_stream.getvalue() == ""

    def test_level_filters(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)
        logger = get_logger("test")

        logger.info("dropped")
        logger.warning("kept")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["kept"]

    def test_reset_allows_reconfigure(self):
        first, _ = _make_handler()
        configure_logging(handler=first)
        reset_logging()
        second, stream = _make_handler()
        configure_logging(handler=second)

        get_logger("test").info("after reset")

        assert _parse_log(stream)["message"] == "after reset"

    def test_not_found_error_logged_with_code(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        try:
            raise CaseNotFoundError("MC-404")
        except CaseNotFoundError:
            get_logger("test").exception("lookup_failed")

        assert _parse_log(stream)["exc_code"] == "CASE_NOT_FOUND"
