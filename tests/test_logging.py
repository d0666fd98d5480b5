"""Tests for the structured logging system (payroll_kernel/logging_config.py)."""

import contextvars
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from payroll_kernel.domain.dtos import MonthStatus
from payroll_kernel.exceptions import (
    CalculationFailureError,
    InvalidTransitionError,
    MissingTimesheetError,
)
from payroll_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Give each test an unconfigured logger, then restore the suite configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def emitted():
    """Configure logging into a buffer; calling the fixture value returns the parsed lines."""
    stream = StringIO()
    configure_logging(stream=stream)

    def _lines() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    return _lines


log = get_logger("tests.logging")


class TestStructuredFormatter:
    """JSON log output format."""

    def test_envelope(self, emitted):
        log.info("hello")

        (record,) = emitted()
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "payroll_kernel.tests.logging"
        assert record["ts"].endswith("+00:00")

    def test_extra_fields_included(self, emitted):
        log.info("payroll_batch_completed", extra={"succeeded": 3, "status": "calculated"})

        (record,) = emitted()
        assert record["succeeded"] == 3
        assert record["status"] == "calculated"

    def test_payroll_values_rendered(self, emitted):
        """UUIDs, Decimals and enums become their string forms."""
        employee_id = uuid4()
        log.info(
            "snapshot_saved",
            extra={"employee_id": employee_id, "net": Decimal("1551.96"), "status": MonthStatus.CLOSED},
        )

        (record,) = emitted()
        assert record["employee_id"] == str(employee_id)
        assert record["net"] == "1551.96"
        assert record["status"] == "closed"

    def test_cyrillic_kept_readable(self, emitted):
        log.info("employee_skipped", extra={"employee_name": "Мария Иванова"})
        assert emitted()[0]["employee_name"] == "Мария Иванова"

    def test_context_fields_included(self, emitted):
        LogContext.set(correlation_id="abc-123", period="2025-06")
        log.info("test_msg")

        (record,) = emitted()
        assert record["correlation_id"] == "abc-123"
        assert record["period"] == "2025-06"

    def test_no_context_fields_when_empty(self, emitted):
        log.info("bare_message")
        assert not {"correlation_id", "tenant_id", "period"} & set(emitted()[0])

    def test_context_wins_over_extra(self, emitted):
        with LogContext.bind(period="2025-06"):
            log.info("msg", extra={"period": "1999-01"})

        assert emitted()[0]["period"] == "2025-06"

    def test_plain_exception(self, emitted):
        try:
            raise ValueError("boom")
        except ValueError:
            log.error("failed", exc_info=True)

        (record,) = emitted()
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record
        assert "Traceback" in record["traceback"]

    def test_payroll_exception_fields_extracted(self, emitted):
        """Payroll core exceptions contribute their code and structured attributes."""
        try:
            raise InvalidTransitionError("2025-06", "closed", "closed", "calculate_all")
        except InvalidTransitionError:
            log.error("transition_error", exc_info=True)

        (record,) = emitted()
        assert record["exc_code"] == "INVALID_TRANSITION"
        assert record["exc_type"] == "InvalidTransitionError"
        assert record["exc_period"] == "2025-06"
        assert record["exc_current_state"] == "closed"

    def test_calculation_failure_reason(self, emitted):
        employee_id = uuid4()
        try:
            raise MissingTimesheetError(employee_id, 2025, 6)
        except CalculationFailureError:
            log.warning("employee_calculation_failed", exc_info=True)

        (record,) = emitted()
        assert record["exc_code"] == "CALCULATION_FAILURE"
        assert record["exc_reason"] == "MISSING_TIMESHEET"

    def test_debug_filtered_at_info(self, emitted):
        log.info("first")
        log.warning("second")
        log.debug("third")

        assert [r["message"] for r in emitted()] == ["first", "second"]


class TestLogContext:
    """Context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", tenant_id="t")
        assert LogContext.get_all() == {"correlation_id": "x", "tenant_id": "t"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(period="2025-05")
        with LogContext.bind(period="2025-06"):
            assert LogContext.get_all()["period"] == "2025-06"
        assert LogContext.get_all()["period"] == "2025-05"

    def test_bind_restores_after_error(self):
        with pytest.raises(RuntimeError), LogContext.bind(period="2025-06"):
            raise RuntimeError("calculation aborted")
        assert LogContext.get_all() == {}

    def test_bind_skips_none(self):
        """None values leave the current field untouched."""
        LogContext.set(actor_id="a")
        with LogContext.bind(actor_id=None, tenant_id="t"):
            assert LogContext.get_all() == {"actor_id": "a", "tenant_id": "t"}
        assert LogContext.get_all() == {"actor_id": "a"}

    def test_all_fields(self):
        LogContext.set(correlation_id="c", tenant_id="t", actor_id="a", period="p", trace_id="x")
        assert len(LogContext.get_all()) == 5

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError, match="employee"):
            LogContext.set(employee="e")
        assert LogContext.get_all() == {}

    def test_values_stringified(self):
        tenant = uuid4()
        with LogContext.bind(tenant_id=tenant):
            assert LogContext.get_all() == {"tenant_id": str(tenant)}

    def test_copied_context_reaches_worker_thread(self):
        """Calculation workers run under copy_context() and see the batch period."""
        with LogContext.bind(period="2025-06"), ThreadPoolExecutor(max_workers=1) as pool:
            seen = pool.submit(contextvars.copy_context().run, LogContext.get_all).result()
        assert seen == {"period": "2025-06"}
        assert LogContext.get_all() == {}


class TestConfigureLogging:
    def test_idempotent(self):
        first = logging.StreamHandler(StringIO())
        configure_logging(handler=first)
        configure_logging(handler=logging.StreamHandler(StringIO()))

        assert logging.getLogger("payroll_kernel").handlers == [first]
        assert isinstance(first.formatter, StructuredFormatter)

    def test_reset_allows_reconfiguration(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        reset_logging()
        assert logging.getLogger("payroll_kernel").handlers == []
        assert logging.getLogger("payroll_kernel").level == logging.WARNING

    def test_get_logger_returns_child(self):
        assert get_logger("services.month_controller").name == "payroll_kernel.services.month_controller"

    def test_debug_level_reaches_nested_loggers(self):
        stream = StringIO()
        configure_logging(stream=stream, level=logging.DEBUG)
        get_logger("engines.declaration6").debug("hierarchy_test")

        record = json.loads(stream.getvalue())
        assert record["logger"] == "payroll_kernel.engines.declaration6"
