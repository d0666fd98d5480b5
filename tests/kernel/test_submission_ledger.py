"""
Tests for SubmissionLedger -- the append-only declaration ledger.

Verifies:
- Appends never overwrite; the latest filing per (type, period) is current
- Correction and void filings need an earlier regular filing
- generated_at strictly increases even when the clock stands still
- Idempotency keys return the existing filing, and refuse reuse for
  another type, period or correction code
- No two filings of one type share a (year, month, generated_at)
- Tenant scoping on reads
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from payroll_kernel.domain.dtos import (
    CorrectionCode,
    DeclarationType,
    ReportingPeriod,
    SubmissionStatus,
    ValidationError,
)
from payroll_kernel.exceptions import (
    ConflictingCorrectionError,
    IdempotencyConflictError,
    NotFoundError,
)
from payroll_kernel.services.submission_ledger import SubmissionLedger, content_hash

JUNE = ReportingPeriod.monthly(2025, 6)


@pytest.fixture
def ledger(session, deterministic_clock):
    return SubmissionLedger(session, deterministic_clock)


def _append(ledger, tenant_id, actor_id, code=CorrectionCode.REGULAR, **kwargs):
    kwargs.setdefault("declaration_type", DeclarationType.D6_INS)
    kwargs.setdefault("period", JUNE)
    kwargs.setdefault("file_content", "content\r\n")
    return ledger.append(
        tenant_id,
        kwargs.pop("declaration_type"),
        kwargs.pop("period"),
        code,
        file_name="NRA62007.TXT",
        record_count=1,
        actor_id=actor_id,
        **kwargs,
    )


class TestAppend:
    def test_regular_filing(self, ledger, tenant_id, test_actor_id, deterministic_clock):
        info = _append(ledger, tenant_id, test_actor_id, file_content="abc")

        assert info.status == SubmissionStatus.DRAFT
        assert info.correction_code == CorrectionCode.REGULAR
        assert info.generated_at == deterministic_clock.now()
        assert info.generated_by_id == test_actor_id
        assert info.content_hash == content_hash("abc")
        assert ledger.get(info.submission_id).file_content == "abc"

    def test_second_filing_becomes_current(self, ledger, tenant_id, test_actor_id):
        """The clock does not move; ordering still holds."""
        first = _append(ledger, tenant_id, test_actor_id, file_content="first")
        second = _append(ledger, tenant_id, test_actor_id, file_content="second")

        assert second.generated_at > first.generated_at
        history = ledger.history(tenant_id, DeclarationType.D6_INS, JUNE)
        assert [h.submission_id for h in history] == [first.submission_id, second.submission_id]
        assert ledger.current(tenant_id, DeclarationType.D6_INS, JUNE).file_content == "second"
        assert ledger.get(first.submission_id).file_content == "first"

    def test_validation_findings_and_employees_kept(self, ledger, tenant_id, test_actor_id):
        employee_id = uuid4()
        finding = ValidationError(employee_id, "Иван Петров", "egn", "invalid EGN checksum")
        info = _append(
            ledger,
            tenant_id,
            test_actor_id,
            validation_errors=[finding],
            employee_ids=[employee_id],
        )
        loaded = ledger.get(info.submission_id)
        assert loaded.validation_errors == (finding,)
        assert loaded.employee_ids == (employee_id,)


class TestCorrections:
    @pytest.mark.parametrize("code", [CorrectionCode.CORRECTING, CorrectionCode.VOIDING])
    def test_correction_without_regular_rejected(self, ledger, tenant_id, test_actor_id, code):
        with pytest.raises(ConflictingCorrectionError) as exc_info:
            _append(ledger, tenant_id, test_actor_id, code=code)

        assert exc_info.value.code == "CONFLICTING_CORRECTION"
        assert ledger.history(tenant_id, DeclarationType.D6_INS, JUNE) == []

    def test_correction_after_regular(self, ledger, tenant_id, test_actor_id):
        _append(ledger, tenant_id, test_actor_id)
        corrected = _append(ledger, tenant_id, test_actor_id, code=CorrectionCode.CORRECTING)
        assert ledger.current(tenant_id, DeclarationType.D6_INS, JUNE).submission_id == (
            corrected.submission_id
        )

    def test_regular_of_another_type_does_not_count(self, ledger, tenant_id, test_actor_id):
        _append(ledger, tenant_id, test_actor_id, declaration_type=DeclarationType.D6_TAX)
        with pytest.raises(ConflictingCorrectionError):
            _append(ledger, tenant_id, test_actor_id, code=CorrectionCode.CORRECTING)

    def test_regular_of_another_period_does_not_count(self, ledger, tenant_id, test_actor_id):
        _append(ledger, tenant_id, test_actor_id, period=ReportingPeriod.monthly(2025, 5))
        with pytest.raises(ConflictingCorrectionError):
            _append(ledger, tenant_id, test_actor_id, code=CorrectionCode.VOIDING)


class TestIdempotency:
    def test_same_key_returns_existing(self, ledger, tenant_id, test_actor_id):
        first = _append(ledger, tenant_id, test_actor_id, idempotency_key="d6-2025-06")
        again = _append(
            ledger, tenant_id, test_actor_id, idempotency_key="d6-2025-06", file_content="other"
        )
        assert again.submission_id == first.submission_id
        assert len(ledger.history(tenant_id, DeclarationType.D6_INS, JUNE)) == 1

    def test_key_scoped_to_tenant(self, ledger, tenant_id, test_actor_id):
        mine = _append(ledger, tenant_id, test_actor_id, idempotency_key="k")
        theirs = _append(ledger, uuid4(), test_actor_id, idempotency_key="k")
        assert mine.submission_id != theirs.submission_id

    @pytest.mark.parametrize(
        "changes",
        [
            {"declaration_type": DeclarationType.D6_TAX},
            {"period": ReportingPeriod.monthly(2025, 7)},
            {"code": CorrectionCode.CORRECTING},
        ],
    )
    def test_key_reused_for_another_filing(self, ledger, tenant_id, test_actor_id, changes, captured_logs):
        first = _append(ledger, tenant_id, test_actor_id, idempotency_key="d6-2025-06")

        with pytest.raises(IdempotencyConflictError) as exc_info:
            _append(ledger, tenant_id, test_actor_id, idempotency_key="d6-2025-06", **changes)

        assert exc_info.value.code == "IDEMPOTENCY_CONFLICT"
        assert exc_info.value.submission_id == str(first.submission_id)
        assert exc_info.value.filed == "D6_INS 2025-06 code 0"
        assert len(ledger.list_submissions(tenant_id)) == 1
        assert any(r["message"] == "submission_idempotency_conflict" for r in captured_logs())


class TestGeneratedAtSlot:
    def test_ranges_in_one_month_get_distinct_instants(self, ledger, tenant_id, test_actor_id):
        first_half = ReportingPeriod.date_range(date(2025, 6, 1), date(2025, 6, 15))
        second_half = ReportingPeriod.date_range(date(2025, 6, 16), date(2025, 6, 30))

        first = _append(ledger, tenant_id, test_actor_id, declaration_type=DeclarationType.ART62, period=first_half)
        second = _append(ledger, tenant_id, test_actor_id, declaration_type=DeclarationType.ART62, period=second_half)

        assert second.generated_at > first.generated_at

    def test_stale_latest_read_refused_by_database(self, ledger, tenant_id, test_actor_id, monkeypatch):
        """Two appends that read the same latest instant cannot both be written."""
        _append(ledger, tenant_id, test_actor_id)
        monkeypatch.setattr(ledger, "_latest_generated_at", lambda *args: None)

        with pytest.raises(IntegrityError):
            _append(ledger, tenant_id, test_actor_id, file_content="racing")


class TestReads:
    def test_current_with_nothing_filed(self, ledger, tenant_id):
        with pytest.raises(NotFoundError):
            ledger.current(tenant_id, DeclarationType.D1, JUNE)

    def test_get_other_tenant_is_not_found(self, ledger, tenant_id, test_actor_id):
        info = _append(ledger, tenant_id, test_actor_id)
        with pytest.raises(NotFoundError):
            ledger.get(info.submission_id, uuid4())
        assert ledger.get(info.submission_id, tenant_id).submission_id == info.submission_id

    def test_list_newest_first_with_filters(self, ledger, tenant_id, test_actor_id, deterministic_clock):
        d6 = _append(ledger, tenant_id, test_actor_id)
        deterministic_clock.advance(60)
        d1 = _append(ledger, tenant_id, test_actor_id, declaration_type=DeclarationType.D1)

        assert [s.submission_id for s in ledger.list_submissions(tenant_id)] == [
            d1.submission_id,
            d6.submission_id,
        ]
        only_d6 = ledger.list_submissions(tenant_id, DeclarationType.D6_INS)
        assert [s.submission_id for s in only_d6] == [d6.submission_id]
        assert ledger.list_submissions(tenant_id, year=2024) == []

    def test_range_periods_are_distinct(self, ledger, tenant_id, test_actor_id):
        """Two notices in the same month but for different ranges have separate histories."""
        first_half = ReportingPeriod.date_range(date(2025, 6, 1), date(2025, 6, 15))
        second_half = ReportingPeriod.date_range(date(2025, 6, 16), date(2025, 6, 30))
        _append(ledger, tenant_id, test_actor_id, declaration_type=DeclarationType.ART62, period=first_half)

        assert ledger.has_regular(tenant_id, DeclarationType.ART62, first_half)
        assert not ledger.has_regular(tenant_id, DeclarationType.ART62, second_half)
