"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable data structures that flow between the payroll core services:
    month status and transition records, per-employee calculation results,
    master-data records supplied by the employee directory, reporting
    periods, validation errors and submission/bank-file records.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Services convert ORM rows into these DTOs; callers never receive ORM
    entities.

Invariants enforced:
    - Every DTO is a frozen dataclass.
    - ``to_dict()`` renders Decimal as string, UUID as string and dates in
      ISO format so API payloads never lose precision.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any, Mapping
from uuid import UUID


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _str_or_none(value: Any) -> str | None:
    return str(value) if value is not None else None


# =============================================================================
# Payroll month
# =============================================================================


class MonthStatus(str, Enum):
    """Status of a payroll month."""

    NOT_STARTED = "not_started"
    OPEN = "open"
    CALCULATED = "calculated"
    CLOSED = "closed"


class MonthAction(str, Enum):
    """Named operations on a payroll month."""

    PREPARE = "prepare"
    CALCULATE_ALL = "calculate_all"
    CALCULATE_ONE = "calculate_one"
    CLOSE = "close"
    REOPEN = "reopen"
    RECALCULATE = "recalculate"


def period_label(year: int, month: int) -> str:
    """Human-readable period key, e.g. ``2025-06``."""
    return f"{year}-{month:02d}"


@dataclass(frozen=True)
class MonthCloseSummary:
    """
    Month-level totals and company data frozen when a month is closed.

    Together with the month's snapshots this reconstructs the closed
    payroll without consulting master data that may have changed since.
    """

    employee_count: int
    total_gross: Decimal
    total_net: Decimal
    total_employer_insurance: Decimal
    total_employer_cost: Decimal
    company: Mapping[str, Any] = field(default_factory=dict)
    legislation_params: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "employee_count": self.employee_count,
            "total_gross": str(self.total_gross),
            "total_net": str(self.total_net),
            "total_employer_insurance": str(self.total_employer_insurance),
            "total_employer_cost": str(self.total_employer_cost),
            "company": dict(self.company),
            "legislation_params": dict(self.legislation_params),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MonthCloseSummary:
        return cls(
            employee_count=int(data["employee_count"]),
            total_gross=Decimal(data["total_gross"]),
            total_net=Decimal(data["total_net"]),
            total_employer_insurance=Decimal(data["total_employer_insurance"]),
            total_employer_cost=Decimal(data["total_employer_cost"]),
            company=dict(data.get("company") or {}),
            legislation_params=dict(data.get("legislation_params") or {}),
        )


@dataclass(frozen=True)
class PayrollMonthInfo:
    """Read model of one payroll month."""

    tenant_id: UUID
    year: int
    month: int
    status: MonthStatus = MonthStatus.NOT_STARTED
    month_id: UUID | None = None
    version: int = 0
    employee_count: int = 0
    last_failed_count: int = 0
    calculated_at: datetime | None = None
    closed_at: datetime | None = None
    closed_by_id: UUID | None = None
    reopened_at: datetime | None = None
    reopened_by_id: UUID | None = None
    recalculated_at: datetime | None = None
    close_summary: MonthCloseSummary | None = None

    @property
    def period(self) -> str:
        return period_label(self.year, self.month)

    @property
    def has_results(self) -> bool:
        """True when snapshots may be consumed by declarations and payments."""
        return self.status in (MonthStatus.CALCULATED, MonthStatus.CLOSED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": str(self.tenant_id),
            "year": self.year,
            "month": self.month,
            "status": self.status.value,
            "version": self.version,
            "employee_count": self.employee_count,
            "last_failed_count": self.last_failed_count,
            "calculated_at": _iso(self.calculated_at),
            "closed_at": _iso(self.closed_at),
            "closed_by_id": _str_or_none(self.closed_by_id),
            "reopened_at": _iso(self.reopened_at),
            "reopened_by_id": _str_or_none(self.reopened_by_id),
            "recalculated_at": _iso(self.recalculated_at),
            "close_summary": self.close_summary.to_dict() if self.close_summary is not None else None,
        }


@dataclass(frozen=True)
class MonthTransitionRecord:
    """One entry of the append-only month transition log."""

    transition_id: UUID
    tenant_id: UUID
    year: int
    month: int
    action: MonthAction
    from_state: MonthStatus
    to_state: MonthStatus
    actor_id: UUID
    occurred_at: datetime
    detail: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "transition_id": str(self.transition_id),
            "action": self.action.value,
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "actor_id": str(self.actor_id),
            "occurred_at": _iso(self.occurred_at),
            "detail": dict(self.detail),
        }


# =============================================================================
# Per-employee calculation results
# =============================================================================


class CalculationStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class EmployeeCalculationResult:
    """
    Outcome of calculating one employee.

    A failed or skipped result never carries a snapshot; a succeeded result
    always does.
    """

    employee_id: UUID
    status: CalculationStatus
    snapshot: Any = None  # PayrollSnapshot when succeeded
    error_code: str | None = None
    error_message: str | None = None
    duration_ms: int = 0

    @classmethod
    def success(cls, employee_id: UUID, snapshot: Any, duration_ms: int = 0) -> EmployeeCalculationResult:
        return cls(employee_id, CalculationStatus.SUCCEEDED, snapshot=snapshot, duration_ms=duration_ms)

    @classmethod
    def failure(
        cls,
        employee_id: UUID,
        error_code: str,
        error_message: str,
        duration_ms: int = 0,
    ) -> EmployeeCalculationResult:
        return cls(
            employee_id,
            CalculationStatus.FAILED,
            error_code=error_code,
            error_message=error_message,
            duration_ms=duration_ms,
        )

    @classmethod
    def skipped(cls, employee_id: UUID, reason: str = "CANCELLED") -> EmployeeCalculationResult:
        return cls(employee_id, CalculationStatus.SKIPPED, error_code=reason)

    @property
    def is_success(self) -> bool:
        return self.status == CalculationStatus.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "employee_id": str(self.employee_id),
            "status": self.status.value,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "duration_ms": self.duration_ms,
        }
        if self.snapshot is not None:
            payload["snapshot"] = self.snapshot.to_dict()
        return payload


@dataclass(frozen=True)
class CalculationBatchResult:
    """Aggregated result of CalculateAll / RecalculateMonth."""

    tenant_id: UUID
    year: int
    month: int
    action: MonthAction
    month_status: MonthStatus
    results: tuple[EmployeeCalculationResult, ...] = ()
    cancelled: bool = False
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> tuple[EmployeeCalculationResult, ...]:
        return tuple(r for r in self.results if r.status == CalculationStatus.SUCCEEDED)

    @property
    def failed(self) -> tuple[EmployeeCalculationResult, ...]:
        return tuple(r for r in self.results if r.status == CalculationStatus.FAILED)

    @property
    def skipped(self) -> tuple[EmployeeCalculationResult, ...]:
        return tuple(r for r in self.results if r.status == CalculationStatus.SKIPPED)

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def total(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": str(self.tenant_id),
            "year": self.year,
            "month": self.month,
            "action": self.action.value,
            "status": self.month_status.value,
            "total": self.total,
            "succeeded": self.succeeded_count,
            "failed": self.failed_count,
            "skipped": self.skipped_count,
            "cancelled": self.cancelled,
            "duration_ms": self.duration_ms,
            "results": [r.to_dict() for r in self.results],
        }


# =============================================================================
# Master data (supplied by the employee directory)
# =============================================================================


@dataclass(frozen=True)
class CompanyInfo:
    tenant_id: UUID
    name: str
    bulstat: str
    nkid_code: str = ""
    ekatte_code: str = ""


@dataclass(frozen=True)
class EmployeeRecord:
    employee_id: UUID
    first_name: str
    last_name: str
    middle_name: str = ""
    egn: str = ""
    lnch: str = ""
    iban: str = ""
    bic: str = ""
    active: bool = True

    @property
    def full_name(self) -> str:
        parts = (self.first_name, self.middle_name, self.last_name)
        return " ".join(p for p in parts if p)


@dataclass(frozen=True)
class EmploymentRecord:
    """Current employment contract of an employee."""

    employee_id: UUID
    contract_number: str = ""
    contract_date: date | None = None
    contract_basis: str = ""
    start_date: date | None = None
    contract_end_date: date | None = None
    nkpd_code: str = ""
    kid_code: str = ""


class EmploymentEventType(str, Enum):
    """Employment events reported under Art.62 of the Labour Code."""

    NEW_CONTRACT = "01"
    AMENDMENT = "02"
    TERMINATION = "03"

    @property
    def label(self) -> str:
        return _EVENT_LABELS[self]


_EVENT_LABELS = {
    EmploymentEventType.NEW_CONTRACT: "Нов ТД",
    EmploymentEventType.AMENDMENT: "ДС",
    EmploymentEventType.TERMINATION: "Прекратяване",
}


@dataclass(frozen=True)
class EmploymentEvent:
    """
    A contract event: new contract, amendment or termination.

    ``event_date`` is the contract date, amendment date or termination
    order date respectively.
    """

    employee_id: UUID
    event_type: EmploymentEventType
    event_date: date
    basis: str = ""
    document_number: str = ""
    nkpd_code: str = ""
    kid_code: str = ""
    contract_end_date: date | None = None
    termination_basis: str = ""
    last_work_day: date | None = None


# =============================================================================
# Declarations
# =============================================================================


class DeclarationType(str, Enum):
    D1 = "D1"
    D6_INS = "D6_INS"
    D6_TAX = "D6_TAX"
    ART62 = "ART62"
    ART123 = "ART123"
    ART73 = "ART73"

    @property
    def slug(self) -> str:
        """URL form, e.g. ``d6-ins``."""
        return self.value.lower().replace("_", "-")

    @classmethod
    def from_slug(cls, slug: str) -> DeclarationType:
        normalized = slug.strip().upper().replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"unknown declaration type '{slug}'") from None

    @property
    def is_monthly(self) -> bool:
        return self in (DeclarationType.D1, DeclarationType.D6_INS, DeclarationType.D6_TAX)


class CorrectionCode(IntEnum):
    REGULAR = 0
    CORRECTING = 1
    VOIDING = 8


class SubmissionStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class ReportingPeriod:
    """
    Period a declaration covers.

    Monthly filings use (year, month); Art.62 uses a date range; Art.123 uses
    a single change date; Art.73 is annual (month 0).
    """

    year: int
    month: int = 0
    date_from: date | None = None
    date_to: date | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.month <= 12:
            raise ValueError(f"month must be between 0 and 12, got {self.month}")
        if (self.date_from is None) != (self.date_to is None):
            raise ValueError("date_from and date_to must be given together")
        if self.date_from is not None and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")

    @classmethod
    def monthly(cls, year: int, month: int) -> ReportingPeriod:
        if not 1 <= month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {month}")
        return cls(year=year, month=month)

    @classmethod
    def annual(cls, year: int) -> ReportingPeriod:
        return cls(year=year, month=0)

    @classmethod
    def date_range(cls, date_from: date, date_to: date) -> ReportingPeriod:
        return cls(
            year=date_from.year,
            month=date_from.month,
            date_from=date_from,
            date_to=date_to,
        )

    @classmethod
    def on_date(cls, day: date) -> ReportingPeriod:
        return cls.date_range(day, day)

    @property
    def is_range(self) -> bool:
        return self.date_from is not None

    def contains(self, day: date) -> bool:
        if self.date_from is not None:
            return self.date_from <= day <= self.date_to
        if self.month == 0:
            return day.year == self.year
        return day.year == self.year and day.month == self.month

    @property
    def label(self) -> str:
        if self.date_from is not None:
            if self.date_from == self.date_to:
                return self.date_from.isoformat()
            return f"{self.date_from.isoformat()}..{self.date_to.isoformat()}"
        if self.month == 0:
            return str(self.year)
        return period_label(self.year, self.month)

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "month": self.month,
            "date_from": _iso(self.date_from),
            "date_to": _iso(self.date_to),
        }


@dataclass(frozen=True)
class ValidationError:
    """One validation finding against an employee (or the company when employee_id is None)."""

    employee_id: UUID | None
    employee_name: str
    field: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "employee_id": _str_or_none(self.employee_id),
            "employee_name": self.employee_name,
            "field": self.field,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ValidationError:
        employee_id = data.get("employee_id")
        return cls(
            employee_id=UUID(employee_id) if employee_id else None,
            employee_name=data.get("employee_name", ""),
            field=data.get("field", ""),
            message=data.get("message", ""),
        )


@dataclass(frozen=True)
class NapSubmissionInfo:
    """Read model of one ledger row."""

    submission_id: UUID
    tenant_id: UUID
    declaration_type: DeclarationType
    period: ReportingPeriod
    file_name: str
    file_content: str
    record_count: int
    status: SubmissionStatus
    correction_code: CorrectionCode
    generated_at: datetime
    generated_by_id: UUID
    content_hash: str
    validation_errors: tuple[ValidationError, ...] = ()
    employee_ids: tuple[UUID, ...] = ()
    idempotency_key: str | None = None

    def to_dict(self, include_content: bool = False) -> dict[str, Any]:
        payload = {
            "id": str(self.submission_id),
            "tenant_id": str(self.tenant_id),
            "type": self.declaration_type.value,
            "period": self.period.to_dict(),
            "file_name": self.file_name,
            "record_count": self.record_count,
            "status": self.status.value,
            "correction_code": int(self.correction_code),
            "generated_at": _iso(self.generated_at),
            "generated_by_id": str(self.generated_by_id),
            "content_hash": self.content_hash,
            "validation_errors": [e.to_dict() for e in self.validation_errors],
            "employee_ids": [str(e) for e in self.employee_ids],
            "idempotency_key": self.idempotency_key,
        }
        if include_content:
            payload["file_content"] = self.file_content
        return payload


@dataclass(frozen=True)
class BankPaymentFileInfo:
    """Read model of a generated bank payment artifact."""

    file_id: UUID
    tenant_id: UUID
    year: int
    month: int
    file_name: str
    record_count: int
    total_amount: Decimal
    warning_count: int
    content_hash: str
    generated_at: datetime
    generated_by_id: UUID

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.file_id),
            "tenant_id": str(self.tenant_id),
            "year": self.year,
            "month": self.month,
            "file_name": self.file_name,
            "record_count": self.record_count,
            "total_amount": str(self.total_amount),
            "warning_count": self.warning_count,
            "content_hash": self.content_hash,
            "generated_at": _iso(self.generated_at),
            "generated_by_id": str(self.generated_by_id),
        }
