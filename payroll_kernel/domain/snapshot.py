"""
PayrollSnapshot -- the frozen payroll result for one employee for one month.

Responsibility:
    Immutable value object produced by the calculation gateway and stored by
    the SnapshotStore.  Carries a frozen copy of the employee/contract data,
    the timesheet and the legislation parameters used, three line-item
    collections and the derived aggregates.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - sum(earnings.amount) == gross_salary
    - sum(deductions.amount) == total_deductions
    - gross_salary - total_deductions == net_salary
    - sum(employer_contributions.amount) == total_employer_insurance
    - gross_salary + total_employer_insurance == total_employer_cost
    each within the currency's minor unit.  ``consistency_problems()``
    reports every violated equation; the store refuses such snapshots.
    - Nested mappings are deep-frozen so the copy cannot drift after
      calculation.

Serialization:
    ``to_payload()`` / ``canonical_json()`` render every Decimal as a plain
    string and sort keys, so two snapshots computed from identical inputs
    serialize to identical bytes.  ``calculated_at`` is excluded from the
    payload; it describes when, not what.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Iterable, Mapping
from uuid import UUID

MINOR_UNIT = Decimal("0.01")

AGGREGATE_FIELDS = (
    "gross_salary",
    "insurable_income",
    "total_employee_insurance",
    "tax_base",
    "income_tax",
    "total_deductions",
    "net_salary",
    "total_employer_insurance",
    "total_employer_cost",
)


def _deep_freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _deep_freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_deep_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    """Convert frozen structures back to JSON-friendly dicts/lists."""
    if isinstance(value, Mapping):
        return {str(k): _thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_thaw(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def _decimal_or_none(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return Decimal(str(value))


@dataclass(frozen=True)
class PayrollLine:
    """One earning, deduction or employer-contribution line."""

    code: str
    name: str
    type: str
    amount: Decimal
    base: Decimal | None = None
    rate: Decimal | None = None
    quantity: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "type": self.type,
            "amount": str(self.amount),
            "base": None if self.base is None else str(self.base),
            "rate": None if self.rate is None else str(self.rate),
            "quantity": None if self.quantity is None else str(self.quantity),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PayrollLine:
        return cls(
            code=data["code"],
            name=data.get("name", ""),
            type=data.get("type", ""),
            amount=Decimal(str(data["amount"])),
            base=_decimal_or_none(data.get("base")),
            rate=_decimal_or_none(data.get("rate")),
            quantity=_decimal_or_none(data.get("quantity")),
        )


def _sum(lines: Iterable[PayrollLine]) -> Decimal:
    return sum((line.amount for line in lines), Decimal("0"))


@dataclass(frozen=True)
class PayrollSnapshot:
    """
    Computed payroll result for one (tenant, employee, year, month).

    ``employee_data`` keys read by the core: first_name, middle_name,
    last_name, egn, lnch, insurance_type, insurance_category, nkpd_code,
    kid_code, work_schedule_code, start_date, termination_date, iban, bic.

    ``timesheet_data`` keys: worked_days, sick_days, unpaid_days,
    absence_days, total_hours, overtime_hours.

    ``legislation_params`` keys: <fund>_employee_rate / <fund>_employer_rate
    for pension, sickness, unemployment, supplementary_pension and health,
    plus work_accident_rate and max_insurable_income.
    """

    tenant_id: UUID
    employee_id: UUID
    year: int
    month: int
    employee_data: Mapping[str, Any] = field(default_factory=dict)
    timesheet_data: Mapping[str, Any] = field(default_factory=dict)
    legislation_params: Mapping[str, Any] = field(default_factory=dict)
    earnings: tuple[PayrollLine, ...] = ()
    deductions: tuple[PayrollLine, ...] = ()
    employer_contributions: tuple[PayrollLine, ...] = ()
    gross_salary: Decimal = Decimal("0")
    insurable_income: Decimal = Decimal("0")
    total_employee_insurance: Decimal = Decimal("0")
    tax_base: Decimal = Decimal("0")
    income_tax: Decimal = Decimal("0")
    total_deductions: Decimal = Decimal("0")
    net_salary: Decimal = Decimal("0")
    total_employer_insurance: Decimal = Decimal("0")
    total_employer_cost: Decimal = Decimal("0")
    calculated_at: datetime | None = None

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {self.month}")
        object.__setattr__(self, "employee_data", _deep_freeze(self.employee_data))
        object.__setattr__(self, "timesheet_data", _deep_freeze(self.timesheet_data))
        object.__setattr__(self, "legislation_params", _deep_freeze(self.legislation_params))
        object.__setattr__(self, "earnings", tuple(self.earnings))
        object.__setattr__(self, "deductions", tuple(self.deductions))
        object.__setattr__(self, "employer_contributions", tuple(self.employer_contributions))

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_lines(
        cls,
        tenant_id: UUID,
        employee_id: UUID,
        year: int,
        month: int,
        *,
        earnings: Iterable[PayrollLine],
        deductions: Iterable[PayrollLine] = (),
        employer_contributions: Iterable[PayrollLine] = (),
        insurable_income: Decimal | None = None,
        tax_base: Decimal | None = None,
        employee_data: Mapping[str, Any] | None = None,
        timesheet_data: Mapping[str, Any] | None = None,
        legislation_params: Mapping[str, Any] | None = None,
        calculated_at: datetime | None = None,
    ) -> PayrollSnapshot:
        """
        Build a snapshot whose aggregates are derived from its lines.

        Deductions of type ``insurance`` make up total_employee_insurance and
        deductions of type ``tax`` make up income_tax.  insurable_income
        defaults to gross; tax_base defaults to gross minus employee
        insurance.
        """
        earnings = tuple(earnings)
        deductions = tuple(deductions)
        employer_contributions = tuple(employer_contributions)
        gross = _sum(earnings)
        total_deductions = _sum(deductions)
        employee_insurance = _sum(d for d in deductions if d.type == "insurance")
        income_tax = _sum(d for d in deductions if d.type == "tax")
        employer_insurance = _sum(employer_contributions)
        return cls(
            tenant_id=tenant_id,
            employee_id=employee_id,
            year=year,
            month=month,
            employee_data=employee_data or {},
            timesheet_data=timesheet_data or {},
            legislation_params=legislation_params or {},
            earnings=earnings,
            deductions=deductions,
            employer_contributions=employer_contributions,
            gross_salary=gross,
            insurable_income=gross if insurable_income is None else insurable_income,
            total_employee_insurance=employee_insurance,
            tax_base=gross - employee_insurance if tax_base is None else tax_base,
            income_tax=income_tax,
            total_deductions=total_deductions,
            net_salary=gross - total_deductions,
            total_employer_insurance=employer_insurance,
            total_employer_cost=gross + employer_insurance,
            calculated_at=calculated_at,
        )

    def with_calculated_at(self, calculated_at: datetime) -> PayrollSnapshot:
        return replace(self, calculated_at=calculated_at)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def key(self) -> tuple[UUID, UUID, int, int]:
        return (self.tenant_id, self.employee_id, self.year, self.month)

    @property
    def first_name(self) -> str:
        return str(self.employee_data.get("first_name") or "")

    @property
    def middle_name(self) -> str:
        return str(self.employee_data.get("middle_name") or "")

    @property
    def last_name(self) -> str:
        return str(self.employee_data.get("last_name") or "")

    @property
    def employee_name(self) -> str:
        parts = (self.first_name, self.middle_name, self.last_name)
        name = " ".join(p for p in parts if p)
        return name or str(self.employee_id)

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------

    def consistency_problems(self, tolerance: Decimal = MINOR_UNIT) -> tuple[str, ...]:
        """Every aggregate equation that does not hold within ``tolerance``."""
        checks = (
            ("gross_salary", _sum(self.earnings), self.gross_salary),
            ("total_deductions", _sum(self.deductions), self.total_deductions),
            ("net_salary", self.gross_salary - self.total_deductions, self.net_salary),
            (
                "total_employer_insurance",
                _sum(self.employer_contributions),
                self.total_employer_insurance,
            ),
            (
                "total_employer_cost",
                self.gross_salary + self.total_employer_insurance,
                self.total_employer_cost,
            ),
        )
        problems = []
        for name, expected, actual in checks:
            if abs(expected - actual) > tolerance:
                problems.append(f"{name} is {actual} but line items give {expected}")
        return tuple(problems)

    def is_consistent(self, tolerance: Decimal = MINOR_UNIT) -> bool:
        return not self.consistency_problems(tolerance)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_payload(self) -> dict[str, Any]:
        """Canonical, JSON-friendly content (without ``calculated_at``)."""
        payload: dict[str, Any] = {
            "tenant_id": str(self.tenant_id),
            "employee_id": str(self.employee_id),
            "year": self.year,
            "month": self.month,
            "employee_data": _thaw(self.employee_data),
            "timesheet_data": _thaw(self.timesheet_data),
            "legislation_params": _thaw(self.legislation_params),
            "earnings": [line.to_dict() for line in self.earnings],
            "deductions": [line.to_dict() for line in self.deductions],
            "employer_contributions": [line.to_dict() for line in self.employer_contributions],
        }
        for name in AGGREGATE_FIELDS:
            payload[name] = str(getattr(self, name))
        return payload

    def canonical_json(self) -> str:
        return json.dumps(self.to_payload(), sort_keys=True, ensure_ascii=False, separators=(",", ":"))

    def content_hash(self) -> str:
        return hashlib.sha256(self.canonical_json().encode("utf-8")).hexdigest()

    def to_dict(self) -> dict[str, Any]:
        payload = self.to_payload()
        payload["employee_name"] = self.employee_name
        payload["calculated_at"] = (
            self.calculated_at.isoformat() if self.calculated_at is not None else None
        )
        return payload

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        calculated_at: datetime | None = None,
    ) -> PayrollSnapshot:
        kwargs: dict[str, Any] = {
            "tenant_id": UUID(str(payload["tenant_id"])),
            "employee_id": UUID(str(payload["employee_id"])),
            "year": int(payload["year"]),
            "month": int(payload["month"]),
            "employee_data": payload.get("employee_data") or {},
            "timesheet_data": payload.get("timesheet_data") or {},
            "legislation_params": payload.get("legislation_params") or {},
            "earnings": tuple(PayrollLine.from_dict(d) for d in payload.get("earnings", ())),
            "deductions": tuple(PayrollLine.from_dict(d) for d in payload.get("deductions", ())),
            "employer_contributions": tuple(
                PayrollLine.from_dict(d) for d in payload.get("employer_contributions", ())
            ),
            "calculated_at": calculated_at,
        }
        for name in AGGREGATE_FIELDS:
            kwargs[name] = Decimal(str(payload.get(name, "0")))
        return cls(**kwargs)

    @classmethod
    def from_json(cls, text: str, calculated_at: datetime | None = None) -> PayrollSnapshot:
        return cls.from_payload(json.loads(text), calculated_at=calculated_at)
