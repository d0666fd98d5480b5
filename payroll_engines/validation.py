"""
Module: payroll_engines.validation
Responsibility:
    ValidationEngine -- stateless rule checks run against a set of snapshots
    (and, for the Art.62 / Art.123 notices, employment events or a change
    date) before a declaration is generated.

Architecture position:
    Engines -- pure, zero I/O.  Never mutates its inputs and never decides
    whether generation may proceed; the DeclarationGenerator applies the
    configured validation policy.

Rules:
    - Company BULSTAT present (when a company is supplied).
    - Every snapshot names an insurance type.
    - Every snapshot, and every employee named in an Art.62 / Art.123
      notice, carries a well-formed EGN (10 digits, real birth date,
      mod-11 checksum) or LNCH (10 digits, mod-10 checksum).
    - Insurable income does not exceed the ceiling for the year (configured
      ceiling first, then the snapshot's max_insurable_income parameter).
    - Aggregates agree with the line items within the minor unit.
    - Employment events and the Art.123 change date fall within the
      requested range.

Usage:
    engine = ValidationEngine(ceilings={2025: Decimal("4130.00")})
    errors = engine.validate(snapshots, ReportingPeriod.monthly(2025, 6))
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Sequence
from uuid import UUID

from payroll_kernel.domain.dtos import (
    CompanyInfo,
    EmployeeRecord,
    EmploymentEvent,
    ReportingPeriod,
    ValidationError,
)
from payroll_kernel.domain.identity import (
    ID_TYPE_LNCH,
    is_valid_egn,
    is_valid_lnch,
    personal_identifier,
)
from payroll_kernel.domain.snapshot import MINOR_UNIT, PayrollSnapshot
from payroll_kernel.logging_config import get_logger
from payroll_engines.formatting import text, to_decimal
from payroll_engines.tracer import traced_engine

logger = get_logger("engines.validation")

COMPANY = "company"


def snapshot_identifier(
    snapshot: PayrollSnapshot,
    employee: EmployeeRecord | None = None,
) -> tuple[str, str]:
    """(identifier, id type) from the frozen employee data, else the current record."""
    identifier, id_type = personal_identifier(snapshot.employee_data)
    if not identifier and employee is not None:
        identifier, id_type = personal_identifier({"egn": employee.egn, "lnch": employee.lnch})
    return identifier, id_type


def identifier_problems(identifier: str, id_type: str) -> list[tuple[str, str]]:
    """(field, message) pairs for a missing or malformed EGN/LNCH."""
    if not identifier:
        return [("egn", "EGN/LNCH is missing")]
    if id_type == ID_TYPE_LNCH:
        if not is_valid_lnch(identifier):
            return [("lnch", f"LNCH {identifier} is malformed")]
    elif not is_valid_egn(identifier):
        return [("egn", f"EGN {identifier} is malformed")]
    return []


class ValidationEngine:
    """
    Rule checker producing structured ValidationError findings.

    Contract:
        ``validate`` returns every finding; an empty list means clean.
    Non-goals:
        - Does NOT block generation.
        - Does NOT recalculate any amount.
    """

    def __init__(
        self,
        ceilings: Mapping[int, Decimal] | None = None,
        tolerance: Decimal = MINOR_UNIT,
    ):
        self._ceilings = dict(ceilings or {})
        self._tolerance = tolerance

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    @traced_engine("validation", "1.0", fingerprint_fields=("period",))
    def validate(
        self,
        snapshots: Sequence[PayrollSnapshot],
        period: ReportingPeriod,
        *,
        company: CompanyInfo | None = None,
        employees: Mapping[UUID, EmployeeRecord] | None = None,
        events: Iterable[EmploymentEvent] = (),
        change_date: date | None = None,
        notice_employees: Iterable[EmployeeRecord] = (),
    ) -> list[ValidationError]:
        """
        Every finding for the inputs.

        ``notice_employees`` are the people written into an Art.62 or
        Art.123 file, which has no snapshots; only their identifiers are
        checked.
        """
        employees = employees or {}
        errors: list[ValidationError] = []
        if company is not None:
            errors.extend(self.check_company(company))
        for snapshot in snapshots:
            errors.extend(self.check_snapshot(snapshot, employees.get(snapshot.employee_id)))
        for employee in notice_employees:
            errors.extend(self.check_employee(employee))
        errors.extend(self.check_events(events, period, employees))
        if change_date is not None and not period.contains(change_date):
            errors.append(
                ValidationError(
                    None,
                    COMPANY,
                    "change_date",
                    f"change date {change_date.isoformat()} is outside {period.label}",
                )
            )

        if errors:
            logger.info(
                "validation_completed_with_errors",
                extra={"reporting_period": period.label, "error_count": len(errors)},
            )
        return errors

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def check_company(self, company: CompanyInfo) -> list[ValidationError]:
        if company.bulstat.strip():
            return []
        return [ValidationError(None, company.name or COMPANY, "bulstat", "company BULSTAT is missing")]

    def check_snapshot(
        self,
        snapshot: PayrollSnapshot,
        employee: EmployeeRecord | None = None,
    ) -> list[ValidationError]:
        name = snapshot.employee_name
        if employee is not None and not snapshot.last_name:
            name = employee.full_name
        found: list[ValidationError] = []

        def add(field: str, message: str) -> None:
            found.append(ValidationError(snapshot.employee_id, name, field, message))

        if not text(snapshot.employee_data, "insurance_type"):
            add("insurance_type", "insurance type is missing")

        for field, message in identifier_problems(*snapshot_identifier(snapshot, employee)):
            add(field, message)

        ceiling = self.ceiling_for(snapshot)
        if ceiling is not None and snapshot.insurable_income > ceiling:
            add(
                "insurable_income",
                f"insurable income {snapshot.insurable_income} exceeds the "
                f"{snapshot.year} ceiling {ceiling}",
            )

        for problem in snapshot.consistency_problems(self._tolerance):
            add("aggregates", problem)
        return found

    def check_employee(self, employee: EmployeeRecord) -> list[ValidationError]:
        identifier, id_type = personal_identifier({"egn": employee.egn, "lnch": employee.lnch})
        return [
            ValidationError(employee.employee_id, employee.full_name, field, message)
            for field, message in identifier_problems(identifier, id_type)
        ]

    def check_events(
        self,
        events: Iterable[EmploymentEvent],
        period: ReportingPeriod,
        employees: Mapping[UUID, EmployeeRecord],
    ) -> list[ValidationError]:
        found: list[ValidationError] = []
        for event in events:
            if period.contains(event.event_date):
                continue
            employee = employees.get(event.employee_id)
            found.append(
                ValidationError(
                    event.employee_id,
                    employee.full_name if employee is not None else str(event.employee_id),
                    "event_date",
                    f"{event.event_type.label} dated {event.event_date.isoformat()} "
                    f"is outside {period.label}",
                )
            )
        return found

    def ceiling_for(self, snapshot: PayrollSnapshot) -> Decimal | None:
        if snapshot.year in self._ceilings:
            return self._ceilings[snapshot.year]
        raw = snapshot.legislation_params.get("max_insurable_income")
        if raw in (None, ""):
            return None
        return to_decimal(raw)
