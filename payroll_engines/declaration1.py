"""
Module: payroll_engines.declaration1
Responsibility:
    Declaration form 1 -- monthly data on insured persons.  One 53-field
    comma-separated record per snapshot, drawn directly from snapshot
    aggregates, the frozen employee data and company master data.

Architecture position:
    Engines -- pure, zero I/O.  No amount is recalculated here.

File layout (0-based field index):
    0 month, 1 year, 2 "BULSTAT", 3 "EGN/LNCH", 4 id type, 5 "surname"
    (max 25), 6 "initials", 7 insurance type, 8-9 first and last insured
    day, 10-17 further periods (blank), 18 insured days (4 digits),
    19 worked days, 20 sick days, 21-22 zero, 23 unpaid leave days,
    24 employer-paid sick days (max 3), 25 hours, 26 overtime hours,
    27 "NKPD group", 28 "KID", 29 "main activity", 30 "work schedule",
    31 health insurable income, 32 health %, 33 insurable income,
    34-35 pension % employee/employer, 36-37 sickness %, 38-39
    unemployment %, 40-42 supplementary pension base and % (born after
    1960 only), 43-44 blank, 45 gross, 46 work accident %, 47 tax base,
    48 income tax, 49 net, 50 "000", 51 correction code, 52 "BULSTAT".
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping, Sequence
from uuid import UUID

from payroll_kernel.domain.dtos import (
    CompanyInfo,
    CorrectionCode,
    EmployeeRecord,
    EmploymentRecord,
)
from payroll_kernel.domain.identity import (
    INSURANCE_CATEGORY_AFTER_1960,
    insurance_category_for_egn,
)
from payroll_kernel.domain.snapshot import PayrollSnapshot
from payroll_engines.formatting import join_lines, money, quoted, text, to_decimal, to_int
from payroll_engines.tracer import traced_engine
from payroll_engines.validation import snapshot_identifier

FIELD_COUNT = 53
QUOTED_FIELDS = frozenset({2, 3, 5, 6, 27, 28, 29, 30, 50, 52})
SURNAME_MAX = 25
EMPLOYER_SICK_DAYS = 3
FUND_CODE = "000"


@dataclass(frozen=True)
class D1Record:
    employee_id: UUID
    employee_name: str
    identifier: str
    fields: tuple[str, ...]
    errors: tuple[str, ...] = ()

    def to_file_line(self) -> str:
        return ",".join(
            quoted(value) if index in QUOTED_FIELDS else value
            for index, value in enumerate(self.fields)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "employee_id": str(self.employee_id),
            "employee_name": self.employee_name,
            "identifier": self.identifier,
            "fields": list(self.fields),
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class D1Declaration:
    file_name: str
    records: tuple[D1Record, ...]

    @property
    def content(self) -> str:
        return join_lines(r.to_file_line() for r in self.records)

    @property
    def employee_ids(self) -> tuple[UUID, ...]:
        return tuple(r.employee_id for r in self.records)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_name": self.file_name,
            "record_count": len(self.records),
            "records": [r.to_dict() for r in self.records],
        }


def d1_file_name(bulstat: str, year: int, month: int) -> str:
    return f"EMPL{year}_{bulstat}_{month:02d}.TXT"


def _parse_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _insured_days(
    snapshot: PayrollSnapshot,
    employment: EmploymentRecord | None,
) -> tuple[int, int]:
    """First and last insured day of the month (hire/termination inside the month narrow it)."""
    last_day = calendar.monthrange(snapshot.year, snapshot.month)[1]
    start = _parse_date(snapshot.employee_data.get("start_date"))
    if start is None and employment is not None:
        start = employment.start_date
    end = _parse_date(snapshot.employee_data.get("termination_date"))

    start_day, end_day = 1, last_day
    if start is not None and (start.year, start.month) == (snapshot.year, snapshot.month):
        start_day = start.day
    if end is not None and (end.year, end.month) == (snapshot.year, snapshot.month):
        end_day = end.day
    return start_day, end_day


def _rate(params: Mapping[str, Any], key: str) -> str:
    return money(params.get(key))


def build_d1_record(
    snapshot: PayrollSnapshot,
    company: CompanyInfo,
    correction_code: CorrectionCode = CorrectionCode.REGULAR,
    employee: EmployeeRecord | None = None,
    employment: EmploymentRecord | None = None,
) -> D1Record:
    data = snapshot.employee_data
    params = snapshot.legislation_params
    sheet = snapshot.timesheet_data
    fields = [""] * FIELD_COUNT
    errors: list[str] = []

    bulstat = company.bulstat.strip()
    if not bulstat:
        errors.append("company BULSTAT is missing")
    identifier, id_type = snapshot_identifier(snapshot, employee)
    if not identifier:
        errors.append("EGN/LNCH is missing")

    surname = snapshot.last_name or (employee.last_name if employee is not None else "")
    first = snapshot.first_name or (employee.first_name if employee is not None else "")
    middle = snapshot.middle_name or (employee.middle_name if employee is not None else "")
    initials = (first[:1] + middle[:1]).upper()

    insurance_type = text(data, "insurance_type")
    if not insurance_type:
        errors.append("insurance type is missing")

    fields[0] = str(snapshot.month)
    fields[1] = str(snapshot.year)
    fields[2] = bulstat
    fields[3] = identifier
    fields[4] = id_type
    fields[5] = surname[:SURNAME_MAX]
    fields[6] = initials
    fields[7] = insurance_type

    start_day, end_day = _insured_days(snapshot, employment)
    fields[8] = str(start_day)
    fields[9] = str(end_day)

    worked = to_int(sheet.get("worked_days"))
    sick = to_int(sheet.get("sick_days"))
    fields[18] = f"{worked + to_int(sheet.get('absence_days')):04d}"
    fields[19] = str(worked)
    fields[20] = str(sick)
    fields[21] = "0"
    fields[22] = "0"
    fields[23] = str(to_int(sheet.get("unpaid_days")))
    fields[24] = str(min(sick, EMPLOYER_SICK_DAYS))
    fields[25] = str(to_int(sheet.get("total_hours")))
    fields[26] = str(to_int(sheet.get("overtime_hours")))

    nkpd = text(data, "nkpd_code") or (employment.nkpd_code if employment is not None else "")
    fields[27] = nkpd[:1] or "0"
    kid = (employment.kid_code if employment is not None else "") or text(data, "kid_code")
    fields[28] = kid or company.nkid_code
    fields[29] = company.nkid_code[:2] if len(company.nkid_code) >= 2 else ""
    fields[30] = text(data, "work_schedule_code")

    insurable = money(snapshot.insurable_income)
    fields[31] = insurable
    fields[32] = money(
        to_decimal(params.get("health_employee_rate")) + to_decimal(params.get("health_employer_rate"))
    )
    fields[33] = insurable
    fields[34] = _rate(params, "pension_employee_rate")
    fields[35] = _rate(params, "pension_employer_rate")
    fields[36] = _rate(params, "sickness_employee_rate")
    fields[37] = _rate(params, "sickness_employer_rate")
    fields[38] = _rate(params, "unemployment_employee_rate")
    fields[39] = _rate(params, "unemployment_employer_rate")

    category = (
        text(data, "insurance_category")
        or text(params, "insurance_category")
        or (insurance_category_for_egn(identifier) if id_type == "0" else "")
        or ""
    )
    if category == INSURANCE_CATEGORY_AFTER_1960:
        fields[40] = insurable
        fields[41] = _rate(params, "supplementary_pension_employee_rate")
        fields[42] = _rate(params, "supplementary_pension_employer_rate")

    fields[45] = money(snapshot.gross_salary)
    fields[46] = _rate(params, "work_accident_rate")
    fields[47] = money(snapshot.tax_base)
    fields[48] = money(snapshot.income_tax)
    fields[49] = money(snapshot.net_salary)
    fields[50] = FUND_CODE
    fields[51] = str(int(correction_code))
    fields[52] = bulstat

    name = snapshot.employee_name if snapshot.last_name or employee is None else employee.full_name
    return D1Record(
        employee_id=snapshot.employee_id,
        employee_name=name,
        identifier=identifier,
        fields=tuple(fields),
        errors=tuple(errors),
    )


@traced_engine("declaration1", "1.0", fingerprint_fields=("year", "month", "correction_code"))
def build_d1(
    snapshots: Sequence[PayrollSnapshot],
    *,
    company: CompanyInfo,
    year: int,
    month: int,
    correction_code: CorrectionCode = CorrectionCode.REGULAR,
    employees: Mapping[UUID, EmployeeRecord] | None = None,
    employments: Mapping[UUID, EmploymentRecord] | None = None,
) -> D1Declaration:
    """One record per snapshot, in the order given."""
    employees = employees or {}
    employments = employments or {}
    records = tuple(
        build_d1_record(
            s,
            company,
            correction_code,
            employee=employees.get(s.employee_id),
            employment=employments.get(s.employee_id),
        )
        for s in snapshots
    )
    return D1Declaration(file_name=d1_file_name(company.bulstat, year, month), records=records)
