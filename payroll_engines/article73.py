"""
Module: payroll_engines.article73
Responsibility:
    Annual statement under Art.73(6) of the Personal Income Tax Act: income
    paid to each employee over the year, summed from the monthly snapshots.

Architecture position:
    Engines -- pure, zero I/O.

File:
    ART73_{year}_{bulstat}.CSV, ``;``-separated with a header row and CRLF
    line endings.  Employees appear in the order they are first met in the
    snapshot sequence (store order, January first).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Sequence
from uuid import UUID

from payroll_kernel.domain.dtos import CompanyInfo, EmployeeRecord
from payroll_kernel.domain.snapshot import PayrollSnapshot
from payroll_engines.formatting import ZERO, join_lines, money, round_money
from payroll_engines.tracer import traced_engine
from payroll_engines.validation import snapshot_identifier

HEADER = (
    "ЕИК;ЕГН/ЛНЧ;Тип ид.;Име;Брутно;Осиг.доход;Осиг.вноски;"
    "Облагаем доход;Данък;Нето;Месеци"
)

_TOTALS = (
    "gross_salary",
    "insurable_income",
    "total_employee_insurance",
    "tax_base",
    "income_tax",
    "net_salary",
)


@dataclass(frozen=True)
class Art73MonthDetail:
    month: int
    gross_salary: Decimal
    insurable_income: Decimal
    total_employee_insurance: Decimal
    tax_base: Decimal
    income_tax: Decimal
    net_salary: Decimal

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"month": self.month}
        payload.update({name: str(getattr(self, name)) for name in _TOTALS})
        return payload


@dataclass(frozen=True)
class Art73Record:
    employee_id: UUID
    employee_name: str
    identifier: str
    id_type: str
    gross_salary: Decimal
    insurable_income: Decimal
    total_employee_insurance: Decimal
    tax_base: Decimal
    income_tax: Decimal
    net_salary: Decimal
    months: tuple[Art73MonthDetail, ...]

    @property
    def months_worked(self) -> int:
        return len(self.months)

    def to_csv_row(self, bulstat: str) -> str:
        values = [bulstat, self.identifier, self.id_type, self.employee_name]
        values.extend(money(getattr(self, name)) for name in _TOTALS)
        values.append(str(self.months_worked))
        return ";".join(values)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "employee_id": str(self.employee_id),
            "employee_name": self.employee_name,
            "identifier": self.identifier,
            "id_type": self.id_type,
            "months_worked": self.months_worked,
            "months": [m.to_dict() for m in self.months],
        }
        payload.update({name: str(getattr(self, name)) for name in _TOTALS})
        return payload


@dataclass(frozen=True)
class Art73Statement:
    year: int
    company_name: str
    bulstat: str
    records: tuple[Art73Record, ...]

    @property
    def file_name(self) -> str:
        return f"ART73_{self.year}_{self.bulstat}.CSV"

    @property
    def content(self) -> str:
        return join_lines([HEADER, *(r.to_csv_row(self.bulstat) for r in self.records)])

    @property
    def employee_ids(self) -> tuple[UUID, ...]:
        return tuple(r.employee_id for r in self.records)

    def total(self, name: str) -> Decimal:
        return sum((getattr(r, name) for r in self.records), ZERO)

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "company_name": self.company_name,
            "bulstat": self.bulstat,
            "file_name": self.file_name,
            "total_employees": len(self.records),
            "total_gross": str(self.total("gross_salary")),
            "total_insurance": str(self.total("total_employee_insurance")),
            "total_tax": str(self.total("income_tax")),
            "total_net": str(self.total("net_salary")),
            "records": [r.to_dict() for r in self.records],
        }


@traced_engine("article73", "1.0", fingerprint_fields=("year",))
def build_art73(
    snapshots: Sequence[PayrollSnapshot],
    *,
    company: CompanyInfo,
    year: int,
    employees: Mapping[UUID, EmployeeRecord] | None = None,
) -> Art73Statement:
    employees = employees or {}
    by_employee: dict[UUID, list[PayrollSnapshot]] = {}
    for snapshot in snapshots:
        if snapshot.year == year:
            by_employee.setdefault(snapshot.employee_id, []).append(snapshot)

    records = []
    for employee_id, items in by_employee.items():
        items.sort(key=lambda s: s.month)
        employee = employees.get(employee_id)
        identifier, id_type = snapshot_identifier(items[-1], employee)
        name = items[-1].employee_name
        if employee is not None and not items[-1].last_name:
            name = employee.full_name
        months = tuple(
            Art73MonthDetail(
                month=s.month,
                **{field: round_money(getattr(s, field)) for field in _TOTALS},
            )
            for s in items
        )
        totals = {
            field: round_money(sum((getattr(s, field) for s in items), ZERO))
            for field in _TOTALS
        }
        records.append(
            Art73Record(
                employee_id=employee_id,
                employee_name=name,
                identifier=identifier,
                id_type=id_type,
                months=months,
                **totals,
            )
        )

    return Art73Statement(
        year=year,
        company_name=company.name,
        bulstat=company.bulstat,
        records=tuple(records),
    )
