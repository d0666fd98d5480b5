"""
Module: payroll_engines.article123
Responsibility:
    Notices under Art.123 of the Labour Code -- change of employer through
    merger, absorption, division, separation, transfer of business or
    change of legal form.  One 10-field record per affected employee.

Architecture position:
    Engines -- pure, zero I/O.

Record layout:
    1 old BULSTAT, 2 EGN/LNCH, 3 id type, 4 new BULSTAT, 5 change type,
    6 change date, 7 contract number, 8 contract date, 9 NKPD, 10 start date.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import IntEnum
from typing import Any, Mapping, Sequence
from uuid import UUID

from payroll_kernel.domain.dtos import (
    CompanyInfo,
    EmployeeRecord,
    EmploymentRecord,
    ReportingPeriod,
)
from payroll_kernel.domain.identity import personal_identifier
from payroll_engines.formatting import bg_date, join_lines
from payroll_engines.tracer import traced_engine


class ChangeType(IntEnum):
    MERGER = 1
    ABSORPTION = 2
    DIVISION = 3
    SEPARATION = 4
    TRANSFER = 5
    LEGAL_FORM = 6

    @property
    def label(self) -> str:
        return _CHANGE_LABELS[self]


_CHANGE_LABELS = {
    ChangeType.MERGER: "Сливане",
    ChangeType.ABSORPTION: "Вливане",
    ChangeType.DIVISION: "Разделяне",
    ChangeType.SEPARATION: "Отделяне",
    ChangeType.TRANSFER: "Преотстъпване/прехвърляне на дейност",
    ChangeType.LEGAL_FORM: "Промяна на правноорг. форма",
}


@dataclass(frozen=True)
class Art123Request:
    """Change of employer; ``employee_ids`` None means every active employee."""

    change_type: ChangeType
    new_employer_bulstat: str
    new_employer_name: str
    change_date: date
    employee_ids: tuple[UUID, ...] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "change_type", ChangeType(self.change_type))
        if self.employee_ids is not None:
            object.__setattr__(self, "employee_ids", tuple(self.employee_ids))

    @property
    def period(self) -> ReportingPeriod:
        return ReportingPeriod.on_date(self.change_date)


@dataclass(frozen=True)
class Art123Record:
    employee_id: UUID
    employee_name: str
    identifier: str
    change_type: ChangeType
    fields: tuple[str, ...]

    def to_file_line(self) -> str:
        return ",".join(self.fields)

    def to_dict(self) -> dict[str, Any]:
        return {
            "employee_id": str(self.employee_id),
            "employee_name": self.employee_name,
            "identifier": self.identifier,
            "change_type": int(self.change_type),
            "change_type_name": self.change_type.label,
            "fields": list(self.fields),
        }


@dataclass(frozen=True)
class Art123Notice:
    file_name: str
    records: tuple[Art123Record, ...]

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


def art123_file_name(bulstat: str, change_date: date) -> str:
    return f"UVD123_{bulstat}_{change_date:%Y%m%d}.TXT"


@traced_engine("article123", "1.0", fingerprint_fields=("request",))
def build_art123(
    employees: Sequence[EmployeeRecord],
    *,
    company: CompanyInfo,
    request: Art123Request,
    employments: Mapping[UUID, EmploymentRecord] | None = None,
) -> Art123Notice:
    employments = employments or {}
    records = []
    for employee in employees:
        identifier, id_type = personal_identifier({"egn": employee.egn, "lnch": employee.lnch})
        employment = employments.get(employee.employee_id)
        fields = (
            company.bulstat,
            identifier,
            id_type,
            request.new_employer_bulstat,
            str(int(request.change_type)),
            bg_date(request.change_date),
            employment.contract_number if employment is not None else "",
            bg_date(employment.contract_date) if employment is not None else "",
            employment.nkpd_code if employment is not None else "",
            bg_date(employment.start_date) if employment is not None else "",
        )
        records.append(
            Art123Record(
                employee_id=employee.employee_id,
                employee_name=employee.full_name,
                identifier=identifier,
                change_type=request.change_type,
                fields=fields,
            )
        )
    return Art123Notice(
        file_name=art123_file_name(company.bulstat, request.change_date),
        records=tuple(records),
    )
