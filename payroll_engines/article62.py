"""
Module: payroll_engines.article62
Responsibility:
    Notices under Art.62 of the Labour Code: one 14-field record per
    employment event (new contract, amendment, termination) whose date
    falls within the requested range.  Events outside the range are left
    out of the file; the ValidationEngine reports them.

Architecture position:
    Engines -- pure, zero I/O.

Record layout:
    1 BULSTAT, 2 EGN/LNCH, 3 id type, 4 basis code, 5 document date,
    6 document number, 7 NKPD, 8 KID, 9 EKATTE, 10 contract end date,
    11 termination basis, 12 last working day, 13 working time (HHMM),
    14 event type (01 / 02 / 03).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping
from uuid import UUID

from payroll_kernel.domain.dtos import (
    CompanyInfo,
    EmployeeRecord,
    EmploymentEvent,
    EmploymentEventType,
    EmploymentRecord,
    ReportingPeriod,
)
from payroll_kernel.domain.identity import personal_identifier
from payroll_engines.formatting import bg_date, join_lines
from payroll_engines.tracer import traced_engine

WORKING_TIME = "0800"


@dataclass(frozen=True)
class Art62Record:
    employee_id: UUID
    employee_name: str
    identifier: str
    event_type: EmploymentEventType
    fields: tuple[str, ...]

    def to_file_line(self) -> str:
        return ",".join(self.fields)

    def to_dict(self) -> dict[str, Any]:
        return {
            "employee_id": str(self.employee_id),
            "employee_name": self.employee_name,
            "identifier": self.identifier,
            "event_type": self.event_type.value,
            "event_type_name": self.event_type.label,
            "fields": list(self.fields),
        }


@dataclass(frozen=True)
class Art62Notice:
    file_name: str
    records: tuple[Art62Record, ...]
    excluded: tuple[EmploymentEvent, ...] = ()

    @property
    def content(self) -> str:
        return join_lines(r.to_file_line() for r in self.records)

    @property
    def employee_ids(self) -> tuple[UUID, ...]:
        return tuple(dict.fromkeys(r.employee_id for r in self.records))

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_name": self.file_name,
            "record_count": len(self.records),
            "excluded_count": len(self.excluded),
            "records": [r.to_dict() for r in self.records],
        }


def art62_file_name(bulstat: str, period: ReportingPeriod) -> str:
    return (
        f"UVD62_{bulstat}_{period.date_from:%Y%m%d}_{period.date_to:%Y%m%d}.TXT"
    )


def build_art62_record(
    event: EmploymentEvent,
    company: CompanyInfo,
    employee: EmployeeRecord | None,
    employment: EmploymentRecord | None,
) -> Art62Record:
    identifier, id_type = ("", "0")
    if employee is not None:
        identifier, id_type = personal_identifier({"egn": employee.egn, "lnch": employee.lnch})

    fields = [
        company.bulstat,
        identifier,
        id_type,
        employment.contract_basis if employment is not None else "",
        bg_date(employment.contract_date) if employment is not None else "",
        employment.contract_number if employment is not None else "",
        event.nkpd_code or (employment.nkpd_code if employment is not None else ""),
        event.kid_code or (employment.kid_code if employment is not None else ""),
        company.ekatte_code,
        bg_date(employment.contract_end_date) if employment is not None else "",
        "",
        "",
        WORKING_TIME,
        event.event_type.value,
    ]

    if event.event_type == EmploymentEventType.NEW_CONTRACT:
        fields[3] = event.basis or fields[3]
        fields[4] = bg_date(event.event_date)
        fields[5] = event.document_number or fields[5]
        if event.contract_end_date is not None:
            fields[9] = bg_date(event.contract_end_date)
    elif event.event_type == EmploymentEventType.AMENDMENT:
        fields[3] = event.basis
        fields[4] = bg_date(event.event_date)
        fields[5] = event.document_number
        fields[9] = bg_date(event.contract_end_date)
    else:
        fields[10] = event.termination_basis
        fields[11] = bg_date(event.last_work_day)

    return Art62Record(
        employee_id=event.employee_id,
        employee_name=employee.full_name if employee is not None else str(event.employee_id),
        identifier=identifier,
        event_type=event.event_type,
        fields=tuple(fields),
    )


_EVENT_ORDER = {
    EmploymentEventType.NEW_CONTRACT: 0,
    EmploymentEventType.AMENDMENT: 1,
    EmploymentEventType.TERMINATION: 2,
}


@traced_engine("article62", "1.0", fingerprint_fields=("period",))
def build_art62(
    events: Iterable[EmploymentEvent],
    *,
    company: CompanyInfo,
    period: ReportingPeriod,
    employees: Mapping[UUID, EmployeeRecord],
    employments: Mapping[UUID, EmploymentRecord] | None = None,
) -> Art62Notice:
    """Records for in-range events: new contracts, then amendments, then terminations."""
    if not period.is_range:
        raise ValueError("Art.62 notices need a date range")
    employments = employments or {}
    included: list[EmploymentEvent] = []
    excluded: list[EmploymentEvent] = []
    for event in events:
        (included if period.contains(event.event_date) else excluded).append(event)
    included.sort(key=lambda e: (_EVENT_ORDER[e.event_type], e.event_date))

    records = tuple(
        build_art62_record(
            event,
            company,
            employees.get(event.employee_id),
            employments.get(event.employee_id),
        )
        for event in included
    )
    return Art62Notice(
        file_name=art62_file_name(company.bulstat, period),
        records=records,
        excluded=tuple(excluded),
    )
