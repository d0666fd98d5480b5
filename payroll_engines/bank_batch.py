"""
Module: payroll_engines.bank_batch
Responsibility:
    BankPaymentBatch -- salary transfer rows derived from the net salary of
    each snapshot.  Problems (missing or malformed IBAN / BIC, negative or
    zero pay) are reported as warnings on the row; no row is ever dropped
    and no amount is ever adjusted.

Architecture position:
    Engines -- pure, zero I/O.  Persisting and serving the file is the
    BankPaymentService's job.

Invariant:
    batch.total == sum(snapshot.net_salary) exactly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Sequence
from uuid import UUID

from payroll_kernel.domain.dtos import EmployeeRecord
from payroll_kernel.domain.snapshot import PayrollSnapshot
from payroll_engines.formatting import ZERO, join_lines, money, text
from payroll_engines.tracer import traced_engine

CSV_HEADER = "IBAN;BIC;Сума;Получател;Основание"

MISSING_IBAN = "MISSING_IBAN"
INVALID_IBAN = "INVALID_IBAN"
MISSING_BIC = "MISSING_BIC"
INVALID_BIC = "INVALID_BIC"
NEGATIVE_NET_SALARY = "NEGATIVE_NET_SALARY"
ZERO_NET_SALARY = "ZERO_NET_SALARY"

_IBAN_RE = re.compile(r"^[A-Z]{2}[0-9]{2}[A-Z0-9]{11,30}$")
_BIC_RE = re.compile(r"^[A-Z]{6}[A-Z0-9]{2}([A-Z0-9]{3})?$")


def normalize_account(value: str) -> str:
    return value.replace(" ", "").upper()


def is_valid_iban(iban: str) -> bool:
    """ISO 13616: country code, check digits, BBAN; mod-97 of the rearranged number is 1."""
    iban = normalize_account(iban)
    if not _IBAN_RE.match(iban):
        return False
    rearranged = iban[4:] + iban[:4]
    digits = "".join(str(int(ch, 36)) for ch in rearranged)
    return int(digits) % 97 == 1


def is_valid_bic(bic: str) -> bool:
    return bool(_BIC_RE.match(normalize_account(bic)))


@dataclass(frozen=True)
class PaymentRecord:
    employee_id: UUID
    employee_name: str
    iban: str
    bic: str
    amount: Decimal
    description: str
    warnings: tuple[str, ...] = ()

    def to_csv_row(self) -> str:
        return ";".join(
            [self.iban, self.bic, money(self.amount), self.employee_name, self.description]
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "employee_id": str(self.employee_id),
            "employee_name": self.employee_name,
            "iban": self.iban,
            "bic": self.bic,
            "amount": str(self.amount),
            "description": self.description,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class BankPaymentBatch:
    year: int
    month: int
    records: tuple[PaymentRecord, ...]

    @property
    def total(self) -> Decimal:
        return sum((r.amount for r in self.records), ZERO)

    @property
    def warning_count(self) -> int:
        return sum(len(r.warnings) for r in self.records)

    @property
    def flagged(self) -> tuple[PaymentRecord, ...]:
        return tuple(r for r in self.records if r.warnings)

    @property
    def file_name(self) -> str:
        return f"SALARY_{self.year}_{self.month:02d}.csv"

    def to_csv(self) -> str:
        return join_lines([CSV_HEADER, *(r.to_csv_row() for r in self.records)])

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "month": self.month,
            "file_name": self.file_name,
            "record_count": len(self.records),
            "total_amount": str(self.total),
            "warning_count": self.warning_count,
            "records": [r.to_dict() for r in self.records],
        }


def account_warnings(iban: str, bic: str) -> list[str]:
    warnings = []
    if not iban:
        warnings.append(MISSING_IBAN)
    elif not is_valid_iban(iban):
        warnings.append(INVALID_IBAN)
    if not bic:
        warnings.append(MISSING_BIC)
    elif not is_valid_bic(bic):
        warnings.append(INVALID_BIC)
    return warnings


def build_payment_record(
    snapshot: PayrollSnapshot,
    description: str,
    employee: EmployeeRecord | None = None,
) -> PaymentRecord:
    """Current directory bank details win over the copy frozen in the snapshot."""
    iban = normalize_account(text(snapshot.employee_data, "iban"))
    bic = normalize_account(text(snapshot.employee_data, "bic"))
    name = snapshot.employee_name
    if employee is not None:
        iban = normalize_account(employee.iban) or iban
        bic = normalize_account(employee.bic) or bic
        if not snapshot.last_name:
            name = employee.full_name

    warnings = account_warnings(iban, bic)
    amount = snapshot.net_salary
    if amount < 0:
        warnings.append(NEGATIVE_NET_SALARY)
    elif amount == 0:
        warnings.append(ZERO_NET_SALARY)

    return PaymentRecord(
        employee_id=snapshot.employee_id,
        employee_name=name,
        iban=iban,
        bic=bic,
        amount=amount,
        description=description,
        warnings=tuple(warnings),
    )


@traced_engine("bank_batch", "1.0", fingerprint_fields=("year", "month"))
def build_batch(
    snapshots: Sequence[PayrollSnapshot],
    *,
    year: int,
    month: int,
    description_template: str = "Заплата {month:02d}/{year}",
    employees: Mapping[UUID, EmployeeRecord] | None = None,
) -> BankPaymentBatch:
    employees = employees or {}
    description = description_template.format(year=year, month=month)
    records = tuple(
        build_payment_record(s, description, employees.get(s.employee_id))
        for s in snapshots
    )
    return BankPaymentBatch(year=year, month=month, records=records)
