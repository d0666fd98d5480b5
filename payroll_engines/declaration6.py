"""
Module: payroll_engines.declaration6
Responsibility:
    Declaration form 6 -- contributions and tax due for the month.  A pure
    reduction of snapshot line items into fund-level totals keyed by the
    budget fund codes; no rate is applied and no tax is recomputed.

Architecture position:
    Engines -- pure, zero I/O.

Two files are produced from one aggregation:
    insurance part  NRA62007_{bulstat}-{year}_{mm}_O.TXT
        "bulstat",month,year,1,<11 fund totals>,<total insurance>,<count>
    tax part        NRA2007_{bulstat}_{mm}_D.TXT
        "bulstat",month,year,1,<income tax>,<count>
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Sequence

from payroll_kernel.domain.snapshot import PayrollLine, PayrollSnapshot
from payroll_engines.formatting import ZERO, join_lines, money, quoted
from payroll_engines.tracer import traced_engine

PAYMENT_KIND_SALARY = "1"

# Employer contributions
PENSION_EMPLOYER = "351911"
SICKNESS_EMPLOYER = "351912"
UNEMPLOYMENT_EMPLOYER = "351913"
SUPPLEMENTARY_EMPLOYER = "351914"
HEALTH_EMPLOYER = "351915"
WORK_ACCIDENT = "351916"

# Employee deductions
PENSION_EMPLOYEE = "351901"
SICKNESS_EMPLOYEE = "351902"
UNEMPLOYMENT_EMPLOYEE = "351903"
SUPPLEMENTARY_EMPLOYEE = "351904"
HEALTH_EMPLOYEE = "351905"

INCOME_TAX = "351982"

# (fund, source collection, code) in file column order
INSURANCE_COLUMNS: tuple[tuple[str, str, str], ...] = (
    ("pension_employer", "employer_contributions", PENSION_EMPLOYER),
    ("pension_employee", "deductions", PENSION_EMPLOYEE),
    ("sickness_employer", "employer_contributions", SICKNESS_EMPLOYER),
    ("sickness_employee", "deductions", SICKNESS_EMPLOYEE),
    ("unemployment_employer", "employer_contributions", UNEMPLOYMENT_EMPLOYER),
    ("unemployment_employee", "deductions", UNEMPLOYMENT_EMPLOYEE),
    ("supplementary_employer", "employer_contributions", SUPPLEMENTARY_EMPLOYER),
    ("supplementary_employee", "deductions", SUPPLEMENTARY_EMPLOYEE),
    ("health_employer", "employer_contributions", HEALTH_EMPLOYER),
    ("health_employee", "deductions", HEALTH_EMPLOYEE),
    ("work_accident", "employer_contributions", WORK_ACCIDENT),
)


def _sum_code(lines: Iterable[PayrollLine], code: str) -> Decimal:
    return sum((line.amount for line in lines if line.code == code), ZERO)


@dataclass(frozen=True)
class D6Totals:
    bulstat: str
    year: int
    month: int
    employee_count: int
    funds: dict[str, Decimal] = field(default_factory=dict)
    income_tax: Decimal = ZERO

    @property
    def total_insurance(self) -> Decimal:
        return sum(self.funds.values(), ZERO)

    def insurance_line(self) -> str:
        values = [
            quoted(self.bulstat),
            str(self.month),
            str(self.year),
            PAYMENT_KIND_SALARY,
        ]
        values.extend(money(self.funds.get(name, ZERO)) for name, _, _ in INSURANCE_COLUMNS)
        values.append(money(self.total_insurance))
        values.append(str(self.employee_count))
        return ",".join(values)

    def tax_line(self) -> str:
        return ",".join(
            [
                quoted(self.bulstat),
                str(self.month),
                str(self.year),
                PAYMENT_KIND_SALARY,
                money(self.income_tax),
                str(self.employee_count),
            ]
        )

    @property
    def insurance_file_name(self) -> str:
        return f"NRA62007_{self.bulstat}-{self.year}_{self.month:02d}_O.TXT"

    @property
    def tax_file_name(self) -> str:
        return f"NRA2007_{self.bulstat}_{self.month:02d}_D.TXT"

    def insurance_content(self) -> str:
        return join_lines([self.insurance_line()])

    def tax_content(self) -> str:
        return join_lines([self.tax_line()])

    def to_dict(self) -> dict[str, Any]:
        return {
            "bulstat": self.bulstat,
            "year": self.year,
            "month": self.month,
            "employee_count": self.employee_count,
            "funds": {name: str(self.funds.get(name, ZERO)) for name, _, _ in INSURANCE_COLUMNS},
            "total_insurance": str(self.total_insurance),
            "income_tax": str(self.income_tax),
        }


@traced_engine("declaration6", "1.0", fingerprint_fields=("year", "month"))
def aggregate_d6(
    snapshots: Sequence[PayrollSnapshot],
    *,
    bulstat: str,
    year: int,
    month: int,
) -> D6Totals:
    funds = {name: ZERO for name, _, _ in INSURANCE_COLUMNS}
    income_tax = ZERO
    for snapshot in snapshots:
        for name, source, code in INSURANCE_COLUMNS:
            funds[name] += _sum_code(getattr(snapshot, source), code)
        income_tax += _sum_code(snapshot.deductions, INCOME_TAX)
    return D6Totals(
        bulstat=bulstat,
        year=year,
        month=month,
        employee_count=len(snapshots),
        funds=funds,
        income_tax=income_tax,
    )
