"""
Tests for the Declaration 6 aggregation.

Verifies fund totals are plain sums of the snapshot line items (no rate is
applied) and the two file lines render those totals.
"""

from decimal import Decimal
from uuid import uuid4

from payroll_engines.declaration6 import INSURANCE_COLUMNS, aggregate_d6
from tests.fakes import (
    COMPANY_BULSTAT,
    EGN_BEFORE_1960,
    employee_data,
    make_snapshot,
    snapshot_with_net,
)


def _two_employees():
    tenant_id = uuid4()
    return [
        make_snapshot(tenant_id, uuid4(), gross="2000.00"),
        make_snapshot(tenant_id, uuid4(), gross="3000.00", data=employee_data(egn=EGN_BEFORE_1960)),
    ]


class TestAggregation:
    def test_fund_totals(self):
        totals = aggregate_d6(_two_employees(), bulstat=COMPANY_BULSTAT, year=2025, month=6)

        assert totals.funds == {
            "pension_employer": Decimal("411.00"),
            "pension_employee": Decimal("329.00"),
            "sickness_employer": Decimal("105.00"),
            "sickness_employee": Decimal("70.00"),
            "unemployment_employer": Decimal("30.00"),
            "unemployment_employee": Decimal("20.00"),
            "supplementary_employer": Decimal("56.00"),
            "supplementary_employee": Decimal("44.00"),
            "health_employer": Decimal("240.00"),
            "health_employee": Decimal("160.00"),
            "work_accident": Decimal("20.00"),
        }
        assert totals.total_insurance == Decimal("1485.00")
        assert totals.income_tax == Decimal("437.70")
        assert totals.employee_count == 2

    def test_total_equals_employee_plus_employer_insurance(self):
        snapshots = _two_employees()
        totals = aggregate_d6(snapshots, bulstat=COMPANY_BULSTAT, year=2025, month=6)
        expected = sum(s.total_employee_insurance + s.total_employer_insurance for s in snapshots)
        assert totals.total_insurance == expected

    def test_lines_without_fund_codes_ignored(self):
        snapshot = snapshot_with_net(uuid4(), uuid4(), "1000.00")
        totals = aggregate_d6([snapshot], bulstat=COMPANY_BULSTAT, year=2025, month=6)
        assert totals.total_insurance == Decimal("0")
        assert totals.income_tax == Decimal("0")
        assert totals.employee_count == 1

    def test_empty_month(self):
        totals = aggregate_d6([], bulstat=COMPANY_BULSTAT, year=2025, month=6)
        assert totals.employee_count == 0
        assert set(totals.funds) == {name for name, _, _ in INSURANCE_COLUMNS}


class TestFiles:
    def test_insurance_line(self):
        totals = aggregate_d6(_two_employees(), bulstat=COMPANY_BULSTAT, year=2025, month=6)
        assert totals.insurance_line() == (
            f'"{COMPANY_BULSTAT}",6,2025,1,'
            "411.00,329.00,105.00,70.00,30.00,20.00,56.00,44.00,240.00,160.00,20.00,"
            "1485.00,2"
        )
        assert totals.insurance_content() == totals.insurance_line() + "\r\n"
        assert totals.insurance_file_name == f"NRA62007_{COMPANY_BULSTAT}-2025_06_O.TXT"

    def test_tax_line(self):
        totals = aggregate_d6(_two_employees(), bulstat=COMPANY_BULSTAT, year=2025, month=6)
        assert totals.tax_line() == f'"{COMPANY_BULSTAT}",6,2025,1,437.70,2'
        assert totals.tax_file_name == f"NRA2007_{COMPANY_BULSTAT}_06_D.TXT"
