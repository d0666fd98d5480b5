"""
Tests for Art.123 change-of-employer notices.
"""

from datetime import date
from uuid import uuid4

import pytest

from payroll_kernel.domain.dtos import EmploymentRecord, ReportingPeriod
from payroll_engines.article123 import Art123Request, ChangeType, build_art123
from payroll_engines.validation import ValidationEngine
from tests.fakes import COMPANY_BULSTAT, EGN_AFTER_1960, LNCH_VALID, make_company, make_employee

NEW_BULSTAT = "987654321"


@pytest.fixture
def company():
    return make_company(uuid4())


@pytest.fixture
def request_():
    return Art123Request(
        change_type=5,
        new_employer_bulstat=NEW_BULSTAT,
        new_employer_name="Нов работодател АД",
        change_date=date(2025, 6, 15),
    )


class TestRequest:
    def test_change_type_coerced(self, request_):
        assert request_.change_type is ChangeType.TRANSFER
        assert request_.change_type.label == "Преотстъпване/прехвърляне на дейност"

    def test_period_is_the_change_date(self, request_):
        assert request_.period == ReportingPeriod.on_date(date(2025, 6, 15))

    def test_unknown_change_type_rejected(self):
        with pytest.raises(ValueError):
            Art123Request(9, NEW_BULSTAT, "X", date(2025, 6, 15))


class TestNotice:
    def test_one_record_per_employee(self, company, request_):
        first = make_employee("Мария", "Иванова", egn=EGN_AFTER_1960)
        second = make_employee("John", "Смит", lnch=LNCH_VALID)
        employment = EmploymentRecord(
            first.employee_id,
            contract_number="TD-001",
            contract_date=date(2020, 1, 10),
            start_date=date(2020, 1, 15),
            nkpd_code="25121001",
        )

        notice = build_art123(
            [first, second],
            company=company,
            request=request_,
            employments={first.employee_id: employment},
        )

        assert notice.records[0].fields == (
            COMPANY_BULSTAT,
            EGN_AFTER_1960,
            "0",
            NEW_BULSTAT,
            "5",
            "15.06.2025",
            "TD-001",
            "10.01.2020",
            "25121001",
            "15.01.2020",
        )
        assert notice.records[1].fields[1:3] == (LNCH_VALID, "1")
        assert notice.records[1].fields[6:] == ("", "", "", "")
        assert notice.employee_ids == (first.employee_id, second.employee_id)
        assert notice.file_name == f"UVD123_{COMPANY_BULSTAT}_20250615.TXT"
        assert notice.content.count("\r\n") == 2

    def test_no_employees_no_records(self, company, request_):
        assert build_art123([], company=company, request=request_).records == ()


class TestIdentifierValidation:
    def test_each_listed_employee_checked(self, company, request_):
        clean = make_employee("Мария", "Иванова", egn=EGN_AFTER_1960)
        foreign = make_employee("John", "Смит", lnch="1000000002")
        unidentified = make_employee("Иван", "Колев")

        findings = ValidationEngine().validate(
            [],
            request_.period,
            company=company,
            change_date=request_.change_date,
            notice_employees=[clean, foreign, unidentified],
        )

        assert [(f.employee_id, f.field) for f in findings] == [
            (foreign.employee_id, "lnch"),
            (unidentified.employee_id, "egn"),
        ]
