"""
Pytest fixtures for the payroll core test suite.

Provides:
- Structured logging for the whole session and a JSON log capture fixture
- A file-backed SQLite database per test (WAL, shared by worker threads)
- Deterministic clock, fake employee directory and calculation gateway
- A fully wired PayrollCore and a staffed company
"""

import json
import logging
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from payroll_kernel.config import PayrollCoreConfig
from payroll_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from payroll_kernel.db.immutability import register_immutability_listeners
from payroll_kernel.domain.clock import DeterministicClock
from payroll_kernel.domain.dtos import CompanyInfo, EmployeeRecord, EmploymentRecord
from payroll_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from payroll_services.container import PayrollCore
from tests.fakes import (
    EGN_AFTER_1960,
    EGN_BEFORE_1960,
    LNCH_VALID,
    FakeDirectory,
    FakeGateway,
    make_company,
    make_employee,
)

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture payroll_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, core):
            core.controller.close_month(...)
            logs = captured_logs()
            assert any(r["message"] == "payroll_month_closed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("payroll_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def database(tmp_path):
    """Fresh SQLite database file with all tables and immutability listeners."""
    engine = init_engine_from_url(f"sqlite:///{tmp_path / 'payroll.db'}")
    create_tables()
    register_immutability_listeners()
    yield engine
    reset_engine()


@pytest.fixture
def session_factory(database) -> sessionmaker[Session]:
    return get_session_factory()


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """A session for kernel-level tests; the test decides when to commit."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def company(tenant_id) -> CompanyInfo:
    return make_company(tenant_id)


@pytest.fixture
def directory(company) -> FakeDirectory:
    d = FakeDirectory()
    d.add_company(company)
    return d


@pytest.fixture
def gateway(directory) -> FakeGateway:
    return FakeGateway(directory)


@pytest.fixture
def staff(directory, tenant_id) -> list[EmployeeRecord]:
    """
    Three employees: born after 1960, born before 1960, and a foreigner
    identified by LNCH.  Surnames sort in this order.
    """
    employees = [
        make_employee("Мария", "Иванова", egn=EGN_AFTER_1960, middle_name="Петрова"),
        make_employee("Георги", "Петров", egn=EGN_BEFORE_1960, middle_name="Иванов"),
        make_employee("John", "Смит", lnch=LNCH_VALID),
    ]
    for index, employee in enumerate(employees, start=1):
        directory.add_employee(
            tenant_id,
            employee,
            EmploymentRecord(
                employee_id=employee.employee_id,
                contract_number=f"TD-{index:03d}",
                contract_basis="01",
                nkpd_code="25121001",
                kid_code="6201",
            ),
        )
    return employees


@pytest.fixture
def payroll_config() -> PayrollCoreConfig:
    return PayrollCoreConfig(max_workers=2)


@pytest.fixture
def core(session_factory, gateway, directory, payroll_config, deterministic_clock) -> PayrollCore:
    return PayrollCore(
        session_factory,
        gateway,
        directory,
        config=payroll_config,
        clock=deterministic_clock,
    )


@pytest.fixture
def calculated_month(core, staff, tenant_id, test_actor_id):
    """June 2025 prepared and calculated for the three staff members."""
    core.controller.prepare_month(tenant_id, 2025, 6, test_actor_id)
    result = core.controller.calculate_all(tenant_id, 2025, 6, test_actor_id)
    assert result.succeeded_count == 3
    return result
