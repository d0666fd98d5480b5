"""
Collaborator ports -- interfaces the payroll core consumes but does not own.

CalculationGateway:
    The external payroll arithmetic.  Invoked once per employee and month;
    expected to be deterministic for identical master data, timesheets and
    rate tables.  Domain failures are raised as ``CalculationFailureError``
    subclasses (``MissingTimesheetError``, ``ZeroGrossError``); anything
    else is treated as an opaque failure by the month controller.

EmployeeDirectory:
    Read access to company and employee master data, contracts and
    employment events.  Missing company or employee raises NotFoundError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from uuid import UUID

from payroll_kernel.domain.dtos import (
    CompanyInfo,
    EmployeeRecord,
    EmploymentEvent,
    EmploymentRecord,
)
from payroll_kernel.domain.snapshot import PayrollSnapshot


class CalculationGateway(ABC):
    """Computes one employee's payroll for one month."""

    @abstractmethod
    def calculate(
        self,
        tenant_id: UUID,
        employee_id: UUID,
        year: int,
        month: int,
    ) -> PayrollSnapshot:
        ...

    def seed_month(self, tenant_id: UUID, year: int, month: int) -> None:
        """Seed working-time baselines (calendar, timesheets) for a new month."""
        return None


class EmployeeDirectory(ABC):
    """Master data read port."""

    @abstractmethod
    def get_company(self, tenant_id: UUID) -> CompanyInfo:
        ...

    @abstractmethod
    def list_active_employees(
        self, tenant_id: UUID, year: int, month: int
    ) -> list[EmployeeRecord]:
        ...

    @abstractmethod
    def get_employee(self, tenant_id: UUID, employee_id: UUID) -> EmployeeRecord:
        ...

    @abstractmethod
    def get_employment(
        self, tenant_id: UUID, employee_id: UUID
    ) -> EmploymentRecord | None:
        ...

    @abstractmethod
    def list_employment_events(
        self, tenant_id: UUID, date_from: date, date_to: date
    ) -> list[EmploymentEvent]:
        ...
