"""
PayrollMonth model -- the month-level status record.

One row per (tenant, year, month).  Created implicitly on the first prepare
or calculate call and never deleted.  ``status`` is the single piece of
shared mutable state per month; every change bumps ``version`` through a
compare-and-swap UPDATE in the month service.
"""

import json
from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import TrackedBase
from payroll_kernel.domain.dtos import MonthCloseSummary, MonthStatus, PayrollMonthInfo


class PayrollMonth(TrackedBase):
    """Status record of one payroll month for one tenant."""

    __tablename__ = "payroll_months"

    __table_args__ = (
        UniqueConstraint("tenant_id", "year", "month", name="uq_payroll_month_period"),
        Index("idx_payroll_month_status", "tenant_id", "status"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=MonthStatus.NOT_STARTED.value,
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    employee_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    calculated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    reopened_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reopened_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    recalculated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # MonthCloseSummary as JSON while the month is closed; cleared on reopen.
    close_summary_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def month_status(self) -> MonthStatus:
        return MonthStatus(self.status)

    def to_dto(self) -> PayrollMonthInfo:
        return PayrollMonthInfo(
            tenant_id=self.tenant_id,
            year=self.year,
            month=self.month,
            status=MonthStatus(self.status),
            month_id=self.id,
            version=self.version,
            employee_count=self.employee_count,
            last_failed_count=self.last_failed_count,
            calculated_at=self.calculated_at,
            closed_at=self.closed_at,
            closed_by_id=self.closed_by_id,
            reopened_at=self.reopened_at,
            reopened_by_id=self.reopened_by_id,
            recalculated_at=self.recalculated_at,
            close_summary=(
                MonthCloseSummary.from_dict(json.loads(self.close_summary_json))
                if self.close_summary_json
                else None
            ),
        )

    def __repr__(self) -> str:
        return f"<PayrollMonth {self.tenant_id} {self.year}-{self.month:02d} [{self.status}] v{self.version}>"
