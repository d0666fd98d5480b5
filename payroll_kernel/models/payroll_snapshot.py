"""
PayrollSnapshotRecord model -- persisted payroll snapshot.

One row per (tenant, employee, year, month).  The full snapshot is stored as
canonical JSON in ``payload``; aggregates and name columns are denormalized
for ordering and reporting.  Upserts replace the row in place and bump
``revision``.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import TrackedBase
from payroll_kernel.domain.snapshot import PayrollSnapshot


class PayrollSnapshotRecord(TrackedBase):
    """Current snapshot for one employee and month."""

    __tablename__ = "payroll_snapshots"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "employee_id", "year", "month",
            name="uq_payroll_snapshot_key",
        ),
        Index(
            "idx_payroll_snapshot_month_order",
            "tenant_id", "year", "month", "last_name", "first_name",
        ),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)

    last_name: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), default="", nullable=False)

    gross_salary: Mapped[Decimal] = mapped_column(nullable=False)
    net_salary: Mapped[Decimal] = mapped_column(nullable=False)
    total_employer_cost: Mapped[Decimal] = mapped_column(nullable=False)

    payload: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    revision: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(nullable=False)

    def apply(self, snapshot: PayrollSnapshot) -> None:
        """Copy snapshot content into this row (insert or replace)."""
        self.tenant_id = snapshot.tenant_id
        self.employee_id = snapshot.employee_id
        self.year = snapshot.year
        self.month = snapshot.month
        self.last_name = snapshot.last_name
        self.first_name = snapshot.first_name
        self.gross_salary = snapshot.gross_salary
        self.net_salary = snapshot.net_salary
        self.total_employer_cost = snapshot.total_employer_cost
        self.payload = snapshot.canonical_json()
        self.content_hash = snapshot.content_hash()
        self.calculated_at = snapshot.calculated_at

    def to_dto(self) -> PayrollSnapshot:
        return PayrollSnapshot.from_json(self.payload, calculated_at=self.calculated_at)

    def __repr__(self) -> str:
        return (
            f"<PayrollSnapshotRecord {self.employee_id} "
            f"{self.year}-{self.month:02d} rev{self.revision}>"
        )
