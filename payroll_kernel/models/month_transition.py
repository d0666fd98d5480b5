"""
MonthTransition model -- append-only log of payroll month status changes.

One row per successful transition (prepare, calculate_all, close, reopen,
recalculate).  Protected by the immutability listeners.
"""

import json
from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import TrackedBase
from payroll_kernel.domain.dtos import MonthAction, MonthStatus, MonthTransitionRecord


class MonthTransition(TrackedBase):
    """Audit record of one payroll month transition."""

    __tablename__ = "payroll_month_transitions"

    __table_args__ = (
        Index("idx_month_transition_period", "tenant_id", "year", "month", "month_version"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    from_state: Mapped[str] = mapped_column(String(20), nullable=False)
    to_state: Mapped[str] = mapped_column(String(20), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    # Month row version after the transition; orders the log per month.
    month_version: Mapped[int] = mapped_column(Integer, nullable=False)
    detail_json: Mapped[str] = mapped_column(Text, default="{}", nullable=False)

    def to_dto(self) -> MonthTransitionRecord:
        return MonthTransitionRecord(
            transition_id=self.id,
            tenant_id=self.tenant_id,
            year=self.year,
            month=self.month,
            action=MonthAction(self.action),
            from_state=MonthStatus(self.from_state),
            to_state=MonthStatus(self.to_state),
            actor_id=self.created_by_id,
            occurred_at=self.occurred_at,
            detail=json.loads(self.detail_json or "{}"),
        )

    def __repr__(self) -> str:
        return (
            f"<MonthTransition {self.year}-{self.month:02d} "
            f"{self.action}: {self.from_state} -> {self.to_state}>"
        )
