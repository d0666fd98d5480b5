"""
NapSubmission model -- the append-only declaration ledger.

Every generated filing is a new row; rows are never updated or deleted
(immutability listeners).  Several rows may exist for the same
(type, period); the latest by ``generated_at`` is the current filing, and
no two filings of one type share a (year, month, generated_at).
"""

import json
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import Date, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import TrackedBase
from payroll_kernel.domain.dtos import (
    CorrectionCode,
    DeclarationType,
    NapSubmissionInfo,
    ReportingPeriod,
    SubmissionStatus,
    ValidationError,
)


class NapSubmission(TrackedBase):
    """One generated statutory filing."""

    __tablename__ = "nap_submissions"

    __table_args__ = (
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_nap_submission_idempotency"),
        # Also serves period lookups ordered by generated_at.
        UniqueConstraint(
            "tenant_id", "declaration_type", "year", "month", "generated_at",
            name="uq_nap_submission_generated",
        ),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    declaration_type: Mapped[str] = mapped_column(String(20), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    period_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    file_name: Mapped[str] = mapped_column(String(120), nullable=False)
    file_content: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    correction_code: Mapped[int] = mapped_column(Integer, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(nullable=False)

    validation_errors_json: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    employee_ids_json: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def to_dto(self) -> NapSubmissionInfo:
        return NapSubmissionInfo(
            submission_id=self.id,
            tenant_id=self.tenant_id,
            declaration_type=DeclarationType(self.declaration_type),
            period=ReportingPeriod(
                year=self.year,
                month=self.month,
                date_from=self.period_from,
                date_to=self.period_to,
            ),
            file_name=self.file_name,
            file_content=self.file_content,
            record_count=self.record_count,
            status=SubmissionStatus(self.status),
            correction_code=CorrectionCode(self.correction_code),
            generated_at=self.generated_at,
            generated_by_id=self.created_by_id,
            content_hash=self.content_hash,
            validation_errors=tuple(
                ValidationError.from_dict(e) for e in json.loads(self.validation_errors_json)
            ),
            employee_ids=tuple(UUID(e) for e in json.loads(self.employee_ids_json)),
            idempotency_key=self.idempotency_key,
        )

    def __repr__(self) -> str:
        return (
            f"<NapSubmission {self.declaration_type} {self.year}-{self.month:02d} "
            f"code={self.correction_code} at {self.generated_at}>"
        )
