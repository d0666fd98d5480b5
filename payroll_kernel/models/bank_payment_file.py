"""
BankPaymentFile model -- generated bank payment artifacts.

Holds the exact bytes produced at generation time so that a download
returns what was reviewed.  Append-only; regenerating creates a new row.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Index, Integer, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import TrackedBase
from payroll_kernel.domain.dtos import BankPaymentFileInfo


class BankPaymentFile(TrackedBase):
    """One generated salary payment file."""

    __tablename__ = "bank_payment_files"

    __table_args__ = (
        Index("idx_bank_payment_file_period", "tenant_id", "year", "month", "generated_at"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    file_name: Mapped[str] = mapped_column(String(120), nullable=False)
    content: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    warning_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> BankPaymentFileInfo:
        return BankPaymentFileInfo(
            file_id=self.id,
            tenant_id=self.tenant_id,
            year=self.year,
            month=self.month,
            file_name=self.file_name,
            record_count=self.record_count,
            total_amount=self.total_amount,
            warning_count=self.warning_count,
            content_hash=self.content_hash,
            generated_at=self.generated_at,
            generated_by_id=self.created_by_id,
        )

    def __repr__(self) -> str:
        return f"<BankPaymentFile {self.file_name} total={self.total_amount}>"
