"""
BankPaymentFileStore -- append-only storage of generated payment files.

The bytes handed to ``append`` are the bytes ``load`` returns; nothing is
re-rendered on download.
"""

from __future__ import annotations

import hashlib
from datetime import timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from payroll_kernel.domain.dtos import BankPaymentFileInfo, period_label
from payroll_kernel.exceptions import NotFoundError
from payroll_kernel.logging_config import get_logger
from payroll_kernel.models.bank_payment_file import BankPaymentFile
from payroll_kernel.services.base import BaseService

logger = get_logger("services.bank_file_store")

_TICK = timedelta(microseconds=1)


class BankPaymentFileStore(BaseService[BankPaymentFile]):
    """Persistence for BankPaymentFile rows."""

    def _latest_row(self, tenant_id: UUID, year: int, month: int) -> BankPaymentFile | None:
        return self.session.execute(
            select(BankPaymentFile)
            .where(
                BankPaymentFile.tenant_id == tenant_id,
                BankPaymentFile.year == year,
                BankPaymentFile.month == month,
            )
            .order_by(BankPaymentFile.generated_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def append(
        self,
        tenant_id: UUID,
        year: int,
        month: int,
        file_name: str,
        content: bytes,
        record_count: int,
        total_amount: Decimal,
        warning_count: int,
        actor_id: UUID,
    ) -> BankPaymentFileInfo:
        generated_at = self._clock.now()
        latest = self._latest_row(tenant_id, year, month)
        if latest is not None and generated_at <= latest.generated_at:
            generated_at = latest.generated_at + _TICK

        row = BankPaymentFile(
            tenant_id=tenant_id,
            year=year,
            month=month,
            file_name=file_name,
            content=content,
            content_hash=hashlib.sha256(content).hexdigest(),
            record_count=record_count,
            total_amount=total_amount,
            warning_count=warning_count,
            generated_at=generated_at,
            created_by_id=actor_id,
        )
        self.session.add(row)
        self.session.flush()
        logger.info(
            "bank_payment_file_stored",
            extra={
                "file_id": str(row.id),
                "file_name": file_name,
                "period": period_label(year, month),
                "record_count": record_count,
                "total_amount": str(total_amount),
            },
        )
        return row.to_dto()

    def load(
        self,
        tenant_id: UUID,
        year: int,
        month: int,
        file_id: UUID | None = None,
    ) -> tuple[BankPaymentFileInfo, bytes]:
        """
        Stored artifact and its exact bytes (default: the latest one).

        Raises:
            NotFoundError: Nothing generated for the month, or unknown file_id.
        """
        if file_id is not None:
            row = self.session.get(BankPaymentFile, file_id)
            if row is not None and (
                row.tenant_id != tenant_id or row.year != year or row.month != month
            ):
                row = None
        else:
            row = self._latest_row(tenant_id, year, month)
        if row is None:
            raise NotFoundError(
                "BankPaymentFile",
                str(file_id) if file_id is not None else period_label(year, month),
            )
        return row.to_dto(), bytes(row.content)

    def list_files(self, tenant_id: UUID, year: int, month: int) -> list[BankPaymentFileInfo]:
        rows = self.session.execute(
            select(BankPaymentFile)
            .where(
                BankPaymentFile.tenant_id == tenant_id,
                BankPaymentFile.year == year,
                BankPaymentFile.month == month,
            )
            .order_by(BankPaymentFile.generated_at.desc())
        ).scalars()
        return [r.to_dto() for r in rows]
