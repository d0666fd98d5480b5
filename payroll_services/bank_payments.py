"""
payroll_services.bank_payments -- BankPaymentService.

Responsibility:
    ``build`` turns the snapshots of a CALCULATED or CLOSED month into a
    BankPaymentBatch for review; ``generate`` renders that batch to CSV
    bytes and stores them as an append-only artifact; ``download`` serves
    the stored bytes unchanged.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

Invariants enforced:
    - Download never re-renders: the bytes returned are the bytes stored.
    - Every snapshot yields a payment row; negative and zero amounts are
      flagged, never dropped or adjusted.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from payroll_kernel.config import PayrollCoreConfig
from payroll_kernel.db.engine import session_scope
from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.domain.dtos import BankPaymentFileInfo, period_label
from payroll_kernel.exceptions import NotFoundError, PreconditionFailedError
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_kernel.services.bank_file_store import BankPaymentFileStore
from payroll_kernel.services.month_service import PayrollMonthService
from payroll_kernel.services.ports import EmployeeDirectory
from payroll_kernel.services.snapshot_store import SnapshotStore
from payroll_engines.bank_batch import BankPaymentBatch, build_batch
from payroll_services.declaration_generator import media_type_for

logger = get_logger("services.bank_payments")


class BankPaymentService:
    """Bank payment batch building and artifact storage."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        directory: EmployeeDirectory,
        config: PayrollCoreConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._directory = directory
        self._config = config or PayrollCoreConfig()
        self._clock = clock or SystemClock()

    def _build(self, session: Session, tenant_id: UUID, year: int, month: int) -> BankPaymentBatch:
        info = PayrollMonthService(session, self._clock).get_info(tenant_id, year, month)
        if not info.has_results:
            raise PreconditionFailedError(
                info.period,
                info.status.value,
                info.status.value,
                "build bank payments for",
                reason="month must be calculated or closed",
            )
        snapshots = SnapshotStore(session, self._clock).list_for_month(tenant_id, year, month)
        employees = {
            e.employee_id: e
            for e in self._directory.list_active_employees(tenant_id, year, month)
        }
        batch = build_batch(
            snapshots,
            year=year,
            month=month,
            description_template=self._config.bank_payment_description,
            employees=employees,
        )
        if batch.flagged:
            logger.warning(
                "bank_batch_has_warnings",
                extra={
                    "flagged_count": len(batch.flagged),
                    "warning_count": batch.warning_count,
                },
            )
        return batch

    def build(self, tenant_id: UUID, year: int, month: int) -> BankPaymentBatch:
        """
        Raises:
            PreconditionFailedError: The month is not CALCULATED or CLOSED.
        """
        with LogContext.bind(period=period_label(year, month)):
            with session_scope(self._session_factory) as session:
                return self._build(session, tenant_id, year, month)

    def generate(
        self, tenant_id: UUID, year: int, month: int, actor_id: UUID
    ) -> BankPaymentFileInfo:
        """
        Raises:
            PreconditionFailedError: The month is not CALCULATED or CLOSED.
            NotFoundError: The month has no snapshots.
        """
        with LogContext.bind(period=period_label(year, month)):
            with session_scope(self._session_factory) as session:
                batch = self._build(session, tenant_id, year, month)
                if not batch.records:
                    raise NotFoundError("PayrollSnapshot", period_label(year, month))
                content = batch.to_csv().encode(self._config.file_encoding, errors="replace")
                return BankPaymentFileStore(session, self._clock).append(
                    tenant_id=tenant_id,
                    year=year,
                    month=month,
                    file_name=batch.file_name,
                    content=content,
                    record_count=len(batch.records),
                    total_amount=batch.total,
                    warning_count=batch.warning_count,
                    actor_id=actor_id,
                )

    def download(
        self,
        tenant_id: UUID,
        year: int,
        month: int,
        file_id: UUID | None = None,
    ) -> tuple[BankPaymentFileInfo, bytes, str]:
        """(artifact info, stored bytes, media type); the latest artifact unless file_id is given."""
        with session_scope(self._session_factory) as session:
            info, content = BankPaymentFileStore(session, self._clock).load(
                tenant_id, year, month, file_id
            )
        return info, content, media_type_for(info.file_name, self._config.file_encoding)

    def list_files(self, tenant_id: UUID, year: int, month: int) -> list[BankPaymentFileInfo]:
        with session_scope(self._session_factory) as session:
            return BankPaymentFileStore(session, self._clock).list_files(tenant_id, year, month)
