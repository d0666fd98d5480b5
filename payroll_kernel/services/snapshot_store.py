"""
SnapshotStore -- durable keyed store of computed payroll snapshots.

Responsibility:
    Holds at most one current snapshot per (tenant, employee, year, month)
    and is the source of truth for "has this employee been calculated this
    month".  Upsert replaces the row for the key in place; listing is
    ordered by surname, first name, then employee id so reports and
    declarations come out in a deterministic order.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - A snapshot whose aggregates do not match its line items is refused
      with SnapshotIntegrityError before anything is written.
    - The whole snapshot is one row (canonical JSON payload plus
      denormalized columns), so a reader never sees half of an update.
    - The store computes nothing.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from payroll_kernel.domain.clock import Clock
from payroll_kernel.domain.snapshot import MINOR_UNIT, PayrollSnapshot
from payroll_kernel.exceptions import NotFoundError, SnapshotIntegrityError
from payroll_kernel.logging_config import get_logger
from payroll_kernel.models.payroll_snapshot import PayrollSnapshotRecord
from payroll_kernel.services.base import BaseService

logger = get_logger("services.snapshot_store")


def snapshot_key_label(tenant_id: UUID, employee_id: UUID, year: int, month: int) -> str:
    return f"{tenant_id}/{employee_id}/{year}-{month:02d}"


class SnapshotStore(BaseService[PayrollSnapshotRecord]):
    """Keyed snapshot persistence."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        tolerance: Decimal = MINOR_UNIT,
    ):
        super().__init__(session, clock)
        self._tolerance = tolerance

    def _select_record(
        self, tenant_id: UUID, employee_id: UUID, year: int, month: int
    ) -> PayrollSnapshotRecord | None:
        return self.session.execute(
            select(PayrollSnapshotRecord).where(
                PayrollSnapshotRecord.tenant_id == tenant_id,
                PayrollSnapshotRecord.employee_id == employee_id,
                PayrollSnapshotRecord.year == year,
                PayrollSnapshotRecord.month == month,
            )
        ).scalar_one_or_none()

    def find(
        self, tenant_id: UUID, employee_id: UUID, year: int, month: int
    ) -> PayrollSnapshot | None:
        record = self._select_record(tenant_id, employee_id, year, month)
        return record.to_dto() if record is not None else None

    def get(
        self, tenant_id: UUID, employee_id: UUID, year: int, month: int
    ) -> PayrollSnapshot:
        """
        Current snapshot for the key.

        Raises:
            NotFoundError: No snapshot has been written for the key.
        """
        snapshot = self.find(tenant_id, employee_id, year, month)
        if snapshot is None:
            raise NotFoundError(
                "PayrollSnapshot",
                snapshot_key_label(tenant_id, employee_id, year, month),
            )
        return snapshot

    def revision(
        self, tenant_id: UUID, employee_id: UUID, year: int, month: int
    ) -> int:
        """How many times the key has been written (0 when never)."""
        record = self._select_record(tenant_id, employee_id, year, month)
        return record.revision if record is not None else 0

    def upsert(self, snapshot: PayrollSnapshot, actor_id: UUID) -> PayrollSnapshot:
        """
        Insert or replace the snapshot for its composite key.

        ``calculated_at`` is stamped from the clock when the snapshot does
        not carry one.

        Raises:
            SnapshotIntegrityError: Aggregates disagree with line items.
        """
        problems = snapshot.consistency_problems(self._tolerance)
        if problems:
            logger.warning(
                "snapshot_rejected_inconsistent",
                extra={
                    "employee_id": str(snapshot.employee_id),
                    "problems": list(problems),
                },
            )
            raise SnapshotIntegrityError(str(snapshot.employee_id), problems)

        if snapshot.calculated_at is None:
            snapshot = snapshot.with_calculated_at(self._clock.now())

        record = self._select_record(*snapshot.key)
        if record is None:
            record = PayrollSnapshotRecord(created_by_id=actor_id, revision=1)
            record.apply(snapshot)
            self.session.add(record)
            replaced = False
        else:
            record.apply(snapshot)
            record.revision += 1
            record.updated_by_id = actor_id
            replaced = True
        self.session.flush()

        logger.info(
            "snapshot_upserted",
            extra={
                "employee_id": str(snapshot.employee_id),
                "year": snapshot.year,
                "month": snapshot.month,
                "revision": record.revision,
                "replaced": replaced,
                "content_hash": record.content_hash,
            },
        )
        return snapshot

    def list_for_month(self, tenant_id: UUID, year: int, month: int) -> list[PayrollSnapshot]:
        """All current snapshots of the month, ordered by surname then first name."""
        records = self.session.execute(
            select(PayrollSnapshotRecord)
            .where(
                PayrollSnapshotRecord.tenant_id == tenant_id,
                PayrollSnapshotRecord.year == year,
                PayrollSnapshotRecord.month == month,
            )
            .order_by(
                PayrollSnapshotRecord.last_name,
                PayrollSnapshotRecord.first_name,
                PayrollSnapshotRecord.employee_id,
            )
        ).scalars()
        return [r.to_dto() for r in records]

    def list_for_year(self, tenant_id: UUID, year: int) -> list[PayrollSnapshot]:
        """Every snapshot of the year, month by month in store order."""
        snapshots: list[PayrollSnapshot] = []
        for month in range(1, 13):
            snapshots.extend(self.list_for_month(tenant_id, year, month))
        return snapshots

    def count_for_month(self, tenant_id: UUID, year: int, month: int) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(PayrollSnapshotRecord)
            .where(
                PayrollSnapshotRecord.tenant_id == tenant_id,
                PayrollSnapshotRecord.year == year,
                PayrollSnapshotRecord.month == month,
            )
        ).scalar_one()
