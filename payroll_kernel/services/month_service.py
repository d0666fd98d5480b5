"""
PayrollMonthService -- persisted payroll month status and transitions.

Responsibility:
    Reads and writes the PayrollMonth row of one (tenant, year, month),
    validates every status change against PAYROLL_MONTH_WORKFLOW, evaluates
    transition guards and appends one MonthTransition row per successful
    transition.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Driven by the
    PayrollMonthController in payroll_services, which owns the transaction
    boundaries and the in-process serialization per month.

Invariants enforced:
    - Only declared workflow edges are taken; anything else raises
      InvalidTransitionError naming the current and requested state and
      leaves the row untouched.
    - Closing a month that is not Calculated, or that has no snapshots,
      raises PreconditionFailedError.
    - Status changes are compare-and-swap on ``version``: an UPDATE that
      matches no row (someone else transitioned first) raises
      OptimisticLockError.  On PostgreSQL the row is also locked with
      SELECT ... FOR UPDATE before the check.
    - Snapshot writes pin the month row (pin_for_write) in their own
      transaction, so no snapshot lands in a month that left the status
      the calculation started from.
    - Months are never deleted.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Mapping
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from payroll_kernel.db.engine import supports_row_locks
from payroll_kernel.domain.clock import Clock
from payroll_kernel.domain.dtos import (
    MonthAction,
    MonthStatus,
    MonthTransitionRecord,
    PayrollMonthInfo,
    period_label,
)
from payroll_kernel.domain.month_workflow import (
    AT_LEAST_ONE_SUCCEEDED,
    HAS_SNAPSHOTS,
    PAYROLL_MONTH_WORKFLOW,
    requested_state,
)
from payroll_kernel.domain.workflow import Guard, Transition
from payroll_kernel.exceptions import (
    InvalidTransitionError,
    MonthChangedError,
    OptimisticLockError,
    PreconditionFailedError,
)
from payroll_kernel.logging_config import get_logger
from payroll_kernel.models.month_transition import MonthTransition
from payroll_kernel.models.payroll_month import PayrollMonth
from payroll_kernel.services.base import BaseService

logger = get_logger("services.month")

_TRANSITION_EVENTS = {
    MonthAction.PREPARE: "payroll_month_opened",
    MonthAction.CALCULATE_ALL: "payroll_month_calculated",
    MonthAction.CLOSE: "payroll_month_closed",
    MonthAction.REOPEN: "payroll_month_reopened",
    MonthAction.RECALCULATE: "payroll_month_recalculated",
}


class GuardExecutor:
    """Evaluates workflow guards by name against a context mapping."""

    def __init__(self) -> None:
        self._evaluators: dict[str, Callable[[Mapping[str, Any]], bool]] = {}

    def register(self, guard_name: str, evaluator: Callable[[Mapping[str, Any]], bool]) -> None:
        self._evaluators[guard_name] = evaluator

    def evaluate(self, guard: Guard, context: Mapping[str, Any]) -> bool:
        fn = self._evaluators.get(guard.name)
        if fn is None:
            logger.warning("guard_no_evaluator", extra={"guard_name": guard.name})
            return False
        return bool(fn(context))


def default_guard_executor() -> GuardExecutor:
    ex = GuardExecutor()
    ex.register(AT_LEAST_ONE_SUCCEEDED.name, lambda ctx: ctx.get("succeeded_count", 0) > 0)
    ex.register(HAS_SNAPSHOTS.name, lambda ctx: ctx.get("snapshot_count", 0) > 0)
    return ex


class PayrollMonthService(BaseService[PayrollMonth]):
    """
    Status record access and guarded transitions for payroll months.

    Non-goals:
        - Does NOT calculate anything or touch snapshots.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        guards: GuardExecutor | None = None,
    ):
        super().__init__(session, clock)
        self._guards = guards or default_guard_executor()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def find(
        self,
        tenant_id: UUID,
        year: int,
        month: int,
        for_update: bool = False,
    ) -> PayrollMonth | None:
        stmt = select(PayrollMonth).where(
            PayrollMonth.tenant_id == tenant_id,
            PayrollMonth.year == year,
            PayrollMonth.month == month,
        )
        if for_update and supports_row_locks(self.session):
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def get_info(self, tenant_id: UUID, year: int, month: int) -> PayrollMonthInfo:
        """Month DTO; an untouched month reports NOT_STARTED without being created."""
        row = self.find(tenant_id, year, month)
        if row is None:
            return PayrollMonthInfo(tenant_id=tenant_id, year=year, month=month)
        return row.to_dto()

    def list_months(self, tenant_id: UUID, year: int) -> list[PayrollMonthInfo]:
        rows = self.session.execute(
            select(PayrollMonth)
            .where(PayrollMonth.tenant_id == tenant_id, PayrollMonth.year == year)
            .order_by(PayrollMonth.month)
        ).scalars()
        return [r.to_dto() for r in rows]

    def list_transitions(
        self, tenant_id: UUID, year: int, month: int
    ) -> list[MonthTransitionRecord]:
        rows = self.session.execute(
            select(MonthTransition)
            .where(
                MonthTransition.tenant_id == tenant_id,
                MonthTransition.year == year,
                MonthTransition.month == month,
            )
            .order_by(MonthTransition.month_version)
        ).scalars()
        return [r.to_dto() for r in rows]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def ensure(self, tenant_id: UUID, year: int, month: int, actor_id: UUID) -> PayrollMonth:
        """Existing row for the month, or a new NOT_STARTED row."""
        if not 1 <= month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {month}")
        row = self.find(tenant_id, year, month, for_update=True)
        if row is not None:
            return row
        row = PayrollMonth(
            tenant_id=tenant_id,
            year=year,
            month=month,
            status=MonthStatus.NOT_STARTED.value,
            version=0,
            employee_count=0,
            last_failed_count=0,
            created_by_id=actor_id,
        )
        self.session.add(row)
        self.session.flush()
        logger.info(
            "payroll_month_created",
            extra={"month_id": str(row.id), "period": period_label(year, month)},
        )
        return row

    def check_action(self, row_or_info: PayrollMonth | PayrollMonthInfo, action: MonthAction) -> Transition:
        """
        The workflow edge for ``action`` from the month's current state.

        Raises:
            PreconditionFailedError: ``close`` from any state but CALCULATED.
            InvalidTransitionError: No edge for the action.
        """
        current = MonthStatus(row_or_info.status)
        transition = PAYROLL_MONTH_WORKFLOW.find_transition(action.value, current.value)
        if transition is not None:
            return transition

        period = period_label(row_or_info.year, row_or_info.month)
        target = requested_state(action, current)
        logger.warning(
            "payroll_month_transition_rejected",
            extra={
                "period": period,
                "action": action.value,
                "current_state": current.value,
                "requested_state": target.value,
            },
        )
        if action == MonthAction.CLOSE:
            raise PreconditionFailedError(
                period,
                current.value,
                target.value,
                action.value,
                reason=f"month must be {MonthStatus.CALCULATED.value} to close",
            )
        raise InvalidTransitionError(period, current.value, target.value, action.value)

    def transition(
        self,
        row: PayrollMonth,
        action: MonthAction,
        actor_id: UUID,
        guard_context: Mapping[str, Any] | None = None,
        updates: Mapping[str, Any] | None = None,
        detail: Mapping[str, Any] | None = None,
    ) -> PayrollMonthInfo:
        """
        Take the ``action`` edge from the row's current state.

        ``updates`` are extra column values written in the same
        compare-and-swap UPDATE as the status change.

        Raises:
            InvalidTransitionError / PreconditionFailedError: as check_action,
                or when the edge's guard does not hold.
            OptimisticLockError: The row changed since it was read.
        """
        transition = self.check_action(row, action)
        from_state = MonthStatus(row.status)
        to_state = MonthStatus(transition.to_state)
        period = period_label(row.year, row.month)

        if transition.guard is not None and not self._guards.evaluate(
            transition.guard, guard_context or {}
        ):
            logger.warning(
                "payroll_month_guard_failed",
                extra={
                    "period": period,
                    "action": action.value,
                    "guard_name": transition.guard.name,
                },
            )
            raise PreconditionFailedError(
                period,
                from_state.value,
                to_state.value,
                action.value,
                reason=transition.guard.description,
            )

        now = self._clock.now()
        values: dict[str, Any] = dict(updates or {})
        values.update(
            status=to_state.value,
            version=row.version + 1,
            updated_at=now,
            updated_by_id=actor_id,
        )
        result = self.session.execute(
            update(PayrollMonth)
            .where(PayrollMonth.id == row.id, PayrollMonth.version == row.version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "payroll_month_version_conflict",
                extra={"period": period, "action": action.value, "version": row.version},
            )
            raise OptimisticLockError("PayrollMonth", str(row.id))
        self.session.refresh(row)

        self.session.add(
            MonthTransition(
                tenant_id=row.tenant_id,
                year=row.year,
                month=row.month,
                action=action.value,
                from_state=from_state.value,
                to_state=to_state.value,
                occurred_at=now,
                month_version=row.version,
                detail_json=json.dumps(dict(detail or {}), sort_keys=True, default=str),
                created_by_id=actor_id,
            )
        )
        self.session.flush()

        logger.info(
            _TRANSITION_EVENTS[action],
            extra={
                "month_id": str(row.id),
                "period": period,
                "from_state": from_state.value,
                "to_state": to_state.value,
                "version": row.version,
                "actor_id": str(actor_id),
            },
        )
        return row.to_dto()

    def pin_for_write(
        self,
        tenant_id: UUID,
        year: int,
        month: int,
        statuses: tuple[MonthStatus, ...],
        version: int | None = None,
    ) -> None:
        """
        Hold the month row for the rest of the transaction, provided it is
        still in one of ``statuses`` (and at ``version`` when given).

        Issues a no-op UPDATE on the row: PostgreSQL keeps the row lock and
        SQLite the database write lock until commit, so a concurrent
        close or reopen either lands before this check or waits for the
        caller's snapshot write to commit.

        Raises:
            MonthChangedError: The month is in another status or version.
        """
        stmt = (
            update(PayrollMonth)
            .where(
                PayrollMonth.tenant_id == tenant_id,
                PayrollMonth.year == year,
                PayrollMonth.month == month,
                PayrollMonth.status.in_([s.value for s in statuses]),
            )
            .values(version=PayrollMonth.version, updated_at=PayrollMonth.updated_at)
            .execution_options(synchronize_session=False)
        )
        if version is not None:
            stmt = stmt.where(PayrollMonth.version == version)
        if self.session.execute(stmt).rowcount == 1:
            return

        current = self.get_info(tenant_id, year, month)
        period = period_label(year, month)
        logger.warning(
            "payroll_month_changed_during_write",
            extra={
                "period": period,
                "status": current.status.value,
                "version": current.version,
                "expected_version": version,
            },
        )
        raise MonthChangedError(
            period,
            [s.value for s in statuses],
            version,
            current.status.value,
            current.version,
        )

    def record_calculation(
        self,
        row: PayrollMonth,
        employee_count: int,
        failed_count: int,
        actor_id: UUID,
        updates: Mapping[str, Any] | None = None,
    ) -> PayrollMonthInfo:
        """
        Update the calculation counters without a status change.

        Used when a batch leaves the status where it was (nothing succeeded,
        or the run was cancelled).  ``updates`` are extra column values.
        """
        result = self.session.execute(
            update(PayrollMonth)
            .where(PayrollMonth.id == row.id, PayrollMonth.version == row.version)
            .values(
                **dict(updates or {}),
                employee_count=employee_count,
                last_failed_count=failed_count,
                version=row.version + 1,
                updated_at=self._clock.now(),
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise OptimisticLockError("PayrollMonth", str(row.id))
        self.session.refresh(row)
        return row.to_dto()
