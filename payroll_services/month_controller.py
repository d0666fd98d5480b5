"""
payroll_services.month_controller -- PayrollMonthController.

Responsibility:
    Drives the payroll month lifecycle: PrepareMonth, CalculateAll,
    CalculateOne, CloseMonth, ReopenMonth and RecalculateMonth.  Fans the
    per-employee calculation out over a bounded worker pool and aggregates
    one result per employee.

Architecture position:
    Services -- stateful orchestration over kernel + collaborators.
    Composes PayrollMonthService (status and transition log), SnapshotStore,
    CalculationGateway and EmployeeDirectory.

Invariants enforced:
    - Status changes of one (tenant, year, month) are serialized: an
      in-process lock per month, plus a compare-and-swap on the month
      version (and SELECT ... FOR UPDATE on PostgreSQL) across processes.
    - Every snapshot write is its own transaction.  A failure for one
      employee never discards the snapshots already written for others.
    - Per-employee failures are collected, never raised, by CalculateAll
      and RecalculateMonth.
    - CalculateAll moves the month to CALCULATED only when at least one
      employee succeeded and the run was not cancelled.
    - Each snapshot write first pins the month row to the status (and, for
      batches, the version) the run started from.  A close or reopen that
      commits mid-run stops the run; no snapshot lands in the changed month.
    - Closing freezes a MonthCloseSummary (totals, company data, rates) on
      the month.  RecalculateMonth refreshes it and ReopenMonth clears it.

Failure modes:
    - InvalidTransitionError for an action not allowed from the current
      state; PreconditionFailedError when closing a month that is not
      CALCULATED or has no snapshots.  Persisted state is unchanged.
    - OptimisticLockError when another process changed the month first.
    - MonthChangedError when the month was closed, reopened or recalculated
      by another controller while a run was writing snapshots.
    - NotFoundError from the directory for an unknown employee.
"""

from __future__ import annotations

import contextvars
import json
import threading
import time
import weakref
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from payroll_kernel.config import PayrollCoreConfig
from payroll_kernel.db.engine import session_scope
from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.domain.dtos import (
    CalculationBatchResult,
    CalculationStatus,
    CompanyInfo,
    EmployeeCalculationResult,
    MonthAction,
    MonthCloseSummary,
    MonthStatus,
    MonthTransitionRecord,
    PayrollMonthInfo,
    period_label,
)
from payroll_kernel.domain.month_workflow import states_allowing
from payroll_kernel.domain.snapshot import PayrollSnapshot
from payroll_kernel.exceptions import (
    CalculationFailureError,
    MonthChangedError,
    SnapshotIntegrityError,
)
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_kernel.services.month_service import GuardExecutor, PayrollMonthService
from payroll_kernel.services.ports import CalculationGateway, EmployeeDirectory
from payroll_kernel.services.snapshot_store import SnapshotStore, snapshot_key_label

logger = get_logger("services.month_controller")

UNHANDLED_EXCEPTION = "UNHANDLED_EXCEPTION"


class CancellationToken:
    """Best-effort cancellation flag shared with the calculation workers."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class _MonthPin:
    """
    Month status (and version) every snapshot write of one run must find.

    Records the first MonthChangedError raised by a worker so the others
    stop writing and the run can report it.
    """

    def __init__(self, statuses: tuple[MonthStatus, ...], version: int | None = None) -> None:
        self.statuses = statuses
        self.version = version
        self._changed: MonthChangedError | None = None
        self._guard = threading.Lock()

    @property
    def changed(self) -> MonthChangedError | None:
        return self._changed

    def record(self, exc: MonthChangedError) -> None:
        with self._guard:
            if self._changed is None:
                self._changed = exc


def summarize_close(snapshots: Sequence[PayrollSnapshot], company: CompanyInfo) -> MonthCloseSummary:
    """Totals over the month's snapshots plus the company data and rates in force."""

    def total(name: str) -> Decimal:
        return sum((getattr(s, name) for s in snapshots), Decimal("0"))

    return MonthCloseSummary(
        employee_count=len(snapshots),
        total_gross=total("gross_salary"),
        total_net=total("net_salary"),
        total_employer_insurance=total("total_employer_insurance"),
        total_employer_cost=total("total_employer_cost"),
        company={
            "name": company.name,
            "bulstat": company.bulstat,
            "nkid_code": company.nkid_code,
            "ekatte_code": company.ekatte_code,
        },
        legislation_params=snapshots[0].to_payload()["legislation_params"] if snapshots else {},
    )


class PayrollMonthController:
    """
    Payroll month state machine and calculation fan-out.

    Contract:
        - Every public operation opens its own transaction(s) from
          ``session_factory``; callers never pass a session.
        - Returned objects are DTOs, never ORM rows.

    Non-goals:
        - Does NOT compute payroll; the CalculationGateway does.
        - Does NOT generate declarations or payment files.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        gateway: CalculationGateway,
        directory: EmployeeDirectory,
        config: PayrollCoreConfig | None = None,
        clock: Clock | None = None,
        guards: GuardExecutor | None = None,
    ):
        self._session_factory = session_factory
        self._gateway = gateway
        self._directory = directory
        self._config = config or PayrollCoreConfig()
        self._clock = clock or SystemClock()
        self._guards = guards
        # An entry drops out once no call holds its lock.
        self._locks: weakref.WeakValueDictionary[tuple[UUID, int, int], threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def _month_lock(self, tenant_id: UUID, year: int, month: int) -> threading.Lock:
        key = (tenant_id, year, month)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _months(self, session: Session) -> PayrollMonthService:
        return PayrollMonthService(session, self._clock, self._guards)

    def _store(self, session: Session) -> SnapshotStore:
        return SnapshotStore(session, self._clock, self._config.amount_tolerance)

    def _close_summary(
        self, session: Session, tenant_id: UUID, year: int, month: int
    ) -> tuple[MonthCloseSummary, dict[str, Any]]:
        """The month's close summary and the column update that stores it."""
        summary = summarize_close(
            self._store(session).list_for_month(tenant_id, year, month),
            self._directory.get_company(tenant_id),
        )
        stored = json.dumps(summary.to_dict(), sort_keys=True, ensure_ascii=False)
        return summary, {"close_summary_json": stored}

    def _ensure_month(self, tenant_id: UUID, year: int, month: int, actor_id: UUID) -> None:
        """Create the NOT_STARTED row in its own transaction (tolerating a concurrent insert)."""
        try:
            with session_scope(self._session_factory) as session:
                self._months(session).ensure(tenant_id, year, month, actor_id)
        except IntegrityError:
            logger.info(
                "payroll_month_created_concurrently",
                extra={"period": period_label(year, month)},
            )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_month(self, tenant_id: UUID, year: int, month: int) -> PayrollMonthInfo:
        with session_scope(self._session_factory) as session:
            return self._months(session).get_info(tenant_id, year, month)

    def list_months(self, tenant_id: UUID, year: int) -> list[PayrollMonthInfo]:
        with session_scope(self._session_factory) as session:
            return self._months(session).list_months(tenant_id, year)

    def list_transitions(
        self, tenant_id: UUID, year: int, month: int
    ) -> list[MonthTransitionRecord]:
        with session_scope(self._session_factory) as session:
            return self._months(session).list_transitions(tenant_id, year, month)

    def list_snapshots(self, tenant_id: UUID, year: int, month: int) -> list[PayrollSnapshot]:
        with session_scope(self._session_factory) as session:
            return self._store(session).list_for_month(tenant_id, year, month)

    def get_snapshot(
        self, tenant_id: UUID, employee_id: UUID, year: int, month: int
    ) -> PayrollSnapshot:
        with session_scope(self._session_factory) as session:
            return self._store(session).get(tenant_id, employee_id, year, month)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def prepare_month(
        self, tenant_id: UUID, year: int, month: int, actor_id: UUID
    ) -> PayrollMonthInfo:
        """
        NOT_STARTED -> OPEN.

        Idempotent: a month that is already OPEN or later is returned as is
        and no transition is recorded.
        """
        with LogContext.bind(period=period_label(year, month)), self._month_lock(
            tenant_id, year, month
        ):
            self._ensure_month(tenant_id, year, month, actor_id)
            with session_scope(self._session_factory) as session:
                months = self._months(session)
                row = months.find(tenant_id, year, month, for_update=True)
                if row.month_status != MonthStatus.NOT_STARTED:
                    logger.info(
                        "payroll_month_prepare_noop",
                        extra={"status": row.status, "version": row.version},
                    )
                    return row.to_dto()
                self._gateway.seed_month(tenant_id, year, month)
                return months.transition(row, MonthAction.PREPARE, actor_id)

    def calculate_all(
        self,
        tenant_id: UUID,
        year: int,
        month: int,
        actor_id: UUID,
        cancel_token: CancellationToken | None = None,
    ) -> CalculationBatchResult:
        """
        OPEN or CALCULATED -> CALCULATED, calculating every active employee.

        Raises:
            InvalidTransitionError: The month is NOT_STARTED or CLOSED.
        """
        with LogContext.bind(period=period_label(year, month)), self._month_lock(
            tenant_id, year, month
        ):
            with session_scope(self._session_factory) as session:
                months = self._months(session)
                info = months.get_info(tenant_id, year, month)
                months.check_action(info, MonthAction.CALCULATE_ALL)
            pin = _MonthPin(states_allowing(MonthAction.CALCULATE_ALL), info.version)
            return self._run_month(
                MonthAction.CALCULATE_ALL, tenant_id, year, month, actor_id, cancel_token, pin
            )

    def recalculate_month(
        self,
        tenant_id: UUID,
        year: int,
        month: int,
        actor_id: UUID,
        cancel_token: CancellationToken | None = None,
    ) -> CalculationBatchResult:
        """
        CLOSED -> CLOSED, recomputing every snapshot in place.

        closed_at and closed_by are kept; recalculated_at is stamped.

        Raises:
            InvalidTransitionError: The month is not CLOSED.
        """
        with LogContext.bind(period=period_label(year, month)), self._month_lock(
            tenant_id, year, month
        ):
            with session_scope(self._session_factory) as session:
                months = self._months(session)
                info = months.get_info(tenant_id, year, month)
                months.check_action(info, MonthAction.RECALCULATE)
            pin = _MonthPin(states_allowing(MonthAction.RECALCULATE), info.version)
            return self._run_month(
                MonthAction.RECALCULATE, tenant_id, year, month, actor_id, cancel_token, pin
            )

    def calculate_one(
        self,
        tenant_id: UUID,
        employee_id: UUID,
        year: int,
        month: int,
        actor_id: UUID,
    ) -> EmployeeCalculationResult:
        """
        Calculate a single employee; the month status is unchanged.

        Raises:
            InvalidTransitionError: The month is CLOSED.
            NotFoundError: The employee is unknown to the directory.
            CalculationFailureError: The gateway reported a domain failure.
            MonthChangedError: The month was closed before the snapshot
                was written.
        """
        with LogContext.bind(period=period_label(year, month)), self._month_lock(
            tenant_id, year, month
        ):
            self._ensure_month(tenant_id, year, month, actor_id)
            with session_scope(self._session_factory) as session:
                months = self._months(session)
                months.check_action(
                    months.find(tenant_id, year, month, for_update=True),
                    MonthAction.CALCULATE_ONE,
                )
            self._directory.get_employee(tenant_id, employee_id)

            pin = _MonthPin(states_allowing(MonthAction.CALCULATE_ONE))
            t0 = time.monotonic()
            try:
                snapshot = self._compute_and_store(
                    tenant_id, employee_id, year, month, actor_id, pin
                )
            except CalculationFailureError as exc:
                logger.warning(
                    "employee_calculation_failed",
                    extra={
                        "employee_id": str(employee_id),
                        "reason": exc.reason,
                        "error_code": exc.code,
                    },
                )
                raise
            return EmployeeCalculationResult.success(
                employee_id, snapshot, int((time.monotonic() - t0) * 1000)
            )

    def close_month(
        self, tenant_id: UUID, year: int, month: int, actor_id: UUID
    ) -> PayrollMonthInfo:
        """
        CALCULATED -> CLOSED, recording closed_at / closed_by.

        The returned month carries the MonthCloseSummary frozen by the close:
        employee count, gross / net / employer totals, the company data and
        the legislation parameters the snapshots were calculated with.

        Raises:
            PreconditionFailedError: Status is not CALCULATED, or the month
                has no snapshots.
            NotFoundError: The directory has no company for the tenant.
        """
        with LogContext.bind(period=period_label(year, month)), self._month_lock(
            tenant_id, year, month
        ):
            with session_scope(self._session_factory) as session:
                months = self._months(session)
                row = months.find(tenant_id, year, month, for_update=True)
                months.check_action(
                    row if row is not None else months.get_info(tenant_id, year, month),
                    MonthAction.CLOSE,
                )
                summary, stored = self._close_summary(session, tenant_id, year, month)
                return months.transition(
                    row,
                    MonthAction.CLOSE,
                    actor_id,
                    guard_context={"snapshot_count": summary.employee_count},
                    updates={
                        "closed_at": self._clock.now(),
                        "closed_by_id": actor_id,
                        **stored,
                    },
                    detail={
                        "snapshot_count": summary.employee_count,
                        "total_gross": str(summary.total_gross),
                        "total_net": str(summary.total_net),
                        "total_employer_cost": str(summary.total_employer_cost),
                    },
                )

    def reopen_month(
        self, tenant_id: UUID, year: int, month: int, actor_id: UUID
    ) -> PayrollMonthInfo:
        """
        CLOSED -> OPEN (administrative override).  Snapshots are kept; the
        close summary is cleared and frozen again by the next close.

        Raises:
            InvalidTransitionError: The month is not CLOSED.
        """
        with LogContext.bind(period=period_label(year, month)), self._month_lock(
            tenant_id, year, month
        ):
            with session_scope(self._session_factory) as session:
                months = self._months(session)
                row = months.find(tenant_id, year, month, for_update=True)
                if row is None:
                    months.check_action(
                        months.get_info(tenant_id, year, month), MonthAction.REOPEN
                    )
                count = self._store(session).count_for_month(tenant_id, year, month)
                return months.transition(
                    row,
                    MonthAction.REOPEN,
                    actor_id,
                    updates={
                        "reopened_at": self._clock.now(),
                        "reopened_by_id": actor_id,
                        "close_summary_json": None,
                    },
                    detail={"snapshot_count": count},
                )

    # -------------------------------------------------------------------------
    # Batch calculation
    # -------------------------------------------------------------------------

    def _run_month(
        self,
        action: MonthAction,
        tenant_id: UUID,
        year: int,
        month: int,
        actor_id: UUID,
        cancel_token: CancellationToken | None,
        pin: _MonthPin,
    ) -> CalculationBatchResult:
        started_at = self._clock.now()
        t0 = time.monotonic()
        employees = self._directory.list_active_employees(tenant_id, year, month)
        logger.info(
            "payroll_batch_started",
            extra={"action": action.value, "employee_total": len(employees)},
        )

        results = self._calculate_employees(
            tenant_id, [e.employee_id for e in employees], year, month, actor_id, cancel_token, pin
        )
        succeeded = sum(1 for r in results if r.is_success)
        failed = sum(1 for r in results if r.status == CalculationStatus.FAILED)
        cancelled = cancel_token is not None and cancel_token.cancelled
        if pin.changed is not None:
            logger.warning(
                "payroll_batch_aborted",
                extra={
                    "action": action.value,
                    "succeeded": succeeded,
                    "current_state": pin.changed.current_state,
                    "version": pin.changed.current_version,
                },
            )
            raise pin.changed

        with session_scope(self._session_factory) as session:
            months = self._months(session)
            months.pin_for_write(tenant_id, year, month, pin.statuses, pin.version)
            row = months.find(tenant_id, year, month, for_update=True)
            snapshot_count = self._store(session).count_for_month(tenant_id, year, month)
            detail = {
                "succeeded": succeeded,
                "failed": failed,
                "cancelled": cancelled,
                "snapshot_count": snapshot_count,
            }
            updates: dict[str, Any] = {}
            if action == MonthAction.RECALCULATE:
                summary, updates = self._close_summary(session, tenant_id, year, month)
                detail["total_gross"] = str(summary.total_gross)
            if cancelled or (action == MonthAction.CALCULATE_ALL and succeeded == 0):
                months.check_action(row, action)
                info = months.record_calculation(
                    row, snapshot_count, failed, actor_id, updates=updates
                )
            else:
                now = self._clock.now()
                updates.update(employee_count=snapshot_count, last_failed_count=failed)
                if action == MonthAction.RECALCULATE:
                    updates["recalculated_at"] = now
                else:
                    updates["calculated_at"] = now
                info = months.transition(
                    row,
                    action,
                    actor_id,
                    guard_context={"succeeded_count": succeeded},
                    updates=updates,
                    detail=detail,
                )

        duration_ms = int((time.monotonic() - t0) * 1000)
        logger.info(
            "payroll_batch_completed",
            extra={
                "action": action.value,
                "status": info.status.value,
                "succeeded": succeeded,
                "failed": failed,
                "cancelled": cancelled,
                "duration_ms": duration_ms,
            },
        )
        return CalculationBatchResult(
            tenant_id=tenant_id,
            year=year,
            month=month,
            action=action,
            month_status=info.status,
            results=tuple(results),
            cancelled=cancelled,
            started_at=started_at,
            completed_at=self._clock.now(),
            duration_ms=duration_ms,
        )

    def _calculate_employees(
        self,
        tenant_id: UUID,
        employee_ids: Sequence[UUID],
        year: int,
        month: int,
        actor_id: UUID,
        cancel_token: CancellationToken | None,
        pin: _MonthPin,
    ) -> list[EmployeeCalculationResult]:
        """One result per employee, in directory order."""
        if not employee_ids:
            return []
        workers = min(self._config.max_workers, len(employee_ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="payroll-calc") as pool:
            futures = [
                pool.submit(
                    contextvars.copy_context().run,
                    self._calculate_employee,
                    tenant_id,
                    employee_id,
                    year,
                    month,
                    actor_id,
                    cancel_token,
                    pin,
                )
                for employee_id in employee_ids
            ]
            return [f.result() for f in futures]

    def _calculate_employee(
        self,
        tenant_id: UUID,
        employee_id: UUID,
        year: int,
        month: int,
        actor_id: UUID,
        cancel_token: CancellationToken | None,
        pin: _MonthPin,
    ) -> EmployeeCalculationResult:
        if (cancel_token is not None and cancel_token.cancelled) or pin.changed is not None:
            return EmployeeCalculationResult.skipped(employee_id)

        t0 = time.monotonic()
        try:
            snapshot = self._compute_and_store(tenant_id, employee_id, year, month, actor_id, pin)
        except MonthChangedError as exc:
            pin.record(exc)
            return EmployeeCalculationResult.skipped(employee_id)
        except CalculationFailureError as exc:
            logger.warning(
                "employee_calculation_failed",
                extra={
                    "employee_id": str(employee_id),
                    "reason": exc.reason,
                    "error_code": exc.code,
                },
            )
            return EmployeeCalculationResult.failure(
                employee_id, exc.reason, str(exc), int((time.monotonic() - t0) * 1000)
            )
        except Exception as exc:
            logger.error(
                "employee_calculation_failed",
                extra={"employee_id": str(employee_id), "reason": UNHANDLED_EXCEPTION},
                exc_info=True,
            )
            return EmployeeCalculationResult.failure(
                employee_id, UNHANDLED_EXCEPTION, str(exc), int((time.monotonic() - t0) * 1000)
            )
        return EmployeeCalculationResult.success(
            employee_id, snapshot, int((time.monotonic() - t0) * 1000)
        )

    def _compute_and_store(
        self,
        tenant_id: UUID,
        employee_id: UUID,
        year: int,
        month: int,
        actor_id: UUID,
        pin: _MonthPin,
    ) -> PayrollSnapshot:
        snapshot = self._gateway.calculate(tenant_id, employee_id, year, month)
        expected = (tenant_id, employee_id, year, month)
        if snapshot.key != expected:
            raise SnapshotIntegrityError(
                str(employee_id),
                [
                    f"gateway returned snapshot {snapshot_key_label(*snapshot.key)} "
                    f"for {snapshot_key_label(*expected)}"
                ],
            )
        with session_scope(self._session_factory) as session:
            self._months(session).pin_for_write(
                tenant_id, year, month, pin.statuses, pin.version
            )
            return self._store(session).upsert(snapshot, actor_id)
