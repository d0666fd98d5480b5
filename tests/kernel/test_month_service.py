"""
Tests for PayrollMonthService -- persisted month status and transitions.

Verifies:
- Only declared workflow edges are taken
- Illegal edges raise InvalidTransitionError and leave the row unchanged
- Closing anything but a CALCULATED month raises PreconditionFailedError
- Guards are evaluated against the supplied context
- Status changes are compare-and-swap on the version column
- Every transition appends one log row
- Snapshot writes pin the month to the status and version they started from
"""

import pytest

from payroll_kernel.domain.dtos import MonthAction, MonthStatus
from payroll_kernel.domain.month_workflow import PAYROLL_MONTH_WORKFLOW, states_allowing
from payroll_kernel.exceptions import (
    InvalidTransitionError,
    MonthChangedError,
    OptimisticLockError,
    PreconditionFailedError,
)
from payroll_kernel.services.month_service import PayrollMonthService


@pytest.fixture
def months(session, deterministic_clock):
    return PayrollMonthService(session, deterministic_clock)


def _advance(months, row, actor_id, *actions):
    context = {"succeeded_count": 1, "snapshot_count": 1}
    for action in actions:
        months.transition(row, action, actor_id, guard_context=context)
    return row


class TestWorkflowDefinition:
    def test_edges(self):
        """The declared edges, and nothing else."""
        edges = {(t.from_state, t.action, t.to_state) for t in PAYROLL_MONTH_WORKFLOW.transitions}
        assert edges == {
            ("not_started", "prepare", "open"),
            ("open", "calculate_all", "calculated"),
            ("calculated", "calculate_all", "calculated"),
            ("not_started", "calculate_one", "not_started"),
            ("open", "calculate_one", "open"),
            ("calculated", "calculate_one", "calculated"),
            ("calculated", "close", "closed"),
            ("closed", "reopen", "open"),
            ("closed", "recalculate", "closed"),
        }

    def test_nothing_leaves_closed_but_reopen_and_recalculate(self):
        assert set(PAYROLL_MONTH_WORKFLOW.actions_from("closed")) == {"reopen", "recalculate"}

    def test_states_allowing(self):
        assert states_allowing(MonthAction.CALCULATE_ALL) == (MonthStatus.OPEN, MonthStatus.CALCULATED)
        assert states_allowing(MonthAction.RECALCULATE) == (MonthStatus.CLOSED,)
        assert set(states_allowing(MonthAction.CALCULATE_ONE)) == {
            MonthStatus.NOT_STARTED,
            MonthStatus.OPEN,
            MonthStatus.CALCULATED,
        }


class TestEnsureAndRead:
    def test_untouched_month_is_not_started_and_not_persisted(self, months, tenant_id):
        info = months.get_info(tenant_id, 2025, 6)
        assert info.status == MonthStatus.NOT_STARTED
        assert info.month_id is None
        assert months.find(tenant_id, 2025, 6) is None

    def test_ensure_creates_once(self, months, tenant_id, test_actor_id):
        first = months.ensure(tenant_id, 2025, 6, test_actor_id)
        second = months.ensure(tenant_id, 2025, 6, test_actor_id)
        assert first.id == second.id
        assert first.month_status == MonthStatus.NOT_STARTED
        assert first.version == 0

    def test_ensure_rejects_bad_month(self, months, tenant_id, test_actor_id):
        with pytest.raises(ValueError):
            months.ensure(tenant_id, 2025, 0, test_actor_id)

    def test_list_months_ordered(self, months, tenant_id, test_actor_id):
        for m in (9, 3, 6):
            months.ensure(tenant_id, 2025, m, test_actor_id)
        assert [i.month for i in months.list_months(tenant_id, 2025)] == [3, 6, 9]


class TestTransitions:
    def test_full_lifecycle(self, months, tenant_id, test_actor_id):
        """prepare -> calculate_all -> close -> reopen, one log row each."""
        row = months.ensure(tenant_id, 2025, 6, test_actor_id)
        _advance(
            months,
            row,
            test_actor_id,
            MonthAction.PREPARE,
            MonthAction.CALCULATE_ALL,
            MonthAction.CLOSE,
            MonthAction.REOPEN,
        )
        assert row.month_status == MonthStatus.OPEN
        assert row.version == 4

        log = months.list_transitions(tenant_id, 2025, 6)
        assert [(t.from_state, t.to_state) for t in log] == [
            (MonthStatus.NOT_STARTED, MonthStatus.OPEN),
            (MonthStatus.OPEN, MonthStatus.CALCULATED),
            (MonthStatus.CALCULATED, MonthStatus.CLOSED),
            (MonthStatus.CLOSED, MonthStatus.OPEN),
        ]
        assert all(t.actor_id == test_actor_id for t in log)

    def test_updates_written_with_status(self, months, tenant_id, test_actor_id, deterministic_clock):
        row = months.ensure(tenant_id, 2025, 6, test_actor_id)
        _advance(months, row, test_actor_id, MonthAction.PREPARE)
        info = months.transition(
            row,
            MonthAction.CALCULATE_ALL,
            test_actor_id,
            guard_context={"succeeded_count": 2},
            updates={"employee_count": 2, "calculated_at": deterministic_clock.now()},
            detail={"succeeded": 2},
        )
        assert info.employee_count == 2
        assert info.calculated_at == deterministic_clock.now()
        assert months.list_transitions(tenant_id, 2025, 6)[-1].detail == {"succeeded": 2}

    def test_illegal_edge_leaves_row_unchanged(self, months, tenant_id, test_actor_id):
        """REOPEN from OPEN is not an edge."""
        row = months.ensure(tenant_id, 2025, 6, test_actor_id)
        _advance(months, row, test_actor_id, MonthAction.PREPARE)

        with pytest.raises(InvalidTransitionError) as exc_info:
            months.transition(row, MonthAction.REOPEN, test_actor_id)

        assert not isinstance(exc_info.value, PreconditionFailedError)
        assert exc_info.value.current_state == "open"
        assert exc_info.value.requested_state == "open"
        assert exc_info.value.action == "reopen"
        assert row.month_status == MonthStatus.OPEN
        assert row.version == 1
        assert len(months.list_transitions(tenant_id, 2025, 6)) == 1

    def test_prepare_twice_is_illegal_at_this_level(self, months, tenant_id, test_actor_id):
        row = months.ensure(tenant_id, 2025, 6, test_actor_id)
        _advance(months, row, test_actor_id, MonthAction.PREPARE)
        with pytest.raises(InvalidTransitionError):
            months.transition(row, MonthAction.PREPARE, test_actor_id)

    @pytest.mark.parametrize("prepared", [False, True])
    def test_close_requires_calculated(self, months, tenant_id, test_actor_id, prepared):
        """Closing NOT_STARTED or OPEN is a failed precondition."""
        row = months.ensure(tenant_id, 2025, 6, test_actor_id)
        if prepared:
            _advance(months, row, test_actor_id, MonthAction.PREPARE)

        with pytest.raises(PreconditionFailedError) as exc_info:
            months.transition(row, MonthAction.CLOSE, test_actor_id, guard_context={"snapshot_count": 5})

        assert exc_info.value.code == "PRECONDITION_FAILED"
        assert exc_info.value.requested_state == "closed"
        assert row.month_status == (MonthStatus.OPEN if prepared else MonthStatus.NOT_STARTED)

    def test_close_guard_needs_snapshots(self, months, tenant_id, test_actor_id):
        row = months.ensure(tenant_id, 2025, 6, test_actor_id)
        _advance(months, row, test_actor_id, MonthAction.PREPARE, MonthAction.CALCULATE_ALL)

        with pytest.raises(PreconditionFailedError, match="snapshot"):
            months.transition(row, MonthAction.CLOSE, test_actor_id, guard_context={"snapshot_count": 0})
        assert row.month_status == MonthStatus.CALCULATED

    def test_calculate_all_guard_needs_a_success(self, months, tenant_id, test_actor_id):
        row = months.ensure(tenant_id, 2025, 6, test_actor_id)
        _advance(months, row, test_actor_id, MonthAction.PREPARE)
        with pytest.raises(PreconditionFailedError):
            months.transition(
                row, MonthAction.CALCULATE_ALL, test_actor_id, guard_context={"succeeded_count": 0}
            )

    def test_rejection_is_logged(self, months, tenant_id, test_actor_id, captured_logs):
        row = months.ensure(tenant_id, 2025, 6, test_actor_id)
        with pytest.raises(InvalidTransitionError):
            months.transition(row, MonthAction.RECALCULATE, test_actor_id)
        rejected = [r for r in captured_logs() if r["message"] == "payroll_month_transition_rejected"]
        assert rejected[0]["level"] == "WARNING"
        assert rejected[0]["current_state"] == "not_started"


class TestOptimisticLocking:
    def test_stale_row_conflicts(self, session_factory, deterministic_clock, tenant_id, test_actor_id):
        """A second writer holding an old version loses the compare-and-swap."""
        with session_factory() as setup:
            PayrollMonthService(setup, deterministic_clock).ensure(tenant_id, 2025, 6, test_actor_id)
            setup.commit()

        stale_session = session_factory()
        stale_months = PayrollMonthService(stale_session, deterministic_clock)
        stale_row = stale_months.find(tenant_id, 2025, 6)
        stale_session.commit()

        with session_factory() as winner:
            months = PayrollMonthService(winner, deterministic_clock)
            months.transition(months.find(tenant_id, 2025, 6), MonthAction.PREPARE, test_actor_id)
            winner.commit()

        with pytest.raises(OptimisticLockError):
            stale_months.transition(stale_row, MonthAction.PREPARE, test_actor_id)
        stale_session.rollback()
        stale_session.close()

    def test_record_calculation_bumps_version(self, months, tenant_id, test_actor_id):
        row = months.ensure(tenant_id, 2025, 6, test_actor_id)
        _advance(months, row, test_actor_id, MonthAction.PREPARE)
        info = months.record_calculation(row, employee_count=0, failed_count=3, actor_id=test_actor_id)
        assert info.status == MonthStatus.OPEN
        assert info.last_failed_count == 3
        assert info.version == 2


class TestPinForWrite:
    def test_matching_month_is_left_unchanged(self, months, session, tenant_id, test_actor_id):
        row = months.ensure(tenant_id, 2025, 6, test_actor_id)
        _advance(months, row, test_actor_id, MonthAction.PREPARE, MonthAction.CALCULATE_ALL)
        updated_at = row.updated_at

        months.pin_for_write(tenant_id, 2025, 6, (MonthStatus.OPEN, MonthStatus.CALCULATED), version=2)

        session.refresh(row)
        assert row.version == 2
        assert row.updated_at == updated_at
        assert row.month_status == MonthStatus.CALCULATED

    def test_stale_version_refused(self, months, tenant_id, test_actor_id):
        row = months.ensure(tenant_id, 2025, 6, test_actor_id)
        _advance(months, row, test_actor_id, MonthAction.PREPARE, MonthAction.CALCULATE_ALL)

        with pytest.raises(MonthChangedError) as exc_info:
            months.pin_for_write(tenant_id, 2025, 6, (MonthStatus.OPEN, MonthStatus.CALCULATED), version=1)

        assert exc_info.value.expected_version == 1
        assert exc_info.value.current_version == 2

    def test_closed_month_refused(self, months, tenant_id, test_actor_id, captured_logs):
        row = months.ensure(tenant_id, 2025, 6, test_actor_id)
        _advance(months, row, test_actor_id, MonthAction.PREPARE, MonthAction.CALCULATE_ALL, MonthAction.CLOSE)

        with pytest.raises(MonthChangedError) as exc_info:
            months.pin_for_write(tenant_id, 2025, 6, states_allowing(MonthAction.CALCULATE_ONE))

        assert exc_info.value.current_state == "closed"
        assert exc_info.value.code == "MONTH_CHANGED"
        assert any(r["message"] == "payroll_month_changed_during_write" for r in captured_logs())

    def test_missing_month_refused(self, months, tenant_id):
        with pytest.raises(MonthChangedError) as exc_info:
            months.pin_for_write(tenant_id, 2025, 6, (MonthStatus.OPEN,))
        assert exc_info.value.current_state == "not_started"
