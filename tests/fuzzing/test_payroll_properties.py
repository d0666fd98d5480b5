"""
Property-based tests for the payroll core.

Verifies:
- Snapshot aggregates always agree with their line items
- Canonical serialization is stable for any gross
- Exactly one control digit completes an EGN with a real birth date
- Bank batch totals equal the sum of transfers, with non-positive nets flagged
- Random action sequences never leave the declared month workflow
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from payroll_engines.bank_batch import NEGATIVE_NET_SALARY, ZERO_NET_SALARY, build_batch
from payroll_kernel.domain.dtos import MonthAction, MonthStatus
from payroll_kernel.domain.identity import egn_birth_date, is_valid_egn
from payroll_kernel.domain.month_workflow import PAYROLL_MONTH_WORKFLOW
from payroll_kernel.domain.snapshot import PayrollSnapshot
from payroll_kernel.exceptions import InvalidTransitionError
from payroll_kernel.services.month_service import PayrollMonthService
from tests.fakes import INSURABLE_CEILING, make_snapshot, snapshot_with_net

grosses = st.decimals(
    min_value=Decimal("0.01"), max_value=Decimal("25000.00"), places=2, allow_nan=False
)
nets = st.decimals(
    min_value=Decimal("-500.00"), max_value=Decimal("9000.00"), places=2, allow_nan=False
)

LIFECYCLE_ACTIONS = [a for a in MonthAction if a != MonthAction.CALCULATE_ONE]

ALLOWED = {
    (MonthStatus.NOT_STARTED, MonthAction.PREPARE): MonthStatus.OPEN,
    (MonthStatus.OPEN, MonthAction.CALCULATE_ALL): MonthStatus.CALCULATED,
    (MonthStatus.CALCULATED, MonthAction.CALCULATE_ALL): MonthStatus.CALCULATED,
    (MonthStatus.CALCULATED, MonthAction.CLOSE): MonthStatus.CLOSED,
    (MonthStatus.CLOSED, MonthAction.REOPEN): MonthStatus.OPEN,
    (MonthStatus.CLOSED, MonthAction.RECALCULATE): MonthStatus.CLOSED,
}


class TestSnapshotProperties:
    @settings(max_examples=200)
    @given(gross=grosses)
    def test_aggregates_consistent(self, gross):
        snapshot = make_snapshot(uuid4(), uuid4(), 2025, 6, gross)

        assert snapshot.is_consistent(tolerance=Decimal("0"))
        assert snapshot.gross_salary == gross
        assert snapshot.net_salary == snapshot.gross_salary - snapshot.total_deductions
        assert snapshot.insurable_income == min(gross, INSURABLE_CEILING)
        assert snapshot.total_employer_cost == gross + snapshot.total_employer_insurance

    @settings(max_examples=100)
    @given(gross=grosses)
    def test_canonical_form_stable(self, gross):
        tenant_id, employee_id = uuid4(), uuid4()
        snapshot = make_snapshot(tenant_id, employee_id, 2025, 6, gross)

        restored = PayrollSnapshot.from_json(snapshot.canonical_json())

        assert restored.canonical_json() == snapshot.canonical_json()
        assert restored.content_hash() == make_snapshot(tenant_id, employee_id, 2025, 6, gross).content_hash()


class TestEgnProperties:
    @settings(max_examples=300)
    @given(
        born=st.dates(min_value=date(1800, 1, 1), max_value=date(2099, 12, 31)),
        serial=st.integers(min_value=0, max_value=999),
    )
    def test_one_control_digit(self, born, serial):
        month = born.month + (20 if born.year < 1900 else 40 if born.year >= 2000 else 0)
        prefix = f"{born.year % 100:02d}{month:02d}{born.day:02d}{serial:03d}"

        valid = [prefix + str(d) for d in range(10) if is_valid_egn(prefix + str(d))]

        assert len(valid) == 1
        assert egn_birth_date(valid[0]) == born


class TestBankBatchProperties:
    @settings(max_examples=100)
    @given(amounts=st.lists(nets, min_size=1, max_size=8))
    def test_total_and_flags(self, amounts):
        tenant_id = uuid4()
        snapshots = [snapshot_with_net(tenant_id, uuid4(), net) for net in amounts]

        batch = build_batch(snapshots, year=2025, month=6)

        assert batch.total == sum(amounts, Decimal("0"))
        assert [r.amount for r in batch.records] == amounts
        for record in batch.records:
            if record.amount < 0:
                assert NEGATIVE_NET_SALARY in record.warnings
            elif record.amount == 0:
                assert ZERO_NET_SALARY in record.warnings
            else:
                assert record.warnings == ()


class TestMonthWorkflowProperties:
    @given(status=st.sampled_from(list(MonthStatus)), action=st.sampled_from(LIFECYCLE_ACTIONS))
    def test_model_matches_definition(self, status, action):
        transition = PAYROLL_MONTH_WORKFLOW.find_transition(action.value, status.value)
        target = ALLOWED.get((status, action))
        assert (transition.to_state if transition else None) == (target.value if target else None)

    @pytest.mark.slow
    @settings(
        max_examples=40,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    @given(actions=st.lists(st.sampled_from(LIFECYCLE_ACTIONS), max_size=12))
    def test_random_sequences_follow_workflow(self, session_factory, deterministic_clock, test_actor_id, actions):
        tenant_id = uuid4()
        context = {"succeeded_count": 1, "snapshot_count": 1}
        expected = MonthStatus.NOT_STARTED
        taken = 0

        with session_factory() as session:
            months = PayrollMonthService(session, deterministic_clock)
            row = months.ensure(tenant_id, 2025, 6, test_actor_id)
            for action in actions:
                target = ALLOWED.get((expected, action))
                if target is None:
                    with pytest.raises(InvalidTransitionError):
                        months.transition(row, action, test_actor_id, guard_context=context)
                else:
                    months.transition(row, action, test_actor_id, guard_context=context)
                    expected = target
                    taken += 1
                assert row.month_status == expected
            assert row.version == taken
            assert len(months.list_transitions(tenant_id, 2025, 6)) == taken
            session.commit()
