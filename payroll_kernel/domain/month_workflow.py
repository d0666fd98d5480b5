"""
Payroll month lifecycle workflow.

    NOT_STARTED --prepare--> OPEN --calculate_all--> CALCULATED --close--> CLOSED
                                       ^    |                 ^  |            |  |
                                       |    +--calculate_all--+  |            |  |
                                       +-------------reopen------+------------+  |
                                                                  recalculate ---+

calculate_one keeps the current status and is valid everywhere except CLOSED.
Transitions not declared here are rejected with InvalidTransitionError.
"""

from payroll_kernel.domain.dtos import MonthAction, MonthStatus
from payroll_kernel.domain.workflow import Guard, Transition, Workflow
from payroll_kernel.logging_config import get_logger

logger = get_logger("domain.month_workflow")

NS = MonthStatus.NOT_STARTED.value
OPEN = MonthStatus.OPEN.value
CALC = MonthStatus.CALCULATED.value
CLOSED = MonthStatus.CLOSED.value

AT_LEAST_ONE_SUCCEEDED = Guard(
    name="at_least_one_succeeded",
    description="At least one employee was calculated successfully",
)
HAS_SNAPSHOTS = Guard(
    name="has_snapshots",
    description="At least one snapshot exists for the month",
)

PAYROLL_MONTH_WORKFLOW = Workflow(
    name="payroll_month",
    description="Monthly payroll lifecycle from preparation to close",
    initial_state=NS,
    states=(NS, OPEN, CALC, CLOSED),
    transitions=(
        Transition(NS, OPEN, action=MonthAction.PREPARE.value),
        Transition(OPEN, CALC, action=MonthAction.CALCULATE_ALL.value, guard=AT_LEAST_ONE_SUCCEEDED),
        Transition(CALC, CALC, action=MonthAction.CALCULATE_ALL.value, guard=AT_LEAST_ONE_SUCCEEDED),
        Transition(NS, NS, action=MonthAction.CALCULATE_ONE.value),
        Transition(OPEN, OPEN, action=MonthAction.CALCULATE_ONE.value),
        Transition(CALC, CALC, action=MonthAction.CALCULATE_ONE.value),
        Transition(CALC, CLOSED, action=MonthAction.CLOSE.value, guard=HAS_SNAPSHOTS),
        Transition(CLOSED, OPEN, action=MonthAction.REOPEN.value),
        Transition(CLOSED, CLOSED, action=MonthAction.RECALCULATE.value),
    ),
)

# Nominal target of each action, used to name the requested state when an
# action is attempted from a state that has no edge for it.
ACTION_TARGETS: dict[MonthAction, MonthStatus] = {
    MonthAction.PREPARE: MonthStatus.OPEN,
    MonthAction.CALCULATE_ALL: MonthStatus.CALCULATED,
    MonthAction.CLOSE: MonthStatus.CLOSED,
    MonthAction.REOPEN: MonthStatus.OPEN,
    MonthAction.RECALCULATE: MonthStatus.CLOSED,
}


def requested_state(action: MonthAction, current: MonthStatus) -> MonthStatus:
    return ACTION_TARGETS.get(action, current)


def states_allowing(action: MonthAction) -> tuple[MonthStatus, ...]:
    """Statuses with an edge for ``action``; snapshots for the action may be written only in these."""
    return tuple(
        MonthStatus(t.from_state) for t in PAYROLL_MONTH_WORKFLOW.transitions if t.action == action.value
    )


logger.info(
    "payroll_month_workflow_registered",
    extra={
        "workflow_name": PAYROLL_MONTH_WORKFLOW.name,
        "state_count": len(PAYROLL_MONTH_WORKFLOW.states),
        "transition_count": len(PAYROLL_MONTH_WORKFLOW.transitions),
    },
)
