"""
Typed Exception Hierarchy for the Payroll Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the payroll core (the HTTP layer, batch scripts, tests) must be
able to react to a failure without parsing its message:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        controller.close_month(tenant_id, 2025, 6, actor_id)
    except PreconditionFailedError as e:
        api_response(code=e.code, state=e.current_state, reason=e.reason)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from PayrollCoreError:

    PayrollCoreError (base)
    |
    +-- PayrollMonthError
    |   +-- InvalidTransitionError
    |       +-- PreconditionFailedError
    |
    +-- NotFoundError
    |
    +-- CalculationFailureError
    |   +-- MissingTimesheetError
    |   +-- ZeroGrossError
    |   +-- SnapshotIntegrityError
    |
    +-- DeclarationError
    |   +-- ValidationFailureError
    |   +-- ConflictingCorrectionError
    |   +-- IdempotencyConflictError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |   +-- MonthChangedError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES
===============================================================================

Code                      | Exception                   | Typical HTTP status
--------------------------|-----------------------------|--------------------
INVALID_TRANSITION        | InvalidTransitionError      | 409
PRECONDITION_FAILED       | PreconditionFailedError     | 409
NOT_FOUND                 | NotFoundError               | 404
CALCULATION_FAILURE       | CalculationFailureError     | 422
VALIDATION_FAILURE        | ValidationFailureError      | 422
CONFLICTING_CORRECTION    | ConflictingCorrectionError  | 409
IDEMPOTENCY_CONFLICT      | IdempotencyConflictError    | 409
OPTIMISTIC_LOCK_CONFLICT  | OptimisticLockError         | 409
MONTH_CHANGED             | MonthChangedError           | 409
IMMUTABILITY_VIOLATION    | ImmutabilityViolationError  | 409

===============================================================================
PROPAGATION
===============================================================================

1. STATE MACHINE ERRORS abort the request that caused them. The transaction
   is rolled back, so persisted state is unchanged.

2. CALCULATION FAILURES are per-employee. The month controller collects them
   into the batch result and keeps going; they never abort CalculateAll.

3. VALIDATION FAILURES are raised only when the validation policy is
   "blocking". Under the default "advisory" policy the errors are recorded
   on the submission instead.

4. PreconditionFailedError IS an InvalidTransitionError. Closing an Open month
   is an illegal edge and a failed precondition at the same time, so callers
   catching either type see it.

5. MonthChangedError stops a batch. Employees not yet written are skipped,
   the month row is left to whoever changed it, and the error reaches the
   caller of CalculateAll / RecalculateMonth / CalculateOne.
===============================================================================
"""

from __future__ import annotations

from typing import Any


class PayrollCoreError(Exception):
    """
    Base exception for all payroll core errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PAYROLL_CORE_ERROR"

    def to_dict(self) -> dict[str, Any]:
        """Structured representation for API responses."""
        payload: dict[str, Any] = {"code": self.code, "message": str(self)}
        for key, value in vars(self).items():
            if key.startswith("_"):
                continue
            payload[key] = value
        return payload


# Month state machine exceptions


class PayrollMonthError(PayrollCoreError):
    """Base exception for payroll month lifecycle errors."""

    code: str = "PAYROLL_MONTH_ERROR"


class InvalidTransitionError(PayrollMonthError):
    """The requested action is not a valid edge from the month's current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        period: str,
        current_state: str,
        requested_state: str,
        action: str,
    ):
        self.period = period
        self.current_state = current_state
        self.requested_state = requested_state
        self.action = action
        super().__init__(
            f"Cannot {action} payroll month {period}: "
            f"transition {current_state} -> {requested_state} is not allowed"
        )


class PreconditionFailedError(InvalidTransitionError):
    """A transition's precondition does not hold (e.g. closing an Open month)."""

    code: str = "PRECONDITION_FAILED"

    def __init__(
        self,
        period: str,
        current_state: str,
        requested_state: str,
        action: str,
        reason: str,
    ):
        super().__init__(period, current_state, requested_state, action)
        self.reason = reason
        self.args = (
            f"Cannot {action} payroll month {period} "
            f"(status {current_state}): {reason}",
        )


# Lookup exceptions


class NotFoundError(PayrollCoreError):
    """A snapshot, company, employee, submission or artifact does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# Calculation exceptions


class CalculationFailureError(PayrollCoreError):
    """
    Calculating one employee's payroll failed.

    Non-fatal to a batch: the month controller records the failure against
    the employee and continues with the others.
    """

    code: str = "CALCULATION_FAILURE"
    reason_code: str = "CALCULATION_FAILED"

    def __init__(self, employee_id: str, message: str, reason: str | None = None):
        self.employee_id = employee_id
        self.reason = reason or self.reason_code
        super().__init__(
            f"Calculation failed for employee {employee_id} [{self.reason}]: {message}"
        )


class MissingTimesheetError(CalculationFailureError):
    """No timesheet exists for the employee in the requested month."""

    reason_code: str = "MISSING_TIMESHEET"

    def __init__(self, employee_id: str, year: int, month: int):
        self.year = year
        self.month = month
        super().__init__(
            employee_id, f"no timesheet for {year}-{month:02d}"
        )


class ZeroGrossError(CalculationFailureError):
    """The calculation produced no gross pay for the employee."""

    reason_code: str = "ZERO_GROSS"

    def __init__(self, employee_id: str):
        super().__init__(employee_id, "gross salary is zero")


class SnapshotIntegrityError(CalculationFailureError):
    """A snapshot's aggregates do not match its line items, or its key is wrong."""

    reason_code: str = "INCONSISTENT_SNAPSHOT"

    def __init__(self, employee_id: str, problems: list[str] | tuple[str, ...]):
        self.problems = list(problems)
        super().__init__(employee_id, "; ".join(self.problems))


# Declaration exceptions


class DeclarationError(PayrollCoreError):
    """Base exception for declaration generation errors."""

    code: str = "DECLARATION_ERROR"


class ValidationFailureError(DeclarationError):
    """Validation reported errors and the blocking policy is active."""

    code: str = "VALIDATION_FAILURE"

    def __init__(self, declaration_type: str, period: str, errors: list[dict[str, Any]]):
        self.declaration_type = declaration_type
        self.period = period
        self.errors = errors
        super().__init__(
            f"{declaration_type} for {period} has {len(errors)} validation error(s)"
        )


class ConflictingCorrectionError(DeclarationError):
    """A correcting or voiding filing targets a period with no regular filing."""

    code: str = "CONFLICTING_CORRECTION"

    def __init__(self, declaration_type: str, period: str, correction_code: int):
        self.declaration_type = declaration_type
        self.period = period
        self.correction_code = correction_code
        super().__init__(
            f"Cannot file {declaration_type} with correction code {correction_code} "
            f"for {period}: no regular (code 0) submission exists"
        )


class IdempotencyConflictError(DeclarationError):
    """An idempotency key already names a filing for a different request."""

    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(
        self,
        idempotency_key: str,
        submission_id: str,
        filed: str,
        requested: str,
    ):
        self.idempotency_key = idempotency_key
        self.submission_id = submission_id
        self.filed = filed
        self.requested = requested
        super().__init__(
            f"Idempotency key {idempotency_key!r} already names submission "
            f"{submission_id} ({filed}); cannot reuse it for {requested}"
        )


# Concurrency exceptions


class ConcurrencyError(PayrollCoreError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class MonthChangedError(ConcurrencyError):
    """
    The month moved on while snapshots were being written for it.

    Raised inside the snapshot write's transaction, so the snapshot that
    would have landed in the changed month is not written.
    """

    code: str = "MONTH_CHANGED"

    def __init__(
        self,
        period: str,
        expected_states: list[str],
        expected_version: int | None,
        current_state: str,
        current_version: int,
    ):
        self.period = period
        self.expected_states = expected_states
        self.expected_version = expected_version
        self.current_state = current_state
        self.current_version = current_version
        pinned = f" at version {expected_version}" if expected_version is not None else ""
        super().__init__(
            f"Payroll month {period} changed during calculation: expected "
            f"{'/'.join(expected_states)}{pinned}, found {current_state} "
            f"at version {current_version}"
        )


# Immutability exceptions


class ImmutabilityError(PayrollCoreError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
