"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Statutory filings and the month transition log are audit records. Once a
declaration has been generated it may be superseded by a newer submission,
but the original row must stay exactly as it was produced. The same holds
for bank payment artifacts (what was reviewed is what is transmitted) and
for the month transition log. Payroll months themselves are only ever
transitioned, never deleted.

SQLAlchemy fires events before UPDATE/DELETE statements reach the database:

    session.flush()
         |
         v
    [before_update event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable          | Why
--------------------|-------------------------|------------------------------
NapSubmission       | ALWAYS (from creation)  | Filing history is the ledger
MonthTransition     | ALWAYS (from creation)  | Audit trail of status changes
BankPaymentFile     | ALWAYS (from creation)  | Download must equal review
PayrollMonth        | Never deletable         | Months are only transitioned

updated_at/updated_by_id are audit metadata and may change without
tripping the update checks.

===============================================================================
USAGE
===============================================================================

    from payroll_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup
===============================================================================
"""

from sqlalchemy import event, inspect

from payroll_kernel.exceptions import ImmutabilityViolationError
from payroll_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Audit metadata columns that may change on append-only rows.
_AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _changed_fields(target) -> set[str]:
    state = inspect(target)
    changed = set()
    for attr in state.mapper.column_attrs:
        if state.attrs[attr.key].history.has_changes():
            changed.add(attr.key)
    return changed


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_append_only_update(mapper, connection, target):
    """Prevent content changes to append-only records."""
    changed = _changed_fields(target) - _AUDIT_METADATA_FIELDS
    if not changed:
        return
    entity_type = type(target).__name__
    _block(
        entity_type,
        target,
        "UPDATE",
        f"{entity_type} records are append-only (attempted to change "
        f"{', '.join(sorted(changed))})",
    )


def _check_append_only_delete(mapper, connection, target):
    """Prevent deletion of append-only records."""
    entity_type = type(target).__name__
    _block(entity_type, target, "DELETE", f"{entity_type} records cannot be deleted")


def _check_payroll_month_delete(mapper, connection, target):
    """Payroll months are transitioned, never physically deleted."""
    _block(
        "PayrollMonth",
        target,
        "DELETE",
        "Payroll months cannot be deleted, only transitioned",
    )


def _append_only_models():
    from payroll_kernel.models.bank_payment_file import BankPaymentFile
    from payroll_kernel.models.month_transition import MonthTransition
    from payroll_kernel.models.nap_submission import NapSubmission

    return (NapSubmission, MonthTransition, BankPaymentFile)


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are not added twice.
    """
    from payroll_kernel.models.payroll_month import PayrollMonth

    for model in _append_only_models():
        if not event.contains(model, "before_update", _check_append_only_update):
            event.listen(model, "before_update", _check_append_only_update)
        if not event.contains(model, "before_delete", _check_append_only_delete):
            event.listen(model, "before_delete", _check_append_only_delete)

    if not event.contains(PayrollMonth, "before_delete", _check_payroll_month_delete):
        event.listen(PayrollMonth, "before_delete", _check_payroll_month_delete)
