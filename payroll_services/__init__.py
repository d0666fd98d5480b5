"""
payroll_services -- orchestration over the payroll kernel and engines.

Responsibility:
    Composes the stateful kernel services (month status, snapshot store,
    submission ledger, bank file store) with the pure engines and the
    external collaborators (calculation gateway, employee directory).
    This is the layer that owns transaction boundaries: every logical
    write runs in its own ``session_scope``.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        payroll_services/ -> payroll_engines/  (allowed)
        payroll_services/ -> payroll_kernel/   (allowed)
        payroll_engines/  -> payroll_services/ (FORBIDDEN)
        payroll_kernel/   -> payroll_services/ (FORBIDDEN)
"""

from payroll_services.bank_payments import BankPaymentService
from payroll_services.container import PayrollCore
from payroll_services.declaration_generator import DeclarationDraft, DeclarationGenerator
from payroll_services.month_controller import CancellationToken, PayrollMonthController

__all__ = [
    "BankPaymentService",
    "CancellationToken",
    "DeclarationDraft",
    "DeclarationGenerator",
    "PayrollCore",
    "PayrollMonthController",
]
