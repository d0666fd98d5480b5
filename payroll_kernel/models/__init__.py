"""ORM models for the payroll kernel."""

from payroll_kernel.models.bank_payment_file import BankPaymentFile
from payroll_kernel.models.month_transition import MonthTransition
from payroll_kernel.models.nap_submission import NapSubmission
from payroll_kernel.models.payroll_month import PayrollMonth
from payroll_kernel.models.payroll_snapshot import PayrollSnapshotRecord

__all__ = [
    "BankPaymentFile",
    "MonthTransition",
    "NapSubmission",
    "PayrollMonth",
    "PayrollSnapshotRecord",
]
