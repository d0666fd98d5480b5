"""
Payroll Kernel

The stateful core of the monthly payroll lifecycle:
- Month state machine with serialized status transitions
- Per-employee snapshot store keyed by (tenant, employee, year, month)
- Append-only submission ledger for statutory declarations
- Structured logging and typed errors shared by every layer
"""

__version__ = "0.1.0"
