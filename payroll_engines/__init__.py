"""
Pure payroll engines.

Every module here is I/O free: builders receive snapshots and master data
and return records, file text and validation findings.  Persistence and
transaction handling live in payroll_kernel and payroll_services.
"""
