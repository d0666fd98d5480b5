"""
Tests for BankPaymentService -- salary transfer batches.
"""

from decimal import Decimal

import pytest

from payroll_engines.bank_batch import CSV_HEADER
from payroll_kernel.config import PayrollCoreConfig
from payroll_kernel.exceptions import NotFoundError, PreconditionFailedError
from payroll_services.bank_payments import BankPaymentService


class TestBuild:
    def test_requires_results(self, core, staff, tenant_id, test_actor_id):
        core.controller.prepare_month(tenant_id, 2025, 6, test_actor_id)
        with pytest.raises(PreconditionFailedError):
            core.bank_payments.build(tenant_id, 2025, 6)

    def test_one_transfer_per_snapshot(self, core, calculated_month, tenant_id):
        batch = core.bank_payments.build(tenant_id, 2025, 6)
        snapshots = core.controller.list_snapshots(tenant_id, 2025, 6)

        assert [r.employee_id for r in batch.records] == [s.employee_id for s in snapshots]
        assert batch.total == sum((s.net_salary for s in snapshots), Decimal("0"))
        assert batch.warning_count == 0
        assert {r.description for r in batch.records} == {"Заплата 06/2025"}

    def test_description_from_config(
        self, session_factory, directory, calculated_month, deterministic_clock, tenant_id
    ):
        service = BankPaymentService(
            session_factory,
            directory,
            PayrollCoreConfig(bank_payment_description="Salary {month:02d}.{year}"),
            deterministic_clock,
        )
        batch = service.build(tenant_id, 2025, 6)
        assert batch.records[0].description == "Salary 06.2025"


class TestGenerate:
    def test_stored_bytes_downloaded_unchanged(self, core, calculated_month, tenant_id, test_actor_id):
        info = core.bank_payments.generate(tenant_id, 2025, 6, test_actor_id)

        downloaded, payload, media_type = core.bank_payments.download(tenant_id, 2025, 6)

        assert downloaded.file_id == info.file_id
        assert media_type == "text/csv; charset=cp1251"
        assert info.file_name == "SALARY_2025_06.csv"
        text = payload.decode("cp1251")
        assert text.splitlines()[0] == CSV_HEADER
        assert len(text.splitlines()) == 1 + info.record_count
        assert info.record_count == 3
        assert info.total_amount == core.bank_payments.build(tenant_id, 2025, 6).total
        assert info.generated_by_id == test_actor_id

    def test_each_generation_kept(self, core, calculated_month, tenant_id, test_actor_id):
        first = core.bank_payments.generate(tenant_id, 2025, 6, test_actor_id)
        second = core.bank_payments.generate(tenant_id, 2025, 6, test_actor_id)

        files = core.bank_payments.list_files(tenant_id, 2025, 6)
        assert [f.file_id for f in files] == [second.file_id, first.file_id]
        assert first.content_hash == second.content_hash
        older, _, _ = core.bank_payments.download(tenant_id, 2025, 6, first.file_id)
        assert older.file_id == first.file_id

    def test_download_before_generation(self, core, calculated_month, tenant_id):
        with pytest.raises(NotFoundError):
            core.bank_payments.download(tenant_id, 2025, 6)

    def test_closed_month_allowed(self, core, calculated_month, tenant_id, test_actor_id):
        core.controller.close_month(tenant_id, 2025, 6, test_actor_id)
        assert core.bank_payments.generate(tenant_id, 2025, 6, test_actor_id).record_count == 3
