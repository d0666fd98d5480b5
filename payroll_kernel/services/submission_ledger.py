"""
SubmissionLedger -- append-only ledger of generated statutory filings.

Responsibility:
    Appends NapSubmission rows and answers history questions: all filings
    for a tenant, the history of one (type, period), and the current filing
    (latest by generated_at).

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  The
    DeclarationGenerator in payroll_services builds the file content and
    owns the transaction.

Invariants enforced:
    - Rows are never updated or deleted (immutability listeners).
    - A correcting (1) or voiding (8) filing requires an earlier regular
      (0) filing for the same type and period; otherwise
      ConflictingCorrectionError is raised and nothing is written.
    - generated_at strictly increases within one (type, year, month) slot,
      so the current filing is unambiguous even when the clock does not
      move.  A unique constraint backs this up: of two appends that read
      the same latest instant, the second to commit fails with
      IntegrityError and the caller retries.
    - A non-empty idempotency key is unique per tenant; appending with a
      key that already exists returns the existing filing when it answers
      the same (type, period, correction code), and raises
      IdempotencyConflictError otherwise.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timedelta
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from payroll_kernel.domain.clock import Clock
from payroll_kernel.domain.dtos import (
    CorrectionCode,
    DeclarationType,
    NapSubmissionInfo,
    ReportingPeriod,
    SubmissionStatus,
    ValidationError,
)
from payroll_kernel.exceptions import (
    ConflictingCorrectionError,
    IdempotencyConflictError,
    NotFoundError,
)
from payroll_kernel.logging_config import get_logger
from payroll_kernel.models.nap_submission import NapSubmission
from payroll_kernel.services.base import BaseService

logger = get_logger("services.submission_ledger")

_TICK = timedelta(microseconds=1)


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _describe(
    declaration_type: DeclarationType,
    period: ReportingPeriod,
    correction_code: CorrectionCode,
) -> str:
    return f"{declaration_type.value} {period.label} code {int(correction_code)}"


class SubmissionLedger(BaseService[NapSubmission]):
    """Append-only NapSubmission persistence."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def _period_filter(
        self,
        tenant_id: UUID,
        declaration_type: DeclarationType,
        period: ReportingPeriod,
    ):
        stmt = select(NapSubmission).where(
            NapSubmission.tenant_id == tenant_id,
            NapSubmission.declaration_type == declaration_type.value,
            NapSubmission.year == period.year,
            NapSubmission.month == period.month,
        )
        if period.is_range:
            return stmt.where(
                NapSubmission.period_from == period.date_from,
                NapSubmission.period_to == period.date_to,
            )
        return stmt.where(
            NapSubmission.period_from.is_(None),
            NapSubmission.period_to.is_(None),
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, submission_id: UUID, tenant_id: UUID | None = None) -> NapSubmissionInfo:
        """
        Raises:
            NotFoundError: No such submission (or it belongs to another tenant).
        """
        row = self.session.get(NapSubmission, submission_id)
        if row is None or (tenant_id is not None and row.tenant_id != tenant_id):
            raise NotFoundError("NapSubmission", str(submission_id))
        return row.to_dto()

    def find_by_idempotency_key(self, tenant_id: UUID, key: str) -> NapSubmissionInfo | None:
        row = self.session.execute(
            select(NapSubmission).where(
                NapSubmission.tenant_id == tenant_id,
                NapSubmission.idempotency_key == key,
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def find_for_request(
        self,
        tenant_id: UUID,
        key: str,
        declaration_type: DeclarationType,
        period: ReportingPeriod | None,
        correction_code: CorrectionCode,
    ) -> NapSubmissionInfo | None:
        """
        The filing appended under ``key``, provided it was filed for the
        same type, period and correction code.  ``period`` None matches any.

        Raises:
            IdempotencyConflictError: The key names a different filing.
        """
        existing = self.find_by_idempotency_key(tenant_id, key)
        if existing is None:
            return None
        correction_code = CorrectionCode(correction_code)
        if (
            existing.declaration_type != declaration_type
            or existing.correction_code != correction_code
            or (period is not None and existing.period != period)
        ):
            filed = _describe(existing.declaration_type, existing.period, existing.correction_code)
            requested = _describe(declaration_type, period or existing.period, correction_code)
            logger.warning(
                "submission_idempotency_conflict",
                extra={
                    "submission_id": str(existing.submission_id),
                    "idempotency_key": key,
                    "filed": filed,
                    "requested": requested,
                },
            )
            raise IdempotencyConflictError(key, str(existing.submission_id), filed, requested)
        logger.info(
            "submission_idempotent_hit",
            extra={"submission_id": str(existing.submission_id), "idempotency_key": key},
        )
        return existing

    def history(
        self,
        tenant_id: UUID,
        declaration_type: DeclarationType,
        period: ReportingPeriod,
    ) -> list[NapSubmissionInfo]:
        """Every filing for the (type, period), oldest first."""
        rows = self.session.execute(
            self._period_filter(tenant_id, declaration_type, period).order_by(
                NapSubmission.generated_at
            )
        ).scalars()
        return [r.to_dto() for r in rows]

    def current(
        self,
        tenant_id: UUID,
        declaration_type: DeclarationType,
        period: ReportingPeriod,
    ) -> NapSubmissionInfo:
        """
        Latest filing by generated_at.

        Raises:
            NotFoundError: Nothing has been filed for the (type, period).
        """
        row = self.session.execute(
            self._period_filter(tenant_id, declaration_type, period)
            .order_by(NapSubmission.generated_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if row is None:
            raise NotFoundError(
                "NapSubmission", f"{declaration_type.value} {period.label}"
            )
        return row.to_dto()

    def has_regular(
        self,
        tenant_id: UUID,
        declaration_type: DeclarationType,
        period: ReportingPeriod,
    ) -> bool:
        row = self.session.execute(
            self._period_filter(tenant_id, declaration_type, period)
            .where(NapSubmission.correction_code == int(CorrectionCode.REGULAR))
            .limit(1)
        ).scalar_one_or_none()
        return row is not None

    def list_submissions(
        self,
        tenant_id: UUID,
        declaration_type: DeclarationType | None = None,
        year: int | None = None,
        month: int | None = None,
    ) -> list[NapSubmissionInfo]:
        """Filings of the tenant, newest first."""
        stmt = select(NapSubmission).where(NapSubmission.tenant_id == tenant_id)
        if declaration_type is not None:
            stmt = stmt.where(NapSubmission.declaration_type == declaration_type.value)
        if year is not None:
            stmt = stmt.where(NapSubmission.year == year)
        if month is not None:
            stmt = stmt.where(NapSubmission.month == month)
        rows = self.session.execute(stmt.order_by(NapSubmission.generated_at.desc())).scalars()
        return [r.to_dto() for r in rows]

    # -------------------------------------------------------------------------
    # Append
    # -------------------------------------------------------------------------

    def _latest_generated_at(
        self,
        tenant_id: UUID,
        declaration_type: DeclarationType,
        period: ReportingPeriod,
    ) -> datetime | None:
        """Latest generated_at in the (type, year, month) slot the unique constraint covers."""
        return self.session.execute(
            select(func.max(NapSubmission.generated_at)).where(
                NapSubmission.tenant_id == tenant_id,
                NapSubmission.declaration_type == declaration_type.value,
                NapSubmission.year == period.year,
                NapSubmission.month == period.month,
            )
        ).scalar_one_or_none()

    def append(
        self,
        tenant_id: UUID,
        declaration_type: DeclarationType,
        period: ReportingPeriod,
        correction_code: CorrectionCode,
        file_name: str,
        file_content: str,
        record_count: int,
        actor_id: UUID,
        validation_errors: Sequence[ValidationError] = (),
        employee_ids: Sequence[UUID] = (),
        idempotency_key: str | None = None,
    ) -> NapSubmissionInfo:
        """
        Append one filing to the ledger.

        Raises:
            ConflictingCorrectionError: Code 1 or 8 without a prior code 0.
            IdempotencyConflictError: The key already names another filing.
            IntegrityError: A concurrent append took the same generated_at
                (or key) first; the transaction must be retried.
        """
        correction_code = CorrectionCode(correction_code)
        if idempotency_key:
            existing = self.find_for_request(
                tenant_id, idempotency_key, declaration_type, period, correction_code
            )
            if existing is not None:
                return existing

        if correction_code != CorrectionCode.REGULAR and not self.has_regular(
            tenant_id, declaration_type, period
        ):
            logger.warning(
                "submission_correction_rejected",
                extra={
                    "declaration_type": declaration_type.value,
                    "reporting_period": period.label,
                    "correction_code": int(correction_code),
                },
            )
            raise ConflictingCorrectionError(
                declaration_type.value, period.label, int(correction_code)
            )

        generated_at = self._clock.now()
        latest = self._latest_generated_at(tenant_id, declaration_type, period)
        if latest is not None and generated_at <= latest:
            generated_at = latest + _TICK

        row = NapSubmission(
            tenant_id=tenant_id,
            declaration_type=declaration_type.value,
            year=period.year,
            month=period.month,
            period_from=period.date_from,
            period_to=period.date_to,
            file_name=file_name,
            file_content=file_content,
            content_hash=content_hash(file_content),
            record_count=record_count,
            status=SubmissionStatus.DRAFT.value,
            correction_code=int(correction_code),
            generated_at=generated_at,
            validation_errors_json=json.dumps(
                [e.to_dict() for e in validation_errors], ensure_ascii=False
            ),
            employee_ids_json=json.dumps([str(e) for e in employee_ids]),
            idempotency_key=idempotency_key or None,
            created_by_id=actor_id,
        )
        self.session.add(row)
        self.session.flush()

        logger.info(
            "submission_appended",
            extra={
                "submission_id": str(row.id),
                "declaration_type": declaration_type.value,
                "reporting_period": period.label,
                "correction_code": int(correction_code),
                "record_count": record_count,
                "validation_error_count": len(validation_errors),
            },
        )
        return row.to_dto()
