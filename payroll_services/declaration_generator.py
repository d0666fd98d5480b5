"""
payroll_services.declaration_generator -- DeclarationGenerator.

Responsibility:
    Preview, validate and generate the statutory filings (D1, D6 insurance
    and tax parts, Art.62, Art.123, Art.73) from stored snapshots and
    master data, and serve the append-only submission ledger.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Reads through SnapshotStore, PayrollMonthService and the
    EmployeeDirectory; builds file content with the pure engines; appends
    through SubmissionLedger.

Invariants enforced:
    - Preview and validate never write.
    - Generate appends exactly one ledger row or raises; a prior row is
      never changed.
    - Monthly filings (D1, D6) are only generated for a CALCULATED or
      CLOSED month.
    - A generation that would file no records raises NotFoundError.
    - Validation findings are recorded on the submission.  Under the
      "blocking" policy any finding raises ValidationFailureError instead.
    - A repeated idempotency key returns the first submission, also when
      two requests race (the unique constraint decides, the loser re-reads).
      Reusing a key for another type, period or correction code raises
      IdempotencyConflictError.
    - An append that loses the generated_at slot to a concurrent filing
      is redone in a fresh transaction, up to APPEND_ATTEMPTS times.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from payroll_kernel.config import PayrollCoreConfig
from payroll_kernel.db.engine import session_scope
from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.domain.dtos import (
    CompanyInfo,
    CorrectionCode,
    DeclarationType,
    EmployeeRecord,
    EmploymentRecord,
    NapSubmissionInfo,
    ReportingPeriod,
    ValidationError,
)
from payroll_kernel.exceptions import (
    NotFoundError,
    PreconditionFailedError,
    ValidationFailureError,
)
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_kernel.services.month_service import PayrollMonthService
from payroll_kernel.services.ports import EmployeeDirectory
from payroll_kernel.services.snapshot_store import SnapshotStore
from payroll_kernel.services.submission_ledger import SubmissionLedger
from payroll_engines.article123 import Art123Request, build_art123
from payroll_engines.article62 import build_art62
from payroll_engines.article73 import build_art73
from payroll_engines.declaration1 import build_d1
from payroll_engines.declaration6 import aggregate_d6
from payroll_engines.validation import ValidationEngine

logger = get_logger("services.declarations")

# Appends lost to a concurrent filing in the same generated_at slot are redone.
APPEND_ATTEMPTS = 5


def _requested_period(
    declaration_type: DeclarationType,
    period: ReportingPeriod | None,
    request: Art123Request | None,
) -> ReportingPeriod | None:
    """The period the filing will be recorded under; Art.123 files under its change date."""
    if declaration_type == DeclarationType.ART123 and request is not None:
        return request.period
    return period


@dataclass(frozen=True)
class DeclarationDraft:
    """
    A fully built filing that has not been appended to the ledger.

    ``period`` is the period the ledger row is keyed by; for Art.123 it is
    the change date, not the requested range.
    """

    declaration_type: DeclarationType
    period: ReportingPeriod
    correction_code: CorrectionCode
    file_name: str
    content: str
    record_count: int
    employee_ids: tuple[UUID, ...] = ()
    validation_errors: tuple[ValidationError, ...] = ()
    detail: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.declaration_type.value,
            "period": self.period.to_dict(),
            "correction_code": int(self.correction_code),
            "file_name": self.file_name,
            "record_count": self.record_count,
            "employee_ids": [str(e) for e in self.employee_ids],
            "validation_errors": [e.to_dict() for e in self.validation_errors],
            "content": self.content,
            "detail": dict(self.detail),
        }


def media_type_for(file_name: str, encoding: str) -> str:
    kind = "text/csv" if file_name.lower().endswith(".csv") else "text/plain"
    return f"{kind}; charset={encoding}"


class DeclarationGenerator:
    """
    Statutory filing generation and ledger access.

    Contract:
        - ``preview`` / ``validate`` are pure reads.
        - ``generate`` returns the appended (or idempotently matched)
          NapSubmissionInfo.

    Non-goals:
        - Does NOT submit anything to the authority.
        - Does NOT recalculate any amount.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        directory: EmployeeDirectory,
        config: PayrollCoreConfig | None = None,
        clock: Clock | None = None,
        validation: ValidationEngine | None = None,
    ):
        self._session_factory = session_factory
        self._directory = directory
        self._config = config or PayrollCoreConfig()
        self._clock = clock or SystemClock()
        self._validation = validation or ValidationEngine(
            ceilings=self._config.insurable_income_ceilings,
            tolerance=self._config.amount_tolerance,
        )

    # -------------------------------------------------------------------------
    # Drafting
    # -------------------------------------------------------------------------

    def preview(
        self,
        declaration_type: DeclarationType,
        tenant_id: UUID,
        period: ReportingPeriod | None = None,
        correction_code: CorrectionCode = CorrectionCode.REGULAR,
        request: Art123Request | None = None,
    ) -> DeclarationDraft:
        """Build the filing without writing anything; may be called any number of times."""
        with session_scope(self._session_factory) as session:
            return self._draft(session, declaration_type, tenant_id, period, correction_code, request)

    def validate(
        self,
        declaration_type: DeclarationType,
        tenant_id: UUID,
        period: ReportingPeriod | None = None,
        request: Art123Request | None = None,
    ) -> list[ValidationError]:
        return list(self.preview(declaration_type, tenant_id, period, request=request).validation_errors)

    def _draft(
        self,
        session: Session,
        declaration_type: DeclarationType,
        tenant_id: UUID,
        period: ReportingPeriod | None,
        correction_code: CorrectionCode,
        request: Art123Request | None,
    ) -> DeclarationDraft:
        correction_code = CorrectionCode(correction_code)
        company = self._directory.get_company(tenant_id)
        if declaration_type == DeclarationType.ART123:
            if request is None:
                raise ValueError("an Art.123 filing needs a change request")
            return self._draft_art123(tenant_id, company, period or request.period, correction_code, request)
        if period is None:
            raise ValueError(f"{declaration_type.value} needs a reporting period")
        if declaration_type == DeclarationType.ART62:
            return self._draft_art62(tenant_id, company, period, correction_code)
        if declaration_type == DeclarationType.ART73:
            return self._draft_art73(session, tenant_id, company, period, correction_code)
        return self._draft_monthly(session, declaration_type, tenant_id, company, period, correction_code)

    def _employee_map(self, employees: Iterable[EmployeeRecord]) -> dict[UUID, EmployeeRecord]:
        return {e.employee_id: e for e in employees}

    def _employments(self, tenant_id: UUID, employee_ids: Iterable[UUID]) -> dict[UUID, EmploymentRecord]:
        found = {}
        for employee_id in dict.fromkeys(employee_ids):
            employment = self._directory.get_employment(tenant_id, employee_id)
            if employment is not None:
                found[employee_id] = employment
        return found

    def _draft_monthly(
        self,
        session: Session,
        declaration_type: DeclarationType,
        tenant_id: UUID,
        company: CompanyInfo,
        period: ReportingPeriod,
        correction_code: CorrectionCode,
    ) -> DeclarationDraft:
        if period.is_range or period.month == 0:
            raise ValueError(f"{declaration_type.value} is filed for a single month")
        snapshots = SnapshotStore(session, self._clock).list_for_month(
            tenant_id, period.year, period.month
        )
        employees = self._employee_map(
            self._directory.list_active_employees(tenant_id, period.year, period.month)
        )
        errors = self._validation.validate(snapshots, period, company=company, employees=employees)

        if declaration_type == DeclarationType.D1:
            d1 = build_d1(
                snapshots,
                company=company,
                year=period.year,
                month=period.month,
                correction_code=correction_code,
                employees=employees,
                employments=self._employments(tenant_id, (s.employee_id for s in snapshots)),
            )
            return DeclarationDraft(
                declaration_type=declaration_type,
                period=period,
                correction_code=correction_code,
                file_name=d1.file_name,
                content=d1.content,
                record_count=len(d1.records),
                employee_ids=d1.employee_ids,
                validation_errors=tuple(errors),
                detail=d1.to_dict(),
            )

        totals = aggregate_d6(snapshots, bulstat=company.bulstat, year=period.year, month=period.month)
        insurance = declaration_type == DeclarationType.D6_INS
        return DeclarationDraft(
            declaration_type=declaration_type,
            period=period,
            correction_code=correction_code,
            file_name=totals.insurance_file_name if insurance else totals.tax_file_name,
            content=totals.insurance_content() if insurance else totals.tax_content(),
            record_count=totals.employee_count,
            employee_ids=tuple(s.employee_id for s in snapshots),
            validation_errors=tuple(errors),
            detail=totals.to_dict(),
        )

    def _draft_art62(
        self,
        tenant_id: UUID,
        company: CompanyInfo,
        period: ReportingPeriod,
        correction_code: CorrectionCode,
    ) -> DeclarationDraft:
        if not period.is_range:
            raise ValueError("ART62 is filed for a date range")
        events = self._directory.list_employment_events(tenant_id, period.date_from, period.date_to)
        employee_ids = [e.employee_id for e in events]
        employees = {
            employee_id: self._directory.get_employee(tenant_id, employee_id)
            for employee_id in dict.fromkeys(employee_ids)
        }
        errors = self._validation.validate(
            [],
            period,
            company=company,
            employees=employees,
            events=events,
            notice_employees=employees.values(),
        )
        notice = build_art62(
            events,
            company=company,
            period=period,
            employees=employees,
            employments=self._employments(tenant_id, employee_ids),
        )
        return DeclarationDraft(
            declaration_type=DeclarationType.ART62,
            period=period,
            correction_code=correction_code,
            file_name=notice.file_name,
            content=notice.content,
            record_count=len(notice.records),
            employee_ids=notice.employee_ids,
            validation_errors=tuple(errors),
            detail=notice.to_dict(),
        )

    def _draft_art123(
        self,
        tenant_id: UUID,
        company: CompanyInfo,
        period: ReportingPeriod,
        correction_code: CorrectionCode,
        request: Art123Request,
    ) -> DeclarationDraft:
        change_date = request.change_date
        if request.employee_ids is None:
            employees = self._directory.list_active_employees(
                tenant_id, change_date.year, change_date.month
            )
        else:
            employees = [self._directory.get_employee(tenant_id, e) for e in request.employee_ids]
        errors = self._validation.validate(
            [], period, company=company, change_date=change_date, notice_employees=employees
        )
        notice = build_art123(
            employees,
            company=company,
            request=request,
            employments=self._employments(tenant_id, (e.employee_id for e in employees)),
        )
        detail = notice.to_dict()
        detail.update(
            change_type=int(request.change_type),
            change_type_name=request.change_type.label,
            new_employer_bulstat=request.new_employer_bulstat,
            new_employer_name=request.new_employer_name,
        )
        return DeclarationDraft(
            declaration_type=DeclarationType.ART123,
            period=request.period,
            correction_code=correction_code,
            file_name=notice.file_name,
            content=notice.content,
            record_count=len(notice.records),
            employee_ids=notice.employee_ids,
            validation_errors=tuple(errors),
            detail=detail,
        )

    def _draft_art73(
        self,
        session: Session,
        tenant_id: UUID,
        company: CompanyInfo,
        period: ReportingPeriod,
        correction_code: CorrectionCode,
    ) -> DeclarationDraft:
        period = ReportingPeriod.annual(period.year)
        snapshots = SnapshotStore(session, self._clock).list_for_year(tenant_id, period.year)
        employees = self._employee_map(
            self._directory.list_active_employees(tenant_id, period.year, 12)
        )
        errors = self._validation.validate(snapshots, period, company=company, employees=employees)
        statement = build_art73(snapshots, company=company, year=period.year, employees=employees)
        return DeclarationDraft(
            declaration_type=DeclarationType.ART73,
            period=period,
            correction_code=correction_code,
            file_name=statement.file_name,
            content=statement.content,
            record_count=len(statement.records),
            employee_ids=statement.employee_ids,
            validation_errors=tuple(errors),
            detail=statement.to_dict(),
        )

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def generate(
        self,
        declaration_type: DeclarationType,
        tenant_id: UUID,
        period: ReportingPeriod | None,
        actor_id: UUID,
        correction_code: CorrectionCode = CorrectionCode.REGULAR,
        request: Art123Request | None = None,
        idempotency_key: str | None = None,
    ) -> NapSubmissionInfo:
        """
        Build the filing and append it to the ledger.

        Raises:
            PreconditionFailedError: D1/D6 for a month that is not
                CALCULATED or CLOSED.
            NotFoundError: Nothing to file, or unknown company/employee.
            ValidationFailureError: Findings under the blocking policy.
            ConflictingCorrectionError: Code 1 or 8 with no regular filing.
            IdempotencyConflictError: The key already names a filing for
                another type, period or correction code.
        """
        correction_code = CorrectionCode(correction_code)
        requested = _requested_period(declaration_type, period, request)
        with LogContext.bind(period=period.label if period is not None else None):
            attempt = 0
            while True:
                attempt += 1
                try:
                    with session_scope(self._session_factory) as session:
                        return self._generate(
                            session,
                            declaration_type,
                            tenant_id,
                            period,
                            actor_id,
                            correction_code,
                            request,
                            idempotency_key,
                        )
                except IntegrityError:
                    if idempotency_key:
                        with session_scope(self._session_factory) as session:
                            existing = SubmissionLedger(session, self._clock).find_for_request(
                                tenant_id, idempotency_key, declaration_type, requested, correction_code
                            )
                        if existing is not None:
                            logger.info(
                                "submission_idempotent_race_resolved",
                                extra={
                                    "submission_id": str(existing.submission_id),
                                    "idempotency_key": idempotency_key,
                                },
                            )
                            return existing
                    if attempt >= APPEND_ATTEMPTS:
                        raise
                    logger.info(
                        "submission_append_retried",
                        extra={"declaration_type": declaration_type.value, "attempt": attempt},
                    )

    def _generate(
        self,
        session: Session,
        declaration_type: DeclarationType,
        tenant_id: UUID,
        period: ReportingPeriod | None,
        actor_id: UUID,
        correction_code: CorrectionCode,
        request: Art123Request | None,
        idempotency_key: str | None,
    ) -> NapSubmissionInfo:
        ledger = SubmissionLedger(session, self._clock)
        if idempotency_key:
            existing = ledger.find_for_request(
                tenant_id,
                idempotency_key,
                declaration_type,
                _requested_period(declaration_type, period, request),
                correction_code,
            )
            if existing is not None:
                return existing

        if declaration_type.is_monthly and period is not None:
            info = PayrollMonthService(session, self._clock).get_info(
                tenant_id, period.year, period.month
            )
            if not info.has_results:
                raise PreconditionFailedError(
                    info.period,
                    info.status.value,
                    info.status.value,
                    f"generate {declaration_type.value} for",
                    reason="month must be calculated or closed",
                )

        draft = self._draft(session, declaration_type, tenant_id, period, correction_code, request)
        if draft.record_count == 0:
            logger.warning(
                "declaration_has_no_records",
                extra={
                    "declaration_type": declaration_type.value,
                    "reporting_period": draft.period.label,
                },
            )
            raise NotFoundError("DeclarationRecords", f"{declaration_type.value} {draft.period.label}")

        if draft.validation_errors and self._config.blocks_on_validation:
            logger.warning(
                "declaration_blocked_by_validation",
                extra={
                    "declaration_type": declaration_type.value,
                    "reporting_period": draft.period.label,
                    "error_count": len(draft.validation_errors),
                },
            )
            raise ValidationFailureError(
                declaration_type.value,
                draft.period.label,
                [e.to_dict() for e in draft.validation_errors],
            )

        return ledger.append(
            tenant_id=tenant_id,
            declaration_type=declaration_type,
            period=draft.period,
            correction_code=draft.correction_code,
            file_name=draft.file_name,
            file_content=draft.content,
            record_count=draft.record_count,
            actor_id=actor_id,
            validation_errors=draft.validation_errors,
            employee_ids=draft.employee_ids,
            idempotency_key=idempotency_key,
        )

    # -------------------------------------------------------------------------
    # Ledger reads
    # -------------------------------------------------------------------------

    def list_submissions(
        self,
        tenant_id: UUID,
        declaration_type: DeclarationType | None = None,
        year: int | None = None,
        month: int | None = None,
    ) -> list[NapSubmissionInfo]:
        with session_scope(self._session_factory) as session:
            return SubmissionLedger(session, self._clock).list_submissions(
                tenant_id, declaration_type, year, month
            )

    def get_submission(self, tenant_id: UUID, submission_id: UUID) -> NapSubmissionInfo:
        with session_scope(self._session_factory) as session:
            return SubmissionLedger(session, self._clock).get(submission_id, tenant_id)

    def history(
        self,
        declaration_type: DeclarationType,
        tenant_id: UUID,
        period: ReportingPeriod,
    ) -> list[NapSubmissionInfo]:
        with session_scope(self._session_factory) as session:
            return SubmissionLedger(session, self._clock).history(tenant_id, declaration_type, period)

    def current_submission(
        self,
        declaration_type: DeclarationType,
        tenant_id: UUID,
        period: ReportingPeriod,
    ) -> NapSubmissionInfo:
        with session_scope(self._session_factory) as session:
            return SubmissionLedger(session, self._clock).current(tenant_id, declaration_type, period)

    def download(self, tenant_id: UUID, submission_id: UUID) -> tuple[str, bytes, str]:
        """(file name, encoded bytes, media type) of a stored filing."""
        submission = self.get_submission(tenant_id, submission_id)
        encoding = self._config.file_encoding
        payload = submission.file_content.encode(encoding, errors="replace")
        logger.info(
            "submission_downloaded",
            extra={
                "submission_id": str(submission_id),
                "file_name": submission.file_name,
                "size_bytes": len(payload),
            },
        )
        return submission.file_name, payload, media_type_for(submission.file_name, encoding)
