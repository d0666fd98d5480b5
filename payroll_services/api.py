"""
HTTP surface of the payroll core (FastAPI).

Every route is tenant-scoped through the ``X-Tenant-Id`` header; writes are
attributed to ``X-Actor-Id``.  Payroll core errors are mapped to status
codes by type and returned as ``{"code", "message", ...}``:

    NotFoundError                                   404
    InvalidTransitionError / PreconditionFailedError 409
    ConflictingCorrectionError                      409
    OptimisticLockError / ImmutabilityViolationError 409
    ValidationFailureError / CalculationFailureError 422
    ValueError (malformed request)                  400
"""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, Response

from payroll_kernel.domain.dtos import CorrectionCode, DeclarationType, ReportingPeriod
from payroll_kernel.exceptions import (
    CalculationFailureError,
    ConcurrencyError,
    ConflictingCorrectionError,
    IdempotencyConflictError,
    ImmutabilityError,
    InvalidTransitionError,
    NotFoundError,
    PayrollCoreError,
    ValidationFailureError,
)
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_engines.article123 import Art123Request, ChangeType
from payroll_services.container import PayrollCore

logger = get_logger("services.api")

_STATUS_BY_ERROR: tuple[tuple[type[PayrollCoreError], int], ...] = (
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
    (ConflictingCorrectionError, 409),
    (IdempotencyConflictError, 409),
    (ConcurrencyError, 409),
    (ImmutabilityError, 409),
    (ValidationFailureError, 422),
    (CalculationFailureError, 422),
)


def status_for(exc: PayrollCoreError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_core(request: Request) -> PayrollCore:
    return request.app.state.core


def tenant(x_tenant_id: UUID = Header(...)) -> UUID:
    return x_tenant_id


def actor(x_actor_id: UUID = Header(...)) -> UUID:
    return x_actor_id


def declaration_type(type_slug: str) -> DeclarationType:
    return DeclarationType.from_slug(type_slug)


def art123_request(
    change_type: int | None = Query(None, ge=1, le=6),
    new_employer_bulstat: str = Query(""),
    new_employer_name: str = Query(""),
    change_date: date | None = Query(None),
    employee_ids: list[UUID] | None = Query(None),
) -> Art123Request | None:
    if change_type is None and change_date is None:
        return None
    if change_type is None or change_date is None:
        raise ValueError("change_type and change_date are both required")
    return Art123Request(
        change_type=ChangeType(change_type),
        new_employer_bulstat=new_employer_bulstat,
        new_employer_name=new_employer_name,
        change_date=change_date,
        employee_ids=tuple(employee_ids) if employee_ids else None,
    )


def reporting_period(
    kind: DeclarationType,
    year: int | None,
    month: int | None,
    date_from: date | None,
    date_to: date | None,
) -> ReportingPeriod | None:
    if date_from is not None or date_to is not None:
        if date_from is None or date_to is None:
            raise ValueError("date_from and date_to must be given together")
        return ReportingPeriod.date_range(date_from, date_to)
    if kind == DeclarationType.ART123 and year is None:
        return None
    if year is None:
        raise ValueError("year is required")
    if kind == DeclarationType.ART73:
        return ReportingPeriod.annual(year)
    if month is None:
        raise ValueError("month is required")
    return ReportingPeriod.monthly(year, month)


def _attachment(file_name: str, content: bytes, media_type: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


# ---------------------------------------------------------------------------
# Payroll month
# ---------------------------------------------------------------------------

payroll = APIRouter(prefix="/payroll", tags=["payroll"])


@payroll.post("/start-new")
def start_new(
    year: int,
    month: int = Query(..., ge=1, le=12),
    tenant_id: UUID = Depends(tenant),
    actor_id: UUID = Depends(actor),
    core: PayrollCore = Depends(get_core),
) -> dict[str, Any]:
    return core.controller.prepare_month(tenant_id, year, month, actor_id).to_dict()


@payroll.post("/calculate")
def calculate_all(
    year: int,
    month: int = Query(..., ge=1, le=12),
    tenant_id: UUID = Depends(tenant),
    actor_id: UUID = Depends(actor),
    core: PayrollCore = Depends(get_core),
) -> dict[str, Any]:
    return core.controller.calculate_all(tenant_id, year, month, actor_id).to_dict()


@payroll.post("/calculate/{employee_id}")
def calculate_one(
    employee_id: UUID,
    year: int,
    month: int = Query(..., ge=1, le=12),
    tenant_id: UUID = Depends(tenant),
    actor_id: UUID = Depends(actor),
    core: PayrollCore = Depends(get_core),
) -> dict[str, Any]:
    return core.controller.calculate_one(tenant_id, employee_id, year, month, actor_id).to_dict()


@payroll.post("/close")
def close_month(
    year: int,
    month: int = Query(..., ge=1, le=12),
    tenant_id: UUID = Depends(tenant),
    actor_id: UUID = Depends(actor),
    core: PayrollCore = Depends(get_core),
) -> dict[str, Any]:
    return core.controller.close_month(tenant_id, year, month, actor_id).to_dict()


@payroll.post("/reopen")
def reopen_month(
    year: int,
    month: int = Query(..., ge=1, le=12),
    tenant_id: UUID = Depends(tenant),
    actor_id: UUID = Depends(actor),
    core: PayrollCore = Depends(get_core),
) -> dict[str, Any]:
    return core.controller.reopen_month(tenant_id, year, month, actor_id).to_dict()


@payroll.post("/recalculate")
def recalculate_month(
    year: int,
    month: int = Query(..., ge=1, le=12),
    tenant_id: UUID = Depends(tenant),
    actor_id: UUID = Depends(actor),
    core: PayrollCore = Depends(get_core),
) -> dict[str, Any]:
    return core.controller.recalculate_month(tenant_id, year, month, actor_id).to_dict()


@payroll.get("/month")
def get_month(
    year: int,
    month: int = Query(..., ge=1, le=12),
    tenant_id: UUID = Depends(tenant),
    core: PayrollCore = Depends(get_core),
) -> dict[str, Any]:
    return core.controller.get_month(tenant_id, year, month).to_dict()


@payroll.get("/months")
def list_months(
    year: int,
    tenant_id: UUID = Depends(tenant),
    core: PayrollCore = Depends(get_core),
) -> list[dict[str, Any]]:
    return [m.to_dict() for m in core.controller.list_months(tenant_id, year)]


@payroll.get("/transitions")
def list_transitions(
    year: int,
    month: int = Query(..., ge=1, le=12),
    tenant_id: UUID = Depends(tenant),
    core: PayrollCore = Depends(get_core),
) -> list[dict[str, Any]]:
    return [t.to_dict() for t in core.controller.list_transitions(tenant_id, year, month)]


@payroll.get("/snapshots")
def list_snapshots(
    year: int,
    month: int = Query(..., ge=1, le=12),
    tenant_id: UUID = Depends(tenant),
    core: PayrollCore = Depends(get_core),
) -> list[dict[str, Any]]:
    return [s.to_dict() for s in core.controller.list_snapshots(tenant_id, year, month)]


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------

declarations = APIRouter(prefix="/declarations", tags=["declarations"])


@declarations.get("/submissions")
def list_submissions(
    type: str | None = None,
    year: int | None = None,
    month: int | None = None,
    tenant_id: UUID = Depends(tenant),
    core: PayrollCore = Depends(get_core),
) -> list[dict[str, Any]]:
    kind = DeclarationType.from_slug(type) if type else None
    return [s.to_dict() for s in core.declarations.list_submissions(tenant_id, kind, year, month)]


@declarations.get("/submissions/{submission_id}")
def get_submission(
    submission_id: UUID,
    tenant_id: UUID = Depends(tenant),
    core: PayrollCore = Depends(get_core),
) -> dict[str, Any]:
    return core.declarations.get_submission(tenant_id, submission_id).to_dict(include_content=True)


@declarations.get("/submissions/{submission_id}/download")
def download_submission(
    submission_id: UUID,
    tenant_id: UUID = Depends(tenant),
    core: PayrollCore = Depends(get_core),
) -> Response:
    file_name, content, media_type = core.declarations.download(tenant_id, submission_id)
    return _attachment(file_name, content, media_type)


@declarations.get("/{type_slug}/preview")
def preview(
    kind: DeclarationType = Depends(declaration_type),
    year: int | None = None,
    month: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    correction_code: int = Query(0),
    request: Art123Request | None = Depends(art123_request),
    tenant_id: UUID = Depends(tenant),
    core: PayrollCore = Depends(get_core),
) -> dict[str, Any]:
    period = reporting_period(kind, year, month, date_from, date_to)
    return core.declarations.preview(kind, tenant_id, period, CorrectionCode(correction_code), request).to_dict()


@declarations.get("/{type_slug}/validate")
def validate(
    kind: DeclarationType = Depends(declaration_type),
    year: int | None = None,
    month: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    request: Art123Request | None = Depends(art123_request),
    tenant_id: UUID = Depends(tenant),
    core: PayrollCore = Depends(get_core),
) -> dict[str, Any]:
    period = reporting_period(kind, year, month, date_from, date_to)
    errors = core.declarations.validate(kind, tenant_id, period, request)
    return {"valid": not errors, "errors": [e.to_dict() for e in errors]}


@declarations.post("/{type_slug}/generate")
def generate(
    kind: DeclarationType = Depends(declaration_type),
    year: int | None = None,
    month: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    correction_code: int = Query(0),
    idempotency_key: str | None = Query(None, max_length=100),
    request: Art123Request | None = Depends(art123_request),
    tenant_id: UUID = Depends(tenant),
    actor_id: UUID = Depends(actor),
    core: PayrollCore = Depends(get_core),
) -> dict[str, Any]:
    period = reporting_period(kind, year, month, date_from, date_to)
    submission = core.declarations.generate(
        kind,
        tenant_id,
        period,
        actor_id,
        correction_code=CorrectionCode(correction_code),
        request=request,
        idempotency_key=idempotency_key,
    )
    return submission.to_dict()


# ---------------------------------------------------------------------------
# Bank payments
# ---------------------------------------------------------------------------

bank_payments = APIRouter(prefix="/bank-payments", tags=["bank-payments"])


@bank_payments.get("/preview")
def preview_bank_payments(
    year: int,
    month: int = Query(..., ge=1, le=12),
    tenant_id: UUID = Depends(tenant),
    core: PayrollCore = Depends(get_core),
) -> dict[str, Any]:
    return core.bank_payments.build(tenant_id, year, month).to_dict()


@bank_payments.post("/generate")
def generate_bank_payments(
    year: int,
    month: int = Query(..., ge=1, le=12),
    tenant_id: UUID = Depends(tenant),
    actor_id: UUID = Depends(actor),
    core: PayrollCore = Depends(get_core),
) -> dict[str, Any]:
    return core.bank_payments.generate(tenant_id, year, month, actor_id).to_dict()


@bank_payments.get("/download")
def download_bank_payments(
    year: int,
    month: int = Query(..., ge=1, le=12),
    file_id: UUID | None = None,
    tenant_id: UUID = Depends(tenant),
    core: PayrollCore = Depends(get_core),
) -> Response:
    info, content, media_type = core.bank_payments.download(tenant_id, year, month, file_id)
    return _attachment(info.file_name, content, media_type)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app(core: PayrollCore) -> FastAPI:
    app = FastAPI(title="Payroll Core", version="0.1.0")
    app.state.core = core

    @app.middleware("http")
    async def bind_log_context(request: Request, call_next):
        with LogContext.bind(
            correlation_id=request.headers.get("x-correlation-id") or str(uuid4()),
            tenant_id=request.headers.get("x-tenant-id"),
            actor_id=request.headers.get("x-actor-id"),
        ):
            return await call_next(request)

    @app.exception_handler(PayrollCoreError)
    async def payroll_error_handler(request: Request, exc: PayrollCoreError) -> JSONResponse:
        status_code = status_for(exc)
        logger.info(
            "api_request_rejected",
            extra={"path": request.url.path, "status_code": status_code, "error_code": exc.code},
        )
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(ValueError)
    async def bad_request_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.info(
            "api_request_rejected",
            extra={"path": request.url.path, "status_code": 400, "error_code": "BAD_REQUEST"},
        )
        return JSONResponse(status_code=400, content={"code": "BAD_REQUEST", "message": str(exc)})

    app.include_router(payroll)
    app.include_router(declarations)
    app.include_router(bank_payments)
    return app
