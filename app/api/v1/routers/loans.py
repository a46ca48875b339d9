from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.settings import settings
from app.db.session import get_db
from app.models.loan import Loan
from app.models.user import User
from app.schemas.loan import (
    LoanCancelRequest,
    LoanCreateRequest,
    LoanDTO,
    LoanListResponse,
    LoanScheduleResponse,
    LoanSchedulePreviewRequest,
    LoanStatus,
    LoanTermOption,
    LoanTermsResponse,
    SendApplicationResponse,
)
from app.services import loan_schedules, loans as loan_service
from app.services.amortization import (
    ScheduleError,
    ScheduleMode,
    available_terms,
    effective_interest_rate,
)


router = APIRouter(prefix="/loans", tags=["loans"])

_LOAN_ERROR_STATUS = {
    "duplicate_loan": status.HTTP_409_CONFLICT,
    "invalid_status": status.HTTP_409_CONFLICT,
}


def _loan_error(exc: loan_service.LoanError) -> HTTPException:
    return HTTPException(
        status_code=_LOAN_ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
        detail={"code": exc.code, "message": exc.message, "details": exc.details},
    )


def _schedule_error(exc: ScheduleError, *, code: str = "invalid_schedule") -> HTTPException:
    details = dict(exc.details)
    details.setdefault("reason", exc.code)
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"code": code, "message": exc.message, "details": details},
    )


async def _get_loan_or_404(db: AsyncSession, ctx: deps.TenantContext, loan_id: UUID) -> Loan:
    loan = await loan_service.get_loan(db, ctx, loan_id)
    if loan is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "loan_not_found", "message": "Loan not found", "details": {"loan_id": str(loan_id)}},
        )
    return loan


@router.post("", response_model=LoanDTO, status_code=status.HTTP_201_CREATED, summary="Create a loan")
async def create_loan(
    payload: LoanCreateRequest,
    current_user: User = Depends(deps.require_staff),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> LoanDTO:
    try:
        loan = await loan_service.create_loan(db, ctx, payload, actor_id=current_user.id)
    except ScheduleError as exc:
        raise _schedule_error(exc, code=exc.code) from exc
    except loan_service.LoanError as exc:
        raise _loan_error(exc) from exc
    await db.commit()
    await db.refresh(loan)
    return LoanDTO.model_validate(loan)


@router.get("", response_model=LoanListResponse, summary="List loans")
async def list_loans(
    status_filter: LoanStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=25, ge=1, le=100),
    current_user: User = Depends(deps.require_staff),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> LoanListResponse:
    items, total = await loan_service.list_loans(
        db,
        ctx,
        status=status_filter.value if status_filter else None,
        page=page,
        page_size=page_size,
    )
    return LoanListResponse(
        items=[LoanDTO.model_validate(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/terms", response_model=LoanTermsResponse, summary="Available loan terms")
async def loan_terms(current_user: User = Depends(deps.require_staff)) -> LoanTermsResponse:
    return LoanTermsResponse(
        options=[LoanTermOption(**option) for option in available_terms()],
        interest_enabled=settings.enable_interest_calculations,
        default_annual_rate=effective_interest_rate(),
    )


@router.post(
    "/schedule/preview",
    response_model=LoanScheduleResponse,
    summary="Preview a payment schedule before creating a loan",
)
async def preview_schedule(
    payload: LoanSchedulePreviewRequest,
    current_user: User = Depends(deps.require_staff),
) -> LoanScheduleResponse:
    try:
        return loan_schedules.build_schedule_preview(payload)
    except ScheduleError as exc:
        raise _schedule_error(exc) from exc


@router.get("/{loan_id}", response_model=LoanDTO, summary="Get a loan")
async def get_loan(
    loan_id: UUID,
    current_user: User = Depends(deps.require_staff),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> LoanDTO:
    loan = await _get_loan_or_404(db, ctx, loan_id)
    return LoanDTO.model_validate(loan)


@router.get("/{loan_id}/schedule", response_model=LoanScheduleResponse, summary="Loan payment schedule")
async def get_loan_schedule(
    loan_id: UUID,
    mode: ScheduleMode = Query(default=ScheduleMode.SIMPLE_INTEREST),
    current_user: User = Depends(deps.require_staff),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> LoanScheduleResponse:
    loan = await _get_loan_or_404(db, ctx, loan_id)
    try:
        return loan_schedules.build_schedule(loan, mode)
    except ScheduleError as exc:
        raise _schedule_error(exc) from exc


@router.post(
    "/{loan_id}/send-application",
    response_model=SendApplicationResponse,
    summary="Send the borrower their application link",
)
async def send_application(
    loan_id: UUID,
    current_user: User = Depends(deps.require_staff),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> SendApplicationResponse:
    loan = await _get_loan_or_404(db, ctx, loan_id)
    try:
        url = await loan_service.send_application(db, ctx, loan, actor_id=current_user.id)
    except loan_service.LoanError as exc:
        raise _loan_error(exc) from exc
    await db.commit()
    await db.refresh(loan)
    return SendApplicationResponse(loan=LoanDTO.model_validate(loan), application_url=url)


@router.post("/{loan_id}/approve", response_model=LoanDTO, summary="Approve and fund a completed application")
async def approve_loan(
    loan_id: UUID,
    current_user: User = Depends(deps.require_staff),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> LoanDTO:
    loan = await _get_loan_or_404(db, ctx, loan_id)
    try:
        await loan_service.approve_loan(db, ctx, loan, actor_id=current_user.id)
    except loan_service.LoanError as exc:
        raise _loan_error(exc) from exc
    await db.commit()
    await db.refresh(loan)
    return LoanDTO.model_validate(loan)


@router.post("/{loan_id}/cancel", response_model=LoanDTO, summary="Cancel a loan before funding")
async def cancel_loan(
    loan_id: UUID,
    payload: LoanCancelRequest | None = None,
    current_user: User = Depends(deps.require_staff),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> LoanDTO:
    loan = await _get_loan_or_404(db, ctx, loan_id)
    try:
        await loan_service.cancel_loan(
            db,
            ctx,
            loan,
            actor_id=current_user.id,
            reason=payload.reason if payload else None,
        )
    except loan_service.LoanError as exc:
        raise _loan_error(exc) from exc
    await db.commit()
    await db.refresh(loan)
    return LoanDTO.model_validate(loan)
