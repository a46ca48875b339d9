from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.settings import settings
from app.models.borrower import Borrower
from app.models.loan import Loan
from app.schemas.loan import LoanCreateRequest, LoanStatus
from app.services.amortization import calculate_loan_payment, validate_term_weeks
from app.services.audit import model_snapshot, record_audit_log


logger = logging.getLogger(__name__)

# A VIN may only back one of these at a time.
OPEN_LOAN_STATUSES = (
    LoanStatus.NEW.value,
    LoanStatus.APPLICATION_SENT.value,
    LoanStatus.APPLICATION_IN_PROGRESS.value,
    LoanStatus.APPLICATION_COMPLETED.value,
    LoanStatus.FUNDED.value,
    LoanStatus.ACTIVE.value,
)
CANCELLABLE_STATUSES = (
    LoanStatus.NEW.value,
    LoanStatus.APPLICATION_SENT.value,
    LoanStatus.APPLICATION_IN_PROGRESS.value,
    LoanStatus.APPLICATION_COMPLETED.value,
)
SENDABLE_STATUSES = (
    LoanStatus.NEW.value,
    LoanStatus.APPLICATION_SENT.value,
    LoanStatus.APPLICATION_IN_PROGRESS.value,
)


@dataclass(frozen=True)
class LoanError(ValueError):
    code: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


def generate_loan_number(today: date | None = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return f"LN-{today:%Y%m%d}-{secrets.token_hex(3).upper()}"


def application_url(loan: Loan) -> str:
    return f"{settings.public_app_url.rstrip('/')}/apply/{loan.id}"


def _require_status(loan: Loan, allowed: tuple[str, ...], action: str) -> None:
    if loan.status not in allowed:
        raise LoanError(
            code="invalid_status",
            message=f"Cannot {action} a loan in status {loan.status}",
            details={"status": loan.status, "allowed": list(allowed)},
        )


async def _find_or_create_borrower(db: AsyncSession, ctx: deps.TenantContext, payload: LoanCreateRequest) -> Borrower:
    email = payload.borrower.email.lower()
    stmt = select(Borrower).where(Borrower.org_id == ctx.org_id, Borrower.email == email)
    borrower = (await db.execute(stmt)).scalar_one_or_none()
    if borrower is not None:
        if payload.borrower.phone and not borrower.phone:
            borrower.phone = payload.borrower.phone
            db.add(borrower)
        return borrower
    borrower = Borrower(
        id=uuid.uuid4(),
        org_id=ctx.org_id,
        first_name=payload.borrower.first_name,
        last_name=payload.borrower.last_name,
        email=email,
        phone=payload.borrower.phone,
        preferred_language="en",
        consent_to_contact=False,
        consent_to_text=False,
        consent_to_call=False,
        kyc_status="not_started",
    )
    db.add(borrower)
    await db.flush()
    return borrower


async def _ensure_vin_available(db: AsyncSession, ctx: deps.TenantContext, vin: str | None) -> None:
    if not vin:
        return
    stmt = select(Loan).where(
        Loan.org_id == ctx.org_id,
        Loan.vehicle_vin == vin,
        Loan.status.in_(OPEN_LOAN_STATUSES),
    )
    existing = (await db.execute(stmt)).scalars().first()
    if existing is not None:
        raise LoanError(
            code="duplicate_loan",
            message="An open loan already exists for this vehicle",
            details={"vehicle_vin": vin, "loan_id": str(existing.id), "loan_number": existing.loan_number},
        )


async def create_loan(
    db: AsyncSession,
    ctx: deps.TenantContext,
    payload: LoanCreateRequest,
    *,
    actor_id=None,
) -> Loan:
    validate_term_weeks(payload.term_weeks)
    await _ensure_vin_available(db, ctx, payload.vehicle_vin)
    quote = calculate_loan_payment(payload.principal_amount, payload.term_weeks, payload.interest_rate)
    borrower = await _find_or_create_borrower(db, ctx, payload)

    loan = Loan(
        id=uuid.uuid4(),
        org_id=ctx.org_id,
        borrower_id=borrower.id,
        loan_number=generate_loan_number(),
        status=LoanStatus.NEW.value,
        principal_amount=quote.principal,
        interest_rate=quote.annual_rate,
        term_weeks=quote.term_weeks,
        weekly_payment=quote.weekly_payment,
        total_payment=quote.total_payment,
        total_interest=quote.total_interest,
        remaining_balance=quote.principal,
        purpose=payload.purpose,
        vehicle_year=payload.vehicle_year,
        vehicle_make=payload.vehicle_make,
        vehicle_model=payload.vehicle_model,
        vehicle_vin=payload.vehicle_vin,
        application_step=1,
        phone_verification_status="not_started",
        stripe_verification_status="not_started",
        created_by=actor_id,
    )
    loan.borrower = borrower
    db.add(loan)
    await db.flush()
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="loan.created",
        resource_type="loan",
        resource_id=str(loan.id),
        new_value=model_snapshot(loan),
    )
    logger.info("Created loan %s for borrower %s", loan.loan_number, borrower.id)
    return loan


async def get_loan(db: AsyncSession, ctx: deps.TenantContext, loan_id: UUID) -> Loan | None:
    stmt = select(Loan).where(Loan.id == loan_id, Loan.org_id == ctx.org_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_loans(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    status: str | None = None,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[Loan], int]:
    filters = [Loan.org_id == ctx.org_id]
    if status:
        filters.append(Loan.status == status)
    total = (await db.execute(select(func.count()).select_from(Loan).where(*filters))).scalar_one()
    stmt = (
        select(Loan)
        .where(*filters)
        .order_by(Loan.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    rows = (await db.execute(stmt)).scalars().all()
    return list(rows), int(total or 0)


async def send_application(
    db: AsyncSession,
    ctx: deps.TenantContext,
    loan: Loan,
    *,
    actor_id=None,
) -> str:
    """Mark the application as sent and return the borrower link.

    Re-sending while the borrower is still working keeps the current status.
    """
    _require_status(loan, SENDABLE_STATUSES, "send the application for")
    old = model_snapshot(loan)
    if loan.status == LoanStatus.NEW.value:
        loan.status = LoanStatus.APPLICATION_SENT.value
    loan.application_sent_at = datetime.now(timezone.utc)
    db.add(loan)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="loan.application_sent",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value=old,
        new_value=model_snapshot(loan),
    )
    await db.flush()
    return application_url(loan)


async def approve_loan(
    db: AsyncSession,
    ctx: deps.TenantContext,
    loan: Loan,
    *,
    actor_id=None,
    today: date | None = None,
) -> Loan:
    _require_status(loan, (LoanStatus.APPLICATION_COMPLETED.value,), "approve")
    old = model_snapshot(loan)
    loan.status = LoanStatus.FUNDED.value
    loan.funding_date = today or datetime.now(timezone.utc).date()
    loan.remaining_balance = loan.principal_amount
    db.add(loan)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="loan.funded",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value=old,
        new_value=model_snapshot(loan),
    )
    await db.flush()
    return loan


async def cancel_loan(
    db: AsyncSession,
    ctx: deps.TenantContext,
    loan: Loan,
    *,
    actor_id=None,
    reason: str | None = None,
) -> Loan:
    _require_status(loan, CANCELLABLE_STATUSES, "cancel")
    old = model_snapshot(loan)
    loan.status = LoanStatus.CANCELLED.value
    db.add(loan)
    new = model_snapshot(loan)
    if reason:
        new["cancel_reason"] = reason
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="loan.cancelled",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value=old,
        new_value=new,
    )
    await db.flush()
    return loan
