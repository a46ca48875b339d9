from __future__ import annotations

from datetime import date, datetime, timezone

from app.models.loan import Loan
from app.schemas.loan import LoanScheduleEntry, LoanScheduleResponse, LoanSchedulePreviewRequest
from app.services.amortization import (
    LoanTerms,
    PaymentSchedule,
    ScheduleMode,
    compute_schedule,
    derive_weekly_payment,
    effective_interest_rate,
)


def schedule_start_date(loan: Loan) -> date:
    if loan.funding_date is not None:
        return loan.funding_date
    if loan.created_at is not None:
        created = loan.created_at
        return created.date() if isinstance(created, datetime) else created
    return datetime.now(timezone.utc).date()


def build_schedule(loan: Loan, mode: ScheduleMode = ScheduleMode.SIMPLE_INTEREST) -> LoanScheduleResponse:
    mode = ScheduleMode(mode)
    terms = LoanTerms(
        principal=loan.principal_amount,
        annual_rate=loan.interest_rate,
        term_weeks=int(loan.term_weeks),
        start_date=schedule_start_date(loan),
    )
    weekly_payment = loan.weekly_payment if mode == ScheduleMode.SIMPLE_INTEREST else None
    schedule = compute_schedule(terms, mode, weekly_payment=weekly_payment)
    return _to_response(schedule, loan_id=loan.id)


def build_schedule_preview(
    payload: LoanSchedulePreviewRequest,
    *,
    today: date | None = None,
) -> LoanScheduleResponse:
    mode = ScheduleMode(payload.mode)
    annual_rate = effective_interest_rate(payload.annual_rate)
    terms = LoanTerms(
        principal=payload.principal,
        annual_rate=annual_rate,
        term_weeks=payload.term_weeks,
        start_date=payload.start_date or today or datetime.now(timezone.utc).date(),
    )
    weekly_payment = payload.weekly_payment
    if mode == ScheduleMode.SIMPLE_INTEREST and weekly_payment is None:
        weekly_payment = derive_weekly_payment(terms.principal, terms.annual_rate, terms.term_weeks)
    schedule = compute_schedule(terms, mode, weekly_payment=weekly_payment)
    return _to_response(schedule, loan_id=None)


def _to_response(schedule: PaymentSchedule, *, loan_id) -> LoanScheduleResponse:
    return LoanScheduleResponse(
        loan_id=loan_id,
        mode=schedule.mode,
        start_date=schedule.terms.start_date,
        principal=schedule.terms.principal,
        annual_rate=schedule.terms.annual_rate,
        term_weeks=schedule.terms.term_weeks,
        weekly_payment=schedule.weekly_payment,
        total_interest=schedule.total_interest,
        total_of_payments=schedule.total_of_payments,
        entries=[
            LoanScheduleEntry(
                payment_number=entry.payment_number,
                due_date=entry.due_date,
                due_date_label=entry.due_date_label,
                principal_payment=entry.principal_payment,
                interest_payment=entry.interest_payment,
                total_payment=entry.total_payment,
                remaining_balance=entry.remaining_balance,
            )
            for entry in schedule.entries
        ],
    )
