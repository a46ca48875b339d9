from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.context import set_loan_id, set_tenant_id
from app.core.settings import settings
from app.models.borrower import Borrower
from app.models.loan import Loan
from app.schemas.application import (
    ApplicationBorrowerView,
    ApplicationLoanView,
    ApplicationView,
)
from app.schemas.common import PreferredLanguage
from app.schemas.loan import LoanStatus
from app.services import verification_status
from app.services.application_errors import (
    ApplicationAlreadyCompleted,
    ApplicationError,
    FieldValidationError,
    LoanRecordInvalid,
)
from app.services.application_progress import (
    COMPLETED_LOAN_STATUSES,
    ApplicationProgress,
    ApplicationStep,
    coerce_step,
    validate_submission,
)
from app.services.audit import record_audit_log


logger = logging.getLogger(__name__)

OPEN_APPLICATION_STATUSES = (
    LoanStatus.APPLICATION_SENT.value,
    LoanStatus.APPLICATION_IN_PROGRESS.value,
)

# snapshot key -> borrower column
_TEXT_FIELDS = {
    "address": "address_line1",
    "city": "city",
    "zipCode": "zip_code",
    "employmentStatus": "employment_status",
    "currentEmployerName": "current_employer_name",
    "timeWithEmployment": "time_with_employment",
    "communicationPreferences": "communication_preferences",
    "reference1Name": "reference1_name",
    "reference1Phone": "reference1_phone",
    "reference1Email": "reference1_email",
    "reference2Name": "reference2_name",
    "reference2Phone": "reference2_phone",
    "reference2Email": "reference2_email",
    "reference3Name": "reference3_name",
    "reference3Phone": "reference3_phone",
    "reference3Email": "reference3_email",
}
_BOOL_FIELDS = {
    "consentToContact": "consent_to_contact",
    "consentToText": "consent_to_text",
    "consentToCall": "consent_to_call",
}


class IdentitySkipDisabled(ApplicationError):
    def __init__(self) -> None:
        super().__init__(
            code="identity_skip_disabled",
            message="Skipping identity verification is not enabled",
            details={},
        )


def tenant_context_for(loan: Loan) -> deps.TenantContext:
    set_tenant_id(loan.org_id)
    set_loan_id(str(loan.id))
    return deps.TenantContext(org_id=loan.org_id)


async def get_application_loan(db: AsyncSession, loan_id: UUID) -> Loan:
    """Load the loan behind an application link and require an open application."""
    stmt = select(Loan).where(Loan.id == loan_id)
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if loan is None:
        raise LoanRecordInvalid(details={"loan_id": str(loan_id)})
    if loan.status in COMPLETED_LOAN_STATUSES:
        raise ApplicationAlreadyCompleted(details={"status": loan.status})
    if loan.status not in OPEN_APPLICATION_STATUSES:
        raise LoanRecordInvalid(
            "This application link is no longer valid",
            {"status": loan.status},
            code="invalid_loan",
        )
    if loan.borrower is None:
        raise LoanRecordInvalid("Loan has no borrower", {"loan_id": str(loan_id)}, code="invalid_loan")
    return loan


def borrower_snapshot(borrower: Borrower, *, include_ssn: bool = False) -> dict[str, Any]:
    """Borrower answers keyed like the wizard snapshot.

    The SSN is write-only over the public link unless explicitly requested.
    """
    snapshot: dict[str, Any] = {}
    for key, column in _TEXT_FIELDS.items():
        snapshot[key] = getattr(borrower, column)
    for key, column in _BOOL_FIELDS.items():
        snapshot[key] = bool(getattr(borrower, column) or False)
    snapshot["state"] = borrower.state
    if borrower.date_of_birth is not None:
        snapshot["dateOfBirth"] = borrower.date_of_birth.isoformat()
    if borrower.annual_income is not None:
        snapshot["annualIncome"] = str(borrower.annual_income)
    if include_ssn:
        snapshot["ssn"] = borrower.ssn
    return {key: value for key, value in snapshot.items() if value is not None}


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def apply_answers(borrower: Borrower, snapshot: dict[str, Any]) -> list[str]:
    """Copy snapshot answers onto the borrower; returns the keys that were skipped.

    Partially typed values (a half-entered birth date, a non-numeric income)
    are skipped rather than rejected so debounced saves never fail.
    """
    skipped: list[str] = []
    for key, column in _TEXT_FIELDS.items():
        if key in snapshot:
            setattr(borrower, column, _clean_text(snapshot[key]))
    for key, column in _BOOL_FIELDS.items():
        if key in snapshot and snapshot[key] is not None:
            setattr(borrower, column, bool(snapshot[key]))
    if "state" in snapshot:
        state = _clean_text(snapshot["state"])
        if state is None or len(state) == 2:
            borrower.state = state.upper() if state else None
        else:
            skipped.append("state")
    if "ssn" in snapshot:
        borrower.ssn = _clean_text(snapshot["ssn"])
    if "dateOfBirth" in snapshot:
        raw = _clean_text(snapshot["dateOfBirth"])
        try:
            borrower.date_of_birth = date.fromisoformat(raw) if raw else None
        except ValueError:
            skipped.append("dateOfBirth")
    if "annualIncome" in snapshot:
        raw = _clean_text(snapshot["annualIncome"])
        try:
            income = Decimal(raw.replace(",", "").replace("$", "")) if raw else None
        except InvalidOperation:
            income = Decimal("-1")
        if income is None or (income.is_finite() and income > 0):
            borrower.annual_income = income
        else:
            skipped.append("annualIncome")
    return skipped


def build_view(loan: Loan) -> ApplicationView:
    borrower = loan.borrower
    progress = borrower_snapshot(borrower)
    progress["applicationStep"] = int(coerce_step(loan.application_step))
    if loan.stripe_verification_session_id:
        progress["stripeVerificationSessionId"] = loan.stripe_verification_session_id
    return ApplicationView(
        loan=ApplicationLoanView(
            id=loan.id,
            status=loan.status,
            principal_amount=loan.principal_amount,
            weekly_payment=loan.weekly_payment,
            term_weeks=loan.term_weeks,
            vehicle_year=loan.vehicle_year,
            vehicle_make=loan.vehicle_make,
            vehicle_model=loan.vehicle_model,
            vehicle_vin=loan.vehicle_vin,
            application_step=int(coerce_step(loan.application_step)),
            phone_verification_status=loan.phone_verification_status,
            verified_phone_number=loan.verified_phone_number,
            stripe_verification_session_id=loan.stripe_verification_session_id,
            stripe_verification_status=loan.stripe_verification_status,
        ),
        borrower=ApplicationBorrowerView(
            first_name=borrower.first_name,
            last_name=borrower.last_name,
            email=borrower.email,
            phone=borrower.phone,
            preferred_language=borrower.preferred_language or PreferredLanguage.EN.value,
        ),
        dealer_name=loan.org.name if loan.org is not None else None,
        progress=progress,
    )


def _mark_in_progress(db: AsyncSession, loan: Loan) -> None:
    if loan.status != LoanStatus.APPLICATION_SENT.value:
        return
    loan.status = LoanStatus.APPLICATION_IN_PROGRESS.value
    record_audit_log(
        db,
        tenant_context_for(loan),
        action="loan.application_started",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value={"status": LoanStatus.APPLICATION_SENT.value},
        new_value={"status": loan.status},
    )


async def save_progress(db: AsyncSession, loan_id: UUID, snapshot: dict[str, Any]) -> Loan:
    """Persist a partial snapshot. Verification statuses are never written here."""
    loan = await get_application_loan(db, loan_id)
    tenant_context_for(loan)
    skipped = apply_answers(loan.borrower, snapshot)
    if skipped:
        logger.debug("Skipped incomplete answers for loan %s: %s", loan.id, ", ".join(skipped))
    if snapshot.get("applicationStep") is not None:
        step = coerce_step(snapshot["applicationStep"], ApplicationStep(loan.application_step))
        # Only submit_application moves a loan to SUBMITTED.
        loan.application_step = int(min(step, ApplicationStep.REVIEW))
    _mark_in_progress(db, loan)
    db.add(loan.borrower)
    db.add(loan)
    await db.flush()
    return loan


async def submit_application(
    db: AsyncSession,
    loan_id: UUID,
    snapshot: dict[str, Any],
    *,
    today: date | None = None,
) -> Loan:
    loan = await get_application_loan(db, loan_id)
    ctx = tenant_context_for(loan)
    borrower = loan.borrower

    merged = borrower_snapshot(borrower, include_ssn=True)
    merged.update({key: value for key, value in snapshot.items() if value is not None})
    progress = ApplicationProgress.from_snapshot(
        merged,
        language=borrower.preferred_language,
        phone_status=loan.phone_verification_status,
        verified_phone_number=loan.verified_phone_number,
        identity_status=loan.stripe_verification_status,
        application_status=loan.status,
    )
    errors = validate_submission(progress, today=today)
    if errors:
        field_name, message = next(iter(errors.items()))
        raise FieldValidationError(field_name, message, {"errors": errors})

    apply_answers(borrower, merged)
    borrower.kyc_status = loan.stripe_verification_status
    old_status = loan.status
    loan.status = LoanStatus.APPLICATION_COMPLETED.value
    loan.application_step = int(ApplicationStep.SUBMITTED)
    loan.application_completed_at = datetime.now(timezone.utc)
    db.add(borrower)
    db.add(loan)
    record_audit_log(
        db,
        ctx,
        action="loan.application_completed",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value={"status": old_status},
        new_value={"status": loan.status, "kyc_status": borrower.kyc_status},
    )
    await db.flush()
    logger.info("Application submitted for loan %s", loan.id)
    return loan


async def set_language(db: AsyncSession, loan_id: UUID, language: PreferredLanguage) -> Loan:
    loan = await get_application_loan(db, loan_id)
    tenant_context_for(loan)
    loan.borrower.preferred_language = PreferredLanguage(language).value
    db.add(loan.borrower)
    await db.flush()
    return loan


async def skip_identity_verification(db: AsyncSession, loan_id: UUID) -> Loan:
    if not settings.allow_identity_skip:
        raise IdentitySkipDisabled()
    loan = await get_application_loan(db, loan_id)
    ctx = tenant_context_for(loan)
    old_status = loan.stripe_verification_status
    loan.stripe_verification_status = verification_status.apply_status(
        old_status, verification_status.IdentityVerificationStatus.VERIFIED.value
    )
    db.add(loan)
    record_audit_log(
        db,
        ctx,
        action="loan.identity_verification_skipped",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value={"stripe_verification_status": old_status},
        new_value={"stripe_verification_status": loan.stripe_verification_status},
    )
    await db.flush()
    logger.warning("Identity verification skipped for loan %s", loan.id)
    return loan
