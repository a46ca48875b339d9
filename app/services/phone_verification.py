"""SMS one-time-code verification through the Twilio Verify v2 REST API."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
from typing import Any, Mapping
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.settings import settings
from app.models.loan import Loan
from app.services import applications, verification_status
from app.services.audit import record_audit_log
from app.services.providers import ProviderError, decode_body, provider_client, send_request
from app.services.verification_status import PhoneVerificationStatus


logger = logging.getLogger(__name__)

PROVIDER = "Twilio Verify"

# Twilio error code -> (our code, message)
TWILIO_ERRORS: dict[int, tuple[str, str]] = {
    60200: ("invalid_phone_number", "Invalid phone number"),
    60202: ("max_attempts_reached", "Too many incorrect codes; request a new one"),
    60203: ("max_attempts_reached", "Too many codes sent to this number; try again later"),
    20404: ("verification_not_found", "No pending verification for this number; request a new code"),
}

EVENT_PREFIX = "com.twilio.accountsecurity.verify.verification."
EVENT_STATUS_MAP = {
    "pending": PhoneVerificationStatus.SENT.value,
    "approved": PhoneVerificationStatus.VERIFIED.value,
    "expired": PhoneVerificationStatus.EXPIRED.value,
    "canceled": PhoneVerificationStatus.FAILED.value,
    "max-attempts-reached": PhoneVerificationStatus.FAILED.value,
}


def format_phone_number(raw: str) -> str:
    """Normalise to E.164, assuming US numbers when no country code is given."""
    text = (raw or "").strip()
    digits = re.sub(r"\D", "", text)
    if text.startswith("+") and 8 <= len(digits) <= 15:
        return f"+{digits}"
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    return text


def is_configured() -> bool:
    return bool(settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_verify_service_sid)


def _ensure_configured() -> None:
    if not is_configured():
        raise ProviderError(
            code="phone_verification_unavailable",
            message="Phone verification is not configured",
            details={"provider": PROVIDER},
        )


async def _call_verify(client: httpx.AsyncClient, resource: str, data: dict[str, str]) -> dict[str, Any]:
    url = f"{settings.twilio_verify_base_url.rstrip('/')}/Services/{settings.twilio_verify_service_sid}/{resource}"
    response = await send_request(
        client,
        "POST",
        url,
        provider=PROVIDER,
        data=data,
        auth=(settings.twilio_account_sid, settings.twilio_auth_token),
    )
    body = decode_body(response)
    if response.status_code >= 400:
        provider_code = body.get("code")
        code, message = TWILIO_ERRORS.get(provider_code, ("provider_error", body.get("message") or "Phone verification failed"))
        logger.warning("Twilio %s returned %s (code %s)", resource, response.status_code, provider_code)
        raise ProviderError(
            code=code,
            message=message,
            details={"provider_code": provider_code, "status": response.status_code},
        )
    return body


def _set_phone_status(loan: Loan, new_status: str) -> bool:
    current = loan.phone_verification_status
    if not verification_status.should_accept(current, new_status):
        logger.debug("Ignoring stale phone status %s for loan %s (current %s)", new_status, loan.id, current)
        return False
    loan.phone_verification_status = new_status
    return True


async def send_verification(
    db: AsyncSession,
    loan_id: UUID,
    phone_number: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> tuple[Loan, str]:
    """Text a code to the borrower. Returns the loan and the number the code went to."""
    _ensure_configured()
    loan = await applications.get_application_loan(db, loan_id)
    ctx = applications.tenant_context_for(loan)
    formatted = format_phone_number(phone_number)
    if loan.phone_verification_status == PhoneVerificationStatus.VERIFIED.value:
        return loan, loan.verified_phone_number or formatted

    async with provider_client(client) as http:
        body = await _call_verify(http, "Verifications", {"To": formatted, "Channel": "sms"})

    old_status = loan.phone_verification_status
    loan.phone_verification_session_id = body.get("sid") or loan.phone_verification_session_id
    _set_phone_status(loan, PhoneVerificationStatus.SENT.value)
    db.add(loan)
    record_audit_log(
        db,
        ctx,
        action="loan.phone_verification_sent",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value={"phone_verification_status": old_status},
        new_value={"phone_verification_status": loan.phone_verification_status},
    )
    await db.flush()
    return loan, formatted


async def verify_code(
    db: AsyncSession,
    loan_id: UUID,
    phone_number: str,
    code: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> tuple[Loan, bool]:
    loan = await applications.get_application_loan(db, loan_id)
    if loan.phone_verification_status == PhoneVerificationStatus.VERIFIED.value:
        return loan, True
    _ensure_configured()
    ctx = applications.tenant_context_for(loan)
    formatted = format_phone_number(phone_number)

    async with provider_client(client) as http:
        body = await _call_verify(http, "VerificationCheck", {"To": formatted, "Code": code})

    provider_status = body.get("status")
    if provider_status == "approved":
        new_status = PhoneVerificationStatus.VERIFIED.value
    elif provider_status == "canceled":
        new_status = PhoneVerificationStatus.FAILED.value
    else:
        return loan, False

    old_status = loan.phone_verification_status
    if _set_phone_status(loan, new_status) and new_status == PhoneVerificationStatus.VERIFIED.value:
        loan.verified_phone_number = formatted
        if not loan.borrower.phone:
            loan.borrower.phone = formatted
            db.add(loan.borrower)
    db.add(loan)
    record_audit_log(
        db,
        ctx,
        action="loan.phone_verification_checked",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value={"phone_verification_status": old_status},
        new_value={"phone_verification_status": loan.phone_verification_status},
    )
    await db.flush()
    return loan, loan.phone_verification_status == PhoneVerificationStatus.VERIFIED.value


def compute_webhook_signature(url: str, params: Mapping[str, str], auth_token: str) -> str:
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def is_valid_webhook_signature(url: str, params: Mapping[str, str], signature: str | None) -> bool:
    if not signature or not settings.twilio_auth_token:
        return False
    expected = compute_webhook_signature(url, params, settings.twilio_auth_token)
    return hmac.compare_digest(expected, signature)


def status_for_event(event_type: str | None) -> str | None:
    if not event_type or not event_type.startswith(EVENT_PREFIX):
        return None
    return EVENT_STATUS_MAP.get(event_type[len(EVENT_PREFIX):])


async def apply_webhook_event(db: AsyncSession, params: Mapping[str, str]) -> Loan | None:
    """Apply a Verify event to the loan it belongs to; ``None`` when nothing changed."""
    new_status = status_for_event(params.get("EventType"))
    verification_sid = params.get("VerificationSid")
    if new_status is None or not verification_sid:
        logger.info("Ignoring Twilio event %s", params.get("EventType"))
        return None
    stmt = select(Loan).where(Loan.phone_verification_session_id == verification_sid)
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if loan is None:
        logger.warning("No loan for Twilio verification %s", verification_sid)
        return None
    ctx = applications.tenant_context_for(loan)
    old_status = loan.phone_verification_status
    if not _set_phone_status(loan, new_status):
        return None
    if new_status == PhoneVerificationStatus.VERIFIED.value and params.get("To"):
        loan.verified_phone_number = format_phone_number(params["To"])
    db.add(loan)
    record_audit_log(
        db,
        ctx,
        action="loan.phone_verification_webhook",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value={"phone_verification_status": old_status},
        new_value={"phone_verification_status": loan.phone_verification_status},
    )
    await db.flush()
    return loan
