from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.settings import settings
from app.models.loan import Loan
from app.services import applications, verification_status
from app.services.audit import record_audit_log
from app.services.providers import ProviderError, decode_body, provider_client, send_request
from app.services.verification_status import IdentityVerificationStatus


logger = logging.getLogger(__name__)

PROVIDER = "Stripe Identity"
EVENT_PREFIX = "identity.verification_session."

# Stripe session status -> stored status
PROVIDER_STATUS_MAP = {
    "requires_input": IdentityVerificationStatus.REQUIRES_ACTION.value,
    "processing": IdentityVerificationStatus.PROCESSING.value,
    "verified": IdentityVerificationStatus.VERIFIED.value,
    "canceled": IdentityVerificationStatus.CANCELED.value,
}
EVENT_STATUS_MAP = {
    "created": IdentityVerificationStatus.PENDING.value,
    "requires_input": IdentityVerificationStatus.REQUIRES_ACTION.value,
    "processing": IdentityVerificationStatus.PROCESSING.value,
    "verified": IdentityVerificationStatus.VERIFIED.value,
    "canceled": IdentityVerificationStatus.CANCELED.value,
}


@dataclass(frozen=True)
class IdentitySession:
    session_id: str
    client_secret: str | None
    url: str | None
    status: str


def is_configured() -> bool:
    return bool(settings.stripe_secret_key)


def _ensure_configured() -> None:
    if not is_configured():
        raise ProviderError(
            code="identity_verification_unavailable",
            message="Identity verification is not configured",
            details={"provider": PROVIDER},
        )


def map_provider_status(status: str | None) -> str | None:
    if status is None:
        return None
    return PROVIDER_STATUS_MAP.get(status)


async def _call_stripe(
    client: httpx.AsyncClient,
    method: str,
    path: str,
    data: dict[str, str] | None = None,
) -> dict[str, Any]:
    url = f"{settings.stripe_api_base_url.rstrip('/')}/{path.lstrip('/')}"
    response = await send_request(
        client,
        method,
        url,
        provider=PROVIDER,
        data=data,
        headers={"Authorization": f"Bearer {settings.stripe_secret_key}"},
    )
    body = decode_body(response)
    if response.status_code >= 400:
        error = body.get("error") if isinstance(body.get("error"), dict) else {}
        logger.warning("Stripe %s %s returned %s", method, path, response.status_code)
        code = "identity_session_not_found" if response.status_code == 404 else "provider_error"
        raise ProviderError(
            code=code,
            message=error.get("message") or "Identity verification request failed",
            details={"status": response.status_code, "provider_code": error.get("code")},
        )
    return body


def _set_identity_status(loan: Loan, new_status: str) -> bool:
    current = loan.stripe_verification_status
    if not verification_status.should_accept(current, new_status):
        logger.debug("Ignoring stale identity status %s for loan %s (current %s)", new_status, loan.id, current)
        return False
    loan.stripe_verification_status = new_status
    return True


async def create_session(
    db: AsyncSession,
    loan_id: UUID,
    *,
    email: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
    return_url: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> IdentitySession:
    _ensure_configured()
    loan = await applications.get_application_loan(db, loan_id)
    ctx = applications.tenant_context_for(loan)
    borrower = loan.borrower
    form = {
        "type": "document",
        "options[document][require_matching_selfie]": "true",
        "metadata[loan_id]": str(loan.id),
        "metadata[org_id]": loan.org_id,
        "metadata[type]": "loan_verification",
        "metadata[first_name]": first_name or borrower.first_name or "",
        "metadata[last_name]": last_name or borrower.last_name or "",
    }
    if email or borrower.email:
        form["provided_details[email]"] = email or borrower.email
    if return_url:
        form["return_url"] = return_url

    async with provider_client(client) as http:
        body = await _call_stripe(http, "POST", "identity/verification_sessions", form)

    session_id = body.get("id")
    if not session_id:
        raise ProviderError(code="provider_error", message="Identity provider returned no session", details={})
    old_status = loan.stripe_verification_status
    loan.stripe_verification_session_id = session_id
    _set_identity_status(loan, IdentityVerificationStatus.PENDING.value)
    db.add(loan)
    record_audit_log(
        db,
        ctx,
        action="loan.identity_session_created",
        resource_type="loan",
        resource_id=str(loan.id),
        old_value={"stripe_verification_status": old_status},
        new_value={
            "stripe_verification_status": loan.stripe_verification_status,
            "stripe_verification_session_id": session_id,
        },
    )
    await db.flush()
    return IdentitySession(
        session_id=session_id,
        client_secret=body.get("client_secret"),
        url=body.get("url"),
        status=loan.stripe_verification_status,
    )


async def _loan_for_session(db: AsyncSession, session_id: str, metadata: dict | None = None) -> Loan | None:
    stmt = select(Loan).where(Loan.stripe_verification_session_id == session_id)
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if loan is not None:
        return loan
    loan_id = (metadata or {}).get("loan_id")
    if not loan_id:
        return None
    try:
        parsed = UUID(str(loan_id))
    except ValueError:
        return None
    return (await db.execute(select(Loan).where(Loan.id == parsed))).scalar_one_or_none()


async def _record_status(db: AsyncSession, loan: Loan, new_status: str, *, action: str) -> bool:
    ctx = applications.tenant_context_for(loan)
    old_status = loan.stripe_verification_status
    if not _set_identity_status(loan, new_status):
        return False
    db.add(loan)
    record_audit_log(
        db,
        ctx,
        action=action,
        resource_type="loan",
        resource_id=str(loan.id),
        old_value={"stripe_verification_status": old_status},
        new_value={"stripe_verification_status": loan.stripe_verification_status},
    )
    await db.flush()
    return True


async def get_status(
    db: AsyncSession,
    session_id: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> tuple[str, Loan | None, bool]:
    """Poll the provider; returns (status, loan, whether the loan changed)."""
    _ensure_configured()
    async with provider_client(client) as http:
        body = await _call_stripe(http, "GET", f"identity/verification_sessions/{session_id}")
    status = map_provider_status(body.get("status")) or IdentityVerificationStatus.PENDING.value
    metadata = body.get("metadata") if isinstance(body.get("metadata"), dict) else {}
    loan = await _loan_for_session(db, session_id, metadata)
    if loan is None:
        return status, None, False
    changed = await _record_status(db, loan, status, action="loan.identity_status_polled")
    return loan.stripe_verification_status, loan, changed


def parse_signature_header(header: str) -> tuple[int | None, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                timestamp = None
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def compute_webhook_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def construct_event(payload: bytes, signature_header: str | None, *, now: float | None = None) -> dict[str, Any]:
    """Verify a ``Stripe-Signature`` header and decode the event body."""
    secret = settings.stripe_webhook_secret
    if not secret:
        raise ProviderError(
            code="identity_verification_unavailable",
            message="Stripe webhooks are not configured",
            details={},
        )
    timestamp, signatures = parse_signature_header(signature_header or "")
    if timestamp is None or not signatures:
        raise ProviderError(code="invalid_signature", message="Missing or malformed Stripe-Signature header")
    expected = compute_webhook_signature(payload, timestamp, secret)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise ProviderError(code="invalid_signature", message="Webhook signature verification failed")
    current = time.time() if now is None else now
    if abs(current - timestamp) > settings.stripe_webhook_tolerance_seconds:
        raise ProviderError(
            code="invalid_signature",
            message="Webhook timestamp outside the tolerance window",
            details={"timestamp": timestamp},
        )
    try:
        event = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise ProviderError(code="invalid_payload", message="Webhook body is not valid JSON") from exc
    if not isinstance(event, dict):
        raise ProviderError(code="invalid_payload", message="Webhook body is not an event object")
    return event


async def apply_webhook_event(db: AsyncSession, event: dict[str, Any]) -> Loan | None:
    event_type = str(event.get("type") or "")
    if not event_type.startswith(EVENT_PREFIX):
        logger.info("Ignoring Stripe event %s", event_type)
        return None
    new_status = EVENT_STATUS_MAP.get(event_type[len(EVENT_PREFIX):])
    session = (event.get("data") or {}).get("object") or {}
    session_id = session.get("id")
    if new_status is None or not session_id:
        logger.info("Ignoring Stripe event %s", event_type)
        return None
    loan = await _loan_for_session(db, session_id, session.get("metadata"))
    if loan is None:
        logger.warning("No loan for Stripe verification session %s", session_id)
        return None
    if not await _record_status(db, loan, new_status, action="loan.identity_verification_webhook"):
        return None
    return loan
