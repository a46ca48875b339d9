from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.error_mapping import application_http_error, provider_http_error
from app.core.limiter import PHONE_SEND_LIMIT, client_and_loan_key, limiter
from app.db.session import get_db
from app.schemas.application import (
    IdentitySessionRequest,
    IdentitySessionResponse,
    IdentityStatusResponse,
    PhoneSendRequest,
    PhoneSendResponse,
    PhoneVerifyRequest,
    PhoneVerifyResponse,
)
from app.services import application_stream, identity_verification, phone_verification
from app.services.application_errors import ApplicationError
from app.services.providers import ProviderError


router = APIRouter(tags=["verifications"])


@router.post("/apply/{loan_id}/phone/send", response_model=PhoneSendResponse, summary="Text a verification code")
@limiter.limit(PHONE_SEND_LIMIT, key_func=client_and_loan_key)
async def send_phone_code(
    request: Request,
    loan_id: UUID,
    payload: PhoneSendRequest,
    db: AsyncSession = Depends(get_db),
) -> PhoneSendResponse:
    try:
        loan, phone_number = await phone_verification.send_verification(db, loan_id, payload.phone_number)
    except ApplicationError as exc:
        raise application_http_error(exc) from exc
    except ProviderError as exc:
        raise provider_http_error(exc) from exc
    await db.commit()
    await application_stream.publish_update(
        loan.id,
        application_stream.build_update(phone_status=loan.phone_verification_status),
    )
    return PhoneSendResponse(success=True, status=loan.phone_verification_status, phone_number=phone_number)


@router.post("/apply/{loan_id}/phone/verify", response_model=PhoneVerifyResponse, summary="Check a verification code")
async def verify_phone_code(
    loan_id: UUID,
    payload: PhoneVerifyRequest,
    db: AsyncSession = Depends(get_db),
) -> PhoneVerifyResponse:
    try:
        loan, success = await phone_verification.verify_code(db, loan_id, payload.phone_number, payload.code)
    except ApplicationError as exc:
        raise application_http_error(exc) from exc
    except ProviderError as exc:
        raise provider_http_error(exc) from exc
    await db.commit()
    if success:
        await application_stream.publish_update(
            loan.id,
            application_stream.build_update(
                phone_status=loan.phone_verification_status,
                verified_phone_number=loan.verified_phone_number,
            ),
        )
    return PhoneVerifyResponse(
        success=success,
        status=loan.phone_verification_status,
        verified_phone_number=loan.verified_phone_number,
    )


@router.post(
    "/apply/{loan_id}/identity/session",
    response_model=IdentitySessionResponse,
    summary="Start a document and selfie check",
)
async def create_identity_session(
    loan_id: UUID,
    payload: IdentitySessionRequest | None = None,
    db: AsyncSession = Depends(get_db),
) -> IdentitySessionResponse:
    payload = payload or IdentitySessionRequest()
    try:
        session = await identity_verification.create_session(
            db,
            loan_id,
            email=payload.email,
            first_name=payload.first_name,
            last_name=payload.last_name,
            return_url=payload.return_url,
        )
    except ApplicationError as exc:
        raise application_http_error(exc) from exc
    except ProviderError as exc:
        raise provider_http_error(exc) from exc
    await db.commit()
    await application_stream.publish_update(loan_id, application_stream.build_update(identity_status=session.status))
    return IdentitySessionResponse(
        session_id=session.session_id,
        client_secret=session.client_secret,
        url=session.url,
        status=session.status,
    )


@router.get(
    "/verifications/identity/{session_id}",
    response_model=IdentityStatusResponse,
    summary="Poll an identity verification session",
)
async def identity_status(session_id: str, db: AsyncSession = Depends(get_db)) -> IdentityStatusResponse:
    try:
        status, loan, changed = await identity_verification.get_status(db, session_id)
    except ProviderError as exc:
        raise provider_http_error(exc) from exc
    if changed:
        await db.commit()
        await application_stream.publish_update(loan.id, application_stream.build_update(identity_status=status))
    return IdentityStatusResponse(session_id=session_id, status=status, loan_id=loan.id if loan else None)
