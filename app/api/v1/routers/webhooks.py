"""Provider callbacks. Both verify the provider's signature before touching a loan."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.error_mapping import provider_http_error
from app.core.limiter import limiter
from app.core.settings import settings
from app.db.session import get_db
from app.services import application_stream, identity_verification, phone_verification
from app.services.providers import ProviderError


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/twilio", summary="Twilio Verify status events")
@limiter.exempt
async def twilio_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    form = await request.form()
    params = {key: str(value) for key, value in form.items()}
    url = settings.twilio_webhook_url or str(request.url)
    if not phone_verification.is_valid_webhook_signature(url, params, request.headers.get("X-Twilio-Signature")):
        logger.warning("Rejected Twilio webhook with a bad signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "invalid_signature", "message": "Invalid Twilio signature", "details": {}},
        )
    loan = await phone_verification.apply_webhook_event(db, params)
    if loan is None:
        return {"received": True, "updated": False}
    await db.commit()
    await application_stream.publish_update(
        loan.id,
        application_stream.build_update(
            phone_status=loan.phone_verification_status,
            verified_phone_number=loan.verified_phone_number,
        ),
    )
    return {"received": True, "updated": True}


@router.post("/stripe", summary="Stripe Identity events")
@limiter.exempt
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    payload = await request.body()
    try:
        event = identity_verification.construct_event(payload, request.headers.get("Stripe-Signature"))
    except ProviderError as exc:
        logger.warning("Rejected Stripe webhook: %s", exc.code)
        if exc.code in {"invalid_signature", "invalid_payload"}:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": exc.code, "message": exc.message, "details": exc.details},
            ) from exc
        raise provider_http_error(exc) from exc
    loan = await identity_verification.apply_webhook_event(db, event)
    if loan is None:
        return {"received": True, "updated": False}
    await db.commit()
    await application_stream.publish_update(
        loan.id,
        application_stream.build_update(identity_status=loan.stripe_verification_status),
    )
    return {"received": True, "updated": True}
