"""Public borrower application routes, addressed by the loan id in the link."""

import asyncio
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.error_mapping import application_http_error
from app.db.session import get_db
from app.schemas.application import (
    ApplicationProgressPayload,
    ApplicationSaveResponse,
    ApplicationSubmitResponse,
    ApplicationView,
    LanguageUpdateRequest,
    SkipVerificationResponse,
)
from app.services import application_stream, applications
from app.services.application_errors import ApplicationError


router = APIRouter(prefix="/apply", tags=["apply"])

KEEP_ALIVE_POLLS = 15


@router.get("/{loan_id}", response_model=ApplicationView, summary="Load an application")
async def get_application(loan_id: UUID, db: AsyncSession = Depends(get_db)) -> ApplicationView:
    try:
        loan = await applications.get_application_loan(db, loan_id)
    except ApplicationError as exc:
        raise application_http_error(exc) from exc
    applications.tenant_context_for(loan)
    return applications.build_view(loan)


@router.post("/{loan_id}/progress", response_model=ApplicationSaveResponse, summary="Save partial answers")
async def save_progress(
    loan_id: UUID,
    payload: ApplicationProgressPayload,
    db: AsyncSession = Depends(get_db),
) -> ApplicationSaveResponse:
    try:
        loan = await applications.save_progress(db, loan_id, payload.snapshot())
    except ApplicationError as exc:
        raise application_http_error(exc) from exc
    await db.commit()
    return ApplicationSaveResponse(loan_id=loan.id, status=loan.status, application_step=loan.application_step)


@router.post("/{loan_id}/submit", response_model=ApplicationSubmitResponse, summary="Submit the application")
async def submit_application(
    loan_id: UUID,
    payload: ApplicationProgressPayload,
    db: AsyncSession = Depends(get_db),
) -> ApplicationSubmitResponse:
    try:
        loan = await applications.submit_application(db, loan_id, payload.snapshot())
    except ApplicationError as exc:
        raise application_http_error(exc) from exc
    await db.commit()
    await application_stream.publish_update(loan.id, application_stream.build_update(status=loan.status))
    return ApplicationSubmitResponse(loan_id=loan.id, status=loan.status, kyc_status=loan.borrower.kyc_status)


@router.post("/{loan_id}/language", response_model=ApplicationView, summary="Change the borrower's language")
async def set_language(
    loan_id: UUID,
    payload: LanguageUpdateRequest,
    db: AsyncSession = Depends(get_db),
) -> ApplicationView:
    try:
        loan = await applications.set_language(db, loan_id, payload.language)
    except ApplicationError as exc:
        raise application_http_error(exc) from exc
    await db.commit()
    return applications.build_view(loan)


@router.post(
    "/{loan_id}/skip-verification",
    response_model=SkipVerificationResponse,
    summary="Mark identity verification as passed (test deployments only)",
)
async def skip_verification(loan_id: UUID, db: AsyncSession = Depends(get_db)) -> SkipVerificationResponse:
    try:
        loan = await applications.skip_identity_verification(db, loan_id)
    except ApplicationError as exc:
        raise application_http_error(exc) from exc
    await db.commit()
    await application_stream.publish_update(
        loan.id,
        application_stream.build_update(identity_status=loan.stripe_verification_status),
    )
    return SkipVerificationResponse(loan_id=loan.id, stripe_verification_status=loan.stripe_verification_status)


@router.get("/{loan_id}/events", summary="Stream verification updates (SSE)")
async def stream_application_events(loan_id: UUID, request: Request, db: AsyncSession = Depends(get_db)):
    try:
        loan = await applications.get_application_loan(db, loan_id)
    except ApplicationError as exc:
        raise application_http_error(exc) from exc
    channel = application_stream.channel_for_loan(loan.id)
    pubsub = await application_stream.subscribe(channel)

    async def event_generator():
        idle = 0
        try:
            yield ": connected\n\n"
            async for update in application_stream.iter_updates(pubsub):
                if await request.is_disconnected():
                    break
                if update:
                    idle = 0
                    yield f"data: {application_stream.encode_update(update)}\n\n"
                    continue
                idle += 1
                if idle >= KEEP_ALIVE_POLLS:
                    idle = 0
                    yield ": keep-alive\n\n"
                await asyncio.sleep(0)
        finally:
            await application_stream.unsubscribe(pubsub, channel)

    headers = {"Cache-Control": "no-cache", "Connection": "keep-alive"}
    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=headers)
