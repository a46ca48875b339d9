from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, AsyncIterator, Protocol

from pydantic import ValidationError

from app.core.settings import settings
from app.services.application_errors import (
    ApplicationAlreadyCompleted,
    ApplicationError,
    FieldValidationError,
    LoanRecordInvalid,
    TransientError,
)
from app.services.application_progress import (
    COMPLETED_LOAN_STATUSES,
    FIRST_STEP,
    LAST_EDITABLE_STEP,
    ApplicationProgress,
    ApplicationStep,
    IdentityVerificationState,
    LocalEdit,
    PhoneVerificationState,
    PollResult,
    ProgressEvent,
    RemotePush,
    ResetAll,
    StepChange,
    coerce_step,
    reduce,
    validate_step,
    validate_submission,
)

logger = logging.getLogger(__name__)


@dataclass
class ApplicationRecord:
    """The remote view of an application, as returned by ``GET /apply/{loan_id}``."""

    loan_id: str
    application_step: int | None = None
    application_status: str | None = None
    language: str | None = None
    phone_status: str | None = None
    verified_phone_number: str | None = None
    identity_status: str | None = None
    identity_session_id: str | None = None
    snapshot: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, loan_id: str, payload: dict[str, Any]) -> "ApplicationRecord":
        loan = payload.get("loan") or {}
        borrower = payload.get("borrower") or {}
        return cls(
            loan_id=str(loan_id),
            application_step=loan.get("applicationStep"),
            application_status=loan.get("status"),
            language=borrower.get("preferredLanguage"),
            phone_status=loan.get("phoneVerificationStatus"),
            verified_phone_number=loan.get("verifiedPhoneNumber"),
            identity_status=loan.get("stripeVerificationStatus"),
            identity_session_id=loan.get("stripeVerificationSessionId"),
            snapshot=dict(payload.get("progress") or {}),
        )


class ProgressStore(Protocol):
    async def load(self, loan_id: str) -> ApplicationRecord: ...

    async def save_progress(self, loan_id: str, snapshot: dict[str, Any]) -> None: ...

    async def submit(self, loan_id: str, snapshot: dict[str, Any]) -> None: ...


class ProgressCache(Protocol):
    async def read(self, loan_id: str) -> dict[str, Any] | None: ...

    async def write(self, loan_id: str, blob: dict[str, Any]) -> None: ...

    async def clear(self, loan_id: str) -> None: ...


class PushSubscription(Protocol):
    def __aiter__(self) -> AsyncIterator[dict[str, Any]]: ...


@dataclass(frozen=True)
class SubmitOutcome:
    success: bool
    message: str | None = None
    retryable: bool = False
    errors: dict[str, str] = field(default_factory=dict)


class ApplicationWizard:
    """Drives one borrower through the application steps for a single loan.

    Remote and cache persistence are best effort: failures are logged and the
    borrower keeps moving. Only ``submit`` reports failures back.
    """

    def __init__(
        self,
        loan_id: str,
        store: ProgressStore,
        cache: ProgressCache,
        *,
        debounce_seconds: float | None = None,
        today: date | None = None,
    ) -> None:
        self.loan_id = str(loan_id)
        self.store = store
        self.cache = cache
        self.debounce_seconds = (
            settings.progress_save_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self._today = today
        self.progress = ApplicationProgress(current_step=ApplicationStep.LOADING)
        self._save_task: asyncio.Task | None = None
        self._push_task: asyncio.Task | None = None
        self._submitting = False

    @property
    def step(self) -> ApplicationStep:
        return self.progress.current_step

    @property
    def is_submitting(self) -> bool:
        return self._submitting

    # -- persistence helpers -------------------------------------------------

    async def _read_cache(self) -> ApplicationProgress | None:
        try:
            blob = await self.cache.read(self.loan_id)
        except Exception as exc:
            logger.warning("Progress cache read failed for loan %s: %s", self.loan_id, exc)
            return None
        if not blob:
            return None
        try:
            return ApplicationProgress.model_validate(blob)
        except ValidationError as exc:
            logger.warning("Discarding unreadable cached progress for loan %s: %s", self.loan_id, exc)
            return None

    async def _write_cache(self) -> None:
        try:
            await self.cache.write(self.loan_id, self.progress.model_dump(mode="json"))
        except Exception as exc:
            logger.warning("Progress cache write failed for loan %s: %s", self.loan_id, exc)

    async def _clear_cache(self) -> None:
        try:
            await self.cache.clear(self.loan_id)
        except Exception as exc:
            logger.warning("Progress cache clear failed for loan %s: %s", self.loan_id, exc)

    async def _save_remote(self) -> None:
        try:
            await self.store.save_progress(self.loan_id, self.progress.to_snapshot())
        except ApplicationError as exc:
            logger.warning("Progress save failed for loan %s: %s (%s)", self.loan_id, exc.message, exc.code)
        except Exception as exc:
            logger.warning("Progress save failed for loan %s: %s", self.loan_id, exc)

    async def _debounced_save(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        await self._save_remote()

    def _cancel_pending_save(self) -> None:
        if self._save_task is not None and not self._save_task.done():
            self._save_task.cancel()
        self._save_task = None

    def _schedule_save(self) -> None:
        self._cancel_pending_save()
        self._save_task = asyncio.create_task(self._debounced_save())

    async def _persist_now(self) -> None:
        self._cancel_pending_save()
        await self._write_cache()
        await self._save_remote()

    async def flush(self) -> None:
        """Wait for a pending debounced save, if any."""
        task = self._save_task
        if task is not None and not task.done():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _dispatch(self, event: ProgressEvent) -> bool:
        self.progress, changed = reduce(self.progress, event)
        return changed

    # -- lifecycle -----------------------------------------------------------

    async def load(self) -> ApplicationProgress:
        try:
            record = await self.store.load(self.loan_id)
        except ApplicationAlreadyCompleted:
            self.progress = ApplicationProgress(current_step=ApplicationStep.SUBMITTED)
            await self._clear_cache()
            return self.progress
        except ApplicationError as exc:
            logger.warning("Application load failed for loan %s: %s", self.loan_id, exc.message)
            self.progress = ApplicationProgress(current_step=ApplicationStep.ERROR, error_message=exc.message)
            return self.progress

        if record.application_status in COMPLETED_LOAN_STATUSES:
            self.progress = ApplicationProgress(
                current_step=ApplicationStep.SUBMITTED,
                application_status=record.application_status,
            )
            await self._clear_cache()
            return self.progress

        cached = await self._read_cache()
        if cached is not None:
            # Cached answers win; verification outcomes always come from the server.
            self.progress = cached.model_copy(
                update={
                    "phone": PhoneVerificationState(
                        status=record.phone_status or cached.phone.status,
                        phone_number=record.verified_phone_number,
                    ),
                    "identity": IdentityVerificationState(
                        status=record.identity_status or cached.identity.status,
                        session_id=record.identity_session_id or cached.identity.session_id,
                    ),
                    "application_status": record.application_status,
                    "error_message": None,
                }
            )
            if self.progress.current_step < FIRST_STEP:
                self.progress = self.progress.model_copy(update={"current_step": FIRST_STEP})
        else:
            snapshot = dict(record.snapshot)
            if record.identity_session_id:
                snapshot.setdefault("stripeVerificationSessionId", record.identity_session_id)
            self.progress = ApplicationProgress.from_snapshot(
                snapshot,
                language=record.language,
                phone_status=record.phone_status,
                verified_phone_number=record.verified_phone_number,
                identity_status=record.identity_status,
                application_status=record.application_status,
            ).model_copy(update={"current_step": coerce_step(record.application_step)})
        await self._write_cache()
        return self.progress

    async def edit(self, section: str, **values: Any) -> ApplicationProgress:
        if self.step == ApplicationStep.SUBMITTED:
            return self.progress
        if self._dispatch(LocalEdit(section=section, values=values)):
            await self._write_cache()
            self._schedule_save()
        return self.progress

    async def next(self) -> dict[str, str]:
        current = self.step
        if current < FIRST_STEP or current >= LAST_EDITABLE_STEP:
            return {}
        errors = validate_step(self.progress, current, today=self._today)
        if errors:
            return errors
        self._dispatch(StepChange(ApplicationStep(current + 1)))
        await self._persist_now()
        return {}

    async def prev(self) -> ApplicationProgress:
        current = self.step
        if current <= FIRST_STEP or current > LAST_EDITABLE_STEP:
            return self.progress
        self._dispatch(StepChange(ApplicationStep(current - 1)))
        await self._persist_now()
        return self.progress

    async def submit(self) -> SubmitOutcome:
        if self._submitting:
            return SubmitOutcome(success=False, message="Submission already in progress")
        if self.step != ApplicationStep.REVIEW:
            return SubmitOutcome(success=False, message="Finish the remaining steps before submitting")
        errors = validate_submission(self.progress, today=self._today)
        if errors:
            message = "Some answers need attention before submitting"
            self._stay_on_review(message)
            return SubmitOutcome(success=False, message=message, errors=errors)
        self._submitting = True
        try:
            self._cancel_pending_save()
            try:
                await self.store.submit(self.loan_id, self.progress.to_snapshot())
            except ApplicationAlreadyCompleted:
                logger.info("Loan %s was already submitted; treating as success", self.loan_id)
            except LoanRecordInvalid as exc:
                logger.warning("Loan %s is no longer valid, resetting application: %s", self.loan_id, exc.code)
                self._dispatch(ResetAll())
                await self._clear_cache()
                return SubmitOutcome(success=False, message=exc.message)
            except FieldValidationError as exc:
                self._stay_on_review(exc.message)
                errors = {exc.field: exc.message} if exc.field else {}
                return SubmitOutcome(success=False, message=exc.message, retryable=True, errors=errors)
            except TransientError as exc:
                self._stay_on_review(exc.message)
                return SubmitOutcome(success=False, message=exc.message, retryable=True)
            self._dispatch(StepChange(ApplicationStep.SUBMITTED))
            await self._clear_cache()
            return SubmitOutcome(success=True)
        finally:
            self._submitting = False

    def _stay_on_review(self, message: str) -> None:
        self._dispatch(StepChange(ApplicationStep.REVIEW))
        self.progress = self.progress.model_copy(update={"error_message": message})

    # -- push / poll ---------------------------------------------------------

    async def handle_push(self, event: RemotePush | dict[str, Any]) -> bool:
        if isinstance(event, dict):
            event = RemotePush.from_payload(event)
        already_submitted = self.step == ApplicationStep.SUBMITTED
        changed = self._dispatch(event)
        if changed and not already_submitted:
            if self.step == ApplicationStep.SUBMITTED:
                self._cancel_pending_save()
                await self._clear_cache()
            else:
                await self._write_cache()
        return changed

    async def handle_poll(self, kind: str, status: str) -> bool:
        changed = self._dispatch(PollResult(kind=kind, status=status))
        if changed and self.step != ApplicationStep.SUBMITTED:
            await self._write_cache()
        return changed

    async def _consume(self, subscription: PushSubscription) -> None:
        try:
            async for payload in subscription:
                try:
                    await self.handle_push(payload)
                except ValueError as exc:
                    logger.warning("Ignoring malformed push for loan %s: %s", self.loan_id, exc)
        except ApplicationError as exc:
            # Polling still works without the push channel.
            logger.warning("Push subscription for loan %s ended: %s", self.loan_id, exc.message)

    def attach(self, subscription: PushSubscription) -> asyncio.Task:
        if self._push_task is not None and not self._push_task.done():
            self._push_task.cancel()
        self._push_task = asyncio.create_task(self._consume(subscription))
        return self._push_task

    async def close(self) -> None:
        tasks = [task for task in (self._push_task, self._save_task) if task is not None]
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._push_task = None
        self._save_task = None


__all__ = [
    "ApplicationRecord",
    "ApplicationWizard",
    "ProgressCache",
    "ProgressStore",
    "PushSubscription",
    "SubmitOutcome",
]
