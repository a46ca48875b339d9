import asyncio
from datetime import date

import pytest

from app.services.application_errors import (
    ApplicationAlreadyCompleted,
    FieldValidationError,
    LoanRecordInvalid,
    TransientError,
)
from app.services.application_progress import ApplicationProgress, ApplicationStep
from app.services.application_wizard import ApplicationRecord, ApplicationWizard


LOAN_ID = "3f1c2a8e-1111-4a4a-9c9c-000000000001"
TODAY = date(2024, 6, 1)


class FakeStore:
    def __init__(self, record=None, load_error=None, submit_error=None, save_error=None):
        self.record = record or ApplicationRecord(loan_id=LOAN_ID, application_step=1, application_status="application_sent")
        self.load_error = load_error
        self.submit_error = submit_error
        self.save_error = save_error
        self.saved: list[dict] = []
        self.submitted: list[dict] = []

    async def load(self, loan_id):
        if self.load_error:
            raise self.load_error
        return self.record

    async def save_progress(self, loan_id, snapshot):
        if self.save_error:
            raise self.save_error
        self.saved.append(snapshot)

    async def submit(self, loan_id, snapshot):
        self.submitted.append(snapshot)
        if self.submit_error:
            raise self.submit_error


class FakeCache:
    def __init__(self, blob=None, fail=False):
        self.blobs = {LOAN_ID: blob} if blob else {}
        self.fail = fail
        self.cleared = False

    async def read(self, loan_id):
        if self.fail:
            raise ConnectionError("cache down")
        return self.blobs.get(loan_id)

    async def write(self, loan_id, blob):
        if self.fail:
            raise ConnectionError("cache down")
        self.blobs[loan_id] = blob

    async def clear(self, loan_id):
        self.cleared = True
        self.blobs.pop(loan_id, None)


class FakeSubscription:
    def __init__(self, payloads):
        self.payloads = payloads

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for payload in self.payloads:
            yield payload


def _wizard(store=None, cache=None) -> ApplicationWizard:
    return ApplicationWizard(
        LOAN_ID,
        store or FakeStore(),
        cache or FakeCache(),
        debounce_seconds=0.01,
        today=TODAY,
    )


def _review_record(**overrides) -> ApplicationRecord:
    values = {
        "loan_id": LOAN_ID,
        "application_step": 9,
        "application_status": "application_in_progress",
        "phone_status": "verified",
        "verified_phone_number": "+15125550100",
        "identity_status": "verified",
        "identity_session_id": "vs_123",
        "snapshot": {
            "dateOfBirth": "1990-04-12",
            "ssn": "123-45-6789",
            "address": "1 Main St",
            "city": "Austin",
            "state": "TX",
            "zipCode": "78701",
            "employmentStatus": "retired",
            "annualIncome": "30000",
            "consentToContact": True,
            "consentToText": True,
        },
    }
    values.update(overrides)
    return ApplicationRecord(**values)


async def _fill_personal(wizard: ApplicationWizard) -> None:
    await wizard.edit(
        "personal",
        date_of_birth="1990-04-12",
        ssn="123-45-6789",
        address="1 Main St",
        city="Austin",
        state="TX",
        zip_code="78701",
    )


@pytest.mark.asyncio
async def test_load_without_cache_uses_remote_step_and_phone() -> None:
    store = FakeStore(
        record=ApplicationRecord(
            loan_id=LOAN_ID,
            application_step=4,
            application_status="application_in_progress",
            phone_status="verified",
            verified_phone_number="+15125550100",
            snapshot={"city": "Austin"},
        )
    )
    wizard = _wizard(store=store)

    progress = await wizard.load()

    assert progress.current_step == ApplicationStep.PERSONAL_INFO
    assert progress.phone.status == "verified"
    assert progress.phone.phone_number == "+15125550100"
    assert progress.personal.city == "Austin"


@pytest.mark.asyncio
async def test_load_defaults_to_language_select() -> None:
    store = FakeStore(record=ApplicationRecord(loan_id=LOAN_ID, application_step=None))

    progress = await _wizard(store=store).load()

    assert progress.current_step == ApplicationStep.LANGUAGE_SELECT


@pytest.mark.asyncio
async def test_load_prefers_cache_but_takes_verification_from_remote() -> None:
    cached = ApplicationProgress(current_step=ApplicationStep.EMPLOYMENT)
    cached.personal.city = "Dallas"
    cache = FakeCache(blob=cached.model_dump(mode="json"))
    store = FakeStore(
        record=ApplicationRecord(
            loan_id=LOAN_ID,
            application_step=3,
            phone_status="verified",
            verified_phone_number="+15125550100",
            identity_status="processing",
        )
    )
    wizard = _wizard(store=store, cache=cache)

    progress = await wizard.load()

    assert progress.current_step == ApplicationStep.EMPLOYMENT
    assert progress.personal.city == "Dallas"
    assert progress.phone.status == "verified"
    assert progress.identity.status == "processing"


@pytest.mark.asyncio
async def test_load_failure_moves_to_error_step() -> None:
    wizard = _wizard(store=FakeStore(load_error=TransientError("Service unavailable")))

    progress = await wizard.load()

    assert progress.current_step == ApplicationStep.ERROR
    assert progress.error_message == "Service unavailable"


@pytest.mark.asyncio
async def test_completed_application_resumes_at_submitted() -> None:
    cache = FakeCache(blob=ApplicationProgress(current_step=ApplicationStep.REVIEW).model_dump(mode="json"))
    wizard = _wizard(store=FakeStore(load_error=ApplicationAlreadyCompleted()), cache=cache)

    progress = await wizard.load()

    assert progress.current_step == ApplicationStep.SUBMITTED
    assert cache.cleared


@pytest.mark.asyncio
async def test_next_blocks_on_invalid_personal_info() -> None:
    store = FakeStore(record=ApplicationRecord(loan_id=LOAN_ID, application_step=4))
    wizard = _wizard(store=store)
    await wizard.load()
    await wizard.edit("personal", address="1 Main St")

    errors = await wizard.next()

    assert errors
    assert "dateOfBirth" in errors
    assert wizard.step == ApplicationStep.PERSONAL_INFO
    await wizard.close()


@pytest.mark.asyncio
async def test_next_advances_by_one_and_saves_immediately() -> None:
    store = FakeStore(record=ApplicationRecord(loan_id=LOAN_ID, application_step=4))
    cache = FakeCache()
    wizard = _wizard(store=store, cache=cache)
    await wizard.load()
    await _fill_personal(wizard)

    errors = await wizard.next()

    assert errors == {}
    assert wizard.step == ApplicationStep.EMPLOYMENT
    assert store.saved[-1]["applicationStep"] == 5
    assert store.saved[-1]["zipCode"] == "78701"
    assert cache.blobs[LOAN_ID]["current_step"] == 5
    await wizard.close()


@pytest.mark.asyncio
async def test_phone_gate_blocks_until_verified() -> None:
    store = FakeStore(record=ApplicationRecord(loan_id=LOAN_ID, application_step=3))
    wizard = _wizard(store=store)
    await wizard.load()

    assert await wizard.next() == {"phoneVerificationStatus": "Verify your phone number to continue"}

    await wizard.handle_push({"phoneVerificationStatus": "verified", "verifiedPhoneNumber": "+15125550100"})
    assert await wizard.next() == {}
    assert wizard.step == ApplicationStep.PERSONAL_INFO


@pytest.mark.asyncio
async def test_prev_never_goes_below_language_select() -> None:
    wizard = _wizard()
    await wizard.load()

    await wizard.prev()
    assert wizard.step == ApplicationStep.LANGUAGE_SELECT

    await wizard.next()
    await wizard.edit("language", language="es")
    await wizard.prev()
    assert wizard.step == ApplicationStep.LANGUAGE_SELECT
    assert wizard.progress.language == "es"
    await wizard.close()


@pytest.mark.asyncio
async def test_edits_are_debounced_into_one_remote_save() -> None:
    store = FakeStore(record=ApplicationRecord(loan_id=LOAN_ID, application_step=4))
    cache = FakeCache()
    wizard = _wizard(store=store, cache=cache)
    await wizard.load()

    await wizard.edit("personal", city="A")
    await wizard.edit("personal", city="Au")
    await wizard.edit("personal", city="Austin")
    assert cache.blobs[LOAN_ID]["personal"]["city"] == "Austin"
    await wizard.flush()

    assert len(store.saved) == 1
    assert store.saved[0]["city"] == "Austin"


@pytest.mark.asyncio
async def test_persistence_failures_do_not_block_transitions() -> None:
    store = FakeStore(save_error=TransientError("offline"))
    wizard = _wizard(store=store, cache=FakeCache(fail=True))
    await wizard.load()

    assert await wizard.next() == {}
    assert wizard.step == ApplicationStep.WELCOME


@pytest.mark.asyncio
async def test_submit_success_clears_cache() -> None:
    cache = FakeCache()
    store = FakeStore(record=_review_record())
    wizard = _wizard(store=store, cache=cache)
    await wizard.load()

    outcome = await wizard.submit()

    assert outcome.success
    assert wizard.step == ApplicationStep.SUBMITTED
    assert cache.cleared
    assert len(store.submitted) == 1


@pytest.mark.asyncio
async def test_submit_already_completed_counts_as_success() -> None:
    wizard = _wizard(store=FakeStore(record=_review_record(), submit_error=ApplicationAlreadyCompleted()))
    await wizard.load()

    outcome = await wizard.submit()

    assert outcome.success
    assert wizard.step == ApplicationStep.SUBMITTED


@pytest.mark.asyncio
async def test_submit_invalid_loan_resets_everything() -> None:
    cache = FakeCache()
    wizard = _wizard(store=FakeStore(record=_review_record(), submit_error=LoanRecordInvalid()), cache=cache)
    await wizard.load()
    await _fill_personal(wizard)

    outcome = await wizard.submit()

    assert not outcome.success
    assert wizard.step == ApplicationStep.LANGUAGE_SELECT
    assert wizard.progress.personal.city is None
    assert cache.cleared


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [TransientError("Network hiccup"), FieldValidationError("zipCode", "ZIP code must be 5 or 9 digits")],
)
async def test_submit_retryable_errors_stay_on_review(error) -> None:
    wizard = _wizard(store=FakeStore(record=_review_record(), submit_error=error))
    await wizard.load()

    outcome = await wizard.submit()

    assert not outcome.success
    assert outcome.retryable
    assert outcome.message == error.message
    assert wizard.step == ApplicationStep.REVIEW
    assert wizard.progress.error_message == error.message


@pytest.mark.asyncio
async def test_submit_is_reentrancy_guarded() -> None:
    release = asyncio.Event()

    class SlowStore(FakeStore):
        async def submit(self, loan_id, snapshot):
            self.submitted.append(snapshot)
            await release.wait()

    store = SlowStore(record=_review_record())
    wizard = _wizard(store=store)
    await wizard.load()

    first = asyncio.create_task(wizard.submit())
    await asyncio.sleep(0)
    second = await wizard.submit()
    release.set()
    first_outcome = await first

    assert not second.success
    assert first_outcome.success
    assert len(store.submitted) == 1


@pytest.mark.asyncio
async def test_submit_before_review_never_skips_gates() -> None:
    store = FakeStore(submit_error=TransientError("net"))
    wizard = _wizard(store=store)
    await wizard.load()

    outcome = await wizard.submit()

    assert not outcome.success
    assert wizard.step == ApplicationStep.LANGUAGE_SELECT
    assert wizard.progress.phone.status == "not_started"
    assert store.submitted == []


@pytest.mark.asyncio
async def test_submit_checks_every_gate_before_calling_store() -> None:
    store = FakeStore(record=_review_record(identity_status="processing", snapshot={"city": "Austin"}))
    wizard = _wizard(store=store)
    await wizard.load()

    outcome = await wizard.submit()

    assert not outcome.success
    assert not outcome.retryable
    assert outcome.errors["stripeVerificationStatus"] == "Complete identity verification to continue"
    assert outcome.errors["dateOfBirth"] == "This field is required"
    assert outcome.errors["consentToContact"] == "Consent to contact is required"
    assert wizard.step == ApplicationStep.REVIEW
    assert wizard.progress.error_message == outcome.message
    assert store.submitted == []


@pytest.mark.asyncio
async def test_unexpected_save_errors_are_swallowed() -> None:
    store = FakeStore(save_error=RuntimeError("boom"))
    wizard = _wizard(store=store)
    await wizard.load()

    assert await wizard.next() == {}
    assert wizard.step == ApplicationStep.WELCOME

    await wizard.edit("language", language="es")
    await wizard.flush()
    assert wizard._save_task.exception() is None
    await wizard.close()


@pytest.mark.asyncio
async def test_nothing_is_persisted_after_submission() -> None:
    store = FakeStore(record=_review_record())
    cache = FakeCache()
    wizard = _wizard(store=store, cache=cache)
    await wizard.load()
    assert (await wizard.submit()).success
    assert cache.blobs == {}

    await wizard.edit("personal", city="Dallas")
    await wizard.flush()

    assert wizard.progress.personal.city == "Austin"
    assert cache.blobs == {}
    assert store.saved == []


@pytest.mark.asyncio
async def test_completed_application_ignores_late_verification_updates() -> None:
    cache = FakeCache()
    wizard = _wizard(store=FakeStore(load_error=ApplicationAlreadyCompleted()), cache=cache)
    await wizard.load()

    assert await wizard.handle_poll("identity", "processing")
    assert await wizard.handle_push({"phoneVerificationStatus": "sent"})

    assert wizard.step == ApplicationStep.SUBMITTED
    assert cache.blobs == {}


@pytest.mark.asyncio
async def test_attached_subscription_applies_pushes_in_order_safely() -> None:
    wizard = _wizard()
    await wizard.load()
    subscription = FakeSubscription(
        [
            {"stripeVerificationStatus": "verified"},
            {"stripeVerificationStatus": "processing"},
            {"phoneVerificationStatus": "sent"},
        ]
    )

    task = wizard.attach(subscription)
    await task

    assert wizard.progress.identity.status == "verified"
    assert wizard.progress.phone.status == "sent"
    await wizard.close()


@pytest.mark.asyncio
async def test_close_cancels_pending_save() -> None:
    store = FakeStore()
    wizard = ApplicationWizard(LOAN_ID, store, FakeCache(), debounce_seconds=10)
    await wizard.load()
    await wizard.edit("personal", city="Austin")

    await wizard.close()

    assert store.saved == []
