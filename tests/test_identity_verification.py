import json
import time
from urllib.parse import parse_qs

import httpx
import pytest

from app.core.settings import settings
from app.models.loan import Loan
from app.services import identity_verification
from app.services.providers import ProviderError

from tests.conftest import FakeResult, entity_handler, make_loan


WEBHOOK_SECRET = "whsec_test"
NOW = 1_767_600_000


@pytest.fixture(autouse=True)
def _stripe_settings(monkeypatch):
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")
    monkeypatch.setattr(settings, "stripe_webhook_secret", WEBHOOK_SECRET)


def _mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _loan_in_db(fake_db, **overrides) -> Loan:
    loan = make_loan(**overrides)
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    return loan


def _signed(event: dict, *, timestamp: int = NOW, secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
    payload = json.dumps(event).encode("utf-8")
    signature = identity_verification.compute_webhook_signature(payload, timestamp, secret)
    return payload, f"t={timestamp},v1={signature}"


def _event(kind: str, session_id: str = "vs_123", metadata: dict | None = None) -> dict:
    return {
        "id": "evt_1",
        "type": f"identity.verification_session.{kind}",
        "data": {"object": {"id": session_id, "metadata": metadata or {}}},
    }


@pytest.mark.asyncio
async def test_create_session_sends_document_and_selfie_options(fake_db) -> None:
    loan = _loan_in_db(fake_db)
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"id": "vs_123", "client_secret": "vs_123_secret", "url": "https://verify.stripe.com/s/1"},
        )

    async with _mock_client(handler) as client:
        session = await identity_verification.create_session(
            fake_db,
            loan.id,
            return_url="https://apply.example.com/done",
            client=client,
        )

    assert session.session_id == "vs_123"
    assert session.status == "pending"
    assert loan.stripe_verification_session_id == "vs_123"
    request = seen[0]
    assert request.headers["Authorization"] == "Bearer sk_test_123"
    form = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
    assert form["type"] == "document"
    assert form["options[document][require_matching_selfie]"] == "true"
    assert form["metadata[loan_id]"] == str(loan.id)
    assert form["metadata[first_name]"] == "Jane"
    assert form["provided_details[email]"] == "jane@example.com"
    assert form["return_url"] == "https://apply.example.com/done"


@pytest.mark.asyncio
async def test_create_session_provider_error(fake_db) -> None:
    loan = _loan_in_db(fake_db)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"message": "Bad request", "code": "parameter_invalid"}})

    async with _mock_client(handler) as client:
        with pytest.raises(ProviderError) as exc:
            await identity_verification.create_session(fake_db, loan.id, client=client)

    assert exc.value.code == "provider_error"
    assert exc.value.details["provider_code"] == "parameter_invalid"
    assert loan.stripe_verification_session_id is None


@pytest.mark.asyncio
async def test_get_status_maps_and_records(fake_db) -> None:
    loan = _loan_in_db(fake_db, stripe_verification_status="pending", stripe_verification_session_id="vs_123")

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path.endswith("/identity/verification_sessions/vs_123")
        return httpx.Response(200, json={"id": "vs_123", "status": "requires_input", "metadata": {}})

    async with _mock_client(handler) as client:
        status, found, changed = await identity_verification.get_status(fake_db, "vs_123", client=client)

    assert status == "requires_action"
    assert found is loan
    assert changed is True


@pytest.mark.asyncio
async def test_get_status_never_downgrades_verified(fake_db) -> None:
    _loan_in_db(fake_db, stripe_verification_status="verified", stripe_verification_session_id="vs_123")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "vs_123", "status": "processing"})

    async with _mock_client(handler) as client:
        status, _, changed = await identity_verification.get_status(fake_db, "vs_123", client=client)

    assert status == "verified"
    assert changed is False


@pytest.mark.asyncio
async def test_get_status_unknown_session(fake_db) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": {"message": "No such verification session"}})

    async with _mock_client(handler) as client:
        with pytest.raises(ProviderError) as exc:
            await identity_verification.get_status(fake_db, "vs_missing", client=client)

    assert exc.value.code == "identity_session_not_found"


def test_construct_event_accepts_valid_signature() -> None:
    payload, header = _signed(_event("verified"))
    event = identity_verification.construct_event(payload, header, now=NOW + 10)
    assert event["type"] == "identity.verification_session.verified"


@pytest.mark.parametrize(
    "header",
    [None, "", "t=abc,v1=deadbeef", "v1=deadbeef", f"t={NOW},v1=deadbeef"],
)
def test_construct_event_rejects_bad_headers(header) -> None:
    payload = json.dumps(_event("verified")).encode("utf-8")
    with pytest.raises(ProviderError) as exc:
        identity_verification.construct_event(payload, header, now=NOW)
    assert exc.value.code == "invalid_signature"


def test_construct_event_rejects_old_timestamp() -> None:
    payload, header = _signed(_event("verified"))
    with pytest.raises(ProviderError) as exc:
        identity_verification.construct_event(payload, header, now=NOW + settings.stripe_webhook_tolerance_seconds + 1)
    assert exc.value.code == "invalid_signature"


def test_construct_event_rejects_non_json() -> None:
    payload = b"not json"
    signature = identity_verification.compute_webhook_signature(payload, NOW, WEBHOOK_SECRET)
    with pytest.raises(ProviderError) as exc:
        identity_verification.construct_event(payload, f"t={NOW},v1={signature}", now=NOW)
    assert exc.value.code == "invalid_payload"


@pytest.mark.asyncio
async def test_webhook_event_updates_loan(fake_db) -> None:
    loan = _loan_in_db(fake_db, stripe_verification_status="processing", stripe_verification_session_id="vs_123")
    updated = await identity_verification.apply_webhook_event(fake_db, _event("verified"))
    assert updated is loan
    assert loan.stripe_verification_status == "verified"


@pytest.mark.asyncio
async def test_webhook_event_ignores_unrelated_types(fake_db) -> None:
    event = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}}}
    assert await identity_verification.apply_webhook_event(fake_db, event) is None


def test_stripe_webhook_route(public_client, fake_db, published) -> None:
    loan = _loan_in_db(fake_db, stripe_verification_status="pending", stripe_verification_session_id="vs_123")
    payload, header = _signed(_event("verified"), timestamp=int(time.time()))

    response = public_client.post(
        "/api/v1/webhooks/stripe",
        content=payload,
        headers={"Stripe-Signature": header, "Content-Type": "application/json"},
    )
    assert response.status_code == 200
    assert response.json()["data"] == {"received": True, "updated": True}
    assert loan.stripe_verification_status == "verified"
    assert published == [(loan.id, {"stripeVerificationStatus": "verified"})]


def test_stripe_webhook_route_rejects_bad_signature(public_client, published) -> None:
    response = public_client.post(
        "/api/v1/webhooks/stripe",
        content=b"{}",
        headers={"Stripe-Signature": f"t={NOW},v1=deadbeef"},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_signature"


def test_identity_status_route(public_client, fake_db, published, monkeypatch) -> None:
    loan = make_loan()

    async def _get_status(db, session_id):
        return "verified", loan, True

    monkeypatch.setattr(identity_verification, "get_status", _get_status)
    response = public_client.get("/api/v1/verifications/identity/vs_123")
    assert response.status_code == 200
    assert response.json()["data"] == {"sessionId": "vs_123", "status": "verified", "loanId": str(loan.id)}
    assert published == [(loan.id, {"stripeVerificationStatus": "verified"})]
