from datetime import date
from decimal import Decimal

import pytest

from app.models.audit_log import AuditLog
from app.models.borrower import Borrower
from app.models.loan import Loan
from app.services import loans as loan_service
from app.services.amortization import ScheduleMode
from app.services.loan_schedules import build_schedule

from tests.conftest import FakeResult, entity_handler, make_borrower, make_loan


def _create_payload(**overrides):
    payload = {
        "borrower": {"first_name": " Jane ", "last_name": "Doe", "email": "Jane@Example.com"},
        "principal_amount": "2988.00",
        "term_weeks": 16,
        "vehicle_year": 2018,
        "vehicle_make": "Honda",
        "vehicle_model": "Civic",
        "vehicle_vin": "1hgcm82633a004352",
    }
    payload.update(overrides)
    return payload


def test_generate_loan_number_format() -> None:
    number = loan_service.generate_loan_number(date(2026, 1, 5))
    assert number.startswith("LN-20260105-")
    assert len(number.split("-")[-1]) == 6


def test_create_loan_creates_borrower_and_audits(client, fake_db) -> None:
    response = client.post("/api/v1/loans", json=_create_payload())
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "new"
    assert data["term_weeks"] == 16
    assert Decimal(data["weekly_payment"]) == Decimal("186.75")
    assert Decimal(data["remaining_balance"]) == Decimal("2988.00")
    assert data["vehicle_vin"] == "1HGCM82633A004352"
    assert data["borrower"]["email"] == "jane@example.com"
    assert data["borrower"]["first_name"] == "Jane"

    assert len(fake_db.added_of(Borrower)) == 1
    assert len(fake_db.added_of(Loan)) == 1
    actions = [entry.action for entry in fake_db.added_of(AuditLog)]
    assert actions == ["loan.created"]
    assert fake_db.committed is True


def test_create_loan_reuses_existing_borrower(client, fake_db) -> None:
    existing = make_borrower(email="jane@example.com")
    fake_db.on_execute(entity_handler(Borrower, FakeResult(scalar=existing)))

    response = client.post("/api/v1/loans", json=_create_payload())
    assert response.status_code == 201
    assert response.json()["data"]["borrower_id"] == str(existing.id)
    assert fake_db.added_of(Borrower) == []


def test_create_loan_rejects_unsupported_term(client) -> None:
    response = client.post("/api/v1/loans", json=_create_payload(term_weeks=10))
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "invalid_term"
    assert body["details"]["allowed"] == [4, 6, 8, 12, 16]


def test_create_loan_rejects_duplicate_vin(client, fake_db) -> None:
    open_loan = make_loan(status="application_in_progress")
    fake_db.on_execute(entity_handler(Loan, FakeResult(items=[open_loan])))

    response = client.post("/api/v1/loans", json=_create_payload())
    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "duplicate_loan"
    assert body["details"]["loan_number"] == open_loan.loan_number


def test_create_loan_rejects_invalid_vin(client) -> None:
    response = client.post("/api/v1/loans", json=_create_payload(vehicle_vin="1HGCM82633A00435O"))
    assert response.status_code == 422


def test_get_loan_not_found(client) -> None:
    response = client.get("/api/v1/loans/3f0c1d7e-8a53-4b71-9d8a-0f5f1f4b5b11")
    assert response.status_code == 404
    assert response.json()["code"] == "loan_not_found"


def test_list_loans_paginates(client, fake_db) -> None:
    loans = [make_loan(), make_loan(status="new", loan_number="LN-20260105-DEF456")]

    def _handler(stmt):
        descriptions = stmt.column_descriptions
        if descriptions[0].get("type") is Loan:
            return FakeResult(items=loans)
        return FakeResult(scalar=2)

    fake_db.on_execute(_handler)
    response = client.get("/api/v1/loans", params={"page": 1, "page_size": 10})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 2
    assert data["page_size"] == 10
    assert [item["loan_number"] for item in data["items"]] == [loan.loan_number for loan in loans]


def test_terms_lists_supported_weeks(client) -> None:
    response = client.get("/api/v1/loans/terms")
    assert response.status_code == 200
    data = response.json()["data"]
    assert [option["weeks"] for option in data["options"]] == [4, 6, 8, 12, 16]
    assert data["interest_enabled"] is False


def test_send_application_moves_new_loan_to_sent(client, fake_db) -> None:
    loan = make_loan(status="new")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    response = client.post(f"/api/v1/loans/{loan.id}/send-application")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["loan"]["status"] == "application_sent"
    assert data["application_url"].endswith(f"/apply/{loan.id}")
    assert loan.application_sent_at is not None


def test_resend_keeps_in_progress_status(client, fake_db) -> None:
    loan = make_loan(status="application_in_progress")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    response = client.post(f"/api/v1/loans/{loan.id}/send-application")
    assert response.status_code == 200
    assert loan.status == "application_in_progress"


def test_send_application_rejects_completed(client, fake_db) -> None:
    loan = make_loan(status="application_completed")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    response = client.post(f"/api/v1/loans/{loan.id}/send-application")
    assert response.status_code == 409
    assert response.json()["code"] == "invalid_status"


def test_approve_funds_completed_application(client, fake_db) -> None:
    loan = make_loan(status="application_completed")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    response = client.post(f"/api/v1/loans/{loan.id}/approve")
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "funded"
    assert loan.funding_date is not None


def test_approve_requires_completed_application(client, fake_db) -> None:
    loan = make_loan(status="application_sent")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    response = client.post(f"/api/v1/loans/{loan.id}/approve")
    assert response.status_code == 409


def test_cancel_records_reason(client, fake_db) -> None:
    loan = make_loan(status="application_sent")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    response = client.post(f"/api/v1/loans/{loan.id}/cancel", json={"reason": "Customer walked"})
    assert response.status_code == 200
    assert loan.status == "cancelled"
    entry = fake_db.added_of(AuditLog)[-1]
    assert entry.action == "loan.cancelled"
    assert entry.new_value["cancel_reason"] == "Customer walked"


def test_cancel_funded_loan_rejected(client, fake_db) -> None:
    loan = make_loan(status="funded")
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    response = client.post(f"/api/v1/loans/{loan.id}/cancel")
    assert response.status_code == 409


def test_schedule_uses_stored_weekly_payment(client, fake_db) -> None:
    loan = make_loan(
        status="funded",
        interest_rate=Decimal("0"),
        weekly_payment=Decimal("186.75"),
        funding_date=date(2026, 1, 5),
    )
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    response = client.get(f"/api/v1/loans/{loan.id}/schedule")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["mode"] == "simple_interest"
    assert len(data["entries"]) == 16
    assert data["entries"][0]["due_date"] == "2026-01-12"
    assert Decimal(data["entries"][-1]["remaining_balance"]) == Decimal("0.00")


def test_schedule_starts_from_created_date_before_funding() -> None:
    loan = make_loan(interest_rate=Decimal("0"), weekly_payment=Decimal("186.75"))
    schedule = build_schedule(loan, ScheduleMode.AMORTIZED)
    assert schedule.start_date == date(2026, 1, 5)
    assert schedule.entries[0].payment_number == 1


def test_schedule_preview(client) -> None:
    response = client.post(
        "/api/v1/loans/schedule/preview",
        json={"principal": "1200.00", "term_weeks": 4, "start_date": "2026-02-02"},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["loan_id"] is None
    assert [entry["due_date"] for entry in data["entries"]] == [
        "2026-02-09",
        "2026-02-16",
        "2026-02-23",
        "2026-03-02",
    ]
    assert Decimal(data["weekly_payment"]) == Decimal("300.00")


def test_staff_role_required(client, test_user) -> None:
    test_user.role = "BORROWER"
    response = client.get("/api/v1/loans")
    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"


@pytest.mark.asyncio
async def test_cancel_loan_service_rejects_paid_off(fake_db, tenant_ctx) -> None:
    loan = make_loan(status="paid_off")
    with pytest.raises(loan_service.LoanError) as exc:
        await loan_service.cancel_loan(fake_db, tenant_ctx, loan)
    assert exc.value.code == "invalid_status"
