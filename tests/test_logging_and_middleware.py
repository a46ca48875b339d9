import json
import logging

import pytest

from app.core import context
from app.core.logging import JsonFormatter, RequestContextFilter, redact
from app.middlewares.trust_proxies import forwarded_client_ip


LOAN_ID = "3f1c2a8e-1111-4a4a-9c9c-000000000001"


def test_redact_masks_borrower_numbers() -> None:
    assert redact("ssn 123-45-6789 on file") == "ssn ***-**-6789 on file"
    assert redact("sent code to +15125550100") == "sent code to ******0100"
    assert redact("loan 2988.00 over 16 weeks") == "loan 2988.00 over 16 weeks"


def test_json_formatter_carries_context_and_extra() -> None:
    context.set_request_id("req-1")
    context.set_loan_id(LOAN_ID)
    try:
        record = logging.makeLogRecord(
            {"name": "app.test", "levelname": "INFO", "msg": "hello %s", "args": ("world",)}
        )
        record.provider = "twilio"
        RequestContextFilter().filter(record)
        payload = json.loads(JsonFormatter(stream_label="audit").format(record))
    finally:
        context.clear_context()

    assert payload["message"] == "hello world"
    assert payload["stream"] == "audit"
    assert payload["request_id"] == "req-1"
    assert payload["loan_id"] == LOAN_ID
    assert payload["provider"] == "twilio"


@pytest.mark.parametrize(
    "header,count,expected",
    [
        ("203.0.113.7", 1, "203.0.113.7"),
        ("198.51.100.1, 203.0.113.7", 1, "203.0.113.7"),
        ("203.0.113.7, 10.0.0.2", 2, "203.0.113.7"),
        ("203.0.113.7", 2, None),
        ("203.0.113.7", 0, None),
    ],
)
def test_forwarded_client_ip(header, count, expected) -> None:
    assert forwarded_client_ip(header, count) == expected


def test_responses_carry_request_id_and_security_headers(public_client) -> None:
    response = public_client.get("/api/v1/health/live", headers={"X-Request-ID": "abc123"})
    assert response.headers["x-request-id"] == "abc123"
    assert response.headers["x-content-type-options"] == "nosniff"
    assert "cache-control" not in response.headers


def test_borrower_responses_are_not_cached(public_client) -> None:
    response = public_client.get(f"/api/v1/apply/{LOAN_ID}")
    assert response.headers["cache-control"] == "no-store"
    assert response.headers["x-request-id"]
