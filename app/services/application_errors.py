from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, eq=False)
class ApplicationError(Exception):
    code: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


class ApplicationAlreadyCompleted(ApplicationError):
    def __init__(self, message: str = "Application has already been submitted", details: dict | None = None):
        super().__init__(code="already_completed", message=message, details=details or {})


class LoanRecordInvalid(ApplicationError):
    def __init__(
        self,
        message: str = "Loan not found",
        details: dict | None = None,
        *,
        code: str = "loan_not_found",
    ):
        super().__init__(code=code, message=message, details=details or {})


class TransientError(ApplicationError):
    def __init__(self, message: str = "Temporary failure, please try again", details: dict | None = None):
        super().__init__(code="transient", message=message, details=details or {})


class FieldValidationError(ApplicationError):
    def __init__(self, field_name: str | None, message: str, details: dict | None = None):
        merged = dict(details or {})
        merged.setdefault("field", field_name)
        super().__init__(code="validation_error", message=message, details=merged)

    @property
    def field(self) -> str | None:
        return self.details.get("field")


_LOAN_INVALID_CODES = {"loan_not_found", "invalid_loan", "not_found"}
_VALIDATION_CODES = {"validation_error", "unprocessable_entity", "bad_request"}


def error_from_payload(status_code: int, payload: Any) -> ApplicationError:
    """Map an error envelope ``{code, message, details}`` to a typed error.

    Only the machine code and status are consulted, never the message text.
    """
    body = payload if isinstance(payload, dict) else {}
    code = str(body.get("code") or "")
    message = str(body.get("message") or "Request failed")
    details = body.get("details") if isinstance(body.get("details"), dict) else {}

    if code == "already_completed":
        return ApplicationAlreadyCompleted(message, details)
    if code in _LOAN_INVALID_CODES:
        return LoanRecordInvalid(message, details, code="invalid_loan" if code == "invalid_loan" else "loan_not_found")
    if code in _VALIDATION_CODES:
        return FieldValidationError(details.get("field"), message, details)
    if status_code == 404:
        return LoanRecordInvalid(message, details)
    if status_code == 409:
        return ApplicationAlreadyCompleted(message, details)
    if status_code == 422:
        return FieldValidationError(details.get("field"), message, details)
    return TransientError(message, details)


__all__ = [
    "ApplicationAlreadyCompleted",
    "ApplicationError",
    "FieldValidationError",
    "LoanRecordInvalid",
    "TransientError",
    "error_from_payload",
]
