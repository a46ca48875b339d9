"""Borrower application progress: typed record, step gates and the reducer."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import IntEnum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.services import verification_status

logger = logging.getLogger(__name__)


class ApplicationStep(IntEnum):
    ERROR = -1
    LOADING = 0
    LANGUAGE_SELECT = 1
    WELCOME = 2
    PHONE_VERIFY = 3
    PERSONAL_INFO = 4
    EMPLOYMENT = 5
    REFERENCES = 6
    IDENTITY_VERIFY = 7
    CONSENT = 8
    REVIEW = 9
    SUBMITTED = 10


FIRST_STEP = ApplicationStep.LANGUAGE_SELECT
LAST_EDITABLE_STEP = ApplicationStep.REVIEW
# Loan statuses past this point mean the borrower has nothing left to fill in.
COMPLETED_LOAN_STATUSES = frozenset({"application_completed", "funded", "active", "paid_off"})

_SSN_RE = re.compile(r"^\d{3}-?\d{2}-?\d{4}$")
_ZIP_RE = re.compile(r"^\d{5}(-?\d{4})?$")
_STATE_RE = re.compile(r"^[A-Za-z]{2}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MINIMUM_BORROWER_AGE = 18


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class PersonalInfo(_Section):
    date_of_birth: str | None = None
    ssn: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None


class EmploymentInfo(_Section):
    employment_status: str | None = None
    annual_income: str | None = None
    current_employer_name: str | None = None
    time_with_employment: str | None = None

    @field_validator("annual_income", mode="before")
    @classmethod
    def _income_as_text(cls, value):
        if value is None or isinstance(value, str):
            return value
        return str(value)


class Reference(_Section):
    name: str | None = None
    phone: str | None = None
    email: str | None = None


class References(_Section):
    reference1: Reference = Field(default_factory=Reference)
    reference2: Reference = Field(default_factory=Reference)
    reference3: Reference = Field(default_factory=Reference)

    def slots(self) -> list[tuple[int, Reference]]:
        return [(1, self.reference1), (2, self.reference2), (3, self.reference3)]


class ConsentInfo(_Section):
    consent_to_contact: bool = False
    consent_to_text: bool = False
    consent_to_call: bool = False
    communication_preferences: str | None = None


class PhoneVerificationState(_Section):
    status: str = verification_status.PhoneVerificationStatus.NOT_STARTED.value
    phone_number: str | None = None


class IdentityVerificationState(_Section):
    status: str = verification_status.IdentityVerificationStatus.NOT_STARTED.value
    session_id: str | None = None


EDITABLE_SECTIONS = ("language", "personal", "employment", "references", "consent")


class ApplicationProgress(BaseModel):
    model_config = ConfigDict(extra="forbid")

    current_step: ApplicationStep = FIRST_STEP
    language: Literal["en", "es"] = "en"
    personal: PersonalInfo = Field(default_factory=PersonalInfo)
    employment: EmploymentInfo = Field(default_factory=EmploymentInfo)
    references: References = Field(default_factory=References)
    consent: ConsentInfo = Field(default_factory=ConsentInfo)
    phone: PhoneVerificationState = Field(default_factory=PhoneVerificationState)
    identity: IdentityVerificationState = Field(default_factory=IdentityVerificationState)
    application_status: str | None = None
    error_message: str | None = None

    def to_snapshot(self) -> dict[str, Any]:
        """Flatten to the persisted camelCase snapshot; ``None`` means "unchanged"."""
        snapshot: dict[str, Any] = {
            "applicationStep": int(self.current_step),
            "dateOfBirth": self.personal.date_of_birth,
            "ssn": self.personal.ssn,
            "address": self.personal.address,
            "city": self.personal.city,
            "state": self.personal.state,
            "zipCode": self.personal.zip_code,
            "employmentStatus": self.employment.employment_status,
            "annualIncome": self.employment.annual_income,
            "currentEmployerName": self.employment.current_employer_name,
            "timeWithEmployment": self.employment.time_with_employment,
            "stripeVerificationSessionId": self.identity.session_id,
            "consentToContact": self.consent.consent_to_contact,
            "consentToText": self.consent.consent_to_text,
            "consentToCall": self.consent.consent_to_call,
            "communicationPreferences": self.consent.communication_preferences,
        }
        for index, reference in self.references.slots():
            snapshot[f"reference{index}Name"] = reference.name
            snapshot[f"reference{index}Phone"] = reference.phone
            snapshot[f"reference{index}Email"] = reference.email
        return {key: value for key, value in snapshot.items() if value is not None}

    @classmethod
    def from_snapshot(
        cls,
        snapshot: dict[str, Any] | None,
        *,
        language: str | None = None,
        phone_status: str | None = None,
        verified_phone_number: str | None = None,
        identity_status: str | None = None,
        application_status: str | None = None,
    ) -> "ApplicationProgress":
        data = snapshot or {}

        def text(key: str) -> str | None:
            value = data.get(key)
            if value is None:
                return None
            return str(value)

        references = References(
            **{
                f"reference{index}": Reference(
                    name=text(f"reference{index}Name"),
                    phone=text(f"reference{index}Phone"),
                    email=text(f"reference{index}Email"),
                )
                for index in (1, 2, 3)
            }
        )
        return cls(
            current_step=coerce_step(data.get("applicationStep")),
            language=language if language in ("en", "es") else "en",
            personal=PersonalInfo(
                date_of_birth=text("dateOfBirth"),
                ssn=text("ssn"),
                address=text("address"),
                city=text("city"),
                state=text("state"),
                zip_code=text("zipCode"),
            ),
            employment=EmploymentInfo(
                employment_status=text("employmentStatus"),
                annual_income=text("annualIncome"),
                current_employer_name=text("currentEmployerName"),
                time_with_employment=text("timeWithEmployment"),
            ),
            references=references,
            consent=ConsentInfo(
                consent_to_contact=bool(data.get("consentToContact") or False),
                consent_to_text=bool(data.get("consentToText") or False),
                consent_to_call=bool(data.get("consentToCall") or False),
                communication_preferences=text("communicationPreferences"),
            ),
            phone=PhoneVerificationState(
                status=phone_status or verification_status.PhoneVerificationStatus.NOT_STARTED.value,
                phone_number=verified_phone_number,
            ),
            identity=IdentityVerificationState(
                status=identity_status
                or text("stripeVerificationStatus")
                or verification_status.IdentityVerificationStatus.NOT_STARTED.value,
                session_id=text("stripeVerificationSessionId"),
            ),
            application_status=application_status,
        )


def coerce_step(value: Any, default: ApplicationStep = FIRST_STEP) -> ApplicationStep:
    try:
        step = ApplicationStep(int(value))
    except (TypeError, ValueError):
        return default
    if step in (ApplicationStep.ERROR, ApplicationStep.LOADING):
        return default
    return step


# ---------------------------------------------------------------------------
# Step gates
# ---------------------------------------------------------------------------


def _blank(value: str | None) -> bool:
    return value is None or not str(value).strip()


def _parse_income(value: str | None) -> Decimal | None:
    if _blank(value):
        return None
    cleaned = str(value).replace(",", "").replace("$", "").strip()
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount


def _age_on(birth: date, today: date) -> int:
    years = today.year - birth.year
    if (today.month, today.day) < (birth.month, birth.day):
        years -= 1
    return years


def _validate_personal(personal: PersonalInfo, today: date) -> dict[str, str]:
    errors: dict[str, str] = {}
    required = {
        "dateOfBirth": personal.date_of_birth,
        "ssn": personal.ssn,
        "address": personal.address,
        "city": personal.city,
        "state": personal.state,
        "zipCode": personal.zip_code,
    }
    for key, value in required.items():
        if _blank(value):
            errors[key] = "This field is required"

    if "dateOfBirth" not in errors:
        try:
            birth = date.fromisoformat(personal.date_of_birth.strip())
        except ValueError:
            errors["dateOfBirth"] = "Enter a valid date (YYYY-MM-DD)"
        else:
            if birth > today:
                errors["dateOfBirth"] = "Date of birth cannot be in the future"
            elif _age_on(birth, today) < MINIMUM_BORROWER_AGE:
                errors["dateOfBirth"] = f"Borrower must be at least {MINIMUM_BORROWER_AGE} years old"
    if "ssn" not in errors and not _SSN_RE.fullmatch(personal.ssn.strip()):
        errors["ssn"] = "SSN must be 9 digits"
    if "zipCode" not in errors and not _ZIP_RE.fullmatch(personal.zip_code.strip()):
        errors["zipCode"] = "ZIP code must be 5 or 9 digits"
    if "state" not in errors and not _STATE_RE.fullmatch(personal.state.strip()):
        errors["state"] = "Use the two-letter state code"
    return errors


def _validate_employment(employment: EmploymentInfo) -> dict[str, str]:
    errors: dict[str, str] = {}
    if _blank(employment.employment_status):
        errors["employmentStatus"] = "This field is required"
    income = _parse_income(employment.annual_income)
    if income is None or income <= 0:
        errors["annualIncome"] = "Annual income must be a valid positive number"
    if (employment.employment_status or "").strip().lower() == "employed":
        if _blank(employment.current_employer_name):
            errors["currentEmployerName"] = "This field is required"
        if _blank(employment.time_with_employment):
            errors["timeWithEmployment"] = "This field is required"
    return errors


def _validate_references(references: References) -> dict[str, str]:
    errors: dict[str, str] = {}
    for index, reference in references.slots():
        if not _blank(reference.email) and not _EMAIL_RE.fullmatch(reference.email.strip()):
            errors[f"reference{index}Email"] = "Enter a valid email address"
    return errors


def _validate_consent(consent: ConsentInfo) -> dict[str, str]:
    errors: dict[str, str] = {}
    if not consent.consent_to_contact:
        errors["consentToContact"] = "Consent to contact is required"
    if not (consent.consent_to_text or consent.consent_to_call):
        errors["communicationPreferences"] = "Choose text messages, phone calls, or both"
    return errors


def validate_step(
    progress: ApplicationProgress,
    step: ApplicationStep | int,
    *,
    today: date | None = None,
) -> dict[str, str]:
    """Return ``{field: message}`` for the gate on ``step``; empty means it may advance."""
    step = ApplicationStep(int(step))
    today = today or date.today()
    if step == ApplicationStep.PHONE_VERIFY:
        if progress.phone.status != verification_status.PhoneVerificationStatus.VERIFIED.value:
            return {"phoneVerificationStatus": "Verify your phone number to continue"}
        return {}
    if step == ApplicationStep.PERSONAL_INFO:
        return _validate_personal(progress.personal, today)
    if step == ApplicationStep.EMPLOYMENT:
        return _validate_employment(progress.employment)
    if step == ApplicationStep.REFERENCES:
        return _validate_references(progress.references)
    if step == ApplicationStep.IDENTITY_VERIFY:
        if not verification_status.is_terminal_success(progress.identity.status):
            return {"stripeVerificationStatus": "Complete identity verification to continue"}
        return {}
    if step == ApplicationStep.CONSENT:
        return _validate_consent(progress.consent)
    return {}


SUBMISSION_GATES = (
    ApplicationStep.PHONE_VERIFY,
    ApplicationStep.PERSONAL_INFO,
    ApplicationStep.EMPLOYMENT,
    ApplicationStep.REFERENCES,
    ApplicationStep.IDENTITY_VERIFY,
    ApplicationStep.CONSENT,
)


def validate_submission(progress: ApplicationProgress, *, today: date | None = None) -> dict[str, str]:
    errors: dict[str, str] = {}
    for step in SUBMISSION_GATES:
        errors.update(validate_step(progress, step, today=today))
    return errors


# ---------------------------------------------------------------------------
# Events and reducer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LocalEdit:
    section: str
    values: dict = field(default_factory=dict)


@dataclass(frozen=True)
class StepChange:
    step: ApplicationStep


@dataclass(frozen=True)
class RemotePush:
    phone_status: str | None = None
    verified_phone_number: str | None = None
    identity_status: str | None = None
    application_status: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RemotePush":
        return cls(
            phone_status=payload.get("phoneVerificationStatus"),
            verified_phone_number=payload.get("verifiedPhoneNumber"),
            identity_status=payload.get("stripeVerificationStatus"),
            application_status=payload.get("status"),
        )


@dataclass(frozen=True)
class PollResult:
    kind: Literal["phone", "identity"]
    status: str


@dataclass(frozen=True)
class ResetAll:
    pass


ProgressEvent = Union[LocalEdit, StepChange, RemotePush, PollResult, ResetAll]


def _deep_merge(base: dict[str, Any], values: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in values.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_local_edit(progress: ApplicationProgress, event: LocalEdit) -> ApplicationProgress:
    if event.section not in EDITABLE_SECTIONS:
        raise ValueError(f"Section is not editable: {event.section}")
    if event.section == "language":
        language = event.values.get("language")
        if language not in ("en", "es"):
            raise ValueError("language must be 'en' or 'es'")
        return progress.model_copy(update={"language": language})
    current = getattr(progress, event.section)
    updated = type(current).model_validate(_deep_merge(current.model_dump(), event.values))
    return progress.model_copy(update={event.section: updated})


def _apply_phone(progress: ApplicationProgress, status: str | None, number: str | None) -> ApplicationProgress:
    current = progress.phone.status
    new_status = current
    if status is not None:
        if verification_status.should_accept(current, status):
            new_status = status
        else:
            logger.debug("Dropping stale phone status %s (current %s)", status, current)
    phone_number = progress.phone.phone_number
    if number and new_status == verification_status.PhoneVerificationStatus.VERIFIED.value:
        phone_number = number
    if new_status == current and phone_number == progress.phone.phone_number:
        return progress
    return progress.model_copy(
        update={"phone": PhoneVerificationState(status=new_status, phone_number=phone_number)}
    )


def _apply_identity(progress: ApplicationProgress, status: str | None) -> ApplicationProgress:
    if status is None:
        return progress
    current = progress.identity.status
    if not verification_status.should_accept(current, status):
        logger.debug("Dropping stale identity status %s (current %s)", status, current)
        return progress
    return progress.model_copy(
        update={"identity": IdentityVerificationState(status=status, session_id=progress.identity.session_id)}
    )


def reduce(progress: ApplicationProgress, event: ProgressEvent) -> tuple[ApplicationProgress, bool]:
    """Apply one event; returns the new record and whether anything changed."""
    if isinstance(event, LocalEdit):
        updated = _apply_local_edit(progress, event)
    elif isinstance(event, StepChange):
        step = ApplicationStep(int(event.step))
        if step == progress.current_step:
            return progress, False
        updated = progress.model_copy(update={"current_step": step, "error_message": None})
    elif isinstance(event, RemotePush):
        updated = _apply_phone(progress, event.phone_status, event.verified_phone_number)
        updated = _apply_identity(updated, event.identity_status)
        if event.application_status and event.application_status != updated.application_status:
            update: dict[str, Any] = {"application_status": event.application_status}
            if event.application_status in COMPLETED_LOAN_STATUSES:
                update["current_step"] = ApplicationStep.SUBMITTED
            updated = updated.model_copy(update=update)
    elif isinstance(event, PollResult):
        if event.kind == "phone":
            updated = _apply_phone(progress, event.status, None)
        elif event.kind == "identity":
            updated = _apply_identity(progress, event.status)
        else:
            raise ValueError(f"Unknown poll kind: {event.kind}")
    elif isinstance(event, ResetAll):
        updated = ApplicationProgress()
    else:
        raise TypeError(f"Unsupported progress event: {type(event).__name__}")
    return updated, updated != progress


__all__ = [
    "ApplicationProgress",
    "ApplicationStep",
    "COMPLETED_LOAN_STATUSES",
    "ConsentInfo",
    "EmploymentInfo",
    "IdentityVerificationState",
    "LocalEdit",
    "PersonalInfo",
    "PhoneVerificationState",
    "PollResult",
    "ProgressEvent",
    "Reference",
    "References",
    "RemotePush",
    "ResetAll",
    "StepChange",
    "coerce_step",
    "reduce",
    "validate_step",
    "validate_submission",
]
