from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from app.schemas.common import PreferredLanguage, normalize_language


class ApplicationProgressPayload(BaseModel):
    """Partial borrower answers, keyed exactly as the wizard snapshot."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    application_step: int | None = Field(default=None, alias="applicationStep", ge=1, le=10)
    date_of_birth: str | None = Field(default=None, alias="dateOfBirth", max_length=10)
    ssn: str | None = Field(default=None, max_length=11)
    address: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=2)
    zip_code: str | None = Field(default=None, alias="zipCode", max_length=10)
    employment_status: str | None = Field(default=None, alias="employmentStatus", max_length=50)
    annual_income: str | None = Field(default=None, alias="annualIncome", max_length=32)
    current_employer_name: str | None = Field(default=None, alias="currentEmployerName", max_length=255)
    time_with_employment: str | None = Field(default=None, alias="timeWithEmployment", max_length=100)
    reference1_name: str | None = Field(default=None, alias="reference1Name", max_length=255)
    reference1_phone: str | None = Field(default=None, alias="reference1Phone", max_length=50)
    reference1_email: str | None = Field(default=None, alias="reference1Email", max_length=255)
    reference2_name: str | None = Field(default=None, alias="reference2Name", max_length=255)
    reference2_phone: str | None = Field(default=None, alias="reference2Phone", max_length=50)
    reference2_email: str | None = Field(default=None, alias="reference2Email", max_length=255)
    reference3_name: str | None = Field(default=None, alias="reference3Name", max_length=255)
    reference3_phone: str | None = Field(default=None, alias="reference3Phone", max_length=50)
    reference3_email: str | None = Field(default=None, alias="reference3Email", max_length=255)
    stripe_verification_session_id: str | None = Field(
        default=None, alias="stripeVerificationSessionId", max_length=255
    )
    consent_to_contact: bool | None = Field(default=None, alias="consentToContact")
    consent_to_text: bool | None = Field(default=None, alias="consentToText")
    consent_to_call: bool | None = Field(default=None, alias="consentToCall")
    communication_preferences: str | None = Field(default=None, alias="communicationPreferences", max_length=50)

    @field_validator("annual_income", mode="before")
    @classmethod
    def _income_as_text(cls, value):
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, bool):
            raise ValueError("annualIncome must be a number")
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        return value

    def snapshot(self) -> dict:
        return self.model_dump(by_alias=True, exclude_unset=True)


class LanguageUpdateRequest(BaseModel):
    language: PreferredLanguage

    @field_validator("language", mode="before")
    @classmethod
    def _normalize(cls, value):
        return normalize_language(value)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApplicationLoanView(_CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_encoders={Decimal: lambda value: str(value)},
    )

    id: UUID
    status: str
    principal_amount: Decimal
    weekly_payment: Decimal
    term_weeks: int
    vehicle_year: int | None = None
    vehicle_make: str | None = None
    vehicle_model: str | None = None
    vehicle_vin: str | None = None
    application_step: int
    phone_verification_status: str
    verified_phone_number: str | None = None
    stripe_verification_session_id: str | None = None
    stripe_verification_status: str


class ApplicationBorrowerView(_CamelModel):
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    preferred_language: str


class ApplicationView(_CamelModel):
    loan: ApplicationLoanView
    borrower: ApplicationBorrowerView
    dealer_name: str | None = None
    progress: dict = Field(default_factory=dict)


class ApplicationSubmitResponse(_CamelModel):
    loan_id: UUID
    status: str
    kyc_status: str


class ApplicationSaveResponse(_CamelModel):
    loan_id: UUID
    status: str
    application_step: int


class SkipVerificationResponse(_CamelModel):
    loan_id: UUID
    stripe_verification_status: str


class PhoneSendRequest(BaseModel):
    phone_number: str = Field(alias="phoneNumber", min_length=7, max_length=20)

    model_config = ConfigDict(populate_by_name=True)


class PhoneSendResponse(_CamelModel):
    success: bool
    status: str
    phone_number: str


class PhoneVerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_number: str = Field(alias="phoneNumber", min_length=7, max_length=20)
    code: str = Field(pattern=r"^\d{4,10}$")


class PhoneVerifyResponse(_CamelModel):
    success: bool
    status: str
    verified_phone_number: str | None = None


class IdentitySessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr | None = None
    first_name: str | None = Field(default=None, alias="firstName", max_length=100)
    last_name: str | None = Field(default=None, alias="lastName", max_length=100)
    return_url: str | None = Field(default=None, alias="returnUrl", max_length=2048)


class IdentitySessionResponse(_CamelModel):
    session_id: str
    client_secret: str | None = None
    url: str | None = None
    status: str


class IdentityStatusResponse(_CamelModel):
    session_id: str
    status: str
    loan_id: UUID | None = None
