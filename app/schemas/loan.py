from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.services.amortization import ScheduleMode


class LoanStatus(str, Enum):
    NEW = "new"
    APPLICATION_SENT = "application_sent"
    APPLICATION_IN_PROGRESS = "application_in_progress"
    APPLICATION_COMPLETED = "application_completed"
    FUNDED = "funded"
    ACTIVE = "active"
    PAID_OFF = "paid_off"
    CANCELLED = "cancelled"


class BorrowerCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=50)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _strip(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value


class LoanCreateRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    borrower: BorrowerCreate
    principal_amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    term_weeks: int = Field(gt=0)
    interest_rate: Decimal | None = Field(default=None, ge=0, le=1)
    purpose: str | None = Field(default=None, max_length=255)
    vehicle_year: int | None = Field(default=None, ge=1900, le=2100)
    vehicle_make: str | None = Field(default=None, max_length=100)
    vehicle_model: str | None = Field(default=None, max_length=100)
    vehicle_vin: str | None = Field(default=None, min_length=17, max_length=17)

    @field_validator("vehicle_vin", mode="before")
    @classmethod
    def _normalize_vin(cls, value):
        if value is None:
            return value
        cleaned = str(value).strip().upper()
        return cleaned or None

    @field_validator("vehicle_vin")
    @classmethod
    def _validate_vin(cls, value: str | None) -> str | None:
        if value is None:
            return value
        if not value.isalnum() or any(ch in value for ch in "IOQ"):
            raise ValueError("VIN must be 17 letters/digits and cannot contain I, O or Q")
        return value


class BorrowerSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    preferred_language: str | None = None
    kyc_status: str | None = None


class LoanDTO(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        json_encoders={Decimal: lambda value: str(value)},
    )

    id: UUID
    org_id: str
    loan_number: str
    status: LoanStatus
    borrower_id: UUID
    principal_amount: Decimal
    interest_rate: Decimal
    term_weeks: int
    weekly_payment: Decimal
    total_payment: Decimal
    total_interest: Decimal
    remaining_balance: Decimal
    purpose: str | None = None
    vehicle_year: int | None = None
    vehicle_make: str | None = None
    vehicle_model: str | None = None
    vehicle_vin: str | None = None
    funding_date: date | None = None
    application_step: int
    phone_verification_status: str
    stripe_verification_status: str
    application_sent_at: datetime | None = None
    application_completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    borrower: BorrowerSummary | None = None


class LoanListResponse(BaseModel):
    items: list[LoanDTO]
    total: int
    page: int
    page_size: int


class LoanScheduleEntry(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    payment_number: int
    due_date: date
    due_date_label: str
    principal_payment: Decimal
    interest_payment: Decimal
    total_payment: Decimal
    remaining_balance: Decimal


class LoanScheduleResponse(BaseModel):
    model_config = ConfigDict(use_enum_values=True, json_encoders={Decimal: lambda value: str(value)})

    loan_id: UUID | None = None
    mode: ScheduleMode
    start_date: date
    principal: Decimal
    annual_rate: Decimal
    term_weeks: int
    weekly_payment: Decimal
    total_interest: Decimal
    total_of_payments: Decimal
    entries: list[LoanScheduleEntry]


class LoanSchedulePreviewRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    principal: Decimal = Field(gt=0)
    term_weeks: int = Field(gt=0)
    annual_rate: Decimal | None = Field(default=None, ge=0, le=1)
    start_date: date | None = None
    mode: ScheduleMode = ScheduleMode.AMORTIZED
    weekly_payment: Decimal | None = Field(default=None, ge=0)


class LoanTermOption(BaseModel):
    weeks: int
    label: str


class LoanTermsResponse(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    options: list[LoanTermOption]
    interest_enabled: bool
    default_annual_rate: Decimal


class SendApplicationResponse(BaseModel):
    loan: LoanDTO
    application_url: str


class LoanCancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)
