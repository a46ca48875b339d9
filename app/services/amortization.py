"""Weekly payment schedules: simple-interest for loan pages, amortized for agreements."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any

from app.core.settings import settings


TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")
WEEKS_PER_YEAR = Decimal("52")
# Simple-mode weekly rate is annual_rate / 12.
SIMPLE_MODE_RATE_DIVISOR = Decimal("12")
TERM_OPTIONS_WEEKS: tuple[int, ...] = (4, 6, 8, 12, 16)


@dataclass(frozen=True)
class ScheduleError(ValueError):
    code: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


class ScheduleMode(str, Enum):
    SIMPLE_INTEREST = "simple"
    AMORTIZED = "amortized"


def _as_decimal(value, *, field_name: str = "value") -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ScheduleError(
            code="invalid_number",
            message=f"{field_name} must be a number",
            details={"field": field_name, "value": str(value)},
        ) from exc


def _round(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LoanTerms:
    principal: Decimal
    annual_rate: Decimal
    term_weeks: int
    start_date: date

    def __post_init__(self) -> None:
        principal = _as_decimal(self.principal, field_name="principal")
        annual_rate = _as_decimal(self.annual_rate, field_name="annual_rate")
        if not principal.is_finite() or principal <= 0:
            raise ScheduleError(
                code="invalid_principal",
                message="principal must be greater than zero",
                details={"field": "principal", "value": str(principal)},
            )
        if not annual_rate.is_finite() or annual_rate < 0:
            raise ScheduleError(
                code="invalid_rate",
                message="annual_rate must be zero or positive",
                details={"field": "annual_rate", "value": str(annual_rate)},
            )
        if isinstance(self.term_weeks, bool) or not isinstance(self.term_weeks, int) or self.term_weeks <= 0:
            raise ScheduleError(
                code="invalid_term",
                message="term_weeks must be a positive whole number of weeks",
                details={"field": "term_weeks", "value": self.term_weeks},
            )
        if not isinstance(self.start_date, date):
            raise ScheduleError(
                code="invalid_start_date",
                message="start_date must be a date",
                details={"field": "start_date"},
            )
        object.__setattr__(self, "principal", principal)
        object.__setattr__(self, "annual_rate", annual_rate)


@dataclass(frozen=True)
class PaymentScheduleEntry:
    payment_number: int
    due_date: date
    due_date_label: str
    principal_payment: Decimal
    interest_payment: Decimal
    total_payment: Decimal
    remaining_balance: Decimal


@dataclass(frozen=True)
class PaymentSchedule:
    terms: LoanTerms
    mode: ScheduleMode
    weekly_payment: Decimal
    weekly_rate: Decimal
    entries: tuple[PaymentScheduleEntry, ...]

    @property
    def total_interest(self) -> Decimal:
        return sum((entry.interest_payment for entry in self.entries), ZERO)

    @property
    def total_principal(self) -> Decimal:
        return sum((entry.principal_payment for entry in self.entries), ZERO)

    @property
    def total_of_payments(self) -> Decimal:
        return sum((entry.total_payment for entry in self.entries), ZERO)

    def as_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "principal": self.terms.principal,
            "annual_rate": self.terms.annual_rate,
            "term_weeks": self.terms.term_weeks,
            "start_date": self.terms.start_date,
            "weekly_payment": self.weekly_payment,
            "total_interest": self.total_interest,
            "total_of_payments": self.total_of_payments,
            "entries": [entry.__dict__.copy() for entry in self.entries],
        }


@dataclass(frozen=True)
class LoanCalculation:
    principal: Decimal
    term_weeks: int
    annual_rate: Decimal
    weekly_rate: Decimal
    weekly_payment: Decimal
    total_payment: Decimal
    total_interest: Decimal


def available_terms() -> list[dict[str, Any]]:
    return [{"weeks": weeks, "label": f"{weeks} weeks"} for weeks in TERM_OPTIONS_WEEKS]


def validate_term_weeks(term_weeks: int) -> int:
    if term_weeks not in TERM_OPTIONS_WEEKS:
        raise ScheduleError(
            code="invalid_term",
            message=f"term_weeks must be one of {', '.join(str(w) for w in TERM_OPTIONS_WEEKS)}",
            details={"field": "term_weeks", "value": term_weeks, "allowed": list(TERM_OPTIONS_WEEKS)},
        )
    return term_weeks


def effective_interest_rate(rate=None) -> Decimal:
    """Interest is only charged when the deployment is licensed for it."""
    if not settings.enable_interest_calculations:
        return Decimal("0")
    if rate is None:
        return _as_decimal(settings.default_annual_interest_rate, field_name="annual_rate")
    return _as_decimal(rate, field_name="annual_rate")


def derive_weekly_payment(principal, annual_rate, term_weeks: int) -> Decimal:
    principal = _as_decimal(principal, field_name="principal")
    annual_rate = _as_decimal(annual_rate, field_name="annual_rate")
    if term_weeks <= 0:
        raise ScheduleError(
            code="invalid_term",
            message="term_weeks must be a positive whole number of weeks",
            details={"field": "term_weeks", "value": term_weeks},
        )
    rate = annual_rate / WEEKS_PER_YEAR
    if rate == 0:
        return _round(principal / Decimal(term_weeks))
    factor = (Decimal("1") + rate) ** term_weeks
    return _round(principal * rate * factor / (factor - Decimal("1")))


def calculate_loan_payment(principal, term_weeks: int, annual_rate=None) -> LoanCalculation:
    principal = _as_decimal(principal, field_name="principal")
    if principal <= 0:
        raise ScheduleError(
            code="invalid_principal",
            message="principal must be greater than zero",
            details={"field": "principal", "value": str(principal)},
        )
    validate_term_weeks(term_weeks)
    rate = effective_interest_rate(annual_rate)
    if rate < 0:
        raise ScheduleError(
            code="invalid_rate",
            message="annual_rate must be zero or positive",
            details={"field": "annual_rate", "value": str(rate)},
        )
    weekly_payment = derive_weekly_payment(principal, rate, term_weeks)
    total_payment = _round(weekly_payment * Decimal(term_weeks))
    return LoanCalculation(
        principal=principal,
        term_weeks=term_weeks,
        annual_rate=rate,
        weekly_rate=rate / WEEKS_PER_YEAR,
        weekly_payment=weekly_payment,
        total_payment=total_payment,
        total_interest=_round(total_payment - principal),
    )


def _due_date_label(due: date, mode: ScheduleMode) -> str:
    if mode == ScheduleMode.SIMPLE_INTEREST:
        return due.isoformat()
    return due.strftime("%m/%d/%Y")


def compute_schedule(
    terms: LoanTerms,
    mode: ScheduleMode,
    *,
    weekly_payment=None,
) -> PaymentSchedule:
    mode = ScheduleMode(mode)
    if mode == ScheduleMode.SIMPLE_INTEREST:
        if weekly_payment is None:
            raise ScheduleError(
                code="weekly_payment_required",
                message="weekly_payment is required for simple-interest schedules",
                details={"field": "weekly_payment"},
            )
        payment = _round(_as_decimal(weekly_payment, field_name="weekly_payment"))
        if payment < 0:
            raise ScheduleError(
                code="invalid_weekly_payment",
                message="weekly_payment must be zero or positive",
                details={"field": "weekly_payment", "value": str(payment)},
            )
        rate = terms.annual_rate / SIMPLE_MODE_RATE_DIVISOR
        first_interest = _round(terms.principal * rate)
        if payment < first_interest:
            # The balance would grow week over week.
            raise ScheduleError(
                code="weekly_payment_below_interest",
                message="weekly_payment does not cover the weekly interest",
                details={
                    "field": "weekly_payment",
                    "value": str(payment),
                    "minimum": str(first_interest),
                },
            )
    else:
        rate = terms.annual_rate / WEEKS_PER_YEAR
        payment = derive_weekly_payment(terms.principal, terms.annual_rate, terms.term_weeks)

    balance = terms.principal
    entries: list[PaymentScheduleEntry] = []
    for number in range(1, terms.term_weeks + 1):
        interest = _round(balance * rate)
        principal_payment = _round(payment - interest)
        total = payment
        if mode == ScheduleMode.AMORTIZED:
            if number == terms.term_weeks or principal_payment > balance:
                principal_payment = balance
                total = _round(principal_payment + interest)
        balance = max(ZERO, _round(balance - principal_payment))
        due = terms.start_date + timedelta(days=7 * number)
        entries.append(
            PaymentScheduleEntry(
                payment_number=number,
                due_date=due,
                due_date_label=_due_date_label(due, mode),
                principal_payment=principal_payment,
                interest_payment=interest,
                total_payment=total,
                remaining_balance=balance,
            )
        )

    return PaymentSchedule(
        terms=terms,
        mode=mode,
        weekly_payment=payment,
        weekly_rate=rate,
        entries=tuple(entries),
    )


__all__ = [
    "LoanCalculation",
    "LoanTerms",
    "PaymentSchedule",
    "PaymentScheduleEntry",
    "ScheduleError",
    "ScheduleMode",
    "TERM_OPTIONS_WEEKS",
    "available_terms",
    "calculate_loan_payment",
    "compute_schedule",
    "derive_weekly_payment",
    "effective_interest_rate",
    "validate_term_weeks",
]
