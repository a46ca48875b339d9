from __future__ import annotations

from enum import Enum


class PhoneVerificationStatus(str, Enum):
    NOT_STARTED = "not_started"
    PENDING = "pending"
    SENT = "sent"
    VERIFIED = "verified"
    FAILED = "failed"
    EXPIRED = "expired"


class IdentityVerificationStatus(str, Enum):
    NOT_STARTED = "not_started"
    PENDING = "pending"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    VERIFIED = "verified"
    COMPLETED = "completed"
    CANCELED = "canceled"
    UNVERIFIED = "unverified"


RESET_RANK = -1

_PROGRESS_RANK: dict[str, int] = {
    "not_started": 0,
    "pending": 1,
    "sent": 2,
    "in_progress": 3,
    "processing": 3,
    "verified": 4,
    "completed": 4,
}
RESET_STATUSES = frozenset({"failed", "requires_action", "canceled", "expired", "unverified"})
TERMINAL_SUCCESS_STATUSES = frozenset({"verified", "completed"})


def _value(status) -> str | None:
    if status is None:
        return None
    if isinstance(status, Enum):
        return str(status.value)
    return str(status)


def rank(status) -> int:
    value = _value(status)
    if value is None:
        return _PROGRESS_RANK["not_started"]
    if value in RESET_STATUSES:
        return RESET_RANK
    if value not in _PROGRESS_RANK:
        raise ValueError(f"Unknown verification status: {value}")
    return _PROGRESS_RANK[value]


def is_terminal_success(status) -> bool:
    return _value(status) in TERMINAL_SUCCESS_STATUSES


def is_reset(status) -> bool:
    return _value(status) in RESET_STATUSES


def should_accept(current, new) -> bool:
    """Accept strictly later statuses, and resets unless already verified."""
    if _value(new) is None:
        return False
    if is_terminal_success(current):
        return False
    if is_reset(new):
        return _value(new) != _value(current)
    return rank(new) > rank(current)


def apply_status(current, new) -> str | None:
    if should_accept(current, new):
        return _value(new)
    return _value(current)


__all__ = [
    "IdentityVerificationStatus",
    "PhoneVerificationStatus",
    "RESET_STATUSES",
    "TERMINAL_SUCCESS_STATUSES",
    "apply_status",
    "is_reset",
    "is_terminal_success",
    "rank",
    "should_accept",
]
