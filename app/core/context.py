"""Per-request identifiers picked up by the logging filter.

``"-"`` means unset, which keeps log lines a fixed shape.
"""

from contextvars import ContextVar

UNSET = "-"

_request_id: ContextVar[str] = ContextVar("request_id", default=UNSET)
_tenant_id: ContextVar[str] = ContextVar("tenant_id", default=UNSET)
_loan_id: ContextVar[str] = ContextVar("loan_id", default=UNSET)


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> str:
    return _request_id.get()


def set_tenant_id(org_id: str) -> None:
    _tenant_id.set(org_id)


def get_tenant_id() -> str:
    return _tenant_id.get()


def set_loan_id(loan_id: object) -> None:
    _loan_id.set(str(loan_id))


def get_loan_id() -> str:
    return _loan_id.get()


def clear_context() -> None:
    for var in (_request_id, _tenant_id, _loan_id):
        var.set(UNSET)
