"""Every error leaves the API as ``{code, message, data: null, details}``.

Routers raise ``HTTPException(status, detail={"code", "message", "details"})``;
clients branch on ``code`` and never on ``message``.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

STATUS_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "unprocessable_entity",
    429: "rate_limited",
    502: "bad_gateway",
    503: "service_unavailable",
}


def _phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def _as_details(value: Any) -> dict:
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        return {"errors": value}
    return {"detail": str(value)}


def error_response(
    status_code: int,
    code: str | None = None,
    message: str | None = None,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = {
        "code": code or STATUS_CODES.get(status_code, "http_error"),
        "message": message or _phrase(status_code),
        "data": None,
        "details": _as_details(details),
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


def _split_detail(detail: Any) -> tuple[str | None, str | None, Any]:
    """Pull ``code``/``message``/``details`` out of whatever a router put in ``detail``."""
    if isinstance(detail, str):
        return None, detail, {"detail": detail}
    if not isinstance(detail, dict):
        return None, None, detail
    message = detail.get("message") or detail.get("detail")
    if "details" in detail:
        details = detail["details"]
    else:
        details = {key: value for key, value in detail.items() if key not in {"code", "message", "detail"}}
    return detail.get("code"), message, details


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail)
    return error_response(exc.status_code, code, message, details, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    field = None
    message = "Validation failed"
    if errors:
        # Drop the request section (body/query/path) from the location
        location = [str(part) for part in errors[0].get("loc", ()) if part not in {"body", "query", "path"}]
        reason = errors[0].get("msg") or message
        if location:
            field = location[-1]
            message = f"{'.'.join(location)}: {reason}"
        else:
            message = str(reason)
    return error_response(422, "validation_error", message, {"field": field, "errors": errors})


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit hit on %s %s: %s", request.method, request.url.path, exc.detail)
    return error_response(429, "rate_limited", None, {"limit": exc.detail}, headers=getattr(exc, "headers", None))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "internal_server_error", "Internal server error")


def register_exception_handlers(app) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
