from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

SUCCESS_CODES = {200: "ok", 201: "created", 202: "accepted"}


def envelope(data: Any, status_code: int = 200) -> dict[str, Any]:
    return {
        "code": SUCCESS_CODES.get(status_code, "ok"),
        "message": HTTPStatus(status_code).phrase,
        "data": data,
        "details": {},
    }


def _already_wrapped(body: Any) -> bool:
    return isinstance(body, dict) and {"code", "message"} <= body.keys() and ("data" in body or "details" in body)


def _rebuild(content: dict[str, Any], status_code: int, original: Response) -> JSONResponse:
    response = JSONResponse(content, status_code=status_code)
    for name, value in original.headers.items():
        if name.lower() not in {"content-length", "content-type"}:
            response.headers[name] = value
    return response


class ResponseEnvelopeMiddleware(BaseHTTPMiddleware):
    """Wrap successful JSON bodies as ``{code, message, data, details}``.

    Errors are already shaped by the exception handlers. Streams (the
    application event feed) and non-JSON bodies pass through untouched.
    A 204 becomes a 200 with ``data: null`` so every success has a body.
    """

    async def dispatch(self, request, call_next) -> Response:
        response = await call_next(request)
        if not 200 <= response.status_code < 300:
            return response
        if response.status_code == 204:
            return _rebuild(envelope(None), 200, response)
        if not response.headers.get("content-type", "").startswith("application/json"):
            return response

        raw = b"".join([chunk async for chunk in response.body_iterator])
        try:
            body = json.loads(raw) if raw else None
        except ValueError:
            return Response(raw, status_code=response.status_code, headers=dict(response.headers))

        if _already_wrapped(body):
            content = dict(body)
            content.setdefault("data", None)
            content.setdefault("details", {})
        else:
            content = envelope(body, response.status_code)
        return _rebuild(content, response.status_code, response)


def register_response_envelope(app) -> None:
    app.add_middleware(ResponseEnvelopeMiddleware)
