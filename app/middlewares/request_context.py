import re
from uuid import uuid4

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core import context


REQUEST_ID_HEADER = "x-request-id"
_APPLY_PATH = re.compile(r"/apply/([0-9a-fA-F-]{36})(?:/|$)")


class RequestContextMiddleware:
    """Bind request id, tenant and (for borrower links) loan id to the logging context.

    The request id is echoed back so a borrower-reported failure can be traced.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        request_id = headers.get(REQUEST_ID_HEADER) or uuid4().hex
        context.clear_context()
        context.set_request_id(request_id)
        if headers.get("x-tenant-id"):
            context.set_tenant_id(headers["x-tenant-id"])
        match = _APPLY_PATH.search(scope.get("path", ""))
        if match:
            context.set_loan_id(match.group(1))

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[REQUEST_ID_HEADER] = request_id
            await send(message)

        await self.app(scope, receive, send_wrapper)
