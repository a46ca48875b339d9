from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core.settings import settings


BASE_HEADERS = {
    "x-content-type-options": "nosniff",
    "x-frame-options": "DENY",
    "referrer-policy": "no-referrer",
    "cross-origin-opener-policy": "same-origin",
}
HSTS_VALUE = "max-age=63072000; includeSubDomains"
# Borrower responses carry personal data; keep them out of shared caches.
NO_STORE_PREFIX = "/api/v1/apply/"


class SecurityHeadersMiddleware:
    def __init__(self, app: ASGIApp, enable_hsts: bool = True) -> None:
        self.app = app
        self.headers = dict(BASE_HEADERS)
        if enable_hsts:
            self.headers["strict-transport-security"] = HSTS_VALUE
        if settings.content_security_policy:
            name = (
                "content-security-policy-report-only"
                if settings.content_security_policy_report_only
                else "content-security-policy"
            )
            self.headers[name] = settings.content_security_policy

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        no_store = scope.get("path", "").startswith(NO_STORE_PREFIX)

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in self.headers.items():
                    headers.setdefault(name, value)
                if no_store and "cache-control" not in headers:
                    headers["cache-control"] = "no-store"
            await send(message)

        await self.app(scope, receive, send_wrapper)
