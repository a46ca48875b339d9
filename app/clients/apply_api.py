"""HTTP binding of the application wizard to the public ``/apply`` API."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from app.core.settings import settings
from app.services.application_errors import ApplicationError, TransientError, error_from_payload
from app.services.application_wizard import ApplicationRecord


logger = logging.getLogger(__name__)


def _unwrap(body: Any) -> Any:
    if isinstance(body, dict) and "code" in body and "message" in body and "data" in body:
        return body["data"]
    return body


def parse_sse_lines(lines: list[str]) -> dict[str, Any] | None:
    """Decode one server-sent event block; comments and keep-alives yield ``None``."""
    data_lines = [line[5:].lstrip() for line in lines if line.startswith("data:")]
    if not data_lines:
        return None
    try:
        payload = json.loads("\n".join(data_lines))
    except ValueError:
        logger.warning("Dropping undecodable application event")
        return None
    return payload if isinstance(payload, dict) else None


class ApplyApiClient:
    """``ProgressStore`` over HTTP, plus the verification calls the wizard needs."""

    def __init__(self, base_url: str, http_client: httpx.AsyncClient | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.provider_timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ApplyApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _request(self, method: str, path: str, *, payload: dict[str, Any] | None = None) -> Any:
        try:
            response = await self.client.request(method, self._url(path), json=payload)
        except httpx.HTTPError as exc:
            raise TransientError(f"Could not reach the application service: {exc}") from exc
        try:
            body = response.json() if response.content else None
        except ValueError:
            body = None
        if response.status_code >= 400:
            error = body if isinstance(body, dict) else {}
            raise error_from_payload(response.status_code, error)
        return _unwrap(body)

    # -- ProgressStore -------------------------------------------------------

    async def load(self, loan_id: str) -> ApplicationRecord:
        data = await self._request("GET", f"apply/{loan_id}")
        return ApplicationRecord.from_payload(loan_id, data or {})

    async def save_progress(self, loan_id: str, snapshot: dict[str, Any]) -> None:
        await self._request("POST", f"apply/{loan_id}/progress", payload=snapshot)

    async def submit(self, loan_id: str, snapshot: dict[str, Any]) -> None:
        await self._request("POST", f"apply/{loan_id}/submit", payload=snapshot)

    # -- other borrower calls ------------------------------------------------

    async def set_language(self, loan_id: str, language: str) -> dict[str, Any]:
        return await self._request("POST", f"apply/{loan_id}/language", payload={"language": language})

    async def send_phone_code(self, loan_id: str, phone_number: str) -> dict[str, Any]:
        return await self._request("POST", f"apply/{loan_id}/phone/send", payload={"phoneNumber": phone_number})

    async def verify_phone_code(self, loan_id: str, phone_number: str, code: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"apply/{loan_id}/phone/verify",
            payload={"phoneNumber": phone_number, "code": code},
        )

    async def create_identity_session(
        self,
        loan_id: str,
        *,
        email: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        return_url: str | None = None,
    ) -> dict[str, Any]:
        body = {
            "email": email,
            "firstName": first_name,
            "lastName": last_name,
            "returnUrl": return_url,
        }
        return await self._request(
            "POST",
            f"apply/{loan_id}/identity/session",
            payload={key: value for key, value in body.items() if value is not None},
        )

    async def identity_status(self, session_id: str) -> dict[str, Any]:
        return await self._request("GET", f"verifications/identity/{session_id}")

    # -- push channel ----------------------------------------------------------

    async def subscribe(self, loan_id: str) -> AsyncIterator[dict[str, Any]]:
        """Yield push payloads from the event stream until the server closes it."""
        try:
            async with self.client.stream(
                "GET",
                self._url(f"apply/{loan_id}/events"),
                headers={"Accept": "text/event-stream"},
                timeout=None,
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    try:
                        body = response.json()
                    except ValueError:
                        body = {}
                    raise error_from_payload(response.status_code, body if isinstance(body, dict) else {})
                block: list[str] = []
                async for line in response.aiter_lines():
                    if line:
                        block.append(line)
                        continue
                    payload = parse_sse_lines(block)
                    block = []
                    if payload is not None:
                        yield payload
                tail = parse_sse_lines(block)
                if tail is not None:
                    yield tail
        except ApplicationError:
            raise
        except httpx.HTTPError as exc:
            raise TransientError(f"Application event stream failed: {exc}") from exc
