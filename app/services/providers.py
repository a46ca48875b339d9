from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from app.core.settings import settings


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderError(ValueError):
    """A verification provider refused or failed a request."""

    code: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


@asynccontextmanager
async def provider_client(client: httpx.AsyncClient | None = None) -> AsyncIterator[httpx.AsyncClient]:
    """Use the injected client as-is, or open a short-lived one."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as owned:
        yield owned


def decode_body(response: httpx.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    **kwargs: Any,
) -> httpx.Response:
    try:
        return await client.request(method, url, **kwargs)
    except httpx.HTTPError as exc:
        logger.warning("%s request failed: %s", provider, exc)
        raise ProviderError(
            code="provider_unavailable",
            message=f"{provider} is temporarily unavailable",
            details={"provider": provider},
        ) from exc
