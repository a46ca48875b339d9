"""Liveness, readiness and status payloads for load balancers and operators."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.settings import settings
from app.db.session import engine
from app.utils.redis_client import get_redis_client

APP_VERSION = "0.1.0"
CHECK_TIMEOUT_SECONDS = 3.0


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _check_db() -> dict[str, str]:
    try:
        async with engine.connect() as conn:
            await asyncio.wait_for(conn.execute(text("SELECT 1")), timeout=CHECK_TIMEOUT_SECONDS)
    except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
        return {"status": "error", "error": str(exc) or exc.__class__.__name__}
    return {"status": "ok"}


async def _check_redis() -> dict[str, str]:
    try:
        await asyncio.wait_for(get_redis_client().ping(), timeout=CHECK_TIMEOUT_SECONDS)
    except (RedisError, OSError, asyncio.TimeoutError) as exc:
        return {"status": "error", "error": str(exc) or exc.__class__.__name__}
    return {"status": "ok"}


def provider_configuration() -> dict[str, bool]:
    """Which verification providers are configured.

    Informational: an unconfigured provider disables its own endpoints, not readiness.
    """
    return {
        "phone_verification": bool(
            settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_verify_service_sid
        ),
        "identity_verification": bool(settings.stripe_secret_key),
    }


async def _readiness() -> dict[str, Any]:
    database, redis = await asyncio.gather(_check_db(), _check_redis())
    checks = {"api": {"status": "ok", "version": APP_VERSION}, "database": database, "redis": redis}
    ready = all(check["status"] == "ok" for check in checks.values())
    return {
        "status": "ok" if ready else "degraded",
        "ready": ready,
        "environment": settings.environment,
        "timestamp": _now(),
        "checks": checks,
    }


async def live_payload() -> dict[str, str]:
    return {"status": "ok", "timestamp": _now()}


async def ready_payload() -> dict[str, Any]:
    return await _readiness()


async def status_summary_payload() -> dict[str, Any]:
    payload = await _readiness()
    payload.update(
        version=APP_VERSION,
        interest_calculations_enabled=settings.enable_interest_calculations,
        identity_skip_allowed=settings.allow_identity_skip,
        providers=provider_configuration(),
    )
    return payload
