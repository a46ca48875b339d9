from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from app.utils.redis_client import get_redis_client, redis_key


CHANNEL_PREFIX = "apply"
PUSH_FIELDS = ("phoneVerificationStatus", "verifiedPhoneNumber", "stripeVerificationStatus", "status")
logger = logging.getLogger(__name__)


def channel_for_loan(loan_id) -> str:
    return redis_key(CHANNEL_PREFIX, loan_id)


def build_update(
    *,
    phone_status: str | None = None,
    verified_phone_number: str | None = None,
    identity_status: str | None = None,
    status: str | None = None,
) -> dict[str, Any]:
    payload = {
        "phoneVerificationStatus": phone_status,
        "verifiedPhoneNumber": verified_phone_number,
        "stripeVerificationStatus": identity_status,
        "status": status,
    }
    return {key: value for key, value in payload.items() if value is not None}


def encode_update(payload: dict[str, Any]) -> str:
    body = {key: payload[key] for key in PUSH_FIELDS if payload.get(key) is not None}
    return json.dumps(body, separators=(",", ":"))


async def publish_update(loan_id, payload: dict[str, Any]) -> None:
    """Fire-and-forget: subscribers reconcile on reload, so a lost message is tolerable."""
    if not any(payload.get(key) is not None for key in PUSH_FIELDS):
        return
    redis = get_redis_client()
    try:
        await asyncio.wait_for(redis.publish(channel_for_loan(loan_id), encode_update(payload)), timeout=2.0)
    except (RedisError, TimeoutError, asyncio.TimeoutError) as exc:
        logger.warning("Application update publish failed for loan %s: %s", loan_id, exc)


async def subscribe(channel: str) -> PubSub:
    redis = get_redis_client()
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel)
    return pubsub


async def unsubscribe(pubsub: PubSub, channel: str) -> None:
    try:
        # Redis/network blips should not block app shutdown/reload.
        await asyncio.wait_for(pubsub.unsubscribe(channel), timeout=2.0)
    except (RedisError, TimeoutError, asyncio.TimeoutError) as exc:
        logger.warning("Application stream unsubscribe failed: %s", exc)
    finally:
        try:
            await asyncio.wait_for(pubsub.close(), timeout=2.0)
        except (RedisError, TimeoutError, asyncio.TimeoutError) as exc:
            logger.warning("Application stream pubsub close failed: %s", exc)


async def iter_updates(pubsub: PubSub, *, poll_timeout: float = 1.0) -> AsyncIterator[dict[str, Any] | None]:
    """Yield decoded updates, or ``None`` when a poll interval passes quietly."""
    while True:
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=poll_timeout)
        if message is None:
            yield None
            continue
        if message.get("type") != "message":
            continue
        try:
            data = json.loads(message.get("data") or "{}")
        except (TypeError, ValueError):
            logger.warning("Dropping undecodable application update on %s", message.get("channel"))
            continue
        if isinstance(data, dict):
            yield data
