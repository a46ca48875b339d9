"""Brute-force protection for staff login, backed by Redis counters.

Redis outages fail open: a staff member must still be able to sign in.
"""

from typing import Optional

from fastapi import HTTPException, status
from redis.exceptions import RedisError

from app.core.security import verify_password
from app.core.settings import settings
from app.utils.redis_client import get_redis_client, redis_key

# bcrypt hash of a throwaway password, checked when the email is unknown
_DUMMY_HASH = "$2b$12$EixZaYVK1fsbw1ZfbX3OXePaWrn3ILAWO.P3K.fc8G2.0G7u6g.2"
WINDOW_SECONDS = 60


def _locked(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={"code": "rate_limited", "message": message, "details": {}},
    )


def constant_time_verify(password_hash: Optional[str], password: str) -> bool:
    """Spend one bcrypt check whether or not the account exists."""
    matched = verify_password(password, password_hash or _DUMMY_HASH)
    return bool(password_hash) and matched


async def enforce_login_limits(ip: str, email: str) -> None:
    """Per-IP and per-email request budgets, then the failed-attempt lockout."""
    redis = get_redis_client()
    identity = email.lower()
    keys = [redis_key("login_rate", "ip", ip), redis_key("login_rate", "email", identity)]
    try:
        pipe = redis.pipeline()
        for key in keys:
            pipe.incr(key)
            pipe.expire(key, WINDOW_SECONDS)
        pipe.exists(redis_key("login_lock", identity))
        *counters, locked = await pipe.execute()
    except RedisError:
        return
    if any(count > settings.rate_limit_per_minute for count in counters[::2]):
        raise _locked("Rate limit exceeded")
    if locked:
        raise _locked("Too many login attempts; try later")


async def record_login_attempt(email: str, success: bool) -> None:
    redis = get_redis_client()
    identity = email.lower()
    failures_key = redis_key("login_fail", identity)
    lock_key = redis_key("login_lock", identity)
    lockout = max(1, settings.login_lockout_minutes * 60)
    try:
        if success:
            await redis.delete(failures_key, lock_key)
            return
        failures = await redis.incr(failures_key)
        if failures == 1:
            await redis.expire(failures_key, lockout)
        if failures < settings.login_attempt_limit:
            return
        await redis.set(lock_key, "1", ex=lockout)
        await redis.delete(failures_key)
    except RedisError:
        return
    raise _locked("Account temporarily locked due to failed attempts")
