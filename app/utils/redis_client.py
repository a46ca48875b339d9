from functools import lru_cache

from redis.asyncio import Redis

from app.core.settings import settings


@lru_cache(maxsize=1)
def get_redis_client() -> Redis:
    # One pooled client per process, shared by the progress cache, the push channel and login limits.
    return Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=settings.redis_connect_timeout_seconds,
        health_check_interval=30,
    )


def redis_key(*parts: object) -> str:
    """``redis_key("apply", loan_id)`` -> ``"loans:apply:<loan_id>"`` with the default prefix."""
    segments = [str(part) for part in parts if part not in (None, "")]
    return ":".join([settings.redis_key_prefix, *segments] if settings.redis_key_prefix else segments)
