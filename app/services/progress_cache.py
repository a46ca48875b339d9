from __future__ import annotations

import json
from typing import Any

from redis.asyncio import Redis

from app.core.settings import settings
from app.utils.redis_client import get_redis_client, redis_key


KEY_PREFIX = "apply_progress"


class RedisProgressCache:
    """Session-length copy of a borrower's in-flight answers, one JSON blob per loan."""

    def __init__(self, redis: Redis | None = None, ttl_seconds: int | None = None) -> None:
        self._redis = redis
        self.ttl_seconds = ttl_seconds or settings.progress_cache_ttl_seconds

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis_client()

    @staticmethod
    def key_for(loan_id: str) -> str:
        return redis_key(KEY_PREFIX, loan_id)

    async def read(self, loan_id: str) -> dict[str, Any] | None:
        raw = await self.redis.get(self.key_for(loan_id))
        if not raw:
            return None
        data = json.loads(raw)
        return data if isinstance(data, dict) else None

    async def write(self, loan_id: str, blob: dict[str, Any]) -> None:
        await self.redis.set(self.key_for(loan_id), json.dumps(blob, default=str), ex=self.ttl_seconds)

    async def clear(self, loan_id: str) -> None:
        await self.redis.delete(self.key_for(loan_id))
