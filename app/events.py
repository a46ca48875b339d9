import logging

from fastapi import FastAPI
from redis.exceptions import RedisError

from app.core.settings import settings
from app.db.init_db import init_db
from app.db.session import engine
from app.utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def seed_defaults() -> None:
        logger.info("Starting loan applications API (environment=%s)", settings.environment)
        await init_db()

    @app.on_event("shutdown")
    async def release_connections() -> None:
        try:
            await get_redis_client().aclose()
        except RedisError as exc:
            logger.warning("Redis close failed: %s", exc)
        await engine.dispose()
        logger.info("Loan applications API stopped")
