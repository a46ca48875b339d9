from fastapi import APIRouter

from app.api.v1.routers import (
    apply,
    auth,
    health,
    loans,
    orgs,
    verifications,
    webhooks,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(auth.router)
api_router.include_router(orgs.router)
api_router.include_router(loans.router)
api_router.include_router(apply.router)
api_router.include_router(verifications.router)
api_router.include_router(webhooks.router)

__all__ = ["api_router"]
