from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import set_tenant_id
from app.core.security import decode_token
from app.core.tenant import normalize_org_id, org_id_from_host
from app.core.settings import settings
from app.db.session import get_db
from app.models.user import USER_ROLES, User


STAFF_ROLES = USER_ROLES


@dataclass(slots=True)
class TenantContext:
    org_id: str


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "unauthorized", "message": message, "details": {}},
        headers={"WWW-Authenticate": "Bearer"},
    )


def enforce_inactivity(last_active_at: Optional[datetime], now: datetime) -> None:
    timeout = timedelta(minutes=settings.session_timeout_minutes)
    if last_active_at and now - last_active_at > timeout:
        raise _unauthorized("Session expired due to inactivity")


async def get_tenant_context(
    request: Request,
    tenant_id: str | None = Header(default=None, alias="X-Tenant-ID"),
) -> TenantContext:
    if settings.tenancy_mode == "multi":
        candidate = tenant_id or org_id_from_host(request.headers.get("host", ""), settings.allowed_tenant_hosts)
        try:
            org_id = normalize_org_id(candidate or "")
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "tenant_required",
                    "message": "Tenant resolution failed: provide X-Tenant-ID header or subdomain",
                    "details": {"reason": str(exc)},
                },
            ) from exc
        set_tenant_id(org_id)
        return TenantContext(org_id=org_id)

    set_tenant_id(settings.default_org_id)
    return TenantContext(org_id=settings.default_org_id)


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db_session),
    ctx: TenantContext = Depends(get_tenant_context),
) -> User:
    try:
        payload = decode_token(token, expected_type="access")
    except ValueError as exc:
        raise _unauthorized(str(exc)) from exc
    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError as exc:
        raise _unauthorized("Invalid token") from exc
    token_org = payload.get("org")
    if token_org is not None and token_org != ctx.org_id:
        raise _unauthorized("Token does not match tenant")

    stmt = select(User).where(User.id == user_id, User.org_id == ctx.org_id)
    user = (await db.execute(stmt)).scalar_one_or_none()
    if not user:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise _unauthorized("Inactive user")
    token_version = payload.get("tv")
    if token_version is not None and user.token_version != token_version:
        raise _unauthorized("Token revoked")

    now = datetime.now(timezone.utc)
    enforce_inactivity(user.last_active_at, now)
    user.last_active_at = now
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def require_staff(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role not in STAFF_ROLES and not current_user.is_superuser:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Staff access required", "details": {}},
        )
    return current_user


async def require_superuser(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_superuser:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Super admin required", "details": {}},
        )
    return current_user
