"""Staff sign-in. Borrowers never authenticate; their loan link is the credential."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.limiter import limiter
from app.core.security import create_access_token
from app.core.settings import settings
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import LoginRequest, Token, UserOut
from app.utils.login_security import constant_time_verify, enforce_login_limits, record_login_attempt

router = APIRouter(prefix="/auth", tags=["auth"])

def _invalid_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "invalid_credentials", "message": "Invalid email or password", "details": {}},
    )


async def _staff_user(db: AsyncSession, org_id: str, email: str) -> User | None:
    stmt = select(User).where(User.org_id == org_id, User.email == email)
    return (await db.execute(stmt)).scalar_one_or_none()


@router.post("/login", response_model=Token, summary="Exchange staff credentials for an access token")
@limiter.limit(lambda: f"{settings.rate_limit_per_minute}/minute")
async def login(
    credentials: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
) -> Token:
    email = credentials.email.lower()
    await enforce_login_limits(request.client.host if request.client else "unknown", email)

    user = await _staff_user(db, ctx.org_id, email)
    password_ok = constant_time_verify(user.hashed_password if user else None, credentials.password)
    if not password_ok or not user.is_active:
        await record_login_attempt(email, success=False)
        raise _invalid_credentials()

    user.last_active_at = datetime.now(timezone.utc)
    await db.commit()
    await record_login_attempt(email, success=True)
    token = create_access_token(str(user.id), org_id=user.org_id, token_version=user.token_version)
    return Token(access_token=token, expires_in=settings.access_token_expire_minutes * 60)


@router.post("/logout", status_code=204, summary="Revoke every token issued to the caller")
async def logout(current_user: User = Depends(deps.get_current_user), db: AsyncSession = Depends(get_db)) -> None:
    current_user.token_version += 1
    await db.commit()


@router.get("/me", response_model=UserOut)
async def read_current_user(current_user: User = Depends(deps.get_current_user)) -> UserOut:
    return UserOut.model_validate(current_user)
