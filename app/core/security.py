"""Staff password hashing and access tokens (HS256 JWTs scoped to one dealership)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core.settings import settings


TOKEN_AUDIENCE = "loan-desk"
ACCESS_TOKEN_TYPE = "access"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def get_password_hash(password: str) -> str:
    if len(password) < settings.default_password_min_length:
        raise ValueError(f"Password too short; minimum {settings.default_password_min_length} characters")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(
    subject: str,
    *,
    org_id: str | None = None,
    expires_delta: timedelta | None = None,
    token_version: int | None = None,
) -> str:
    """``org`` pins the token to a dealership; ``tv`` lets logout revoke every earlier token."""
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta if expires_delta is not None else timedelta(minutes=settings.access_token_expire_minutes)
    claims: dict[str, Any] = {
        "sub": subject,
        "type": ACCESS_TOKEN_TYPE,
        "aud": TOKEN_AUDIENCE,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    optional = {"org": org_id, "tv": token_version}
    claims.update({key: value for key, value in optional.items() if value is not None})
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, expected_type: str | None = None) -> dict[str, Any]:
    try:
        claims = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=TOKEN_AUDIENCE,
        )
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    if expected_type and claims.get("type") != expected_type:
        raise ValueError(f"Unexpected token type: {claims.get('type')}")
    return claims
