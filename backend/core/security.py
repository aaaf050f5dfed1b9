"""
PanelOps Security Utilities

JWT handling for the tenant context carried by API requests. Every token
names the account whose panel, configuration and plans the caller may touch.
"""

import uuid
from datetime import datetime, timedelta

from jose import JWTError, jwt

from core.config import get_settings


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    runtime_settings = get_settings()
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=24))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, runtime_settings.jwt_secret, algorithm=runtime_settings.jwt_algorithm)


def create_account_token(
    account_id: uuid.UUID | str,
    subject: str,
    email: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Token for a planner acting on one account."""
    claims = {"sub": subject, "account_id": str(account_id)}
    if email:
        claims["email"] = email
    return create_access_token(claims, expires_delta)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a locally signed access token. Returns None when invalid or expired."""
    runtime_settings = get_settings()
    try:
        return jwt.decode(
            token,
            runtime_settings.jwt_secret,
            algorithms=[runtime_settings.jwt_algorithm],
        )
    except JWTError:
        return None
