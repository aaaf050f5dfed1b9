"""
PanelOps API Dependencies

Dependency injection for DB sessions, the merge session factory, auth, and
tenant context.
"""

import uuid
from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import get_settings
from db.session import AsyncSessionLocal

settings = get_settings()
security = HTTPBearer(auto_error=not settings.debug)

# Dev account_id must match scripts/seed_test_data.py
DEV_ACCOUNT_ID = "00000000-0000-0000-0000-000000000001"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Session factory for operations that own their transaction (plan merges).

    A merge opens a fresh session per attempt: the replace-delete, the event
    inserts and the status flip commit or roll back together, and a retry after
    a lock conflict must not inherit a request session that already read the plan.
    """
    return AsyncSessionLocal


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {
            "sub": "dev-user",
            "email": "dev@panelops.local",
            "account_id": DEV_ACCOUNT_ID,
        }

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


def get_account_id(user: dict = Depends(get_current_user)) -> uuid.UUID:
    """Tenant id carried by the authenticated user."""
    account_id = user.get("account_id")
    if not account_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No account context",
        )
    return uuid.UUID(str(account_id))


async def get_tenant_db(
    db: AsyncSession = Depends(get_db),
    account_id: uuid.UUID = Depends(get_account_id),
) -> AsyncSession:
    """
    Get a DB session with tenant context set.
    Sets PostgreSQL RLS variable for row-level security.
    """
    await db.execute(
        text("SELECT set_config('app.current_account_id', :aid, true)"),
        {"aid": str(account_id)},
    )
    return db
