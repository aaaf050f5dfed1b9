"""
PanelOps Database Session Management

Async SQLAlchemy engine and session factory. PostgreSQL in production,
SQLite (aiosqlite) for local runs and tests.

The API shares one pooled engine. Celery tasks and CLI scripts run their own
event loop per invocation, so they build a standalone engine with
create_session_factory() and dispose it when done.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.config import get_settings

settings = get_settings()


def _engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {}
    return {"pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}


def create_session_factory(
    database_url: str,
    echo: bool = False,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Standalone engine plus a session factory bound to it; the caller disposes the engine."""
    standalone = create_async_engine(database_url, echo=echo, **_engine_options(database_url))
    return standalone, async_sessionmaker(standalone, class_=AsyncSession, expire_on_commit=False)


engine, AsyncSessionLocal = create_session_factory(settings.database_url, echo=settings.database_echo)


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass
