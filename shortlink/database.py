"""Database configuration and session management for the shortlink service.

This module provides SQLAlchemy async engine setup, session management,
and database lifecycle operations using PostgreSQL as the backend.

Flow Diagram — Database Operations
=================================
::
    ┌─────────────┐
    │ Repository  │
    │ call        │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ async_session│
    │ () factory   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ One session  │
    │ per call     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Auto-close   │
    │ (async with) │
    └─────────────┘

How to Use
===========
**Step 1 — Initialize on startup**::
    await init_db()  # Creates tables

**Step 2 — Hand the session factory to repositories**::
    links = SqlLinkRepository(async_session)

**Step 3 — Cleanup on shutdown**::
    await close_db()

Key Behaviours
===============
- The session factory is shared by the redirect path and every worker task;
  the engine's connection pool provides the concurrency.
- Pool size and acquire timeout come from settings.
- ``postgres://`` URLs are rewritten to the asyncpg driver.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    get_db():  FastAPI dependency for database sessions.
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlink.config import get_settings

__all__ = ["Base", "async_session", "async_url", "close_db", "engine", "get_db", "init_db"]

settings = get_settings()


def async_url(url: str) -> str:
    """Point a plain postgres URL at the asyncpg driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix) :]
    return url


engine = create_async_engine(
    async_url(settings.DATABASE_URL),
    echo=False,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=settings.DB_POOL_TIMEOUT_SECONDS,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    # Imported for its side effect of registering the tables on Base.metadata.
    import shortlink.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
