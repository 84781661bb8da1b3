"""Database engine and session management for TinyLink.

This module builds the SQLAlchemy async engine and session factory and runs the
schema lifecycle. Nothing here is created at import time: the service manager
owns the engine for the lifetime of the process and hands the session factory
to the link store.

Flow Diagram — Database Lifecycle
=================================
::
    ┌──────────────┐
    │  lifespan    │
    │  startup     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ create_engine│
    │ (pooled)     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ init_db()    │
    │ create_all   │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ LinkStore    │
    │ session per  │
    │ operation    │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ close_db()   │
    │ dispose pool │
    └──────────────┘

How to Use
===========
**Step 1 — Build on startup**::
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    await init_db(engine)

**Step 2 — Open a session**::
    async with session_factory() as session:
        result = await session.execute(select(Link))

**Step 3 — Cleanup on shutdown**::
    await close_db(engine)

Key Behaviours
===============
- PostgreSQL (asyncpg) gets a sized connection pool with pre-ping.
- SQLite (aiosqlite) skips pool sizing and waits on locks instead of failing.
- Sessions do not expire objects on commit, so returned rows stay readable.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    create_engine():  Builds the async engine from settings.
    create_session_factory():  Binds an async_sessionmaker to an engine.
    init_db():  Creates all tables.
    close_db():  Disposes the engine.
"""

from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from tinylink.config import Settings

__all__ = ["Base", "create_engine", "create_session_factory", "init_db", "close_db"]

SQLITE_LOCK_TIMEOUT_SECONDS = 30


class Base(DeclarativeBase):
    pass


def create_engine(settings: Settings) -> AsyncEngine:
    url = make_url(settings.DATABASE_URL)
    options: dict[str, Any] = {"echo": settings.APP_ENV == "development"}

    if url.get_backend_name() == "sqlite":
        options["connect_args"] = {"timeout": SQLITE_LOCK_TIMEOUT_SECONDS}
    else:
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
        )

    return create_async_engine(url, **options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    # Registers the links table on Base.metadata.
    import tinylink.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    await engine.dispose()
