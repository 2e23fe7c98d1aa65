"""Async SQLAlchemy engine and sessions for the insights database.

The URL comes from ``DB_URL``; PostgreSQL through asyncpg in production,
SQLite through aiosqlite for tests and local runs.
"""

from __future__ import annotations

from typing import Any, AsyncIterator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from .config import settings


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an engine; in-memory SQLite shares one connection so every session sees the schema."""
    options: dict[str, Any] = {"echo": echo}
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
        if parsed.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
    else:
        options["pool_pre_ping"] = True
    return create_async_engine(url, **options)


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # pipelines keep using entities after commit
    return async_sessionmaker(bind=bind, expire_on_commit=False, class_=AsyncSession)


engine: AsyncEngine = build_engine(settings.db.url, echo=settings.db.echo)

AsyncSessionMaker = build_session_maker(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Request-scoped session for FastAPI ``Depends``."""
    async with AsyncSessionMaker() as session:
        yield session


async def create_tables(bind: AsyncEngine | None = None) -> None:
    """Create every table that does not exist yet."""
    from .models import Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
