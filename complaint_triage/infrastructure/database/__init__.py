"""
Database Infrastructure
=======================

Async SQLAlchemy engine and the per-call unit of work used by every
repository.

PostgreSQL (asyncpg) in deployment; tests pass an aiosqlite URL to
``init_database``.
"""

from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncGenerator, Callable

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from complaint_triage.config import settings


class Base(DeclarativeBase):
    """Declarative base shared by the triage and systemic models."""


# What repositories accept in place of get_session_context
SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]

_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database engine not initialized. Call init_database() first.")
    return _engine


def _engine_options(url: str) -> dict:
    options = {"echo": settings.debug}
    # SQLite uses a static pool without these knobs
    if url.startswith("postgresql"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )
    return options


def init_database(database_url: str | None = None) -> AsyncEngine:
    """
    Create the engine and session maker. Called once from the app lifespan.

    Args:
        database_url: Overrides ``settings.database_url``

    Returns:
        AsyncEngine: The new engine
    """
    global _engine, _session_maker

    # asyncpg takes ``ssl`` where libpq URLs say ``sslmode``
    url = (database_url or settings.database_url).replace("sslmode=", "ssl=")

    _engine = create_async_engine(url, **_engine_options(url))
    _session_maker = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return _engine


async def close_database() -> None:
    """Dispose of pooled connections. Safe to call when never initialized."""
    global _engine, _session_maker

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_maker = None


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    One unit of work: commit on normal exit, roll back on any exception.

    Each repository method opens its own, so an AI output record or a
    cluster update is durable as soon as the method returns, whatever
    happens to the rest of the pipeline run.
    """
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with _session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables() -> None:
    """
    Create missing tables for every registered model.

    Development and tests only; deployed schemas are migrated.
    """
    # Importing the model modules registers them on Base.metadata
    import complaint_triage.systemic.infrastructure.models  # noqa: F401
    import complaint_triage.triage.infrastructure.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
