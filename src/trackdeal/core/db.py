"""
Database setup for trackdeal.

This module provides an asynchronous SQLAlchemy engine, a cached session
factory and helper functions for creating the database schema
programmatically in development and testing.

PostgreSQL (via ``asyncpg``) is used in production; development and tests
point ``DATABASE_URL`` at a SQLite file served by ``aiosqlite``.
"""
from __future__ import annotations

import contextlib
from functools import lru_cache
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import get_settings


class Base(DeclarativeBase):  # type: ignore[call-arg]
    """Base class for declarative SQLAlchemy models.

    See ``trackdeal/core/models.py`` for the actual model definitions.
    """

    pass


def _create_engine(db_url: str, echo: bool) -> AsyncEngine:
    """Instantiate a new async engine from the given URL."""
    return create_async_engine(db_url, echo=echo)


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """Return a cached asynchronous SQLAlchemy engine.

    The database URL is read from the current settings. Tests clear this
    cache (together with ``get_settings``) after pointing ``DATABASE_URL``
    at a fresh database.
    """
    settings = get_settings()
    return _create_engine(settings.database_url, echo=settings.env == "dev")


@lru_cache(maxsize=1)
def get_async_session_factory() -> async_sessionmaker:
    """Return a cached session factory bound to the current engine."""
    return async_sessionmaker(
        bind=get_engine(), expire_on_commit=False, class_=AsyncSession
    )


@contextlib.asynccontextmanager
async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Asynchronous context manager that yields a database session.

    Used both as the request-scoped dependency of the API and by the
    background analysis tasks, which open their own sessions. The session
    is committed when the block exits normally and rolled back otherwise.

    Example:

    >>> async with get_db_session() as session:
    ...     result = await session.execute(select(Negotiation).where(...))
    """
    async with get_async_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db_schema() -> None:
    """Create all tables in the database.

    Useful for development and testing where migrations may not have run.
    Production databases are managed through the Alembic revisions under
    ``alembic/versions``.
    """
    # Import models so that they are registered on the metadata
    from . import models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Dispose the cached engine and forget it."""
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
    get_engine.cache_clear()
    get_async_session_factory.cache_clear()
