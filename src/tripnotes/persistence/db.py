"""Engine and session plumbing for the trip store.

The engine and session factory are created on first use from
``settings.database_url``. PostgreSQL (asyncpg) is the production target;
SQLite URLs are accepted for local runs and skip the pool options SQLite's
pool does not take.

Every helper here takes an optional session factory so that callers with
their own engine (tests, scripts) never touch the process-wide one.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tripnotes.config import settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": settings.db_pool_timeout,
        "pool_recycle": settings.db_pool_recycle,
        "pool_pre_ping": True,
    }


def get_engine() -> AsyncEngine:
    """Get or create the process-wide engine."""
    global _engine
    if _engine is None:
        url = settings.database_url
        _engine = create_async_engine(url, **_engine_options(url))
        logger.info(f"Created database engine for {_engine.url.render_as_string()}")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    # Loaded rows stay readable after commit; the store returns them as models
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(), class_=AsyncSession, expire_on_commit=False
        )
    return _session_factory


@asynccontextmanager
async def session_context(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """One session, committed when the block exits cleanly.

    Any exception rolls the session back and is re-raised unchanged.
    """
    session = (session_factory or get_session_factory())()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create the trip tables if they are missing.

    Production schemas are migrated outside this package.
    """
    from tripnotes.persistence.tables import Base

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Closed database engine")


async def health_check(session_factory: async_sessionmaker[AsyncSession] | None = None) -> bool:
    """True if a trivial query succeeds."""
    try:
        async with session_context(session_factory) as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Database health check failed: {e}")
        return False
    return True
