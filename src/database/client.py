"""Database engine and session management with SQLAlchemy.

PostgreSQL (asyncpg) in production. SQLite (aiosqlite) URLs are accepted for
local runs and tests; they get no connection-pool sizing since SQLite does not
use a queue pool.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.config.settings import Settings, settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(config: Settings) -> dict[str, Any]:
    """Keyword arguments for ``create_async_engine`` matching the URL's dialect."""
    options: dict[str, Any] = {"echo": config.database_echo}
    if make_url(config.database_url).get_backend_name() == "sqlite":
        return options
    options.update(
        pool_size=config.database_pool_size,
        max_overflow=config.database_max_overflow,
        pool_timeout=config.database_pool_timeout,
        pool_recycle=config.database_pool_recycle,
        pool_pre_ping=True,
    )
    return options


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _async_session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession]:
    """Open a session that commits on a clean exit and rolls back on any exception.

    Usage:
        async with get_session() as session:
            result = await session.execute(select(User))
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(config: Settings = settings) -> None:
    """Create the engine and session factory, then check the connection.

    Raises:
        SQLAlchemyError: If the database cannot be reached

    """
    global _engine, _async_session_factory

    location = config.database_url.split("@")[-1]
    logger.info(f"Connecting to database at {location}")
    engine = create_async_engine(config.database_url, **engine_options(config))
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Failed to connect to database at {location}: {e}")
        await engine.dispose()
        raise

    _engine = engine
    # Objects stay readable after commit; responses are built from them
    _async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    logger.info("Database connection successful")


async def close_db() -> None:
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connection closed")
