"""Async engine and session factory.

The engine is created by :func:`init_db` during application startup.
Background jobs must tolerate running before that has happened, so
:func:`get_session_factory` returns ``None`` instead of raising.
"""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from passkey_bridge.config import settings
from passkey_bridge.db.exceptions import ConnectionError

logger = logging.getLogger(__name__)

engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db(database_url: str | None = None) -> AsyncEngine:
    """Create the engine and session factory (idempotent)."""
    global engine, async_session_factory

    if engine is not None:
        return engine

    url = database_url or settings.database_url
    options: dict = {"pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=settings.db_pool_recycle,
        )

    engine = create_async_engine(url, **options)
    async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    logger.info("Database engine initialized")
    return engine


async def close_db() -> None:
    """Dispose of the engine and forget the session factory."""
    global engine, async_session_factory

    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
    engine = None
    async_session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession] | None:
    """Return the session factory, or ``None`` if the database is not initialized."""
    return async_session_factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session, rolling back anything left uncommitted on error."""
    if async_session_factory is None:
        raise ConnectionError("Database not initialized")

    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
