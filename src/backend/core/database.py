"""
Database configuration.
Implements connection pooling, async sessions and table initialization.
"""

import logging
from typing import AsyncGenerator

from sqlalchemy.exc import PendingRollbackError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from .config import settings

logger = logging.getLogger(__name__)


def build_engine(url: str | None = None) -> AsyncEngine:
    """Create the async engine for the configured database.

    PostgreSQL (asyncpg) gets a sized connection pool; SQLite is used for
    local runs and takes the driver defaults.
    """
    url = url or settings.database.url
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.database.echo, future=True)

    return create_async_engine(
        url,
        echo=settings.database.echo,
        future=True,
        pool_pre_ping=True,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
        pool_timeout=settings.database.pool_timeout,
        pool_recycle=settings.database.pool_recycle,
        connect_args={
            "server_settings": {"application_name": settings.api.app_name},
            "command_timeout": 60,
            "timeout": 30,
        },
    )


engine = build_engine()

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,  # Prevent additional queries after commit
    autoflush=False,
    autocommit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.
    Commits whatever is still pending when the request handler returns.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            if session.in_transaction():
                try:
                    await session.commit()
                except PendingRollbackError:
                    await session.rollback()
                    raise
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """
    Initialize database tables.
    Should be called on application startup; create_all skips existing tables.
    """
    import db.models  # noqa: F401  register table metadata

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables verified")


async def close_db() -> None:
    """
    Close database connections.
    Should be called on application shutdown.
    """
    await engine.dispose()
