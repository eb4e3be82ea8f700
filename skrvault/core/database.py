"""
Database configuration and session management.
Uses SQLAlchemy 2.0 with async support.
"""

from typing import AsyncContextManager, AsyncGenerator, Callable, Optional
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
    AsyncEngine
)

from .config import settings, DatabaseConfig
from .exceptions import DatabaseError
from .logging import get_logger

logger = get_logger(__name__)

# Global engine and session maker
async_engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None

# Anything that opens a unit-of-work session, e.g. get_async_session
SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


async def init_database(database_url: Optional[str] = None) -> None:
    """Initialize database connections and session makers."""
    global async_engine, async_session_maker

    logger.info("Initializing database connections")

    url = DatabaseConfig.get_database_url(database_url, async_driver=True)
    async_engine = create_async_engine(
        url,
        **DatabaseConfig.get_engine_config(url),
        echo=settings.debug
    )

    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    logger.info("Database connections initialized")


async def close_database() -> None:
    """Close database connections."""
    global async_engine, async_session_maker

    logger.info("Closing database connections")

    if async_engine:
        await async_engine.dispose()

    async_engine = None
    async_session_maker = None

    logger.info("Database connections closed")


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Get an async database session with automatic cleanup.

    The session is one unit of work: it commits when the block exits
    normally and rolls back on any exception.

    Usage:
        async with get_async_session() as session:
            # Use session here
            pass
    """
    if not async_session_maker:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except OperationalError as e:
            await session.rollback()
            logger.error("Database operation failed", error=str(e.orig))
            raise DatabaseError("Database unavailable") from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


class DatabaseManager:
    """Database manager for administrative operations."""

    @staticmethod
    async def create_tables() -> None:
        """Create all tables in the database."""
        from skrvault.models.base import Base

        if not async_engine:
            raise RuntimeError("Database not initialized")

        logger.info("Creating database tables")
        async with async_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    @staticmethod
    async def health_check() -> bool:
        """Check database connectivity."""
        try:
            async with get_async_session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return False
