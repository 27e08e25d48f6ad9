"""
Database session management with async SQLAlchemy 2.0.

Provides:
- Async engine with connection pooling
- Session factory with proper lifecycle
- Dependency injection for route handlers
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from tenancy.config import settings

logger = logging.getLogger(__name__)


# Base class for all ORM models
class Base(DeclarativeBase):
    """
    Base class for all database models.

    Provides:
    - Common metadata for all tables
    - Type hints for SQLAlchemy
    """
    pass


class DatabaseManager:
    """
    Manages database engine and session lifecycle.

    Singleton pattern ensures one engine per application.
    """

    def __init__(self) -> None:
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    def init(self, database_url: str | None = None) -> None:
        """
        Initialize database engine and session factory.

        Called during application startup (lifespan event) and by
        Celery tasks before they touch the database.
        """
        if self._engine is not None:
            return

        logger.info("database_initializing")
        url = database_url or settings.database_url

        engine_kwargs: dict = {"echo": settings.db_echo and settings.is_development}
        if settings.is_development or url.startswith("sqlite"):
            # Development: NullPool for simplicity
            engine_kwargs["poolclass"] = NullPool
        else:
            # Production: default async queue pool
            engine_kwargs["pool_size"] = settings.db_pool_size
            engine_kwargs["max_overflow"] = settings.db_max_overflow
            engine_kwargs["pool_pre_ping"] = True  # Verify connections before using

        self._engine = create_async_engine(url, **engine_kwargs)

        # Session factory
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,  # Don't expire objects after commit
            autoflush=False,  # Manual control over flushes
        )

        logger.info("database_initialized")

    async def close(self) -> None:
        """
        Close database connections.

        Called during application shutdown (lifespan event).
        """
        if self._engine:
            logger.info("database_closing")
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("database_closed")

    @property
    def engine(self) -> AsyncEngine:
        """Get the database engine."""
        if not self._engine:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Session scope for code outside request handling (workers, startup).

        Services commit explicitly at their transaction boundaries; this
        only rolls back whatever is left open when the block fails.
        """
        if not self._session_factory:
            raise RuntimeError("Database not initialized. Call init() first.")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Dependency injection for database sessions.

        Yields:
            AsyncSession: Database session with automatic cleanup
        """
        async with self.session() as session:
            yield session


# Global instance
db_manager = DatabaseManager()


# Convenience function for dependency injection
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for database sessions.

    Usage:
        from tenancy.core.database import get_db

        @router.get("/tenants/{tenant_id}")
        async def read_tenant(db: AsyncSession = Depends(get_db)):
            ...
    """
    async for session in db_manager.get_session():
        yield session
