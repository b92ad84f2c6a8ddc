# backend/indexnow/core/shared/database_service.py
"""
Database service for async SQLAlchemy session management.

Provides a singleton service for managing database connections,
sessions, and health checks. Supports both SQLite (development and tests)
and PostgreSQL (production).

Usage:
    from indexnow.core.shared.database_service import database_service

    # Get async session (context manager)
    async with database_service.get_session() as session:
        result = await session.execute(select(IndexingJob).where(IndexingJob.id == job_id))
        job = result.scalar_one_or_none()

    # Initialize database (create tables)
    await database_service.init_db()

    # Health check
    health = await database_service.health_check()
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from ...config import settings
from ..database.base import Base


class DatabaseService:
    """
    Database service for managing async SQLAlchemy sessions.

    Every pipeline component receives a DatabaseService and opens short
    sessions through get_session(), so progress written by one step is
    committed and visible to the next (and to other workers) immediately.

    Attributes:
        database_url: SQLAlchemy async URL in use
        _engine: Async SQLAlchemy engine
        _session_factory: Async session factory
        _logger: Logger instance
    """

    def __init__(self, database_url: Optional[str] = None):
        """
        Initialize database service.

        Args:
            database_url: Explicit URL. Defaults to settings.database_url.
        """
        self._logger = logging.getLogger("indexnow.database")
        self.database_url = database_url or settings.database_url
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None
        self._initialize_engine()

    @property
    def db_type(self) -> str:
        return "sqlite" if self.database_url.startswith("sqlite") else "postgresql"

    def _initialize_engine(self) -> None:
        """
        Initialize database engine based on the configured URL.

        SQLite Configuration:
            - Uses aiosqlite async driver
            - check_same_thread=False for async support
            - In-memory databases share one connection (StaticPool)
            - Creates data directory if needed

        PostgreSQL Configuration:
            - Uses asyncpg async driver
            - Connection pooling: size=20, max_overflow=40
            - Pool pre-ping for connection health
            - Pool recycle every 3600 seconds
        """
        database_url = self.database_url
        self._logger.info(f"Initializing database: {database_url.split('@')[-1].split('?')[0]}")

        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
            if ":memory:" in database_url:
                self._engine = create_async_engine(
                    database_url,
                    connect_args=connect_args,
                    poolclass=StaticPool,
                    echo=settings.debug,
                )
            else:
                if ":///" in database_url:
                    db_path = database_url.split("///")[1].split("?")[0]
                    db_dir = os.path.dirname(db_path)
                    if db_dir and not os.path.exists(db_dir):
                        os.makedirs(db_dir, exist_ok=True)
                        self._logger.info(f"Created database directory: {db_dir}")

                self._engine = create_async_engine(
                    database_url,
                    connect_args=connect_args,
                    pool_pre_ping=True,
                    echo=settings.debug,
                )
            self._logger.info("Using SQLite database (development mode)")

        else:
            pool_size = int(os.getenv("DB_POOL_SIZE", "20"))
            max_overflow = int(os.getenv("DB_MAX_OVERFLOW", "40"))
            pool_recycle = int(os.getenv("DB_POOL_RECYCLE", "3600"))

            self._engine = create_async_engine(
                database_url,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=True,
                pool_recycle=pool_recycle,
                echo=settings.debug,
            )
            self._logger.info(
                f"Using PostgreSQL database (pool_size={pool_size}, max_overflow={max_overflow})"
            )

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get async database session as context manager.

        Automatically handles commit on success and rollback on error.

        Yields:
            AsyncSession: Async database session

        Raises:
            RuntimeError: If database is not initialized
            Exception: Any database errors (triggers rollback)
        """
        if not self._session_factory:
            raise RuntimeError("Database not initialized")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init_db(self) -> None:
        """
        Create all tables that don't exist yet.

        Note:
            This is for development and tests. Production schemas are managed
            by Alembic.
        """
        if not self._engine:
            raise RuntimeError("Database engine not initialized")

        self._logger.info("Creating database tables...")

        async with self._engine.begin() as conn:
            # Import all models to ensure they're registered with Base
            from ..database import models  # noqa: F401

            await conn.run_sync(Base.metadata.create_all)

        self._logger.info("Database tables created successfully")

    async def health_check(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict with health status:
                {
                    "status": "healthy" | "unhealthy",
                    "connected": True | False,
                    "database_type": "sqlite" | "postgresql",
                    "tables": {"indexing_jobs": count, ...},
                    "error": "error message" (if unhealthy),
                }
        """
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))

                tables = {}
                for table in ("indexing_jobs", "url_submissions", "service_accounts"):
                    result = await session.execute(text(f"SELECT COUNT(*) FROM {table}"))
                    tables[table] = result.scalar() or 0

            return {
                "status": "healthy",
                "connected": True,
                "database_type": self.db_type,
                "tables": tables,
            }

        except Exception as e:
            self._logger.error(f"Database health check failed: {str(e)}")
            return {
                "status": "unhealthy",
                "connected": False,
                "error": str(e),
            }

    async def close(self) -> None:
        """Close database engine and all connections."""
        if self._engine:
            await self._engine.dispose()
            self._logger.info("Database connections closed")

    def __repr__(self) -> str:
        db_type = "SQLite" if self.db_type == "sqlite" else "PostgreSQL"
        return f"<DatabaseService(type={db_type})>"


# Global singleton instance
database_service = DatabaseService()
