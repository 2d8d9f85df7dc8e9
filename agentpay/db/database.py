"""
Database connection and session management.
Uses SQLAlchemy 2.0 async patterns with asyncpg driver for PostgreSQL
or aiosqlite for local SQLite development.

The engine is created by the application factory, not at import time, so
tests and alternative deployments can supply their own settings.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from agentpay.config import Settings


logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.
    All models should inherit from this class.
    """
    pass


def create_engine_for(settings: Settings) -> AsyncEngine:
    """
    Build the async engine for the configured database URL.
    SQLite doesn't support pool_size/max_overflow, so it gets its own branch.
    """
    url = settings.async_database_url

    if url.startswith("sqlite"):
        kwargs = {
            "echo": settings.debug,
            "connect_args": {"check_same_thread": False},
        }
        # An in-memory database only lives as long as its single connection
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            kwargs["poolclass"] = StaticPool
        return create_async_engine(url, **kwargs)

    return create_async_engine(
        url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """
    Provides a session that commits on success and rolls back on error.

    Yields:
        AsyncSession: Database session for one unit of work
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine) -> None:
    """
    Creates all missing tables. Called during application startup.
    """
    # Registers the models on Base.metadata
    import agentpay.models  # noqa: F401

    tables = list(Base.metadata.tables.keys())
    logger.info(f"Registered models for tables: {tables}")

    def get_existing_tables(connection):
        return inspect(connection).get_table_names()

    try:
        async with engine.begin() as conn:
            existing = await conn.run_sync(get_existing_tables)
            missing = [t for t in tables if t not in existing]
            if missing:
                logger.info(f"Missing tables to create: {missing}")

            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {type(e).__name__}: {e}")
        raise
