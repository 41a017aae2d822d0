"""
Database Configuration

Async SQLAlchemy 2.0 setup with connection pooling and session management.
Uses asyncpg as the PostgreSQL driver for non-blocking I/O.

Design:
    - Engines are built explicitly and owned by the service container,
      so tests can hand in their own (e.g. aiosqlite) engine.
    - init_db: minimal schema bootstrap (CREATE EXTENSION + create_all).
"""

import asyncio
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from cortex.core.config import settings
from cortex.models import Base

logger = logging.getLogger(__name__)


def build_engine(url: str | None = None, **kwargs) -> AsyncEngine:
    """
    Create the async engine.

    Defaults to the PostgreSQL URL from settings. Extra keyword arguments
    are passed through to create_async_engine (e.g. poolclass).
    """
    engine = create_async_engine(url or settings.DATABASE_URL, echo=False, **kwargs)
    logger.info("Database engine created (%s)", engine.url.get_backend_name())
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the engine."""
    # expire_on_commit=False: prevents implicit I/O after commit when accessing attributes
    return async_sessionmaker(engine, expire_on_commit=False)


async def wait_for_db(engine: AsyncEngine, retries: int = 10, delay: int = 1) -> bool:
    """
    Wait for the database to become available.

    Useful in containerized environments where the database may start
    after the application. Implements retry logic with linear delay.

    Returns:
        True if connection established, False if all retries exhausted.
    """
    for i in range(retries):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
                logger.info("Database connection established")
                return True
        except Exception as e:
            logger.warning("Waiting for database (%d/%d)... Error: %s", i + 1, retries, e)
            await asyncio.sleep(delay)

    return False


async def init_db(engine: AsyncEngine) -> None:
    """
    Create missing tables.

    On PostgreSQL the pgvector extension is enabled first, since the
    note_embeddings table depends on the VECTOR column type.
    """
    async with engine.begin() as conn:
        if engine.dialect.name == "postgresql":
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


__all__ = ["Base", "build_engine", "build_session_factory", "wait_for_db", "init_db"]
