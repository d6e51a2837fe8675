"""
Async database engine helpers for the SQL session store.
Supports SQLite (aiosqlite) and PostgreSQL (asyncpg).

Version: 1.0.0
"""
from sqlalchemy import text, event
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine
)
import logging
import os
import time
import asyncio
from typing import Optional, Dict, Any
from pathlib import Path

logger = logging.getLogger(__name__)

# Create declarative base
Base = declarative_base()


def _enable_sqlite_wal_mode(dbapi_connection, connection_record):
    """Enable WAL mode for SQLite for better read/write concurrency."""
    try:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()
        logger.debug("SQLite WAL mode enabled")
    except Exception as e:
        logger.warning(f"Failed to enable SQLite optimizations: {e}")


def to_async_url(database_url: str) -> str:
    """
    Map a plain database URL to its async driver URL.

    Args:
        database_url: ``sqlite:///...`` or ``postgresql://...`` URL

    Returns:
        URL using aiosqlite or asyncpg
    """
    if database_url.startswith('sqlite:///'):
        return database_url.replace('sqlite:///', 'sqlite+aiosqlite:///', 1)
    if database_url.startswith('postgresql://'):
        return database_url.replace('postgresql://', 'postgresql+asyncpg://', 1)
    return database_url


def create_database_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the configured database.

    Args:
        database_url: Plain or async database URL
        echo: Echo SQL statements

    Returns:
        AsyncEngine
    """
    async_url = to_async_url(database_url)
    logger.info("Creating async database engine...")

    if async_url.startswith('sqlite+aiosqlite'):
        db_path = async_url.replace('sqlite+aiosqlite:///', '')
        if db_path and db_path != ':memory:':
            db_dir = os.path.dirname(db_path)
            if db_dir:
                Path(db_dir).mkdir(parents=True, exist_ok=True)

        engine = create_async_engine(
            async_url,
            connect_args={"timeout": 20},
            poolclass=NullPool,  # aiosqlite connections are cheap; avoid sharing
            echo=echo
        )
        event.listen(engine.sync_engine, "connect", _enable_sqlite_wal_mode)
        logger.info(f"Async SQLite database engine created: {db_path}")

    else:
        engine = create_async_engine(
            async_url,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            echo=echo,
            connect_args={
                "server_settings": {
                    "application_name": "livechat",
                    "timezone": "UTC"
                },
                "timeout": 10
            }
        )
        logger.info("Async PostgreSQL database engine created")

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to ``engine``; objects stay usable after commit."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False
    )


async def init_db(engine: AsyncEngine) -> None:
    """
    Create the chat tables if they do not exist.

    Raises:
        SQLAlchemyError: If table creation fails
    """
    # Register record classes on Base.metadata
    from .models import records  # noqa: F401

    logger.info("Creating database tables...")
    start_time = time.time()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)

    logger.info(f"✓ Database tables ready in {time.time() - start_time:.2f}s")


async def check_db_connection(
    engine: Optional[AsyncEngine],
    max_retries: int = 3,
    retry_delay: float = 1.0
) -> bool:
    """
    Check the database connection with retry logic.

    Args:
        engine: Engine to probe
        max_retries: Maximum retry attempts
        retry_delay: Initial delay between retries in seconds

    Returns:
        True if the connection is healthy
    """
    if engine is None:
        logger.error("Database engine not initialized")
        return False

    for attempt in range(max_retries):
        try:
            async with engine.connect() as connection:
                result = await connection.execute(text("SELECT 1"))
                row = result.fetchone()
                if row and row[0] == 1:
                    logger.debug("Database connection check passed")
                    return True

        except (DisconnectionError, OperationalError) as e:
            logger.warning(
                f"Database connection check failed "
                f"(attempt {attempt + 1}/{max_retries}): {e}"
            )
            if attempt < max_retries - 1:
                await asyncio.sleep(retry_delay)
                retry_delay *= 2
        except Exception as e:
            logger.error(f"Unexpected database connection error: {e}")
            break

    logger.error("Database connection check failed after all retries")
    return False


def get_database_info(engine: Optional[AsyncEngine]) -> Dict[str, Any]:
    """Driver and dialect details for the stats endpoint (no credentials)."""
    if engine is None:
        return {"initialized": False}

    return {
        "initialized": True,
        "dialect": engine.dialect.name,
        "driver": engine.dialect.driver,
        "database": engine.url.database,
        "pool_class": type(engine.pool).__name__,
    }


async def dispose_engine(engine: Optional[AsyncEngine]) -> None:
    """Dispose of an engine, logging rather than raising on failure."""
    if engine is None:
        return
    try:
        await engine.dispose()
        logger.info("✓ Database engine disposed")
    except Exception as e:
        logger.error(f"Error disposing database engine: {e}")


__all__ = [
    'Base',
    'to_async_url',
    'create_database_engine',
    'create_session_factory',
    'init_db',
    'check_db_connection',
    'get_database_info',
    'dispose_engine',
]
