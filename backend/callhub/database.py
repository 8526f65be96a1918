"""
Database configuration and async session management.
Supports SQLite (aiosqlite) and PostgreSQL (asyncpg).

Version: 1.0.0
"""
from sqlalchemy import text, event, inspect
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, StaticPool
from sqlalchemy.exc import SQLAlchemyError
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
from contextlib import asynccontextmanager
from typing import Optional, Dict, Any, AsyncGenerator
from pathlib import Path

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

# Create declarative base
Base = declarative_base()

# Global engine and session factory for the running application
_async_engine: Optional[AsyncEngine] = None
_AsyncSessionLocal: Optional[async_sessionmaker] = None
_async_init_lock = asyncio.Lock()


def _enable_sqlite_wal_mode(dbapi_connection, connection_record):
    """Enable WAL mode for SQLite for better concurrency."""
    try:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA temp_store=MEMORY")
        cursor.close()
        logger.debug("SQLite WAL mode enabled")
    except Exception as e:
        logger.warning(f"Failed to enable SQLite optimizations: {e}")


def _ensure_sqlite_directory(database_url: str) -> None:
    db_path = database_url.split(':///', 1)[-1]
    if db_path and db_path != ':memory:' and not os.path.isabs(db_path):
        db_dir = os.path.dirname(db_path)
        if db_dir:
            Path(db_dir).mkdir(parents=True, exist_ok=True)


def build_async_engine(cfg: Optional[Settings] = None) -> AsyncEngine:
    """
    Create an async engine for the configured database.

    Args:
        cfg: Settings to read (defaults to the process settings)

    Returns:
        AsyncEngine
    """
    cfg = cfg or get_settings()
    url = cfg.async_database_url

    if cfg.database_is_sqlite:
        in_memory = ':memory:' in url
        if not in_memory:
            _ensure_sqlite_directory(cfg.database_url)

        engine = create_async_engine(
            url,
            connect_args={
                "check_same_thread": False,
                "timeout": 20
            },
            # An in-memory database only lives as long as its single connection
            poolclass=StaticPool if in_memory else NullPool,
            echo=cfg.database_echo
        )

        if not in_memory:
            event.listen(engine.sync_engine, "connect", _enable_sqlite_wal_mode)

        logger.info(f"Async SQLite database engine created: {url}")

    elif cfg.database_is_postgresql:
        engine = create_async_engine(
            url,
            pool_size=cfg.database_pool_size,
            max_overflow=cfg.database_pool_overflow,
            pool_timeout=cfg.database_pool_timeout,
            pool_recycle=cfg.database_pool_recycle,
            pool_pre_ping=True,
            echo=cfg.database_echo,
            connect_args={
                "server_settings": {
                    "application_name": cfg.app_name,
                    "timezone": "UTC"
                },
                "timeout": 10
            }
        )

        logger.info(
            f"Async PostgreSQL database engine created "
            f"(pool_size={cfg.database_pool_size})"
        )

    else:
        raise ValueError(f"Unsupported database URL: {cfg.database_url}")

    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create all registered tables if they do not exist."""
    # Import all models to register with Base
    from .models import call, user  # noqa: F401

    start_time = time.time()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)

        table_names = await conn.run_sync(
            lambda sync_conn: inspect(sync_conn).get_table_names()
        )

    required_tables = ['call_sessions', 'users']
    missing_tables = [table for table in required_tables if table not in table_names]
    if missing_tables:
        raise RuntimeError(f"Failed to create required tables: {missing_tables}")

    logger.info(f"✓ Database tables ready in {time.time() - start_time:.2f}s: {table_names}")


async def init_async_db(cfg: Optional[Settings] = None) -> async_sessionmaker:
    """
    Initialize the application database.
    Async-safe with proper locking.

    Returns:
        Session factory bound to the application engine
    """
    global _async_engine, _AsyncSessionLocal

    async with _async_init_lock:
        if _async_engine is not None and _AsyncSessionLocal is not None:
            return _AsyncSessionLocal

        try:
            logger.info("Initializing async database...")

            engine = build_async_engine(cfg)
            await create_tables(engine)

            _async_engine = engine
            _AsyncSessionLocal = build_session_factory(engine)

            logger.info("✓ Async database initialization complete")
            return _AsyncSessionLocal

        except Exception as e:
            logger.error(f"Async database initialization failed: {e}", exc_info=True)
            raise


def get_session_factory() -> async_sessionmaker:
    if _AsyncSessionLocal is None:
        raise RuntimeError("Async database not initialized. Call init_async_db() first.")
    return _AsyncSessionLocal


@asynccontextmanager
async def get_async_db_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for database sessions.

    Commits on success, rolls back on error.
    """
    factory = get_session_factory()

    async with factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Async database session error: {e}")
            await session.rollback()
            raise


async def check_db_connection(engine: Optional[AsyncEngine] = None) -> bool:
    """
    Check database connectivity.

    Returns:
        True if a trivial query succeeds
    """
    engine = engine or _async_engine
    if engine is None:
        return False

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False


async def get_db_info() -> Dict[str, Any]:
    cfg = get_settings()
    return {
        "type": "sqlite" if cfg.database_is_sqlite else "postgresql" if cfg.database_is_postgresql else "unknown",
        "initialized": _async_engine is not None,
        "connected": await check_db_connection(),
    }


async def cleanup_async_db() -> None:
    """Dispose the application engine."""
    global _async_engine, _AsyncSessionLocal

    async with _async_init_lock:
        if _async_engine is not None:
            try:
                await _async_engine.dispose()
                logger.info("✓ Async database engine disposed")
            except Exception as e:
                logger.error(f"Error disposing async engine: {e}")
            finally:
                _async_engine = None
                _AsyncSessionLocal = None


__all__ = [
    'Base',
    'build_async_engine',
    'build_session_factory',
    'create_tables',
    'init_async_db',
    'get_session_factory',
    'get_async_db_context',
    'check_db_connection',
    'get_db_info',
    'cleanup_async_db',
]
