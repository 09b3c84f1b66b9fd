"""
Async SQLAlchemy engine management.

The search index and the PostgreSQL knowledge graph tables are read through
SQLAlchemy's asyncio engine on the asyncpg driver. One engine is created
lazily per process and shared by every store; connections are checked out
per query, so concurrent sub-queries each get their own connection.

Connection Pool Settings:
    - pool_size: 5 connections (base pool)
    - max_overflow: 10 additional connections under load
    - pool_pre_ping: True (validates connections before use)
    - pool_recycle: 300 seconds

Usage:
    from knowledge_engine.db import get_engine

    engine = get_engine()
    async with engine.connect() as conn:
        result = await conn.execute(text("SELECT 1"))

    # Shutdown (main.py lifespan)
    await close_engine()
"""

from __future__ import annotations

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from knowledge_engine.config import Settings, get_settings

logger = structlog.get_logger(__name__)

# =============================================================================
# Module-Level Singleton
# =============================================================================

_engine: AsyncEngine | None = None


# =============================================================================
# Engine Management
# =============================================================================


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    """
    Get or create the async engine singleton.

    Args:
        settings: Optional settings override. Defaults to get_settings().

    Returns:
        AsyncEngine bound to the asyncpg URL derived from DATABASE_URL.
    """
    global _engine

    if _engine is not None:
        return _engine

    settings = settings or get_settings()

    try:
        _engine = create_async_engine(
            settings.get_database_url_async(),
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_recycle=300,
            echo=settings.debug and settings.log_level == "DEBUG",
        )
    except Exception as e:
        logger.error(
            "database_engine_creation_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise

    logger.info(
        "database_engine_created",
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=300,
    )
    return _engine


# =============================================================================
# Initialization
# =============================================================================


async def init_db(engine: AsyncEngine | None = None) -> bool:
    """
    Verify the database is reachable.

    Returns:
        True if ``SELECT 1`` succeeded. Failures are logged and return False
        so the service can start degraded and report through /health.
    """
    engine = engine or get_engine()
    try:
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.scalar()
    except Exception as e:
        logger.warning(
            "database_connection_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        return False

    logger.info("database_connection_verified")
    return True


# =============================================================================
# Cleanup
# =============================================================================


async def close_engine() -> None:
    """Dispose of the connection pool on shutdown."""
    global _engine

    if _engine is not None:
        await _engine.dispose()
        logger.info("database_engine_closed")
        _engine = None


__all__ = [
    "get_engine",
    "init_db",
    "close_engine",
]
