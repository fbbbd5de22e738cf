"""Database connection and session management.

Transaction Guarantees:
- Each request gets its own session
- All operations within a request are atomic
- On any exception, the entire transaction is rolled back
- Sessions are properly closed after each request
"""

import logging
import ssl
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with options suited to the target database."""
    if database_url.startswith("sqlite"):
        # sqlite pools reject the sizing arguments used for PostgreSQL
        return create_async_engine(database_url, echo=echo)

    connect_args: dict[str, Any] = {}
    if settings.environment == "production" or "pooler" in database_url:
        ssl_context = ssl.create_default_context()
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE
        connect_args["ssl"] = ssl_context
        # pgbouncer in transaction mode cannot use prepared statements
        connect_args["prepared_statement_cache_size"] = 0
        connect_args["statement_cache_size"] = 0
        logger.info("Using SSL for database connection with pgbouncer compatibility")

    return create_async_engine(
        database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=echo,
        pool_pre_ping=True,
        pool_recycle=300,
        pool_timeout=30,
        connect_args=connect_args,
    )


engine = build_engine(settings.database_url_async, echo=settings.database_echo)

# Session factory - creates new sessions for each request
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,  # Don't expire objects after commit
    autoflush=False,         # Manual flush for better control
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a transactional database session.

    Transaction Behavior:
    - Session starts in a transaction automatically
    - On successful completion: COMMIT
    - On any exception: ROLLBACK
    - Session is always closed properly

    Endpoints that dispatch domain events commit explicitly before
    dispatching; the final commit here is then a no-op.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
            logger.debug("Transaction committed successfully")
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error, transaction rolled back: {e}")
            raise
        except Exception as e:
            await session.rollback()
            logger.debug(f"Request failed, transaction rolled back: {e}")
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for database sessions (for use outside FastAPI)."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """Initialize database (create tables if needed)."""
    from ..models import Base

    async with engine.begin() as conn:
        # In production, use migrations instead
        await conn.run_sync(Base.metadata.create_all)


async def drop_db() -> None:
    """Drop all tables. Used by the test suite."""
    from ..models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
