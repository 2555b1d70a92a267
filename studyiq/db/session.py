"""
Database Session Management

This module builds the async SQLAlchemy engine and session factory for the SQL
store and provides a transactional session scope.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from studyiq.common.config import DatabaseConfig
from studyiq.common.error_handling import retry
from studyiq.common.logger import app_logger

from . import tables  # noqa: F401
from .base import metadata

logger = app_logger.getChild("db.session")


def get_engine_kwargs(db_config: DatabaseConfig) -> Dict[str, Any]:
    """
    Get engine keyword arguments based on database type.
    Different databases support different connection options.
    """
    kwargs: Dict[str, Any] = {"echo": db_config.echo}

    if db_config.url.startswith("postgresql"):
        kwargs.update({
            "pool_size": db_config.pool_size,
            "pool_pre_ping": True,
            "pool_recycle": db_config.pool_recycle_seconds,
        })
    elif db_config.is_sqlite and ":memory:" in db_config.url:
        # One shared connection, otherwise every checkout sees an empty database
        kwargs.update({
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        })

    return kwargs


def create_engine(db_config: Optional[DatabaseConfig] = None) -> AsyncEngine:
    db_config = db_config or DatabaseConfig()
    logger.info(f"Creating database engine for {db_config.url.split('://')[0]}")
    return create_async_engine(db_config.url, **get_engine_kwargs(db_config))


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def session_scope(session_factory: async_sessionmaker) -> AsyncIterator[AsyncSession]:
    """
    Provide a transactional scope around a series of operations.

    Commits on success and rolls back on any exception, which is re-raised.
    """
    session = session_factory()
    try:
        yield session
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.debug(f"Database session rolled back: {type(e).__name__}")
        raise
    finally:
        await session.close()


@retry(max_retries=3, retry_delay=0.5, retry_exceptions=(OperationalError,))
async def init_models(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    logger.info("Database tables initialized")
