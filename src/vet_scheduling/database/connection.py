"""
Database connection utilities for the vet-scheduling package.

This module provides async SQLAlchemy engine configuration for PostgreSQL
(asyncpg) in production and SQLite (aiosqlite) for local development and
tests.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool, StaticPool

from ..exceptions import ConnectionException
from ..utils.config import ConfigError, DatabaseURLValidator

logger = logging.getLogger(__name__)


class DatabaseConfig:
    """Configuration class for database connections."""

    def __init__(
        self,
        database_url: str,
        pool_size: int = 10,
        max_overflow: int = 20,
        pool_timeout: int = 30,
        pool_recycle: int = 3600,
        echo: bool = False,
        echo_pool: bool = False,
    ):
        """
        Initialize database configuration.

        Args:
            database_url: PostgreSQL or SQLite connection URL
            pool_size: Number of connections to maintain in the pool
            max_overflow: Maximum number of connections that can overflow the pool
            pool_timeout: Timeout for getting connection from pool
            pool_recycle: Time in seconds to recycle connections
            echo: Whether to echo SQL statements
            echo_pool: Whether to echo pool events

        Raises:
            ValueError: If the URL is not a supported database URL
        """
        self.database_url = database_url
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool_timeout = pool_timeout
        self.pool_recycle = pool_recycle
        self.echo = echo
        self.echo_pool = echo_pool

        try:
            self._parsed = DatabaseURLValidator.validate_url(database_url)
        except ConfigError as e:
            raise ValueError(f"Invalid database URL: {e.message}")

    @property
    def is_sqlite(self) -> bool:
        """Whether the URL targets SQLite."""
        return bool(self._parsed["is_sqlite"])

    @property
    def is_memory(self) -> bool:
        """Whether the URL targets an in-memory SQLite database."""
        return self.is_sqlite and self._parsed["database"] in ("", ":memory:")

    def get_async_url(self) -> str:
        """Convert database URL to its async driver form if needed."""
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace(
                "postgresql://", "postgresql+asyncpg://", 1
            )
        if self.database_url.startswith("sqlite://"):
            return self.database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return self.database_url


def create_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 3600,
    pool_pre_ping: bool = True,
    echo: bool = False,
    echo_pool: bool = False,
    use_null_pool: bool = False,
    connect_args: Optional[dict] = None,
) -> AsyncEngine:
    """
    Create an async SQLAlchemy engine with proper configuration.

    In-memory SQLite URLs get a ``StaticPool`` so every session sees the
    same database.

    Args:
        database_url: PostgreSQL or SQLite connection URL
        pool_size: Number of connections to maintain in the pool
        max_overflow: Maximum number of connections that can overflow the pool
        pool_timeout: Timeout for getting connection from pool
        pool_recycle: Time in seconds to recycle connections
        pool_pre_ping: Whether to validate connections before use
        echo: Whether to echo SQL statements
        echo_pool: Whether to echo pool events
        use_null_pool: Whether to use NullPool (useful for testing)
        connect_args: Additional connection arguments

    Returns:
        Configured async SQLAlchemy engine

    Raises:
        ValueError: If database URL is invalid
    """
    config = DatabaseConfig(
        database_url=database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        echo=echo,
        echo_pool=echo_pool,
    )

    async_url = config.get_async_url()

    engine_kwargs: Dict[str, Any] = {
        "echo": config.echo,
        "echo_pool": config.echo_pool,
    }

    if connect_args:
        engine_kwargs["connect_args"] = dict(connect_args)

    if config.is_memory:
        engine_kwargs["poolclass"] = StaticPool
        engine_kwargs.setdefault("connect_args", {})["check_same_thread"] = False
    elif use_null_pool or config.is_sqlite:
        engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs.update(
            {
                "poolclass": AsyncAdaptedQueuePool,
                "pool_size": config.pool_size,
                "max_overflow": config.max_overflow,
                "pool_timeout": config.pool_timeout,
                "pool_recycle": config.pool_recycle,
                "pool_pre_ping": pool_pre_ping,
            }
        )

    try:
        engine = create_async_engine(async_url, **engine_kwargs)
    except Exception as e:
        logger.error(f"Failed to create database engine: {e}")
        raise

    logger.info(f"Created async database engine ({engine.url.get_backend_name()})")
    return engine


async def check_connection(
    engine: AsyncEngine, max_retries: int = 3, retry_delay: float = 1.0
) -> bool:
    """
    Test database connection health with retry logic.

    Args:
        engine: SQLAlchemy async engine
        max_retries: Maximum number of retry attempts
        retry_delay: Delay between retries in seconds

    Returns:
        True if connection is healthy, False otherwise
    """
    for attempt in range(max_retries + 1):
        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection test successful")
            return True
        except Exception as e:
            if attempt < max_retries:
                logger.warning(
                    f"Database connection test failed "
                    f"(attempt {attempt + 1}/{max_retries + 1}): {e}"
                )
                await asyncio.sleep(retry_delay * (2**attempt))
            else:
                logger.error(
                    f"Database connection test failed after {max_retries + 1} attempts: {e}"
                )
    return False


async def close_engine(engine: AsyncEngine) -> None:
    """Dispose of the engine and all pooled connections."""
    await engine.dispose()
    logger.info("Database engine closed successfully")


async def wait_for_database(
    engine: AsyncEngine, timeout: float = 30.0, check_interval: float = 1.0
) -> bool:
    """
    Wait for database to become available.

    Args:
        engine: SQLAlchemy async engine
        timeout: Maximum time to wait in seconds
        check_interval: Time between checks in seconds

    Returns:
        True once the database answers

    Raises:
        ConnectionException: If database doesn't become available within timeout
    """
    start_time = time.time()

    while time.time() - start_time < timeout:
        if await check_connection(engine, max_retries=0):
            return True
        await asyncio.sleep(check_interval)

    raise ConnectionException(
        f"Database did not become available within {timeout} seconds",
        database_url=str(engine.url),
    )
