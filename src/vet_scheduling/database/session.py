"""
Database session management utilities for the vet-scheduling package.

This module provides the async session factory, session management and the
transaction helpers every booking operation runs inside.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import MetaData, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ..exceptions import TransactionException, VetSchedulingException

logger = logging.getLogger(__name__)


class SessionManager:
    """Manages database sessions and provides transaction utilities."""

    def __init__(
        self, engine: AsyncEngine, session_config: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize session manager with database engine.

        Args:
            engine: SQLAlchemy async engine
            session_config: Optional session configuration overrides
        """
        self.engine = engine
        self._is_initialized = False
        self._health_check_interval = 30.0  # seconds
        self._last_health_check = 0.0

        default_config = {
            "expire_on_commit": False,
            "autoflush": True,
        }
        if session_config:
            default_config.update(session_config)

        self.session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            autoflush=default_config.get("autoflush", True),
            expire_on_commit=default_config.get("expire_on_commit", False),
        )

    async def create_session(self) -> AsyncSession:
        """
        Create a new database session.

        Returns:
            New async database session
        """
        return self.session_factory()

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Context manager for database sessions with automatic cleanup.

        Yields:
            Database session

        Example:
            async with session_manager.get_session() as session:
                result = await session.execute(select(Appointment))
        """
        session = await self.create_session()
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error(f"Session error, rolling back: {e}")
            raise
        finally:
            await session.close()

    @asynccontextmanager
    async def get_transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Context manager for database transactions with automatic commit/rollback.

        Yields:
            Database session within a transaction

        Example:
            async with session_manager.get_transaction() as session:
                session.add(group)
                # Transaction is automatically committed on success
        """
        async with self.get_session() as session:
            async with session.begin():
                try:
                    yield session
                except VetSchedulingException as e:
                    logger.info(f"Transaction aborted, rolling back: {e.message}")
                    raise
                except Exception as e:
                    logger.error(f"Transaction error, rolling back: {e}")
                    raise

    @asynccontextmanager
    async def transaction_scope(
        self, operation: str
    ) -> AsyncGenerator[AsyncSession, None]:
        """
        Transaction that reports persistence failures as TransactionException.

        Package exceptions raised inside the block propagate unchanged; any
        SQLAlchemy error (including one raised by the final commit) is
        wrapped with the operation name.

        Args:
            operation: Name of the unit of work, used in logs and error details

        Yields:
            Database session within a transaction

        Raises:
            TransactionException: If the database rejects the unit of work
        """
        try:
            async with self.get_transaction() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Database operation '{operation}' failed: {e}")
            raise TransactionException(
                "Database transaction failed",
                operation=operation,
                original_error=e,
            ) from e

    async def execute_in_transaction(
        self, operation: Any, *args: Any, **kwargs: Any
    ) -> Any:
        """
        Execute an operation within a transaction.

        Args:
            operation: Async function taking the session as first argument
            *args: Arguments to pass to the operation
            **kwargs: Keyword arguments to pass to the operation

        Returns:
            Result of the operation

        Raises:
            TransactionException: If database transaction fails
        """
        name = operation.__name__ if hasattr(operation, "__name__") else str(operation)
        async with self.transaction_scope(name) as session:
            return await operation(session, *args, **kwargs)

    async def health_check(self, force: bool = False) -> Dict[str, Any]:
        """
        Health check for database sessions and connections.

        Args:
            force: Force health check even if recently performed

        Returns:
            Dictionary with health check results
        """
        current_time = time.time()

        if (
            not force
            and (current_time - self._last_health_check) < self._health_check_interval
        ):
            return {"status": "skipped", "reason": "recently_checked"}

        health_status: Dict[str, Any] = {
            "status": "healthy",
            "timestamp": current_time,
            "checks": {},
        }

        try:
            start_time = time.time()
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
            health_status["checks"]["basic_query"] = {
                "status": "pass",
                "response_time": round((time.time() - start_time) * 1000, 2),  # ms
            }

            start_time = time.time()
            async with self.get_transaction() as session:
                await session.execute(text("SELECT 1"))
            health_status["checks"]["transaction"] = {
                "status": "pass",
                "response_time": round((time.time() - start_time) * 1000, 2),  # ms
            }

            self._last_health_check = current_time

        except OperationalError as e:
            health_status["status"] = "unhealthy"
            health_status["checks"]["connection"] = {
                "status": "fail",
                "error": str(e),
                "error_type": "OperationalError",
            }
            logger.error(f"Database operational error during health check: {e}")

        except SQLAlchemyError as e:
            health_status["status"] = "unhealthy"
            health_status["checks"]["database"] = {
                "status": "fail",
                "error": str(e),
                "error_type": "SQLAlchemyError",
            }
            logger.error(f"Database error during health check: {e}")

        return health_status

    async def initialize_database(self, metadata: Optional[MetaData] = None) -> bool:
        """
        Verify connectivity and optionally create the schema.

        Args:
            metadata: SQLAlchemy metadata object containing table definitions

        Returns:
            True if initialization successful, False otherwise
        """
        logger.info("Starting database initialization...")

        health = await self.health_check(force=True)
        if health["status"] != "healthy":
            logger.error("Database health check failed during initialization")
            return False

        if metadata is not None:
            try:
                async with self.engine.begin() as conn:
                    await conn.run_sync(metadata.create_all)
            except SQLAlchemyError as e:
                logger.error(f"Database initialization failed: {e}")
                return False
            logger.info("Database tables created successfully")

        self._is_initialized = True
        return True

    async def close_all_sessions(self) -> None:
        """Close all active sessions and dispose of the engine."""
        await self.engine.dispose()
        logger.info("All database sessions and connections closed")

    @property
    def is_initialized(self) -> bool:
        """Check if the database has been initialized."""
        return self._is_initialized


# Global session manager instance (will be initialized by application)
_session_manager: Optional[SessionManager] = None


def initialize_session_manager(engine: AsyncEngine) -> SessionManager:
    """
    Initialize the global session manager.

    Args:
        engine: SQLAlchemy async engine

    Returns:
        Initialized session manager
    """
    global _session_manager
    _session_manager = SessionManager(engine)
    logger.info("Session manager initialized")
    return _session_manager


def get_session_manager() -> SessionManager:
    """
    Get the global session manager instance.

    Raises:
        RuntimeError: If session manager is not initialized
    """
    if _session_manager is None:
        raise RuntimeError(
            "Session manager not initialized. Call initialize_session_manager() first."
        )
    return _session_manager


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a session from the global session manager."""
    manager = get_session_manager()
    async with manager.get_session() as session:
        yield session


@asynccontextmanager
async def get_transaction() -> AsyncGenerator[AsyncSession, None]:
    """Get a transaction from the global session manager."""
    manager = get_session_manager()
    async with manager.get_transaction() as session:
        yield session
