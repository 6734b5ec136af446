"""
Database utilities and connection management.

This module provides async SQLAlchemy engine creation and the session and
transaction helpers used by the booking engine.
"""

from .connection import (
    DatabaseConfig,
    check_connection,
    close_engine,
    create_engine,
    wait_for_database,
)
from .session import (
    SessionManager,
    get_session,
    get_session_manager,
    get_transaction,
    initialize_session_manager,
)

__all__ = [
    "DatabaseConfig",
    "create_engine",
    "check_connection",
    "close_engine",
    "wait_for_database",
    "SessionManager",
    "initialize_session_manager",
    "get_session_manager",
    "get_session",
    "get_transaction",
]
