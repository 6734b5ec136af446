"""
Custom exceptions for the vet-scheduling package.

This module defines the exception hierarchy raised by the booking engine.
"""

from .core_exceptions import (
    AuthorizationException,
    ConfigurationException,
    ConflictException,
    ConnectionException,
    DatabaseException,
    GatewayException,
    InvalidTransitionException,
    NotFoundException,
    SchemaValidationException,
    SlotConflictException,
    TransactionException,
    ValidationException,
    VetSchedulingException,
    create_error_response,
    format_validation_errors,
    log_exception_context,
)

__all__ = [
    # Exception classes
    "VetSchedulingException",
    "DatabaseException",
    "ConnectionException",
    "TransactionException",
    "ValidationException",
    "SchemaValidationException",
    "ConflictException",
    "SlotConflictException",
    "InvalidTransitionException",
    "NotFoundException",
    "AuthorizationException",
    "GatewayException",
    "ConfigurationException",
    # Utility functions
    "format_validation_errors",
    "create_error_response",
    "log_exception_context",
]
