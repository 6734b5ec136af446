"""
Core exceptions for the vet-scheduling package.

This module defines the exception hierarchy raised by the booking engine.
Every exception carries a human-readable message, a machine-readable error
code and a details dictionary so callers can render a consistent error
payload regardless of which component rejected the request.
"""

import logging
import time
import traceback
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse, urlunparse


class VetSchedulingException(Exception):
    """
    Base exception class for all vet-scheduling exceptions.

    Provides a consistent interface for error handling across the package.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary format.

        Returns:
            Dictionary representation of the exception
        """
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": time.time(),
        }

    def get_debug_info(self) -> Dict[str, Any]:
        """Return :meth:`to_dict` plus module, class and traceback."""
        debug_info = self.to_dict()
        formatted = traceback.format_exc()
        debug_info.update(
            {
                "traceback": (
                    formatted if formatted.strip() != "NoneType: None" else None
                ),
                "module": self.__class__.__module__,
                "class_name": self.__class__.__name__,
            }
        )
        return debug_info

    def log_error(
        self, logger: Optional[logging.Logger] = None, level: int = logging.ERROR
    ) -> None:
        """
        Log the exception with appropriate level and context.

        Args:
            logger: Logger instance to use (creates default if None)
            level: Logging level to use
        """
        if logger is None:
            logger = logging.getLogger(__name__)

        log_data = {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }

        logger.log(
            level,
            f"Exception occurred: {self.message}",
            extra={"exception_data": log_data},
        )

    def __str__(self) -> str:
        """String representation of the exception."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class DatabaseException(VetSchedulingException):
    """Base exception for database-related errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize database exception.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            details: Additional error details
            original_error: Original exception that caused this error
        """
        super().__init__(message, error_code, details)
        self.original_error = original_error

        if original_error and "original_error" not in self.details:
            self.details["original_error"] = str(original_error)


class ConnectionException(DatabaseException):
    """Exception raised when database connection fails."""

    def __init__(
        self,
        message: str = "Database connection failed",
        database_url: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize connection exception.

        Args:
            message: Error message
            database_url: Database URL (will be sanitized)
            original_error: Original exception
        """
        details = {}
        if database_url:
            details["database_url"] = self._sanitize_url(database_url)

        super().__init__(
            message=message,
            error_code="DATABASE_CONNECTION_ERROR",
            details=details,
            original_error=original_error,
        )

    @staticmethod
    def _sanitize_url(url: str) -> str:
        """Remove credentials from database URL for logging."""
        try:
            parsed = urlparse(url)
            if not parsed.hostname:
                return urlunparse(parsed._replace(netloc=""))
            netloc = parsed.hostname
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            return urlunparse(parsed._replace(netloc=netloc))
        except (ValueError, AttributeError) as e:
            return f"[URL_PARSE_ERROR: {e}]"


class TransactionException(DatabaseException):
    """
    Raised when a unit of work could not be committed.

    Any partial writes have been rolled back by the time this is raised.
    """

    def __init__(
        self,
        message: str = "Database transaction failed",
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize transaction exception.

        Args:
            message: Error message
            operation: Description of the failed operation
            original_error: Original exception
        """
        details = {}
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            error_code="DATABASE_TRANSACTION_ERROR",
            details=details,
            original_error=original_error,
        )


class ValidationException(VetSchedulingException):
    """Raised when a request is malformed or incomplete."""

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        value: Optional[Any] = None,
        validation_errors: Optional[Dict[str, Any]] = None,
        item_index: Optional[int] = None,
    ):
        """
        Initialize validation exception.

        Args:
            message: Error message
            field: Field that failed validation
            value: Value that failed validation
            validation_errors: Detailed validation errors
            item_index: 1-based position of the offending item in a batch
        """
        details: Dict[str, Any] = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        if validation_errors:
            details["validation_errors"] = validation_errors
        if item_index is not None:
            details["item_index"] = item_index

        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details=details,
        )
        self.field = field
        self.item_index = item_index


class SchemaValidationException(ValidationException):
    """Exception raised when Pydantic schema validation fails."""

    def __init__(
        self,
        message: str = "Schema validation failed",
        schema_name: Optional[str] = None,
        validation_errors: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize schema validation exception.

        Args:
            message: Error message
            schema_name: Name of the schema that failed validation
            validation_errors: Pydantic validation errors
        """
        super().__init__(message=message, validation_errors=validation_errors)
        self.error_code = "SCHEMA_VALIDATION_ERROR"
        if schema_name:
            self.details["schema_name"] = schema_name


class ConflictException(VetSchedulingException):
    """
    Raised when a request collides with the current state.

    Covers taken slots, non-cancellable groups, illegal status moves and
    draft groups that would exceed their size limit. Nothing is written when
    this is raised.
    """

    def __init__(
        self,
        message: str = "Request conflicts with current state",
        error_code: str = "CONFLICT_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, error_code=error_code, details=details)


class SlotConflictException(ConflictException):
    """Raised when a timestamp is already held by another booking or draft."""

    def __init__(
        self,
        slot_at: datetime,
        message: Optional[str] = None,
        item_index: Optional[int] = None,
        held_by: Optional[str] = None,
    ):
        """
        Initialize slot conflict exception.

        Args:
            slot_at: The colliding timestamp
            message: Error message (built from ``slot_at`` when omitted)
            item_index: 1-based position of the offending item in a batch
            held_by: What holds the slot ("appointment", "group" or "draft")
        """
        display = slot_at.strftime("%b %d, %Y %I:%M %p")
        if message is None:
            message = f"Time slot {display} is already taken"
            if item_index is not None:
                message += f" (item #{item_index})"
            message += "."

        details: Dict[str, Any] = {"slot_at": slot_at.isoformat()}
        if item_index is not None:
            details["item_index"] = item_index
        if held_by:
            details["held_by"] = held_by

        super().__init__(message=message, error_code="SLOT_CONFLICT", details=details)
        self.slot_at = slot_at
        self.item_index = item_index


class InvalidTransitionException(ConflictException):
    """Raised when a status change is outside the allowed transition table."""

    def __init__(self, current: str, target: str, entity_id: Optional[int] = None):
        details: Dict[str, Any] = {"current_status": current, "target_status": target}
        if entity_id is not None:
            details["appointment_id"] = entity_id
        super().__init__(
            message=f"Cannot change status from {current} to {target}",
            error_code="INVALID_STATUS_TRANSITION",
            details=details,
        )


class NotFoundException(VetSchedulingException):
    """Raised when a referenced appointment, group, draft or pet does not exist."""

    def __init__(self, entity: str, entity_id: Any, message: Optional[str] = None):
        super().__init__(
            message=message or f"{entity} {entity_id} not found",
            error_code="NOT_FOUND",
            details={"entity": entity, "entity_id": str(entity_id)},
        )
        self.entity = entity
        self.entity_id = entity_id


class AuthorizationException(VetSchedulingException):
    """Raised when the acting user may not perform the requested operation."""

    def __init__(
        self,
        message: str = "Not authorized",
        role: Optional[str] = None,
        user_id: Optional[int] = None,
    ):
        details: Dict[str, Any] = {}
        if role:
            details["role"] = role
        if user_id is not None:
            details["user_id"] = user_id
        super().__init__(
            message=message, error_code="AUTHORIZATION_ERROR", details=details
        )


class GatewayException(VetSchedulingException):
    """Raised by SMS and email gateways when delivery cannot be handed off."""

    def __init__(
        self,
        message: str = "Gateway call failed",
        channel: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if channel:
            details["channel"] = channel
        if original_error is not None:
            details["original_error"] = str(original_error)
        super().__init__(message=message, error_code="GATEWAY_ERROR", details=details)
        self.channel = channel
        self.original_error = original_error


class ConfigurationException(VetSchedulingException):
    """Base exception for configuration-related errors."""

    def __init__(
        self,
        message: str = "Configuration error",
        config_key: Optional[str] = None,
        config_value: Optional[str] = None,
    ):
        """
        Initialize configuration exception.

        Args:
            message: Error message
            config_key: Configuration key that caused the error
            config_value: Configuration value (will be sanitized)
        """
        details = {}
        if config_key:
            details["config_key"] = config_key
        if config_value:
            details["config_value"] = self._sanitize_config_value(
                config_key, config_value
            )

        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            details=details,
        )

    @staticmethod
    def _sanitize_config_value(key: Optional[str], value: str) -> str:
        """Sanitize configuration values to avoid exposing secrets."""
        if not key:
            return "[REDACTED]"

        sensitive_keys = ["password", "secret", "key", "token", "credential"]
        if any(sensitive in key.lower() for sensitive in sensitive_keys):
            return "[REDACTED]"

        return value


# Utility functions for exception handling and error formatting


def format_validation_errors(errors: List[Dict[str, Any]]) -> Dict[str, List[str]]:
    """
    Format Pydantic validation errors into a user-friendly structure.

    Args:
        errors: List of Pydantic validation errors

    Returns:
        Dictionary mapping field names to lists of error messages
    """
    formatted_errors: Dict[str, List[str]] = {}

    for error in errors:
        field_path = ".".join(str(loc) for loc in error.get("loc", []))
        if not field_path:
            field_path = "root"

        message = error.get("msg", "Validation error")
        error_type = error.get("type", "unknown")

        if error_type == "value_error":
            formatted_message = message
        elif error_type == "missing":
            formatted_message = "This field is required"
        else:
            formatted_message = f"{message} (type: {error_type})"

        formatted_errors.setdefault(field_path, []).append(formatted_message)

    return formatted_errors


def create_error_response(
    exception: VetSchedulingException,
    include_debug: bool = False,
    include_traceback: bool = False,
) -> Dict[str, Any]:
    """
    Create a standardized error response from an exception.

    Args:
        exception: The exception to format
        include_debug: Whether to include debug information
        include_traceback: Whether to include traceback information

    Returns:
        Standardized error response dictionary
    """
    response: Dict[str, Any] = {
        "success": False,
        "error": {
            "type": exception.__class__.__name__,
            "code": exception.error_code,
            "message": exception.message,
        },
    }

    if exception.details:
        response["error"]["details"] = exception.details

    if include_debug:
        debug_info = exception.get_debug_info()
        response["debug"] = {
            "timestamp": debug_info["timestamp"],
            "module": debug_info["module"],
            "class_name": debug_info["class_name"],
        }

        if include_traceback and debug_info.get("traceback"):
            response["debug"]["traceback"] = debug_info["traceback"]

    return response


def log_exception_context(
    exception: Exception,
    context: Dict[str, Any],
    logger: Optional[logging.Logger] = None,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with additional context information.

    Args:
        exception: The exception to log
        context: Additional context information
        logger: Logger instance to use
        level: Logging level
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    if isinstance(exception, VetSchedulingException):
        log_data = exception.to_dict()
        log_data["context"] = context
        logger.log(
            level,
            f"Exception with context: {exception.message}",
            extra={"exception_data": log_data},
        )
    else:
        logger.log(
            level,
            f"Unexpected exception: {str(exception)}",
            extra={
                "exception_type": exception.__class__.__name__,
                "exception_message": str(exception),
                "context": context,
            },
        )
