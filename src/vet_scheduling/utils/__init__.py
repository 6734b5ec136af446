"""
Utility functions and helper modules.

This module provides clinic clock and slot-grid helpers, contact
validation, and configuration management.
"""

from .datetime_utils import (
    DISPLAY_FORMAT,
    combine_slot,
    format_slot,
    format_time_of_day,
    get_clinic_now,
    is_on_slot_grid,
    iter_day_slots,
    parse_time_of_day,
    reminder_send_times,
    truncate_to_minute,
)

from .validation import (
    ValidationError,
    ValidationResult,
    normalize_mobile_number,
    sanitize_string,
    validate_email,
)

from .config import (
    ConfigError,
    DatabaseURLValidator,
    EnvironmentConfig,
    LoggingConfigurator,
    LogLevel,
    SchedulingSettings,
)

__all__ = [
    # DateTime utilities
    "DISPLAY_FORMAT",
    "combine_slot",
    "format_slot",
    "format_time_of_day",
    "get_clinic_now",
    "is_on_slot_grid",
    "iter_day_slots",
    "parse_time_of_day",
    "reminder_send_times",
    "truncate_to_minute",
    # Validation utilities
    "ValidationError",
    "ValidationResult",
    "normalize_mobile_number",
    "sanitize_string",
    "validate_email",
    # Configuration utilities
    "ConfigError",
    "DatabaseURLValidator",
    "EnvironmentConfig",
    "LoggingConfigurator",
    "LogLevel",
    "SchedulingSettings",
]
