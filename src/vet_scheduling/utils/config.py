"""
Configuration management utilities.

This module provides environment variable handling with type conversion,
database URL validation, logging configuration and the clinic scheduling
settings consumed by the booking engine.
"""

import logging
import logging.config
import os
from dataclasses import dataclass, field
from datetime import time
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import parse_qs, urlparse

from ..exceptions import ConfigurationException
from .datetime_utils import parse_time_of_day


class ConfigError(ConfigurationException):
    """Exception raised for configuration-related errors."""

    pass


class LogLevel(Enum):
    """Enumeration for log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentConfig:
    """Utility class for handling environment variables with type conversion."""

    @staticmethod
    def get_str(
        key: str, default: Optional[str] = None, required: bool = False
    ) -> Optional[str]:
        """
        Get a string environment variable.

        Args:
            key: Environment variable key
            default: Default value if not found
            required: Whether the variable is required

        Returns:
            String value or default

        Raises:
            ConfigError: If required variable is missing
        """
        value = os.getenv(key, default)

        if required and value is None:
            raise ConfigError(f"Required environment variable '{key}' is not set")

        return value

    @staticmethod
    def get_int(
        key: str, default: Optional[int] = None, required: bool = False
    ) -> Optional[int]:
        """
        Get an integer environment variable.

        Raises:
            ConfigError: If required variable is missing or invalid
        """
        value = os.getenv(key)

        if value is None:
            if required:
                raise ConfigError(f"Required environment variable '{key}' is not set")
            return default

        try:
            return int(value)
        except ValueError:
            raise ConfigError(
                f"Environment variable '{key}' must be an integer, got: {value}",
                config_key=key,
                config_value=value,
            )

    @staticmethod
    def get_float(
        key: str, default: Optional[float] = None, required: bool = False
    ) -> Optional[float]:
        """
        Get a float environment variable.

        Raises:
            ConfigError: If required variable is missing or invalid
        """
        value = os.getenv(key)

        if value is None:
            if required:
                raise ConfigError(f"Required environment variable '{key}' is not set")
            return default

        try:
            return float(value)
        except ValueError:
            raise ConfigError(
                f"Environment variable '{key}' must be a float, got: {value}",
                config_key=key,
                config_value=value,
            )

    @staticmethod
    def get_bool(
        key: str, default: Optional[bool] = None, required: bool = False
    ) -> Optional[bool]:
        """Get a boolean environment variable ("true", "1", "yes", "on" are truthy)."""
        value = os.getenv(key)

        if value is None:
            if required:
                raise ConfigError(f"Required environment variable '{key}' is not set")
            return default

        return value.lower() in ("true", "1", "yes", "on", "enabled")

    @staticmethod
    def get_time(key: str, default: time) -> time:
        """
        Get a time-of-day environment variable in ``HH:MM`` form.

        Raises:
            ConfigError: If the value cannot be parsed
        """
        value = os.getenv(key)
        if value is None:
            return default
        try:
            return parse_time_of_day(value)
        except ValueError:
            raise ConfigError(
                f"Environment variable '{key}' must be a time like 09:00, got: {value}",
                config_key=key,
                config_value=value,
            )

    @staticmethod
    def get_list(
        key: str,
        separator: str = ",",
        default: Optional[List[str]] = None,
        required: bool = False,
    ) -> Optional[List[str]]:
        """Get a separator-delimited list environment variable."""
        value = os.getenv(key)

        if value is None:
            if required:
                raise ConfigError(f"Required environment variable '{key}' is not set")
            return default or []

        return [item.strip() for item in value.split(separator) if item.strip()]


class DatabaseURLValidator:
    """Utility class for validating database URLs."""

    SUPPORTED_DRIVERS = {
        "postgresql": ["postgresql", "postgresql+asyncpg"],
        "sqlite": ["sqlite", "sqlite+aiosqlite"],
    }

    @classmethod
    def validate_url(cls, url: str) -> Dict[str, Any]:
        """
        Validate a database URL and return parsed components.

        Args:
            url: Database URL to validate

        Returns:
            Dictionary with validation results and parsed components

        Raises:
            ConfigError: If URL is invalid
        """
        if not url:
            raise ConfigError("Database URL cannot be empty")

        try:
            parsed = urlparse(url)
        except ValueError as e:
            raise ConfigError(f"Invalid URL format: {e}")

        if not parsed.scheme:
            raise ConfigError(
                "Database URL must include a scheme (e.g., postgresql+asyncpg://)"
            )

        if not any(parsed.scheme in drivers for drivers in cls.SUPPORTED_DRIVERS.values()):
            supported_list: List[str] = []
            for drivers in cls.SUPPORTED_DRIVERS.values():
                supported_list.extend(drivers)
            raise ConfigError(
                f"Unsupported database driver '{parsed.scheme}'. "
                f"Supported: {', '.join(supported_list)}"
            )

        is_sqlite = parsed.scheme.startswith("sqlite")
        if not is_sqlite and not parsed.hostname:
            raise ConfigError("Database URL must include a hostname")

        if not is_sqlite and not parsed.path.lstrip("/"):
            raise ConfigError("Database URL must include a database name")

        return {
            "valid": True,
            "scheme": parsed.scheme,
            "is_sqlite": is_sqlite,
            "hostname": parsed.hostname,
            "port": parsed.port,
            "database": parsed.path.lstrip("/") if parsed.path else "",
            "username": parsed.username,
            "password": parsed.password,
            "query": dict(parse_qs(parsed.query)),
        }


class LoggingConfigurator:
    """Utility class for configuring logging."""

    DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @staticmethod
    def configure_basic_logging(
        level: Union[str, LogLevel] = LogLevel.INFO,
        format_string: Optional[str] = None,
        log_file: Optional[str] = None,
    ) -> None:
        """
        Configure basic logging for the application.

        Args:
            level: Logging level
            format_string: Custom format string
            log_file: Optional log file path
        """
        if isinstance(level, LogLevel):
            level = level.value

        basic_config_args: Dict[str, Any] = {
            "level": level,
            "format": format_string or LoggingConfigurator.DEFAULT_FORMAT,
            "datefmt": "%Y-%m-%d %H:%M:%S",
        }
        if log_file:
            basic_config_args["filename"] = log_file
            basic_config_args["filemode"] = "a"

        logging.basicConfig(**basic_config_args)

    @staticmethod
    def configure_structured_logging(
        config_dict: Optional[Dict[str, Any]] = None, config_file: Optional[str] = None
    ) -> None:
        """
        Configure structured logging using a dictionary or file.

        Args:
            config_dict: Logging configuration dictionary
            config_file: Path to logging configuration file
        """
        if config_file and Path(config_file).exists():
            logging.config.fileConfig(config_file)
        elif config_dict:
            logging.config.dictConfig(config_dict)
        else:
            logging.config.dictConfig(LoggingConfigurator.default_config())

    @staticmethod
    def default_config(level: str = "INFO") -> Dict[str, Any]:
        """Default dictConfig routing the ``vet_scheduling`` logger to stdout."""
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {"format": LoggingConfigurator.DEFAULT_FORMAT},
                "detailed": {
                    "format": (
                        "%(asctime)s - %(name)s - %(levelname)s - %(module)s - "
                        "%(funcName)s - %(message)s"
                    )
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": level,
                    "formatter": "standard",
                    "stream": "ext://sys.stdout",
                }
            },
            "loggers": {
                "vet_scheduling": {
                    "level": level,
                    "handlers": ["console"],
                    "propagate": False,
                }
            },
            "root": {"level": "WARNING", "handlers": ["console"]},
        }


@dataclass
class SchedulingSettings:
    """
    Tunable clinic rules used by the booking engine.

    Defaults reproduce the clinic's published policy: a 09:00-18:00 calendar
    in 5-minute steps, groups of at most 3 services, a 30 minute grace period
    before an appointment is treated as missed, and reminder limits of one
    SMS per 6 hours (3 per day) and one email per hour (5 per day).
    """

    clinic_name: str = "Happy Paws Vet Clinic"
    clinic_timezone: Optional[str] = None

    open_time: time = time(9, 0)
    close_time: time = time(18, 0)
    slot_minutes: int = 5
    enforce_slot_grid: bool = True

    draft_group_limit: int = 3
    missed_grace_minutes: int = 30
    missed_sweep_interval_seconds: float = 300.0

    sms_min_interval_hours: float = 6.0
    sms_daily_limit: int = 3
    email_min_interval_hours: float = 1.0
    email_daily_limit: int = 5
    reminder_days_before: Tuple[int, ...] = (5, 3)
    reminder_send_time: time = time(8, 0)
    gateway_timeout_seconds: float = 10.0

    sms_api_url: str = "https://sms.iprogtech.com/api/v1/message-reminders"
    sms_api_token: Optional[str] = field(default=None, repr=False)
    sms_sender_name: str = "Happy Paws Veterinary Clinic"

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = field(default=None, repr=False)
    smtp_from: Optional[str] = None
    smtp_use_starttls: bool = True

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """
        Check the settings for internal consistency.

        Raises:
            ConfigError: If a value is out of range
        """
        if self.open_time >= self.close_time:
            raise ConfigError(
                "Clinic open time must be before close time",
                config_key="CLINIC_OPEN_TIME",
                config_value=self.open_time.strftime("%H:%M"),
            )
        if self.slot_minutes <= 0 or 60 % self.slot_minutes != 0:
            raise ConfigError(
                "Slot length must be a positive divisor of 60 minutes",
                config_key="SLOT_MINUTES",
                config_value=str(self.slot_minutes),
            )
        if self.draft_group_limit < 1:
            raise ConfigError(
                "Draft group limit must be at least 1",
                config_key="DRAFT_GROUP_LIMIT",
                config_value=str(self.draft_group_limit),
            )
        for key, value in (
            ("MISSED_GRACE_MINUTES", self.missed_grace_minutes),
            ("SMS_DAILY_LIMIT", self.sms_daily_limit),
            ("EMAIL_DAILY_LIMIT", self.email_daily_limit),
        ):
            if value < 0:
                raise ConfigError(
                    f"{key} cannot be negative", config_key=key, config_value=str(value)
                )
        if self.gateway_timeout_seconds <= 0:
            raise ConfigError(
                "Gateway timeout must be positive",
                config_key="GATEWAY_TIMEOUT_SECONDS",
                config_value=str(self.gateway_timeout_seconds),
            )

    @classmethod
    def from_env(cls) -> "SchedulingSettings":
        """
        Build settings from environment variables, falling back to defaults.

        Returns:
            Validated settings instance

        Raises:
            ConfigError: If a variable is malformed or the result is inconsistent
        """
        defaults = cls()
        days = EnvironmentConfig.get_list("REMINDER_DAYS_BEFORE")
        try:
            reminder_days = tuple(int(d) for d in days) if days else defaults.reminder_days_before
        except ValueError:
            raise ConfigError(
                "REMINDER_DAYS_BEFORE must be a comma separated list of integers",
                config_key="REMINDER_DAYS_BEFORE",
                config_value=",".join(days or []),
            )

        return cls(
            clinic_name=EnvironmentConfig.get_str("CLINIC_NAME", defaults.clinic_name),
            clinic_timezone=EnvironmentConfig.get_str("CLINIC_TIMEZONE"),
            open_time=EnvironmentConfig.get_time("CLINIC_OPEN_TIME", defaults.open_time),
            close_time=EnvironmentConfig.get_time("CLINIC_CLOSE_TIME", defaults.close_time),
            slot_minutes=EnvironmentConfig.get_int("SLOT_MINUTES", defaults.slot_minutes),
            enforce_slot_grid=EnvironmentConfig.get_bool(
                "ENFORCE_SLOT_GRID", defaults.enforce_slot_grid
            ),
            draft_group_limit=EnvironmentConfig.get_int(
                "DRAFT_GROUP_LIMIT", defaults.draft_group_limit
            ),
            missed_grace_minutes=EnvironmentConfig.get_int(
                "MISSED_GRACE_MINUTES", defaults.missed_grace_minutes
            ),
            missed_sweep_interval_seconds=EnvironmentConfig.get_float(
                "MISSED_SWEEP_INTERVAL_SECONDS", defaults.missed_sweep_interval_seconds
            ),
            sms_min_interval_hours=EnvironmentConfig.get_float(
                "SMS_MIN_INTERVAL_HOURS", defaults.sms_min_interval_hours
            ),
            sms_daily_limit=EnvironmentConfig.get_int(
                "SMS_DAILY_LIMIT", defaults.sms_daily_limit
            ),
            email_min_interval_hours=EnvironmentConfig.get_float(
                "EMAIL_MIN_INTERVAL_HOURS", defaults.email_min_interval_hours
            ),
            email_daily_limit=EnvironmentConfig.get_int(
                "EMAIL_DAILY_LIMIT", defaults.email_daily_limit
            ),
            reminder_days_before=reminder_days,
            reminder_send_time=EnvironmentConfig.get_time(
                "REMINDER_SEND_TIME", defaults.reminder_send_time
            ),
            gateway_timeout_seconds=EnvironmentConfig.get_float(
                "GATEWAY_TIMEOUT_SECONDS", defaults.gateway_timeout_seconds
            ),
            sms_api_url=EnvironmentConfig.get_str("SMS_API_URL", defaults.sms_api_url),
            sms_api_token=EnvironmentConfig.get_str("SMS_API_TOKEN"),
            sms_sender_name=EnvironmentConfig.get_str(
                "SMS_SENDER_NAME", defaults.sms_sender_name
            ),
            smtp_host=EnvironmentConfig.get_str("SMTP_HOST"),
            smtp_port=EnvironmentConfig.get_int("SMTP_PORT", defaults.smtp_port),
            smtp_username=EnvironmentConfig.get_str("SMTP_USERNAME"),
            smtp_password=EnvironmentConfig.get_str("SMTP_PASSWORD"),
            smtp_from=EnvironmentConfig.get_str("SMTP_FROM"),
            smtp_use_starttls=EnvironmentConfig.get_bool(
                "SMTP_USE_STARTTLS", defaults.smtp_use_starttls
            ),
        )
