"""
Validation and normalization helpers for reminder contacts and free text.
"""

import re
import unicodedata
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


class ValidationError(Exception):
    """Custom validation error with structured error information."""

    def __init__(
        self, message: str, field: Optional[str] = None, code: Optional[str] = None
    ):
        self.message = message
        self.field = field
        self.code = code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the error to a dictionary format."""
        return {"message": self.message, "field": self.field, "code": self.code}


class ValidationResult(Generic[T]):
    """Result of a validation operation."""

    def __init__(
        self, value: Optional[T] = None, errors: Optional[List[ValidationError]] = None
    ):
        self.value = value
        self.errors = errors or []
        self.is_valid = len(self.errors) == 0

    def add_error(self, error: ValidationError) -> None:
        """Add an error to the result."""
        self.errors.append(error)
        self.is_valid = False


EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

# Philippine mobile numbers in gateway form: 63 followed by 10 digits
PH_MOBILE_PATTERN = re.compile(r"^63\d{10}$")


def sanitize_string(value: str, max_length: Optional[int] = None) -> str:
    """
    Sanitize a string by normalizing unicode and trimming whitespace.

    Args:
        value: The string to sanitize
        max_length: Maximum allowed length

    Returns:
        Sanitized string
    """
    normalized = unicodedata.normalize("NFKC", value)
    sanitized = re.sub(r"\s+", " ", normalized.strip())

    if max_length and len(sanitized) > max_length:
        sanitized = sanitized[:max_length].rstrip()

    return sanitized


def validate_email(email: Optional[str]) -> ValidationResult[str]:
    """
    Validate an email address.

    Args:
        email: The email to validate

    Returns:
        ValidationResult with the sanitized email or errors
    """
    result = ValidationResult[str]()

    if not email:
        result.add_error(ValidationError("Email is required", "email", "required"))
        return result

    sanitized_email = sanitize_string(email).lower()

    if not EMAIL_PATTERN.match(sanitized_email):
        result.add_error(
            ValidationError("Invalid email format", "email", "invalid_format")
        )
        return result

    if len(sanitized_email) > 254:
        result.add_error(ValidationError("Email is too long", "email", "too_long"))
        return result

    result.value = sanitized_email
    return result


def normalize_mobile_number(phone: Optional[str]) -> ValidationResult[str]:
    """
    Normalize a Philippine mobile number to the SMS gateway's ``63XXXXXXXXXX`` form.

    ``09171234567`` and ``+639171234567`` both become ``639171234567``.

    Args:
        phone: Number as stored on the owner's profile

    Returns:
        ValidationResult with the normalized number or errors
    """
    result = ValidationResult[str]()

    if not phone:
        result.add_error(
            ValidationError("Phone number is required", "phone", "required")
        )
        return result

    digits = re.sub(r"[\s\-()]", "", phone.strip())
    if digits.startswith("+"):
        digits = digits[1:]
    if digits.startswith("09"):
        digits = "63" + digits[1:]

    if not PH_MOBILE_PATTERN.match(digits):
        result.add_error(
            ValidationError("Invalid mobile number format", "phone", "invalid_format")
        )
        return result

    result.value = digits
    return result
