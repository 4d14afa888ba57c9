"""
OpenAgency - Input validation helpers.

Provides validation functions for checking caller input before any remote
call is made. Violations fail fast with InputValidationError.
"""

from typing import Any

from .exceptions import ValidationError as BaseValidationError


class InputValidationError(BaseValidationError):
    """Raised when input validation fails before making a remote call."""

    def __init__(self, message: str, field: str = None, value: Any = None):
        super().__init__(message, status_code=None, response=None)
        self.field = field
        self.value = value


ValidationError = InputValidationError


def validate_message(value: Any, field_name: str = "message") -> None:
    """Validate that a message is a non-empty string."""
    if not isinstance(value, str):
        raise ValidationError(
            f"{field_name} must be a non-empty string",
            field=field_name,
            value=value,
        )
    if not value:
        raise ValidationError(f"{field_name} cannot be empty", field=field_name, value=value)


def validate_name(value: Any, field_name: str = "name") -> None:
    """Validate an agent or capability name."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"{field_name} must be a non-empty string",
            field=field_name,
            value=value,
        )

