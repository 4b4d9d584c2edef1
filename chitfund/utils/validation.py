"""
Input Validation - sanitization of caller-supplied values.

All money is carried as integer minor units (paise). Validators return
(is_valid, error_message) so callers can collect several problems;
`ensure` turns a failed check into a ValidationError at the seam.
"""

import re
from datetime import datetime
from typing import Any, Optional, Tuple

from chitfund.core.errors import InvalidAmount, ValidationError

# =============================================================================
# Constants
# =============================================================================

MAX_IDENTIFIER_LENGTH = 64
MAX_NAME_LENGTH = 100
MAX_REASON_LENGTH = 200
MAX_NOTES_LENGTH = 500

# Field bounds
MIN_AMOUNT = 0
MAX_AMOUNT = 2**63 - 1
MAX_PERIODS = 1000
MAX_GRACE_DAYS = 365

IDENTIFIER_PATTERN = r"^[A-Za-z0-9_.:\-]+$"


# =============================================================================
# Validation Functions
# =============================================================================


def validate_integer(
    value: Any,
    name: str,
    min_val: int = MIN_AMOUNT,
    max_val: int = MAX_AMOUNT,
) -> Tuple[bool, str]:
    """
    Validate integer within bounds.

    Args:
        value: Value to validate
        name: Field name for errors
        min_val: Minimum allowed value
        max_val: Maximum allowed value

    Returns:
        (is_valid, error_message)
    """
    # bool is an int subclass; True is never a valid amount
    if isinstance(value, bool) or not isinstance(value, int):
        return False, f"{name} must be int, got {type(value).__name__}"

    if value < min_val:
        return False, f"{name} must be >= {min_val}, got {value}"

    if value > max_val:
        return False, f"{name} must be <= {max_val}, got {value}"

    return True, ""


def validate_amount(amount: Any, name: str = "amount") -> Tuple[bool, str]:
    """Validate a non-negative money amount in minor units."""
    return validate_integer(amount, name, MIN_AMOUNT, MAX_AMOUNT)


def validate_positive_amount(amount: Any, name: str = "amount") -> Tuple[bool, str]:
    """Validate a strictly positive money amount in minor units."""
    return validate_integer(amount, name, 1, MAX_AMOUNT)


def validate_period_number(period: Any) -> Tuple[bool, str]:
    """Validate a period (auction) number."""
    return validate_integer(period, "period_number", 1, MAX_PERIODS)


def validate_days(days: Any, name: str = "days", min_val: int = 0) -> Tuple[bool, str]:
    """Validate a day count (grace periods, extensions)."""
    return validate_integer(days, name, min_val, MAX_GRACE_DAYS)


def validate_string(
    value: Any,
    name: str,
    max_length: int = MAX_NAME_LENGTH,
    pattern: Optional[str] = None,
    allow_empty: bool = False,
) -> Tuple[bool, str]:
    """
    Validate string input.

    Args:
        value: Value to validate
        name: Field name for errors
        max_length: Maximum string length
        pattern: Optional regex pattern
        allow_empty: Whether a blank string is acceptable

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"

    if not allow_empty and not value.strip():
        return False, f"{name} is required"

    if len(value) > max_length:
        return False, f"{name} exceeds max length {max_length}"

    if pattern and not re.match(pattern, value):
        return False, f"{name} does not match required pattern"

    return True, ""


def validate_identifier(value: Any, name: str = "id") -> Tuple[bool, str]:
    """Validate an aggregate or member identifier."""
    return validate_string(
        value, name, max_length=MAX_IDENTIFIER_LENGTH, pattern=IDENTIFIER_PATTERN
    )


def validate_datetime(value: Any, name: str) -> Tuple[bool, str]:
    """Validate a datetime instant."""
    if not isinstance(value, datetime):
        return False, f"{name} must be datetime, got {type(value).__name__}"
    return True, ""


# =============================================================================
# Raising helpers
# =============================================================================


def ensure(result: Tuple[bool, str]) -> None:
    """Raise ValidationError if a validator reported a failure."""
    valid, err = result
    if not valid:
        raise ValidationError(err)


def ensure_positive_amount(amount: Any, name: str = "amount") -> int:
    """Return `amount` if it is a positive integer, else raise InvalidAmount."""
    valid, err = validate_positive_amount(amount, name)
    if not valid:
        raise InvalidAmount(err)
    return amount


__all__ = [
    "validate_integer",
    "validate_amount",
    "validate_positive_amount",
    "validate_period_number",
    "validate_days",
    "validate_string",
    "validate_identifier",
    "validate_datetime",
    "ensure",
    "ensure_positive_amount",
    "MAX_IDENTIFIER_LENGTH",
    "MAX_NAME_LENGTH",
    "MAX_REASON_LENGTH",
    "MAX_NOTES_LENGTH",
]
