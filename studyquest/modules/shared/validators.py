"""
Input Validation for the progression engine.

Purpose
-------
Centralized validation of caller-supplied values before any store access:
user and source identifiers, XP amounts, calendar dates, review difficulties,
and batch settings.

Responsibilities
----------------
- Validate and normalize inputs (strip ids, parse `YYYY-MM-DD`, lower-case
  difficulty names)
- Reject negative, zero, non-integer, and non-finite amounts
- Raise ValidationError with a clear message

Non-Responsibilities
--------------------
- Business rule checks (services)
- Persistence constraints (store)

Observability
-------------
Every failure is logged at DEBUG with field_name, raw_value and reason
before ValidationError is raised.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any, NoReturn, Optional

from studyquest.core.logging.logger import get_logger
from studyquest.domain.enums import Difficulty

from .exceptions import ValidationError

logger = get_logger(__name__)

_ISO_DATE_RE = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")
MAX_IDENTIFIER_LENGTH = 256


def _raise_validation_error(field_name: str, value: Any, message: str) -> NoReturn:
    logger.debug(
        "Input validation failed",
        extra={
            "field_name": field_name,
            "raw_value": repr(value),
            "reason": message,
        },
    )
    raise ValidationError(field_name, message)


class InputValidator:
    """
    Stateless validation helpers.

    All methods return the normalized value on success and raise
    ValidationError on failure.
    """

    # =========================================================================
    # IDENTIFIERS
    # =========================================================================

    @staticmethod
    def validate_identifier(value: Any, field_name: str) -> str:
        if not isinstance(value, str):
            _raise_validation_error(field_name, value, "Must be a string")

        normalized = value.strip()
        if not normalized:
            _raise_validation_error(field_name, value, "Cannot be empty")
        if len(normalized) > MAX_IDENTIFIER_LENGTH:
            _raise_validation_error(
                field_name,
                value,
                f"Cannot exceed {MAX_IDENTIFIER_LENGTH} characters",
            )
        return normalized

    @staticmethod
    def validate_user_id(value: Any) -> str:
        return InputValidator.validate_identifier(value, "user_id")

    # =========================================================================
    # NUMBERS
    # =========================================================================

    @staticmethod
    def validate_integer(
        value: Any,
        field_name: str,
        min_value: Optional[int] = None,
        max_value: Optional[int] = None,
    ) -> int:
        if value is None:
            _raise_validation_error(field_name, value, "Value is required")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            _raise_validation_error(field_name, value, f"Must be a number, got {value!r}")
        if isinstance(value, float):
            if not math.isfinite(value):
                _raise_validation_error(field_name, value, "Must be finite")
            if not value.is_integer():
                _raise_validation_error(field_name, value, "Must be a whole number")

        int_value = int(value)
        if min_value is not None and int_value < min_value:
            _raise_validation_error(
                field_name,
                int_value,
                f"Must be at least {min_value}, got {int_value}",
            )
        if max_value is not None and int_value > max_value:
            _raise_validation_error(
                field_name,
                int_value,
                f"Cannot exceed {max_value}, got {int_value}",
            )
        return int_value

    @staticmethod
    def validate_positive_integer(value: Any, field_name: str) -> int:
        return InputValidator.validate_integer(value, field_name, min_value=1)

    @staticmethod
    def validate_non_negative_integer(value: Any, field_name: str) -> int:
        return InputValidator.validate_integer(value, field_name, min_value=0)

    # =========================================================================
    # DATES
    # =========================================================================

    @staticmethod
    def validate_date(value: Any, field_name: str = "date") -> date:
        """
        Accept a `date`, a `datetime` (its calendar day), or a `YYYY-MM-DD`
        string.
        """
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if not isinstance(value, str) or not _ISO_DATE_RE.match(value.strip()):
            _raise_validation_error(field_name, value, "Must be a date in YYYY-MM-DD format")
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            _raise_validation_error(field_name, value, "Not a valid calendar date")

    # =========================================================================
    # CHOICES
    # =========================================================================

    @staticmethod
    def validate_difficulty(value: Any) -> Difficulty:
        if isinstance(value, Difficulty):
            return value
        if not isinstance(value, str):
            _raise_validation_error("difficulty", value, "Must be a string")

        normalized = value.strip().lower()
        try:
            return Difficulty(normalized)
        except ValueError:
            allowed = ", ".join(d.value for d in Difficulty)
            _raise_validation_error(
                "difficulty",
                value,
                f"Invalid difficulty '{value}'. Must be one of: {allowed}",
            )
