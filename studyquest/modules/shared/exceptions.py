"""
Domain exceptions for the StudyQuest progression engine.

Purpose
-------
Define the structured exception hierarchy raised by progression services for
invalid input, missing records, rule violations, duplicate awards, and
store/infrastructure failures. Callers (API handlers, jobs) translate these
into responses, retries, or alerts.

Design Notes
------------
- All domain exceptions inherit from `ProgressionDomainException`.
- Each exception carries:
  - `message`: human-readable description
  - `details`: additional structured context (dict-like)
  - `severity`: `ErrorSeverity` value for logging/alerting
  - `is_retryable`: whether the operation can be retried
  - `error_code`: short, stable identifier for programmatic use
- Helper functions (`is_transient_error`, `get_error_severity`, `should_alert`)
  centralize common exception handling patterns.
- Store implementations translate driver errors into `ExternalServiceError`
  or `ResourceExhaustedError` so services never see SQLAlchemy types.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels for logging and alerting."""

    DEBUG = "debug"  # Expected, not concerning (e.g., duplicate award attempts)
    INFO = "info"  # Normal operation (e.g., validation failures)
    WARNING = "warning"  # Concerning but handled (e.g., retryable errors)
    ERROR = "error"  # Unexpected errors requiring attention
    CRITICAL = "critical"  # System-level failures requiring immediate action


class ProgressionDomainException(Exception):
    """
    Base exception for all progression domain errors.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error (dict-like)
        severity: Error severity level for logging handlers
        is_retryable: Whether the operation can be retried
        error_code: Optional code for programmatic handling

    Example:
        >>> raise ProgressionDomainException(
        ...     "Streak update failed",
        ...     {"user_id": "u-1"}
        ... )
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        self.severity: ErrorSeverity = severity or self.DEFAULT_SEVERITY
        self.is_retryable: bool = (
            is_retryable if is_retryable is not None else self.DEFAULT_RETRYABLE
        )
        self.error_code: str = error_code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        details_str = f" | Details: {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{details_str}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"severity={self.severity.value!r}, "
            f"is_retryable={self.is_retryable!r}"
            ")"
        )


class ValidationError(ProgressionDomainException):
    """
    Raised when caller input fails domain validation.

    Negative XP totals, non-positive levels, unknown difficulties, malformed
    dates, unknown condition types.

    Args:
        field: Name of the field that failed validation
        message: Explanation of why validation failed
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO
    DEFAULT_RETRYABLE = False

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.validation_message = message

        super().__init__(
            f"Validation error for {field}: {message}",
            details={
                "field": field,
                "validation_message": message,
            },
            error_code=f"VALIDATION_{field.upper()}",
        )


class NotFoundError(ProgressionDomainException):
    """
    Raised when a referenced record does not exist.

    Args:
        resource_type: Type of resource (e.g., "Achievement", "UserProgress")
        identifier: Optional identifier for the missing resource
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO
    DEFAULT_RETRYABLE = False

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier

        if identifier is not None:
            message = f"{resource_type} not found: {identifier}"
        else:
            message = f"{resource_type} not found"

        super().__init__(
            message,
            details={
                "resource_type": resource_type,
                "identifier": identifier,
            },
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class InvalidOperationError(ProgressionDomainException):
    """
    Raised when an action violates a progression rule.

    Example:
        >>> raise InvalidOperationError(
        ...     "award_daily_goal_xp",
        ...     "Daily goal not yet completed"
        ... )
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO
    DEFAULT_RETRYABLE = False

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason

        super().__init__(
            f"Invalid operation '{action}': {reason}",
            details={
                "action": action,
                "reason": reason,
            },
            error_code=f"INVALID_{action.upper()}",
        )


class DuplicateAwardError(InvalidOperationError):
    """
    Raised when a one-time reward has already been granted.

    Expected under retries and concurrent triggers, so it logs at DEBUG.

    Args:
        action: The award operation (e.g., "award_daily_goal_xp")
        key: The idempotency key that was already used
    """

    DEFAULT_SEVERITY = ErrorSeverity.DEBUG

    def __init__(self, action: str, key: str) -> None:
        self.key = key
        super().__init__(action, f"already awarded for {key}")
        self.details["key"] = key
        self.error_code = "DUPLICATE_AWARD"


class ConfigurationError(ProgressionDomainException):
    """Raised when a required configuration value is missing or invalid."""

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL
    DEFAULT_RETRYABLE = False

    def __init__(self, key: str, message: str) -> None:
        self.key = key
        super().__init__(
            message,
            details={"config_key": key},
            error_code="CONFIGURATION_ERROR",
        )


class ExternalServiceError(ProgressionDomainException):
    """
    Raised when the store or another backing service fails transiently.

    Args:
        service: Backing service name (e.g., "progression_store")
        operation: Operation that failed
        reason: Driver-level reason
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(self, service: str, operation: str, reason: str) -> None:
        self.service = service
        self.operation = operation
        self.reason = reason

        super().__init__(
            f"{service} failed during {operation}: {reason}",
            details={
                "service": service,
                "operation": operation,
                "reason": reason,
            },
            error_code=f"{service.upper()}_UNAVAILABLE",
        )


class ResourceExhaustedError(ExternalServiceError):
    """
    Raised when the store reports exhausted capacity (connection pool,
    statement timeout, quota). Batch jobs stop early when they see it.
    """

    DEFAULT_SEVERITY = ErrorSeverity.ERROR

    def __init__(self, service: str, operation: str, reason: str) -> None:
        super().__init__(service, operation, reason)
        self.error_code = "RESOURCE_EXHAUSTED"


class CriticalFailureError(ProgressionDomainException):
    """
    Raised when a batch operation cannot run at all (e.g., the user list
    cannot be enumerated).
    """

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL
    DEFAULT_RETRYABLE = False

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason

        super().__init__(
            f"Critical failure in {operation}: {reason}",
            details={"operation": operation, "reason": reason},
            error_code="CRITICAL_FAILURE",
        )


# Utility functions for exception handling patterns


def is_transient_error(exc: Exception) -> bool:
    if isinstance(exc, ProgressionDomainException):
        return exc.is_retryable
    return False


def get_error_severity(exc: Exception) -> ErrorSeverity:
    if isinstance(exc, ProgressionDomainException):
        return exc.severity
    return ErrorSeverity.ERROR


def should_alert(exc: Exception) -> bool:
    """True if severity is ERROR or CRITICAL."""
    severity = get_error_severity(exc)
    return severity in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
