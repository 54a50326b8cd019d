"""
StudyQuest Shared Module

Purpose
-------
Domain-level foundations for all progression modules:
- Domain exceptions and error handling
- Base service and repository patterns
- Progression constants and level formulas
- Input validation

Usage
-----
    from studyquest.modules.shared import (
        BaseService,
        ValidationError,
        calculate_level,
        InputValidator,
    )
"""

from __future__ import annotations

# Base patterns
from .base_repository import BaseRepository
from .base_service import BaseService

# Domain exceptions
from .exceptions import (
    ConfigurationError,
    CriticalFailureError,
    DuplicateAwardError,
    ErrorSeverity,
    ExternalServiceError,
    InvalidOperationError,
    NotFoundError,
    ProgressionDomainException,
    ResourceExhaustedError,
    ValidationError,
    get_error_severity,
    is_transient_error,
    should_alert,
)

# Formulas
from .formulas import (
    LevelUpResult,
    calculate_level,
    check_level_up,
    get_current_xp,
    xp_for_level,
    xp_for_next_level,
    xp_to_next_level,
)

# Validators
from .validators import InputValidator

__all__ = [
    # Base patterns
    "BaseService",
    "BaseRepository",
    # Exceptions
    "ProgressionDomainException",
    "ErrorSeverity",
    "ValidationError",
    "NotFoundError",
    "InvalidOperationError",
    "DuplicateAwardError",
    "ConfigurationError",
    "ExternalServiceError",
    "ResourceExhaustedError",
    "CriticalFailureError",
    "is_transient_error",
    "get_error_severity",
    "should_alert",
    # Formulas
    "LevelUpResult",
    "xp_for_level",
    "calculate_level",
    "get_current_xp",
    "check_level_up",
    "xp_for_next_level",
    "xp_to_next_level",
    # Validators
    "InputValidator",
]
