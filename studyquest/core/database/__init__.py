"""
Database infrastructure: engine/session management, declarative base, retries.
"""

from studyquest.core.database.base import Base, IdMixin, TimestampMixin, utc_now
from studyquest.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from studyquest.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    "Base",
    "IdMixin",
    "TimestampMixin",
    "utc_now",
    "DatabaseRetryConfig",
    "DatabaseRetryPolicy",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
    "DatabaseService",
]
