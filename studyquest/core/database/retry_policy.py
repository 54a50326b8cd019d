"""
Database Retry Policy - Infrastructure Resilience

Purpose
-------
Retry transient database failures with exponential backoff and jitter.

Architecture Notes
------------------
**Retry Classification**:
- Retriable: OperationalError, DBAPIError (connection/transient issues)
- Non-retriable: everything else (constraints, logic errors, domain errors)

**Backoff Strategy**:
- min(initial * 2^(attempt-1), max) + random(0, jitter)

**When to Use**:
- Idempotent reads (progress lookups, history queries, user enumeration).
- Never around XP grants or achievement unlocks: those are made safe by
  store-level uniqueness, not by re-running them.

Configuration
-------------
- DATABASE_RETRY_MAX_ATTEMPTS (default: 3)
- DATABASE_RETRY_INITIAL_BACKOFF_MS (default: 50)
- DATABASE_RETRY_MAX_BACKOFF_MS (default: 1000)
- DATABASE_RETRY_JITTER_MS (default: 50)
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

from studyquest.core.config.config import Config
from studyquest.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class DatabaseRetryConfig:
    """
    Configuration for database retry behavior.

    Attributes
    ----------
    max_attempts : int
        Maximum number of attempts (including initial attempt).
    initial_backoff_ms : int
        Initial backoff duration in milliseconds.
    max_backoff_ms : int
        Maximum backoff duration in milliseconds.
    jitter_ms : int
        Maximum random jitter to add to backoff in milliseconds.
    retriable_exceptions : Tuple[Type[BaseException], ...]
        Exception types considered retriable.
    """

    max_attempts: int
    initial_backoff_ms: int
    max_backoff_ms: int
    jitter_ms: int
    retriable_exceptions: Tuple[Type[BaseException], ...] = field(
        default=(OperationalError, DBAPIError)
    )

    @classmethod
    def from_config(cls) -> DatabaseRetryConfig:
        return cls(
            max_attempts=int(Config.DATABASE_RETRY_MAX_ATTEMPTS),
            initial_backoff_ms=int(Config.DATABASE_RETRY_INITIAL_BACKOFF_MS),
            max_backoff_ms=int(Config.DATABASE_RETRY_MAX_BACKOFF_MS),
            jitter_ms=int(Config.DATABASE_RETRY_JITTER_MS),
        )


# ============================================================================
# Retry Policy
# ============================================================================


class DatabaseRetryPolicy:
    """
    Execute async database operations with retry semantics.

    Usage
    -----
    >>> retry_policy = DatabaseRetryPolicy.from_config()
    >>> progress = await retry_policy.execute(
    ...     lambda: store.get_user_progress(user_id),
    ...     operation_name="store.get_user_progress",
    ... )
    """

    def __init__(self, config: DatabaseRetryConfig) -> None:
        self._config = config

    @classmethod
    def from_config(cls) -> DatabaseRetryPolicy:
        return cls(DatabaseRetryConfig.from_config())

    @property
    def config(self) -> DatabaseRetryConfig:
        return self._config

    def _is_retriable(self, exc: BaseException) -> bool:
        return isinstance(exc, self._config.retriable_exceptions)

    def _compute_backoff_ms(self, attempt: int) -> int:
        exponent = max(attempt - 1, 0)
        base = self._config.initial_backoff_ms * (2**exponent)
        capped = min(base, self._config.max_backoff_ms)
        jitter = random.randint(0, self._config.jitter_ms) if self._config.jitter_ms > 0 else 0
        return capped + jitter

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        Execute `operation`, retrying retriable exceptions up to max_attempts.

        Re-raises the last exception when retries are exhausted or when the
        exception is not retriable.
        """
        ctx_extra = context.copy() if context else {}
        ctx_extra["operation"] = operation_name

        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as exc:
                error_type = type(exc).__name__
                retriable = self._is_retriable(exc)
                will_retry = retriable and attempt < self._config.max_attempts

                if not will_retry:
                    if retriable:
                        logger.error(
                            "Database operation retries exhausted",
                            extra={
                                **ctx_extra,
                                "attempt": attempt,
                                "error_type": error_type,
                                "max_attempts": self._config.max_attempts,
                            },
                        )
                    raise

                backoff_ms = self._compute_backoff_ms(attempt)
                logger.warning(
                    "Database operation failed, retrying",
                    extra={
                        **ctx_extra,
                        "attempt": attempt,
                        "error_type": error_type,
                        "backoff_ms": backoff_ms,
                    },
                )
                await asyncio.sleep(backoff_ms / 1000.0)
