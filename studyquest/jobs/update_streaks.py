"""
Nightly streak reconciliation.

Runs `StreakService.update_all_streaks` once with the batch settings from
`jobs.update_streaks.*`, under a distributed lock so overlapping triggers do
not double-run. Scheduling is external (cron, a task runner, the CLI).
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Optional

from studyquest.core.logging.logger import LogContext, get_logger
from studyquest.domain.models import StreakBatchResult
from studyquest.jobs.base import JobAlreadyRunningError, job_lock
from studyquest.modules.shared.constants import (
    JOB_LOCK_TIMEOUT_SECONDS,
    STREAK_BATCH_DELAY_MS,
    STREAK_BATCH_SIZE,
    STREAK_MAX_USERS_PER_RUN,
)
from studyquest.modules.shared.exceptions import CriticalFailureError

if TYPE_CHECKING:
    from studyquest.core.services.container import ServiceContainer

logger = get_logger(__name__)

JOB_NAME = "update_streaks"


async def run_update_streaks(container: ServiceContainer) -> Optional[StreakBatchResult]:
    """
    Returns:
        Run statistics, or None when another instance holds the job lock.

    Raises:
        CriticalFailureError: Users cannot be enumerated
    """
    config = container.config_manager
    batch_size = config.get_int("jobs.update_streaks.batch_size", STREAK_BATCH_SIZE)
    batch_delay_ms = config.get_int("jobs.update_streaks.batch_delay_ms", STREAK_BATCH_DELAY_MS)
    max_users = config.get_int("jobs.update_streaks.max_users_per_run", STREAK_MAX_USERS_PER_RUN)
    lock_timeout = config.get_int("jobs.update_streaks.lock_timeout_seconds", JOB_LOCK_TIMEOUT_SECONDS)

    async with LogContext(job=JOB_NAME, operation="update_all_streaks"):
        start = time.perf_counter()
        logger.info(
            "Streak update job starting",
            extra={"batch_size": batch_size, "batch_delay_ms": batch_delay_ms, "max_users": max_users},
        )

        try:
            async with job_lock(container.redis, JOB_NAME, lock_timeout):
                result = await container.streaks.update_all_streaks(
                    batch_size=batch_size,
                    batch_delay_ms=batch_delay_ms,
                    max_users=max_users,
                )
        except JobAlreadyRunningError:
            logger.warning("Streak update job already running elsewhere; skipping")
            return None
        except CriticalFailureError:
            logger.critical("Streak update job failed", exc_info=True)
            raise

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info("Streak update job finished", extra={**result.to_dict(), "duration_ms": duration_ms})

        if result.skipped:
            logger.warning(
                f"{result.skipped} users were not processed in this run",
                extra={"skipped": result.skipped, "status": result.status},
            )
        for error in result.errors:
            logger.warning(
                "Streak update failed for user",
                extra={"user_id": error.user_id, "error": error.error, "error_type": error.error_type},
            )
        return result
