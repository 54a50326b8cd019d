"""
Hourly achievement sweep.

Evaluates every user's achievements so unlocks driven by data the request
path never sees (externally aggregated metrics, catalog additions) are
granted without waiting for the user's next action.

Users are walked in batches of `jobs.check_achievements.batch_size` with a
pause of `batch_delay_ms` between batches. A store capacity error stops the
sweep and the remaining users are reported as skipped.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from studyquest.core.logging.logger import LogContext, get_logger
from studyquest.domain.models import BatchUserError
from studyquest.jobs.base import JobAlreadyRunningError, job_lock
from studyquest.modules.shared.constants import (
    ACHIEVEMENT_JOB_BATCH_DELAY_MS,
    ACHIEVEMENT_JOB_BATCH_SIZE,
    ACHIEVEMENT_JOB_MAX_LOGGED_ERRORS,
    JOB_LOCK_TIMEOUT_SECONDS,
)
from studyquest.modules.shared.exceptions import CriticalFailureError, ResourceExhaustedError
from studyquest.modules.shared.validators import InputValidator

if TYPE_CHECKING:
    from studyquest.core.services.container import ServiceContainer

logger = get_logger(__name__)

JOB_NAME = "check_achievements"


@dataclass
class AchievementJobResult:
    processed: int = 0
    unlocked: int = 0
    skipped: int = 0
    errors: List[BatchUserError] = field(default_factory=list)
    interrupted: bool = False

    @property
    def status(self) -> str:
        return "interrupted" if self.interrupted else "completed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "processed": self.processed,
            "unlocked": self.unlocked,
            "skipped": self.skipped,
            "error_count": len(self.errors),
        }


async def run_check_achievements(container: ServiceContainer) -> Optional[AchievementJobResult]:
    """
    Returns:
        Sweep statistics, or None when another instance holds the job lock.

    Raises:
        CriticalFailureError: Users cannot be enumerated
    """
    config = container.config_manager
    batch_size = config.get_int("jobs.check_achievements.batch_size", ACHIEVEMENT_JOB_BATCH_SIZE)
    batch_delay_ms = config.get_int("jobs.check_achievements.batch_delay_ms", ACHIEVEMENT_JOB_BATCH_DELAY_MS)
    max_logged = config.get_int("jobs.check_achievements.max_logged_errors", ACHIEVEMENT_JOB_MAX_LOGGED_ERRORS)
    lock_timeout = config.get_int("jobs.check_achievements.lock_timeout_seconds", JOB_LOCK_TIMEOUT_SECONDS)

    async with LogContext(job=JOB_NAME, operation="check_achievements"):
        try:
            async with job_lock(container.redis, JOB_NAME, lock_timeout):
                return await _sweep(container, batch_size, batch_delay_ms, max_logged)
        except JobAlreadyRunningError:
            logger.warning("Achievement job already running elsewhere; skipping")
            return None


async def _sweep(
    container: ServiceContainer,
    batch_size: int,
    batch_delay_ms: int,
    max_logged: int,
) -> AchievementJobResult:
    batch_size = InputValidator.validate_positive_integer(batch_size, "batch_size")
    batch_delay_ms = InputValidator.validate_non_negative_integer(batch_delay_ms, "batch_delay_ms")
    start = time.perf_counter()
    result = AchievementJobResult()

    try:
        user_ids = await container.store.get_all_user_ids()
    except Exception as exc:
        logger.critical("Cannot enumerate users for achievement job", exc_info=True)
        raise CriticalFailureError("check_achievements", f"cannot enumerate users: {exc}") from exc

    total_batches = (len(user_ids) + batch_size - 1) // batch_size
    logger.info(
        "Achievement job starting",
        extra={"user_count": len(user_ids), "batch_size": batch_size, "total_batches": total_batches},
    )

    for offset in range(0, len(user_ids), batch_size):
        for user_id in user_ids[offset : offset + batch_size]:
            result.processed += 1
            try:
                unlocks = await container.achievements.check_achievements(user_id)
            except ResourceExhaustedError as exc:
                result.errors.append(
                    BatchUserError(user_id=user_id, error=str(exc), error_type=type(exc).__name__)
                )
                result.skipped = len(user_ids) - result.processed
                result.interrupted = True
                logger.error(
                    "Store capacity exhausted; stopping achievement job",
                    extra={**result.to_dict(), "user_id": user_id},
                )
                return result
            except Exception as exc:
                result.errors.append(
                    BatchUserError(user_id=user_id, error=str(exc), error_type=type(exc).__name__)
                )
                if len(result.errors) <= max_logged:
                    logger.error(
                        "Achievement check failed for user",
                        extra={"user_id": user_id, "error": str(exc), "error_type": type(exc).__name__},
                    )
                continue
            result.unlocked += len(unlocks)

        if batch_delay_ms > 0 and offset + batch_size < len(user_ids):
            await asyncio.sleep(batch_delay_ms / 1000)

    if len(result.errors) > max_logged:
        logger.warning(
            f"{len(result.errors) - max_logged} further achievement errors not logged",
            extra={"error_count": len(result.errors)},
        )

    logger.info(
        "Achievement job finished",
        extra={**result.to_dict(), "duration_ms": round((time.perf_counter() - start) * 1000, 2)},
    )
    return result
