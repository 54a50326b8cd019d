"""
Shared plumbing for batch entry points.

Scheduled jobs may be triggered on several instances at once. `job_lock`
holds a Redis lock for the duration of a run; a second trigger that finds
the lock taken gives up immediately and the caller skips the run.
"""

from __future__ import annotations

from contextlib import AsyncExitStack, asynccontextmanager
from typing import TYPE_CHECKING, AsyncGenerator, Optional

from studyquest.core.logging.logger import get_logger

if TYPE_CHECKING:
    from studyquest.core.redis.service import RedisService

logger = get_logger(__name__)

LOCK_KEY_PREFIX = "studyquest:jobs:"


class JobAlreadyRunningError(RuntimeError):
    def __init__(self, job: str) -> None:
        super().__init__(f"Job '{job}' is already running on another instance")
        self.job = job


@asynccontextmanager
async def job_lock(
    redis: Optional[RedisService],
    job: str,
    timeout_seconds: int,
) -> AsyncGenerator[None, None]:
    """
    Run the block under the job's distributed lock.

    Without Redis the block runs unguarded.

    Raises:
        JobAlreadyRunningError: Another instance holds the lock
    """
    async with AsyncExitStack() as stack:
        if redis is None:
            logger.debug("No Redis configured; running job without lock", extra={"job": job})
        else:
            try:
                await stack.enter_async_context(
                    redis.acquire_lock(
                        f"{LOCK_KEY_PREFIX}{job}",
                        timeout=timeout_seconds,
                        wait_timeout=0,
                        operation=job,
                    )
                )
            except TimeoutError:
                raise JobAlreadyRunningError(job) from None
        yield
