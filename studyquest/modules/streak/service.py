"""
Streak Service
==============

Purpose
-------
Consecutive-day state machine per learner, milestone bonuses, and the
nightly reconciliation over every known user.

State Machine
-------------
NoStreak (current=0) <-> Active(n) (current=n>=1)

- increment_streak: Active(n) -> Active(n+1); repeat on the same day is a no-op
- start_new_streak: any -> Active(1) after a break; no bonus
- reset_streak:     any -> NoStreak; `longest` is preserved
- check_and_update_daily_streak: the per-request decision point once the
  day's goal is met (continue the chain when yesterday was met, otherwise
  start over at 1)

Milestones
----------
Day 30 earns the major bonus; day 7 and every further multiple of 7 earn the
minor bonus. Never both on one increment. Each bonus is keyed
`streak-{milestone}-{date}` in the XP ledger, so the ledger's own
idempotency guard prevents a double award.

Batch Reconciliation
--------------------
`update_all_streaks` walks all user ids in batches with a pause between
batches (backpressure toward the store). Per-user failures are recorded and
the batch continues; ResourceExhaustedError stops the run and returns the
partial statistics with status "interrupted".
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date, datetime
from typing import TYPE_CHECKING, Optional, Union

from studyquest.core.database.base import utc_now
from studyquest.domain.enums import XPSource
from studyquest.domain.models import (
    BatchUserError,
    StreakBatchResult,
    StreakBonus,
    StreakData,
    StreakHistoryEntry,
    StreakUpdate,
    UserProgress,
    previous_day,
)
from studyquest.modules.shared.base_service import BaseService
from studyquest.modules.shared.constants import (
    STREAK_30_DAYS_XP,
    STREAK_7_DAYS_XP,
    STREAK_BATCH_DELAY_MS,
    STREAK_BATCH_SIZE,
    STREAK_MAJOR_MILESTONE,
    STREAK_MAX_USERS_PER_RUN,
    STREAK_MILESTONE_INTERVAL,
    streak_milestone_source_id,
)
from studyquest.modules.shared.exceptions import CriticalFailureError, ResourceExhaustedError
from studyquest.modules.shared.validators import InputValidator

if TYPE_CHECKING:
    from logging import Logger

    from studyquest.core.config.manager import ConfigManager
    from studyquest.core.event.bus import EventBus
    from studyquest.modules.daily.service import DailyGoalService
    from studyquest.modules.store.protocol import ProgressionStore
    from studyquest.modules.xp.service import XPLedgerService

DateLike = Union[date, datetime, str]


class StreakService(BaseService):
    """
    Streak tracking and nightly reconciliation.

    Dependencies
    ------------
    - ProgressionStore: atomic streak/progress mutators, user enumeration
    - XPLedgerService: milestone bonuses
    - DailyGoalService: per-day goal completion
    """

    def __init__(
        self,
        store: ProgressionStore,
        xp_ledger: XPLedgerService,
        daily_goals: DailyGoalService,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._store = store
        self._xp = xp_ledger
        self._daily = daily_goals

        self.log.info("StreakService initialized")

    @staticmethod
    def _today() -> date:
        return utc_now().date()

    def _resolve_day(self, day: Optional[DateLike]) -> date:
        return self._today() if day is None else InputValidator.validate_date(day)

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get_streak(self, user_id: str) -> StreakData:
        user_id = InputValidator.validate_user_id(user_id)
        streak = await self._store.get_streak_data(user_id)
        return streak if streak is not None else StreakData(user_id=user_id)

    # =========================================================================
    # STATE TRANSITIONS
    # =========================================================================

    async def increment_streak(self, user_id: str, day: Optional[DateLike] = None) -> StreakUpdate:
        """
        Extend the chain by one day and evaluate the milestone bonus.

        Calling it again for the same day returns the stored state unchanged.
        """
        user_id = InputValidator.validate_user_id(user_id)
        day = self._resolve_day(day)
        now = utc_now()

        def extend(current: StreakData) -> Optional[StreakData]:
            if current.has_entry_for(day):
                return None
            new_current = current.current + 1
            return replace(
                current,
                current=new_current,
                longest=max(current.longest, new_current),
                last_update=now,
                history=current.with_entry(StreakHistoryEntry(date=day, count=new_current)),
            )

        result = await self._store.update_streak(user_id, extend)
        streak = result.value

        if not result.changed:
            self.log.debug(
                "Streak already counted for day",
                extra={"user_id": user_id, "date": day.isoformat(), "current": streak.current},
            )
            return StreakUpdate(streak=streak, changed=False)

        await self._sync_progress(user_id, streak, touch_activity=True)
        bonus = await self.check_streak_bonus(user_id, streak.current, day)

        self.log_operation(
            "increment_streak",
            user_id=user_id,
            date=day.isoformat(),
            current=streak.current,
            longest=streak.longest,
            bonus_awarded=bonus.bonus_awarded,
        )
        return StreakUpdate(
            streak=streak,
            changed=True,
            bonus_awarded=bonus.bonus_awarded,
            milestone=bonus.milestone,
        )

    async def start_new_streak(self, user_id: str, day: Optional[DateLike] = None) -> StreakUpdate:
        """Begin a new chain at 1 after a break. No milestone bonus."""
        user_id = InputValidator.validate_user_id(user_id)
        day = self._resolve_day(day)
        now = utc_now()

        def restart(current: StreakData) -> Optional[StreakData]:
            if current.has_entry_for(day):
                return None
            return replace(
                current,
                current=1,
                longest=max(current.longest, 1),
                last_update=now,
                history=current.with_entry(StreakHistoryEntry(date=day, count=1)),
            )

        result = await self._store.update_streak(user_id, restart)
        streak = result.value
        if not result.changed:
            return StreakUpdate(streak=streak, changed=False)

        await self._sync_progress(user_id, streak, touch_activity=True)

        self.log_operation(
            "start_new_streak",
            user_id=user_id,
            date=day.isoformat(),
            longest=streak.longest,
        )
        return StreakUpdate(streak=streak, changed=result.changed)

    async def reset_streak(self, user_id: str, day: Optional[DateLike] = None) -> StreakData:
        """Break the chain: current=0, longest kept, zero-count marker for `day` unless already broken."""
        user_id = InputValidator.validate_user_id(user_id)
        day = self._resolve_day(day)
        now = utc_now()

        def reset(current: StreakData) -> Optional[StreakData]:
            # A chain already counted for `day` started after the break
            if current.has_entry_for(day):
                return None
            # Already broken; one marker per idle stretch
            if current.current == 0 and current.history and current.history[-1].count == 0:
                return None
            return replace(
                current,
                current=0,
                last_update=now,
                history=current.with_entry(StreakHistoryEntry(date=day, count=0)),
            )

        result = await self._store.update_streak(user_id, reset)
        streak = result.value
        if result.changed:
            await self._sync_progress(user_id, streak, touch_activity=False)

        self.log.debug(
            "Streak reset",
            extra={"user_id": user_id, "date": day.isoformat(), "longest": streak.longest},
        )
        return streak

    async def check_and_update_daily_streak(
        self, user_id: str, day: Optional[DateLike] = None
    ) -> Optional[StreakUpdate]:
        """
        Daily decision point, called after a review.

        Returns:
            None when the day's goal is not met; the unchanged state when the
            day was already counted; otherwise the increment / new-streak
            outcome depending on whether yesterday's goal was met.
        """
        user_id = InputValidator.validate_user_id(user_id)
        day = self._resolve_day(day)

        if not await self._daily.is_goal_met(user_id, day):
            self.log.debug(
                "Daily goal not met; streak untouched",
                extra={"user_id": user_id, "date": day.isoformat()},
            )
            return None

        streak = await self._store.get_streak_data(user_id)
        if streak is not None and streak.has_entry_for(day):
            return StreakUpdate(streak=streak, changed=False)

        yesterday = previous_day(day)
        if await self._daily.is_goal_met(user_id, yesterday):
            return await self.increment_streak(user_id, day)

        self.log.info(
            "Starting new streak: previous day goal not met",
            extra={"user_id": user_id, "date": day.isoformat()},
        )
        return await self.start_new_streak(user_id, day)

    async def check_streak_bonus(
        self, user_id: str, current_streak: int, day: Optional[DateLike] = None
    ) -> StreakBonus:
        """
        Award the milestone bonus for `current_streak`, if any.

        The major milestone takes priority; the minor bonus fires on every
        multiple of the interval. A repeat for the same day and milestone is
        refused by the XP ledger and reports no bonus.
        """
        user_id = InputValidator.validate_user_id(user_id)
        current_streak = InputValidator.validate_non_negative_integer(current_streak, "current_streak")
        day = self._resolve_day(day)

        interval = self.get_config_int("progression.streak.milestone_interval", STREAK_MILESTONE_INTERVAL)
        major = self.get_config_int("progression.streak.major_milestone", STREAK_MAJOR_MILESTONE)

        if current_streak == major:
            milestone = major
            amount = self.get_config_int("progression.xp.streak_30_days", STREAK_30_DAYS_XP)
        elif current_streak >= interval and current_streak % interval == 0:
            milestone = interval
            amount = self.get_config_int("progression.xp.streak_7_days", STREAK_7_DAYS_XP)
        else:
            return StreakBonus()

        award = await self._xp.apply_xp(
            user_id,
            amount,
            XPSource.STREAK_BONUS,
            streak_milestone_source_id(milestone, day.isoformat()),
            description=f"{current_streak}-day streak bonus",
        )
        if not award.applied:
            return StreakBonus()

        self.log.info(
            f"Streak milestone reached: {current_streak} days",
            extra={"user_id": user_id, "streak": current_streak, "milestone": milestone, "xp": amount},
        )
        await self.emit_event(
            "streak.milestone_reached",
            {
                "user_id": user_id,
                "streak": current_streak,
                "milestone": milestone,
                "xp_awarded": amount,
                "date": day.isoformat(),
            },
        )
        return StreakBonus(bonus_awarded=amount, milestone=milestone)

    # =========================================================================
    # BATCH RECONCILIATION
    # =========================================================================

    async def update_all_streaks(
        self,
        batch_size: int = STREAK_BATCH_SIZE,
        batch_delay_ms: int = STREAK_BATCH_DELAY_MS,
        max_users: Optional[int] = STREAK_MAX_USERS_PER_RUN,
        today: Optional[DateLike] = None,
    ) -> StreakBatchResult:
        """
        Reconcile every user's streak against yesterday's goal.

        Per user:
        - yesterday not met -> reset
        - yesterday and the day before met -> increment (for yesterday)
        - yesterday met, the day before not -> new streak at 1 (for yesterday)

        Raises:
            CriticalFailureError: User ids cannot be enumerated
        """
        batch_size = InputValidator.validate_positive_integer(batch_size, "batch_size")
        batch_delay_ms = InputValidator.validate_non_negative_integer(batch_delay_ms, "batch_delay_ms")
        if max_users is not None:
            max_users = InputValidator.validate_positive_integer(max_users, "max_users")

        run_day = self._resolve_day(today)
        yesterday = previous_day(run_day)
        day_before = previous_day(run_day, 2)
        result = StreakBatchResult()

        try:
            user_ids = await self._store.get_all_user_ids()
        except Exception as exc:
            self.log_error("update_all_streaks", exc, stage="enumerate_users")
            raise CriticalFailureError("update_all_streaks", f"cannot enumerate users: {exc}") from exc

        if max_users is not None and len(user_ids) > max_users:
            self.log.info(
                f"Limiting streak run from {len(user_ids)} to {max_users} users",
                extra={"total_users": len(user_ids), "max_users": max_users},
            )
            result.skipped = len(user_ids) - max_users
            user_ids = user_ids[:max_users]

        total_batches = (len(user_ids) + batch_size - 1) // batch_size
        self.log_operation(
            "update_all_streaks",
            user_count=len(user_ids),
            batch_size=batch_size,
            total_batches=total_batches,
            date=run_day.isoformat(),
        )

        for start in range(0, len(user_ids), batch_size):
            batch = user_ids[start : start + batch_size]
            self.log.debug(
                f"Processing streak batch {start // batch_size + 1}/{total_batches}",
                extra={"batch_users": len(batch)},
            )

            for user_id in batch:
                result.processed += 1
                try:
                    await self._reconcile_user(user_id, run_day, yesterday, day_before, result)
                except ResourceExhaustedError as exc:
                    result.errors.append(
                        BatchUserError(user_id=user_id, error=str(exc), error_type=type(exc).__name__)
                    )
                    result.skipped += len(user_ids) - result.processed
                    result.interrupted = True
                    self.log.error(
                        "Store capacity exhausted; stopping streak run",
                        extra={**result.to_dict(), "user_id": user_id},
                    )
                    return result
                except Exception as exc:
                    result.errors.append(
                        BatchUserError(user_id=user_id, error=str(exc), error_type=type(exc).__name__)
                    )
                    self.log_error("update_all_streaks", exc, user_id=user_id)

            if batch_delay_ms > 0 and start + batch_size < len(user_ids):
                await asyncio.sleep(batch_delay_ms / 1000)

        return result

    async def _reconcile_user(
        self,
        user_id: str,
        run_day: date,
        yesterday: date,
        day_before: date,
        result: StreakBatchResult,
    ) -> None:
        if not await self._daily.is_goal_met(user_id, yesterday):
            await self.reset_streak(user_id, run_day)
            result.reset += 1
            return

        if await self._daily.is_goal_met(user_id, day_before):
            await self.increment_streak(user_id, yesterday)
            result.incremented += 1
        else:
            await self.start_new_streak(user_id, yesterday)
            result.started += 1

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _sync_progress(self, user_id: str, streak: StreakData, touch_activity: bool) -> None:
        now = utc_now()

        def mirror(current: UserProgress) -> UserProgress:
            return replace(
                current,
                current_streak=streak.current,
                longest_streak=max(current.longest_streak, streak.longest),
                last_activity_date=now if touch_activity else current.last_activity_date,
            )

        await self._store.update_user_progress(user_id, mirror)
