"""
Daily Goal Service
==================

Purpose
-------
Per-day review counters and the one-time daily-goal bonus.

Domain
------
- `record_card_review` increments the day's counter and flips `goal_met`
  once the target is reached
- `check_daily_goal` reports progress, defaulting to "nothing reviewed"
- `award_daily_goal_xp` grants the bonus once per (user, date)

Idempotency
-----------
The bonus is keyed `daily-goal-{YYYY-MM-DD}` in the XP ledger and mirrored
into `DailyProgress.xp_earned`. Either guard alone refuses a second award.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from typing import TYPE_CHECKING, Union

from studyquest.core.database.base import utc_now
from studyquest.domain.enums import XPSource
from studyquest.domain.models import DailyGoalStatus, DailyProgress, XPAwardResult
from studyquest.modules.shared.base_service import BaseService
from studyquest.modules.shared.constants import (
    DAILY_GOAL_TARGET,
    DAILY_GOAL_XP,
    daily_goal_source_id,
)
from studyquest.modules.shared.exceptions import DuplicateAwardError, InvalidOperationError
from studyquest.modules.shared.validators import InputValidator

if TYPE_CHECKING:
    from logging import Logger

    from studyquest.core.config.manager import ConfigManager
    from studyquest.core.event.bus import EventBus
    from studyquest.modules.store.protocol import ProgressionStore
    from studyquest.modules.xp.service import XPLedgerService

DateLike = Union[date, datetime, str]


class DailyGoalService(BaseService):
    def __init__(
        self,
        store: ProgressionStore,
        xp_ledger: XPLedgerService,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._store = store
        self._xp = xp_ledger

        self.log.info("DailyGoalService initialized", extra={"target": self.daily_target})

    @property
    def daily_target(self) -> int:
        return max(1, self.get_config_int("progression.daily_goal.target", DAILY_GOAL_TARGET))

    @property
    def daily_goal_xp(self) -> int:
        return self.get_config_int("progression.xp.daily_goal", DAILY_GOAL_XP)

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def check_daily_goal(self, user_id: str, day: DateLike) -> DailyGoalStatus:
        user_id = InputValidator.validate_user_id(user_id)
        day = InputValidator.validate_date(day)
        target = self.daily_target

        progress = await self._store.get_daily_progress(user_id, day)
        if progress is None:
            return DailyGoalStatus(
                goal_met=False,
                cards_reviewed=0,
                cards_remaining=target,
                xp_earned=0,
                target=target,
            )

        return DailyGoalStatus(
            goal_met=progress.goal_met,
            cards_reviewed=progress.cards_reviewed,
            cards_remaining=max(0, target - progress.cards_reviewed),
            xp_earned=progress.xp_earned,
            target=target,
        )

    async def is_goal_met(self, user_id: str, day: date) -> bool:
        """Goal flag set and the counter actually at or above the target."""
        progress = await self._store.get_daily_progress(user_id, day)
        return (
            progress is not None
            and progress.goal_met
            and progress.cards_reviewed >= self.daily_target
        )

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    async def record_card_review(self, user_id: str, day: DateLike) -> DailyProgress:
        """
        Count one review for `day`, creating the day record at 1 if absent.

        Emits `daily_goal.met` on the review that reaches the target.
        """
        user_id = InputValidator.validate_user_id(user_id)
        day = InputValidator.validate_date(day)
        target = self.daily_target

        before_goal_met = False

        def count_review(current: DailyProgress) -> DailyProgress:
            nonlocal before_goal_met
            before_goal_met = current.goal_met
            reviewed = current.cards_reviewed + 1
            return replace(
                current,
                cards_reviewed=reviewed,
                goal_met=current.goal_met or reviewed >= target,
                updated_at=utc_now(),
            )

        result = await self._store.update_daily_progress(user_id, day, count_review)
        progress = result.value

        self.log.debug(
            "Card review recorded",
            extra={
                "user_id": user_id,
                "date": day.isoformat(),
                "cards_reviewed": progress.cards_reviewed,
                "goal_met": progress.goal_met,
            },
        )

        if progress.goal_met and not before_goal_met:
            self.log_operation(
                "daily_goal_met",
                user_id=user_id,
                date=day.isoformat(),
                cards_reviewed=progress.cards_reviewed,
            )
            await self.emit_event(
                "daily_goal.met",
                {"user_id": user_id, "date": day.isoformat(), "cards_reviewed": progress.cards_reviewed},
            )

        return progress

    async def award_daily_goal_xp(self, user_id: str, day: DateLike) -> XPAwardResult:
        """
        Grant the daily-goal bonus for `day`.

        Raises:
            InvalidOperationError: Goal not met for that day
            DuplicateAwardError: Bonus already granted for that day
        """
        user_id = InputValidator.validate_user_id(user_id)
        day = InputValidator.validate_date(day)
        day_iso = day.isoformat()
        key = f"{user_id}:{day_iso}"

        progress = await self._store.get_daily_progress(user_id, day)
        if progress is None or not progress.goal_met:
            raise InvalidOperationError("award_daily_goal_xp", f"Daily goal not met for {day_iso}")
        if progress.xp_earned > 0:
            raise DuplicateAwardError("award_daily_goal_xp", key)

        amount = self.daily_goal_xp
        result = await self._xp.apply_xp(
            user_id,
            amount,
            XPSource.DAILY_GOAL,
            daily_goal_source_id(day_iso),
            description=f"Daily goal completed ({day_iso})",
        )

        # Mark the day even when the ledger already had the bonus
        await self._store.update_daily_progress(
            user_id,
            day,
            lambda current: replace(current, xp_earned=amount) if current.xp_earned == 0 else None,
        )

        if not result.applied:
            raise DuplicateAwardError("award_daily_goal_xp", key)

        self.log_operation("award_daily_goal_xp", user_id=user_id, date=day_iso, amount=amount)
        return result
