"""
Gamification Service
====================

Purpose
-------
Entry point for learner actions. Orchestrates the XP ledger, daily goal,
streak and achievement services in the order one action flows through
them.

Card Review Flow
----------------
1. Review XP (ledger key: review id, else `{card_id}@{date}`)
2. Daily counter
3. Streak decision for the day
4. Daily-goal bonus once the goal is met (once per day)
5. Achievement check for review, goal, streak, XP and level conditions

A replayed review stops after step 1: the ledger refuses it and nothing
else is touched.

Creation
--------
Card and deck creation grant their fixed XP and check the matching
achievement types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Union

from studyquest.core.database.base import utc_now
from studyquest.domain.enums import ConditionType, Difficulty, XPSource
from studyquest.domain.models import (
    AchievementUnlock,
    DailyGoalStatus,
    StreakUpdate,
    UserProgress,
    XPAwardResult,
)
from studyquest.modules.shared.base_service import BaseService
from studyquest.modules.shared.constants import CARD_CREATION_XP, DECK_CREATION_XP
from studyquest.modules.shared.exceptions import DuplicateAwardError
from studyquest.modules.shared.formulas import (
    LevelUpResult,
    check_level_up,
    xp_for_next_level,
    xp_to_next_level,
)
from studyquest.modules.shared.validators import InputValidator

if TYPE_CHECKING:
    from logging import Logger

    from studyquest.core.config.manager import ConfigManager
    from studyquest.core.event.bus import EventBus
    from studyquest.modules.achievement.service import AchievementService
    from studyquest.modules.daily.service import DailyGoalService
    from studyquest.modules.streak.service import StreakService
    from studyquest.modules.xp.service import XPLedgerService

DateLike = Union[date, datetime, str]

REVIEW_ACHIEVEMENT_TYPES: Sequence[ConditionType] = (
    ConditionType.REVIEWS_COMPLETED,
    ConditionType.DAILY_GOAL,
    ConditionType.STREAK,
    ConditionType.XP_TOTAL,
    ConditionType.LEVEL_REACHED,
    ConditionType.CUSTOM,
)


@dataclass(frozen=True)
class CardReviewOutcome:
    """Everything one review changed."""

    applied: bool
    xp_awarded: int
    level_up: LevelUpResult
    progress: UserProgress
    daily_goal: DailyGoalStatus
    daily_goal_xp: int = 0
    streak: Optional[StreakUpdate] = None
    achievements: List[AchievementUnlock] = field(default_factory=list)

    @property
    def xp_for_next_level(self) -> int:
        return xp_for_next_level(self.progress.level)

    @property
    def xp_to_next_level(self) -> int:
        return xp_to_next_level(self.progress.total_xp, self.progress.level)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied": self.applied,
            "xp_awarded": self.xp_awarded,
            "level_up": {
                "leveled_up": self.level_up.leveled_up,
                "old_level": self.level_up.old_level,
                "new_level": self.level_up.new_level,
                "levels_gained": self.level_up.levels_gained,
            },
            "level": self.progress.level,
            "total_xp": self.progress.total_xp,
            "current_xp": self.progress.current_xp,
            "xp_for_next_level": self.xp_for_next_level,
            "xp_to_next_level": self.xp_to_next_level,
            "daily_goal": self.daily_goal.to_dict(),
            "daily_goal_xp": self.daily_goal_xp,
            "streak": (
                {
                    "current": self.streak.streak.current,
                    "longest": self.streak.streak.longest,
                    "bonus_awarded": self.streak.bonus_awarded,
                }
                if self.streak is not None
                else None
            ),
            "achievements": [unlock.achievement.id for unlock in self.achievements],
        }


@dataclass(frozen=True)
class CreationOutcome:
    award: XPAwardResult
    achievements: List[AchievementUnlock] = field(default_factory=list)


class GamificationService(BaseService):
    """
    Progression flows for learner actions.

    Dependencies
    ------------
    - XPLedgerService, DailyGoalService, StreakService, AchievementService
    """

    def __init__(
        self,
        xp_ledger: XPLedgerService,
        daily_goals: DailyGoalService,
        streaks: StreakService,
        achievements: AchievementService,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._xp = xp_ledger
        self._daily = daily_goals
        self._streaks = streaks
        self._achievements = achievements

        self.log.info("GamificationService initialized")

    # =========================================================================
    # REVIEWS
    # =========================================================================

    async def process_card_review(
        self,
        user_id: str,
        card_id: str,
        difficulty: Union[Difficulty, str],
        review_date: Optional[DateLike] = None,
        review_id: Optional[str] = None,
    ) -> CardReviewOutcome:
        """
        Run one card review through XP, daily goal, streak and achievements.

        Raises:
            ValidationError: Bad ids, unknown difficulty, malformed date
        """
        user_id = InputValidator.validate_user_id(user_id)
        card_id = InputValidator.validate_identifier(card_id, "card_id")
        day = utc_now().date() if review_date is None else InputValidator.validate_date(review_date)
        source_id = (
            InputValidator.validate_identifier(review_id, "review_id")
            if review_id is not None
            else f"{card_id}@{day.isoformat()}"
        )

        review = await self._xp.process_card_review(user_id, card_id, difficulty, review_id=source_id)

        if not review.applied:
            self.log.info(
                "Duplicate review ignored",
                extra={"user_id": user_id, "card_id": card_id, "source_id": source_id},
            )
            return CardReviewOutcome(
                applied=False,
                xp_awarded=0,
                level_up=review.level_up,
                progress=review.progress,
                daily_goal=await self._daily.check_daily_goal(user_id, day),
            )

        start_total = review.progress.total_xp - review.xp_awarded

        daily = await self._daily.record_card_review(user_id, day)
        streak = await self._streaks.check_and_update_daily_streak(user_id, day)

        daily_goal_xp = 0
        if daily.goal_met and daily.xp_earned == 0:
            try:
                bonus = await self._daily.award_daily_goal_xp(user_id, day)
                daily_goal_xp = bonus.xp_awarded
            except DuplicateAwardError:
                self.log.debug(
                    "Daily goal bonus already granted",
                    extra={"user_id": user_id, "date": day.isoformat()},
                )

        unlocks = await self._achievements.check_achievements(user_id, REVIEW_ACHIEVEMENT_TYPES)

        progress = await self._xp.get_user_progress(user_id)
        outcome = CardReviewOutcome(
            applied=True,
            xp_awarded=review.xp_awarded,
            level_up=check_level_up(start_total, max(start_total, progress.total_xp)),
            progress=progress,
            daily_goal=await self._daily.check_daily_goal(user_id, day),
            daily_goal_xp=daily_goal_xp,
            streak=streak,
            achievements=unlocks,
        )

        self.log_operation(
            "process_card_review",
            user_id=user_id,
            card_id=card_id,
            date=day.isoformat(),
            xp_awarded=outcome.xp_awarded,
            daily_goal_xp=daily_goal_xp,
            streak=streak.streak.current if streak is not None else None,
            achievements_unlocked=len(unlocks),
        )
        return outcome

    # =========================================================================
    # CREATION
    # =========================================================================

    async def record_card_created(self, user_id: str, card_id: str) -> CreationOutcome:
        card_id = InputValidator.validate_identifier(card_id, "card_id")
        return await self._record_creation(
            user_id,
            card_id,
            XPSource.CARD_CREATION,
            self.get_config_int("progression.xp.card_creation", CARD_CREATION_XP),
            ConditionType.CARDS_CREATED,
        )

    async def record_deck_created(self, user_id: str, deck_id: str) -> CreationOutcome:
        deck_id = InputValidator.validate_identifier(deck_id, "deck_id")
        return await self._record_creation(
            user_id,
            deck_id,
            XPSource.DECK_CREATION,
            self.get_config_int("progression.xp.deck_creation", DECK_CREATION_XP),
            ConditionType.DECK_CREATED,
        )

    async def _record_creation(
        self,
        user_id: str,
        source_id: str,
        source: XPSource,
        amount: int,
        condition_type: ConditionType,
    ) -> CreationOutcome:
        award = await self._xp.apply_xp(user_id, amount, source, source_id)
        if not award.applied:
            return CreationOutcome(award=award)

        unlocks = await self._achievements.check_achievements(
            user_id,
            (condition_type, ConditionType.XP_TOTAL, ConditionType.LEVEL_REACHED),
        )
        return CreationOutcome(award=award, achievements=unlocks)
