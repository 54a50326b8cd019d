"""
Achievement Service
===================

Purpose
-------
Evaluate catalog conditions for a learner and perform the one-time unlock
and reward.

Domain
------
- `check_achievements` evaluates every active, not-yet-unlocked
  achievement (optionally only some condition types) and unlocks those
  whose condition is met. Achievements unlocked without a recorded reward
  (a store failure between the two writes) are settled on the next check
- `unlock_achievement` is first-write-wins at the store. The reward is
  granted through the idempotent XP ledger and the id is recorded in
  `UserProgress.achievements` after it; the caller whose ledger write
  lands (or, for rewardless achievements, the first unlocker) reports the
  unlock
- `get_user_progress` reports completion as a 0-100 percentage

Events
------
- `achievement.unlocked`: once per user and achievement; the push notification
  listener consumes it in the background
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List, Optional, Set, Union

from studyquest.domain.enums import ConditionType, XPSource
from studyquest.domain.models import Achievement, AchievementUnlock, UserProgress, XPAwardResult
from studyquest.modules.achievement.evaluators import (
    ConditionRegistry,
    EvaluationContext,
    default_condition_registry,
)
from studyquest.modules.shared.base_service import BaseService
from studyquest.modules.shared.exceptions import NotFoundError, ValidationError
from studyquest.modules.shared.validators import InputValidator

if TYPE_CHECKING:
    from logging import Logger

    from studyquest.core.config.manager import ConfigManager
    from studyquest.core.event.bus import EventBus
    from studyquest.modules.achievement.catalog import AchievementCatalog
    from studyquest.modules.store.protocol import ProgressionStore
    from studyquest.modules.xp.service import XPLedgerService

ConditionTypeLike = Union[ConditionType, str]


class AchievementService(BaseService):
    """
    Achievement evaluation and unlocks.

    Dependencies
    ------------
    - ProgressionStore: user achievement rows, atomic unlock
    - AchievementCatalog: cached active catalog
    - XPLedgerService: reward XP (source=achievement, source_id=achievement id)
    - ConditionRegistry: condition type -> measuring handler
    """

    def __init__(
        self,
        store: ProgressionStore,
        catalog: AchievementCatalog,
        xp_ledger: XPLedgerService,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        conditions: Optional[ConditionRegistry] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._store = store
        self._catalog = catalog
        self._xp = xp_ledger
        self._conditions = conditions or default_condition_registry()

        self.log.info(
            "AchievementService initialized",
            extra={"condition_types": [kind.value for kind in self._conditions.types()]},
        )

    # =========================================================================
    # EVALUATION
    # =========================================================================

    async def check_achievements(
        self,
        user_id: str,
        types: Optional[Iterable[ConditionTypeLike]] = None,
    ) -> List[AchievementUnlock]:
        """
        Unlock every satisfied achievement the user does not have yet.

        Args:
            user_id: Learner id
            types: Restrict evaluation to these condition types (all when None)

        Returns:
            The achievements newly unlocked by this call, in catalog order.
        """
        user_id = InputValidator.validate_user_id(user_id)
        wanted = self._normalize_types(types)

        catalog = await self._catalog.get_all_achievements()
        if wanted is not None:
            catalog = [item for item in catalog if item.condition.type in wanted]

        entries = await self._store.get_user_achievements(user_id)
        unlocked_ids = {entry.achievement_id for entry in entries if entry.is_unlocked}
        # Progress records the id after the reward; unlocked but unrecorded ids still owe it
        progress = await self._store.get_user_progress(user_id)
        recorded_ids = set(progress.achievements) if progress is not None else set()
        candidates = [item for item in catalog if item.id not in unlocked_ids or item.id not in recorded_ids]
        if not candidates:
            return []

        ctx = self._conditions.context_for(self._store, user_id)
        unlocks: List[AchievementUnlock] = []
        for achievement in candidates:
            pending_reward = achievement.id in unlocked_ids
            if not pending_reward and not await self._conditions.is_satisfied(achievement.condition, ctx):
                continue
            unlock = await self._unlock(user_id, achievement)
            if unlock is not None:
                unlocks.append(unlock)
                ctx.invalidate()

        if unlocks:
            self.log_operation(
                "check_achievements",
                user_id=user_id,
                evaluated=len(candidates),
                unlocked=[unlock.achievement.id for unlock in unlocks],
            )
        return unlocks

    async def check_achievement(self, user_id: str, achievement: Achievement) -> bool:
        """Evaluate one achievement's condition without unlocking it."""
        user_id = InputValidator.validate_user_id(user_id)
        ctx = self._conditions.context_for(self._store, user_id)
        return await self._conditions.is_satisfied(achievement.condition, ctx)

    async def get_user_progress(self, user_id: str, achievement_id: str) -> int:
        """
        Completion toward `achievement_id` as `round(min(100, value / target * 100))`.

        Raises:
            NotFoundError: Unknown achievement
        """
        user_id = InputValidator.validate_user_id(user_id)
        achievement = await self._require_achievement(achievement_id)
        ctx = self._conditions.context_for(self._store, user_id)
        return await self._percentage(achievement, ctx)

    # =========================================================================
    # UNLOCKS
    # =========================================================================

    async def unlock_achievement(self, user_id: str, achievement_id: str) -> Optional[AchievementUnlock]:
        """
        Unlock `achievement_id` for the user and grant its reward.

        Returns:
            The unlock from the call that granted its reward; None when an
            earlier call already did.

        Raises:
            NotFoundError: Unknown achievement
        """
        user_id = InputValidator.validate_user_id(user_id)
        achievement = await self._require_achievement(achievement_id)
        return await self._unlock(user_id, achievement)

    async def update_achievement_progress(self, user_id: str, achievement_id: str) -> int:
        """Store the current completion percentage on the user's achievement row."""
        percentage = await self.get_user_progress(user_id, achievement_id)
        await self._store.update_achievement_progress(user_id, achievement_id, percentage)
        return percentage

    async def mark_all_as_seen(self, user_id: str) -> int:
        user_id = InputValidator.validate_user_id(user_id)
        marked = await self._store.mark_achievements_seen(user_id)
        self.log.debug("Achievements marked as seen", extra={"user_id": user_id, "count": marked})
        return marked

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _unlock(self, user_id: str, achievement: Achievement) -> Optional[AchievementUnlock]:
        result = await self._store.unlock_achievement(user_id, achievement.id)

        # Runs on repeat unlocks too; an earlier call may have failed before its reward landed
        xp_award = await self._settle_reward(user_id, achievement)

        # One achievement transaction per pair; whoever writes it owns the unlock
        if xp_award is not None:
            owns_unlock = xp_award.applied
        else:
            owns_unlock = result.is_new_unlock
        if not owns_unlock:
            self.log.debug(
                "Achievement already unlocked",
                extra={"user_id": user_id, "achievement_id": achievement.id},
            )
            return None

        if not result.is_new_unlock:
            self.log.warning(
                "Completed reward of an earlier unlock",
                extra={"user_id": user_id, "achievement_id": achievement.id},
            )

        unlock = AchievementUnlock(
            achievement=achievement,
            unlocked_at=result.unlocked_at,
            xp_award=xp_award,
        )

        self.log_operation(
            "unlock_achievement",
            user_id=user_id,
            achievement_id=achievement.id,
            tier=achievement.tier.value,
            xp_awarded=unlock.xp_awarded,
        )
        await self.emit_event(
            "achievement.unlocked",
            {
                "user_id": user_id,
                "achievement_id": achievement.id,
                "name": achievement.name,
                "tier": achievement.tier.value,
                "xp_reward": achievement.xp_reward,
                "unlocked_at": result.unlocked_at.isoformat(),
            },
        )
        return unlock

    async def _settle_reward(self, user_id: str, achievement: Achievement) -> Optional[XPAwardResult]:
        """Grant the reward and record the id; both steps are no-ops once done."""
        xp_award = None
        if achievement.xp_reward > 0:
            xp_award = await self._xp.apply_xp(
                user_id,
                achievement.xp_reward,
                XPSource.ACHIEVEMENT,
                achievement.id,
                description=f"Achievement unlocked: {achievement.name}",
            )

        def record_id(current: UserProgress) -> Optional[UserProgress]:
            if current.has_achievement(achievement.id):
                return None
            return current.with_achievement(achievement.id)

        await self._store.update_user_progress(user_id, record_id)
        return xp_award

    async def _require_achievement(self, achievement_id: str) -> Achievement:
        achievement_id = InputValidator.validate_identifier(achievement_id, "achievement_id")
        achievement = await self._catalog.get_achievement(achievement_id)
        if achievement is None:
            raise NotFoundError("Achievement", achievement_id)
        return achievement

    async def _percentage(self, achievement: Achievement, ctx: EvaluationContext) -> int:
        value = await self._conditions.measure(achievement.condition, ctx)
        return round(min(100.0, value / achievement.condition.target * 100))

    @staticmethod
    def _normalize_types(types: Optional[Iterable[ConditionTypeLike]]) -> Optional[Set[ConditionType]]:
        if types is None:
            return None
        normalized: Set[ConditionType] = set()
        for kind in types:
            if isinstance(kind, ConditionType):
                normalized.add(kind)
                continue
            try:
                normalized.add(ConditionType(str(kind).strip().lower()))
            except ValueError:
                raise ValidationError("types", f"unknown condition type {kind!r}") from None
        return normalized
