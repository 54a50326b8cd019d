"""
XP Ledger Service
=================

Purpose
-------
Applies XP gains to a learner's progress and appends the matching ledger
entry. Every gain is keyed by `(user_id, source, source_id)` and applied at
most once: callers pass deterministic source ids (card id, review id,
`daily-goal-{date}`, `streak-7-{date}`, achievement id) and a replay is a
silent no-op reported as `applied=False`.

Domain
------
- Level/XP arithmetic via `studyquest.modules.shared.formulas`
- Review XP table (again/hard/good/easy), config-driven
- Lazy creation of UserProgress on the first XP-affecting action

Events
------
- `progression.xp_awarded`: every applied gain
- `progression.level_up`: when the gain crossed one or more levels
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

from studyquest.core.database.base import utc_now
from studyquest.domain.enums import Difficulty, XPSource
from studyquest.domain.models import UserProgress, XPAwardResult, XPTransaction
from studyquest.modules.shared.base_service import BaseService
from studyquest.modules.shared.constants import REVIEW_XP
from studyquest.modules.shared.exceptions import ValidationError
from studyquest.modules.shared.formulas import (
    LevelUpResult,
    calculate_level,
    check_level_up,
    get_current_xp,
)
from studyquest.modules.shared.validators import InputValidator

if TYPE_CHECKING:
    from logging import Logger

    from studyquest.core.config.manager import ConfigManager
    from studyquest.core.event.bus import EventBus
    from studyquest.modules.store.protocol import ProgressionStore


_DEFAULT_DESCRIPTIONS: Dict[XPSource, str] = {
    XPSource.REVIEW: "Review XP ({source_id})",
    XPSource.CARD_CREATION: "Card creation XP ({source_id})",
    XPSource.DECK_CREATION: "Deck creation XP ({source_id})",
    XPSource.DAILY_GOAL: "Daily goal XP ({source_id})",
    XPSource.STREAK_BONUS: "Streak bonus XP ({source_id})",
    XPSource.ACHIEVEMENT: "Achievement XP ({source_id})",
    XPSource.MANUAL_ADJUSTMENT: "XP adjustment ({source_id})",
}


class XPLedgerService(BaseService):
    """
    XP ledger and level progression.

    Dependencies
    ------------
    - ProgressionStore: atomic ledger insert + progress update
    - ConfigManager: review XP table
    - EventBus: xp_awarded / level_up events
    """

    def __init__(
        self,
        store: ProgressionStore,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._store = store

        self.log.info("XPLedgerService initialized")

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get_user_progress(self, user_id: str) -> UserProgress:
        """Current progress, created lazily when the user has none yet."""
        user_id = InputValidator.validate_user_id(user_id)
        progress = await self._store.get_user_progress(user_id)
        if progress is None:
            progress = await self._store.create_user_progress(user_id)
        return progress

    def calculate_xp_for_review(self, difficulty: Union[Difficulty, str]) -> int:
        """
        XP for one review at `difficulty`.

        Raises:
            ValidationError: Unknown difficulty name
        """
        level = InputValidator.validate_difficulty(difficulty)
        return self.get_config_int(f"progression.xp.review.{level.value}", REVIEW_XP[level])

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    async def apply_xp(
        self,
        user_id: str,
        amount: int,
        source: Union[XPSource, str],
        source_id: str,
        description: Optional[str] = None,
    ) -> XPAwardResult:
        """
        Apply an XP gain at most once per `(user_id, source, source_id)`.

        Returns:
            XPAwardResult with the updated progress and level-up info. On a
            duplicate tuple, `applied` is False and progress is unchanged.

        Raises:
            ValidationError: Bad ids, non-positive amount, unknown source
            ExternalServiceError: Store failure

        Example:
            >>> result = await xp_ledger.apply_xp("u-1", 20, XPSource.REVIEW, "card-9")
            >>> result.level_up.leveled_up
            False
        """
        user_id = InputValidator.validate_user_id(user_id)
        amount = InputValidator.validate_positive_integer(amount, "amount")
        source = self._validate_source(source)
        source_id = InputValidator.validate_identifier(source_id, "source_id")

        now = utc_now()
        txn = XPTransaction(
            id=uuid.uuid4().hex,
            user_id=user_id,
            amount=amount,
            source=source,
            source_id=source_id,
            description=description or _DEFAULT_DESCRIPTIONS[source].format(source_id=source_id),
            timestamp=now,
        )

        def add_amount(current: UserProgress) -> UserProgress:
            new_total = current.total_xp + amount
            new_level = calculate_level(new_total)
            return replace(
                current,
                total_xp=new_total,
                level=new_level,
                current_xp=get_current_xp(new_total, new_level),
                last_activity_date=now,
            )

        updated = await self._store.apply_xp_transaction(txn, add_amount)

        if updated is None:
            self.log.debug(
                "XP award skipped: already applied",
                extra={
                    "user_id": user_id,
                    "source": source.value,
                    "source_id": source_id,
                },
            )
            progress = await self.get_user_progress(user_id)
            return XPAwardResult(
                progress=progress,
                level_up=LevelUpResult(
                    leveled_up=False,
                    old_level=progress.level,
                    new_level=progress.level,
                    levels_gained=0,
                ),
                applied=False,
            )

        level_up = check_level_up(updated.total_xp - amount, updated.total_xp)

        self.log_operation(
            "apply_xp",
            user_id=user_id,
            amount=amount,
            source=source.value,
            source_id=source_id,
            total_xp=updated.total_xp,
            level=updated.level,
        )

        await self.emit_event(
            "progression.xp_awarded",
            {
                "user_id": user_id,
                "amount": amount,
                "source": source.value,
                "source_id": source_id,
                "total_xp": updated.total_xp,
                "level": updated.level,
            },
        )
        if level_up.leveled_up:
            self.log.info(
                f"User leveled up: {level_up.old_level} -> {level_up.new_level}",
                extra={
                    "user_id": user_id,
                    "old_level": level_up.old_level,
                    "new_level": level_up.new_level,
                    "levels_gained": level_up.levels_gained,
                },
            )
            await self.emit_event(
                "progression.level_up",
                {
                    "user_id": user_id,
                    "old_level": level_up.old_level,
                    "new_level": level_up.new_level,
                    "levels_gained": level_up.levels_gained,
                },
            )

        return XPAwardResult(progress=updated, level_up=level_up, applied=True, transaction=txn)

    async def add_xp(
        self,
        user_id: str,
        amount: int,
        source: Union[XPSource, str],
        source_id: str,
    ) -> XPAwardResult:
        """Public entry point for callers outside the engine."""
        return await self.apply_xp(user_id, amount, source, source_id)

    async def process_card_review(
        self,
        user_id: str,
        card_id: str,
        difficulty: Union[Difficulty, str],
        review_id: Optional[str] = None,
    ) -> XPAwardResult:
        """
        Grant review XP for one card review.

        The ledger key is `review_id` when given, otherwise `card_id`.
        """
        card_id = InputValidator.validate_identifier(card_id, "card_id")
        level = InputValidator.validate_difficulty(difficulty)
        source_id = (
            InputValidator.validate_identifier(review_id, "review_id")
            if review_id is not None
            else card_id
        )

        return await self.apply_xp(
            user_id,
            self.calculate_xp_for_review(level),
            XPSource.REVIEW,
            source_id,
            description=f"Review of card {card_id} ({level.value})",
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _validate_source(source: Any) -> XPSource:
        if isinstance(source, XPSource):
            return source
        try:
            return XPSource(str(source).strip().lower())
        except ValueError:
            raise ValidationError("source", f"unknown XP source {source!r}") from None
