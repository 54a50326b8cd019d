"""
In-memory test doubles for the progression engine.

`InMemoryProgressionStore` implements the full `ProgressionStore` contract
with plain dicts guarded by one asyncio.Lock, so mutators are applied
atomically exactly like the SQL store applies them under a row lock.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date
from typing import Callable, Dict, List, Optional, Set, Tuple

from studyquest.core.database.base import utc_now
from studyquest.domain.enums import XPSource
from studyquest.domain.models import (
    Achievement,
    DailyProgress,
    MutationResult,
    StreakData,
    UnlockResult,
    UserAchievementEntry,
    UserMetrics,
    UserProgress,
    XPTransaction,
)
from studyquest.modules.notification import PushNotification
from studyquest.modules.store.protocol import (
    DailyProgressMutator,
    ProgressMutator,
    StreakMutator,
)


class InMemoryProgressionStore:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self.progress: Dict[str, UserProgress] = {}
        self.transactions: List[XPTransaction] = []
        self._ledger_keys: Set[Tuple[str, XPSource, str]] = set()
        self.streaks: Dict[str, StreakData] = {}
        self.daily: Dict[Tuple[str, date], DailyProgress] = {}
        self.achievements: Dict[str, Achievement] = {}
        self.user_achievements: Dict[Tuple[str, str], UserAchievementEntry] = {}
        self.metrics: Dict[str, UserMetrics] = {}
        self.push_tokens: Dict[str, str] = {}

    # ------------------------------------------------------------------ #
    # User progress
    # ------------------------------------------------------------------ #

    async def get_user_progress(self, user_id: str) -> Optional[UserProgress]:
        return self.progress.get(user_id)

    async def create_user_progress(self, user_id: str) -> UserProgress:
        async with self._lock:
            return self._ensure_progress(user_id)

    async def update_user_progress(
        self, user_id: str, mutate: ProgressMutator
    ) -> MutationResult[UserProgress]:
        async with self._lock:
            current = self._ensure_progress(user_id)
            updated = mutate(current)
            if updated is None or updated == current:
                return MutationResult(current, False)
            self.progress[user_id] = updated
            return MutationResult(updated, True)

    def _ensure_progress(self, user_id: str) -> UserProgress:
        if user_id not in self.progress:
            now = utc_now()
            self.progress[user_id] = UserProgress(user_id=user_id, created_at=now, updated_at=now)
        return self.progress[user_id]

    # ------------------------------------------------------------------ #
    # XP ledger
    # ------------------------------------------------------------------ #

    async def apply_xp_transaction(
        self, txn: XPTransaction, mutate: Callable[[UserProgress], UserProgress]
    ) -> Optional[UserProgress]:
        async with self._lock:
            key = (txn.user_id, txn.source, txn.source_id)
            if key in self._ledger_keys:
                return None
            self._ledger_keys.add(key)
            self.transactions.append(txn)
            updated = mutate(self._ensure_progress(txn.user_id))
            self.progress[txn.user_id] = updated
            return updated

    async def xp_transaction_exists(self, user_id: str, source: XPSource, source_id: str) -> bool:
        return (user_id, source, source_id) in self._ledger_keys

    async def count_xp_transactions_by_source(self, user_id: str, source: XPSource) -> int:
        return sum(1 for txn in self.transactions if txn.user_id == user_id and txn.source == source)

    # ------------------------------------------------------------------ #
    # Streaks / daily progress
    # ------------------------------------------------------------------ #

    async def get_streak_data(self, user_id: str) -> Optional[StreakData]:
        return self.streaks.get(user_id)

    async def update_streak(self, user_id: str, mutate: StreakMutator) -> MutationResult[StreakData]:
        async with self._lock:
            current = self.streaks.setdefault(user_id, StreakData(user_id=user_id))
            updated = mutate(current)
            if updated is None or updated == current:
                return MutationResult(current, False)
            self.streaks[user_id] = updated
            return MutationResult(updated, True)

    async def get_daily_progress(self, user_id: str, day: date) -> Optional[DailyProgress]:
        return self.daily.get((user_id, day))

    async def update_daily_progress(
        self, user_id: str, day: date, mutate: DailyProgressMutator
    ) -> MutationResult[DailyProgress]:
        async with self._lock:
            key = (user_id, day)
            current = self.daily.setdefault(key, DailyProgress(user_id=user_id, date=day))
            updated = mutate(current)
            if updated is None or updated == current:
                return MutationResult(current, False)
            self.daily[key] = updated
            return MutationResult(updated, True)

    # ------------------------------------------------------------------ #
    # Achievements
    # ------------------------------------------------------------------ #

    async def get_all_achievements(self) -> List[Achievement]:
        return [self.achievements[key] for key in sorted(self.achievements) if self.achievements[key].is_active]

    async def get_achievement(self, achievement_id: str) -> Optional[Achievement]:
        return self.achievements.get(achievement_id)

    async def get_user_achievements(self, user_id: str) -> List[UserAchievementEntry]:
        return [entry for (owner, _), entry in sorted(self.user_achievements.items()) if owner == user_id]

    async def unlock_achievement(self, user_id: str, achievement_id: str) -> UnlockResult:
        async with self._lock:
            key = (user_id, achievement_id)
            existing = self.user_achievements.get(key)
            if existing is not None and existing.unlocked_at is not None:
                return UnlockResult(is_new_unlock=False, unlocked_at=existing.unlocked_at)

            now = utc_now()
            self.user_achievements[key] = UserAchievementEntry(
                user_id=user_id,
                achievement_id=achievement_id,
                unlocked_at=now,
                progress=100,
                seen=existing.seen if existing is not None else False,
            )
            return UnlockResult(is_new_unlock=True, unlocked_at=now)

    async def update_achievement_progress(
        self, user_id: str, achievement_id: str, progress: int
    ) -> UserAchievementEntry:
        async with self._lock:
            key = (user_id, achievement_id)
            entry = self.user_achievements.get(key) or UserAchievementEntry(
                user_id=user_id, achievement_id=achievement_id
            )
            if not entry.is_unlocked:
                entry = replace(entry, progress=progress)
            self.user_achievements[key] = entry
            return entry

    async def mark_achievements_seen(self, user_id: str) -> int:
        async with self._lock:
            marked = 0
            for key, entry in self.user_achievements.items():
                if key[0] == user_id and entry.is_unlocked and not entry.seen:
                    self.user_achievements[key] = replace(entry, seen=True)
                    marked += 1
            return marked

    async def upsert_achievement(self, achievement: Achievement) -> None:
        self.achievements[achievement.id] = achievement

    # ------------------------------------------------------------------ #
    # Read-only aggregates
    # ------------------------------------------------------------------ #

    async def get_user_metrics(self, user_id: str) -> UserMetrics:
        return self.metrics.get(user_id) or UserMetrics.empty(user_id)

    async def get_push_token(self, user_id: str) -> Optional[str]:
        return self.push_tokens.get(user_id)

    async def get_all_user_ids(self) -> List[str]:
        return sorted(self.progress)

    async def set_push_token(self, user_id: str, token: Optional[str]) -> None:
        if token is None:
            self.push_tokens.pop(user_id, None)
        else:
            self.push_tokens[user_id] = token

    async def save_user_metrics(self, metrics: UserMetrics) -> None:
        self.metrics[metrics.user_id] = metrics

    # ------------------------------------------------------------------ #
    # Test helpers
    # ------------------------------------------------------------------ #

    def seed_goal_met(self, user_id: str, *days: date, cards: int = 20) -> None:
        """Mark `days` as goal-met without going through the services."""
        for day in days:
            self.daily[(user_id, day)] = DailyProgress(
                user_id=user_id, date=day, cards_reviewed=cards, goal_met=True
            )
        self._ensure_progress(user_id)


class RecordingPushSender:
    def __init__(self, fail_with: Optional[Exception] = None) -> None:
        self.sent: List[Tuple[str, PushNotification]] = []
        self._fail_with = fail_with

    async def send_push_notification(self, token: str, notification: PushNotification) -> None:
        if self._fail_with is not None:
            raise self._fail_with
        self.sent.append((token, notification))
