"""
Persistence collaborator contract.

Purpose
-------
The progression services never read-then-write state themselves. Every
mutation goes through an atomic read-modify-write at the store boundary:
the service passes a pure mutator `fn(current) -> new | None` and the store
applies it while holding the row (SQL `SELECT ... FOR UPDATE` inside one
transaction, an asyncio.Lock in the in-memory test double).

A mutator returning None (or an unchanged value) leaves the record as is and
yields `MutationResult(value=current, changed=False)`.

Implementations
---------------
- `SqlAlchemyProgressionStore` (PostgreSQL via asyncpg, SQLite in tests)
- `tests.fakes.InMemoryProgressionStore`

Errors
------
Implementations raise `ExternalServiceError` for backing-store failures and
`ResourceExhaustedError` when capacity is exhausted. Driver exception types
never cross this boundary.
"""

from __future__ import annotations

from datetime import date
from typing import Callable, List, Optional, Protocol, runtime_checkable

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

ProgressMutator = Callable[[UserProgress], Optional[UserProgress]]
StreakMutator = Callable[[StreakData], Optional[StreakData]]
DailyProgressMutator = Callable[[DailyProgress], Optional[DailyProgress]]


@runtime_checkable
class ProgressionStore(Protocol):
    # ------------------------------------------------------------------ #
    # User progress
    # ------------------------------------------------------------------ #

    async def get_user_progress(self, user_id: str) -> Optional[UserProgress]: ...

    async def create_user_progress(self, user_id: str) -> UserProgress:
        """Create the record if absent; return the stored record either way."""
        ...

    async def update_user_progress(
        self, user_id: str, mutate: ProgressMutator
    ) -> MutationResult[UserProgress]:
        """Atomically mutate progress, creating it lazily when absent."""
        ...

    # ------------------------------------------------------------------ #
    # XP ledger
    # ------------------------------------------------------------------ #

    async def apply_xp_transaction(
        self, txn: XPTransaction, mutate: Callable[[UserProgress], UserProgress]
    ) -> Optional[UserProgress]:
        """
        Append `txn` and apply `mutate` to the user's progress in one unit.

        Returns None, changing nothing, when a transaction with the same
        `(user_id, source, source_id)` already exists.
        """
        ...

    async def xp_transaction_exists(self, user_id: str, source: XPSource, source_id: str) -> bool: ...

    async def count_xp_transactions_by_source(self, user_id: str, source: XPSource) -> int: ...

    # ------------------------------------------------------------------ #
    # Streaks / daily progress
    # ------------------------------------------------------------------ #

    async def get_streak_data(self, user_id: str) -> Optional[StreakData]: ...

    async def update_streak(self, user_id: str, mutate: StreakMutator) -> MutationResult[StreakData]: ...

    async def get_daily_progress(self, user_id: str, day: date) -> Optional[DailyProgress]: ...

    async def update_daily_progress(
        self, user_id: str, day: date, mutate: DailyProgressMutator
    ) -> MutationResult[DailyProgress]: ...

    # ------------------------------------------------------------------ #
    # Achievements
    # ------------------------------------------------------------------ #

    async def get_all_achievements(self) -> List[Achievement]:
        """Active catalog entries, ordered by id."""
        ...

    async def get_achievement(self, achievement_id: str) -> Optional[Achievement]: ...

    async def get_user_achievements(self, user_id: str) -> List[UserAchievementEntry]: ...

    async def unlock_achievement(self, user_id: str, achievement_id: str) -> UnlockResult:
        """First writer wins: exactly one caller per pair sees `is_new_unlock=True`."""
        ...

    async def update_achievement_progress(
        self, user_id: str, achievement_id: str, progress: int
    ) -> UserAchievementEntry: ...

    async def mark_achievements_seen(self, user_id: str) -> int: ...

    async def upsert_achievement(self, achievement: Achievement) -> None: ...

    # ------------------------------------------------------------------ #
    # Read-only aggregates
    # ------------------------------------------------------------------ #

    async def get_user_metrics(self, user_id: str) -> UserMetrics: ...

    async def get_push_token(self, user_id: str) -> Optional[str]: ...

    async def get_all_user_ids(self) -> List[str]: ...
