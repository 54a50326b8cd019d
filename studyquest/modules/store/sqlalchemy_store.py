"""
SQLAlchemy Progression Store
============================

Purpose
-------
`ProgressionStore` implementation on SQLAlchemy 2.0 async. PostgreSQL
(asyncpg) in production; SQLite (aiosqlite) in the integration tests.

Atomicity
---------
- Read-modify-write mutators run inside `DatabaseService.get_transaction()`
  with the target row held by `SELECT ... FOR UPDATE`.
- Lazy creation uses `INSERT ... ON CONFLICT DO NOTHING` followed by the
  locking select, so two first actions for the same user never race.
- The XP ledger insert and the progress update share one transaction; the
  unique `(user_id, source, source_id)` constraint makes a replay a no-op.
- Achievement unlock is first-writer-wins: a conditional
  `UPDATE ... WHERE unlocked_at IS NULL` or a conflict-free insert decides
  `is_new_unlock` inside the database.

Error Mapping
-------------
- Pool timeouts, "too many connections", statement timeouts
  -> ResourceExhaustedError
- Any other driver/SQLAlchemy failure -> ExternalServiceError
- Idempotent reads go through DatabaseRetryPolicy before mapping
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from studyquest.core.database.base import utc_now
from studyquest.core.database.retry_policy import DatabaseRetryPolicy
from studyquest.core.database.service import DatabaseService
from studyquest.core.logging.logger import get_logger
from studyquest.database.models import (
    AchievementRecord,
    DailyProgressRecord,
    StreakRecord,
    UserAchievementRecord,
    UserMetricsRecord,
    UserProgressRecord,
    XPTransactionRecord,
)
from studyquest.domain.conditions import parse_condition
from studyquest.domain.enums import AchievementTier, XPSource
from studyquest.domain.models import (
    Achievement,
    DailyProgress,
    MutationResult,
    StreakData,
    StreakHistoryEntry,
    UnlockResult,
    UserAchievementEntry,
    UserMetrics,
    UserProgress,
    XPTransaction,
)
from studyquest.modules.shared.base_repository import BaseRepository
from studyquest.modules.shared.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    ProgressionDomainException,
    ResourceExhaustedError,
)
from studyquest.modules.store.protocol import (
    DailyProgressMutator,
    ProgressMutator,
    StreakMutator,
)

logger = get_logger(__name__)

T = TypeVar("T")

SERVICE_NAME = "progression_store"

_RESOURCE_EXHAUSTION_MARKERS = (
    "too many connections",
    "remaining connection slots",
    "statement timeout",
    "canceling statement due to statement timeout",
    "queuepool limit",
    "resource exhausted",
)
_RESOURCE_EXHAUSTION_DRIVER_ERRORS = frozenset(
    {"TooManyConnectionsError", "QueryCanceledError", "ConnectionDoesNotExistError"}
)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _is_resource_exhaustion(exc: BaseException) -> bool:
    if isinstance(exc, PoolTimeoutError):
        return True
    orig = getattr(exc, "orig", None)
    if orig is not None and type(orig).__name__ in _RESOURCE_EXHAUSTION_DRIVER_ERRORS:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _RESOURCE_EXHAUSTION_MARKERS)


# ============================================================================
# Record <-> domain mapping
# ============================================================================


def _progress_from_record(record: UserProgressRecord) -> UserProgress:
    return UserProgress(
        user_id=record.user_id,
        level=record.level,
        current_xp=record.current_xp,
        total_xp=record.total_xp,
        current_streak=record.current_streak,
        longest_streak=record.longest_streak,
        last_activity_date=_as_utc(record.last_activity_date),
        achievements=tuple(record.achievements or ()),
        created_at=_as_utc(record.created_at),
        updated_at=_as_utc(record.updated_at),
    )


def _apply_progress(record: UserProgressRecord, progress: UserProgress) -> None:
    record.level = progress.level
    record.current_xp = progress.current_xp
    record.total_xp = progress.total_xp
    record.current_streak = progress.current_streak
    record.longest_streak = progress.longest_streak
    record.last_activity_date = progress.last_activity_date
    record.achievements = list(dict.fromkeys(progress.achievements))


def _streak_from_record(record: StreakRecord) -> StreakData:
    history = tuple(
        StreakHistoryEntry(date=date.fromisoformat(item["date"]), count=int(item["count"]))
        for item in (record.history or ())
    )
    return StreakData(
        user_id=record.user_id,
        current=record.current,
        longest=record.longest,
        last_update=_as_utc(record.last_update),
        history=tuple(sorted(history, key=lambda entry: entry.date)),
    )


def _apply_streak(record: StreakRecord, streak: StreakData) -> None:
    record.current = streak.current
    record.longest = streak.longest
    record.last_update = streak.last_update
    record.history = [
        {"date": entry.date.isoformat(), "count": entry.count} for entry in streak.history
    ]


def _daily_from_record(record: DailyProgressRecord) -> DailyProgress:
    return DailyProgress(
        user_id=record.user_id,
        date=record.progress_date,
        cards_reviewed=record.cards_reviewed,
        goal_met=record.goal_met,
        xp_earned=record.xp_earned,
        updated_at=_as_utc(record.updated_at),
    )


def _apply_daily(record: DailyProgressRecord, progress: DailyProgress) -> None:
    record.cards_reviewed = progress.cards_reviewed
    record.goal_met = progress.goal_met
    record.xp_earned = progress.xp_earned


def _achievement_from_record(record: AchievementRecord) -> Achievement:
    return Achievement(
        id=record.id,
        name=record.name,
        description=record.description,
        tier=AchievementTier(record.tier),
        xp_reward=record.xp_reward,
        icon=record.icon,
        is_active=record.is_active,
        condition=parse_condition(record.condition),
    )


def _entry_from_record(record: UserAchievementRecord) -> UserAchievementEntry:
    return UserAchievementEntry(
        user_id=record.user_id,
        achievement_id=record.achievement_id,
        unlocked_at=_as_utc(record.unlocked_at),
        progress=record.progress,
        seen=record.seen,
    )


# ============================================================================
# Repositories
# ============================================================================


class UserProgressRepository(BaseRepository[UserProgressRecord]):
    async def find_by_user(self, session, user_id: str, for_update: bool = False):
        return await self.find_one_where(
            session, UserProgressRecord.user_id == user_id, for_update=for_update
        )


class XPTransactionRepository(BaseRepository[XPTransactionRecord]):
    async def exists_for_source(self, session, user_id: str, source: XPSource, source_id: str) -> bool:
        return await self.exists(
            session,
            XPTransactionRecord.user_id == user_id,
            XPTransactionRecord.source == source.value,
            XPTransactionRecord.source_id == source_id,
        )

    async def count_for_source(self, session, user_id: str, source: XPSource) -> int:
        return await self.count(
            session,
            XPTransactionRecord.user_id == user_id,
            XPTransactionRecord.source == source.value,
        )


class StreakRepository(BaseRepository[StreakRecord]):
    async def find_by_user(self, session, user_id: str, for_update: bool = False):
        return await self.find_one_where(
            session, StreakRecord.user_id == user_id, for_update=for_update
        )


class DailyProgressRepository(BaseRepository[DailyProgressRecord]):
    async def find_for_day(self, session, user_id: str, day: date, for_update: bool = False):
        return await self.find_one_where(
            session,
            DailyProgressRecord.user_id == user_id,
            DailyProgressRecord.progress_date == day,
            for_update=for_update,
        )


class UserAchievementRepository(BaseRepository[UserAchievementRecord]):
    async def find_entry(self, session, user_id: str, achievement_id: str):
        return await self.find_one_where(
            session,
            UserAchievementRecord.user_id == user_id,
            UserAchievementRecord.achievement_id == achievement_id,
        )


# ============================================================================
# Store
# ============================================================================


class SqlAlchemyProgressionStore:
    """
    ProgressionStore over `DatabaseService`.

    Args:
        database: Initialized DatabaseService
        retry_policy: Retry policy for idempotent reads (defaults from Config)
    """

    def __init__(
        self,
        database: DatabaseService,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
    ) -> None:
        self._db = database
        self._retry = retry_policy or DatabaseRetryPolicy.from_config()
        self.log = logger

        self._progress = UserProgressRepository(UserProgressRecord, self.log)
        self._transactions = XPTransactionRepository(XPTransactionRecord, self.log)
        self._streaks = StreakRepository(StreakRecord, self.log)
        self._daily = DailyProgressRepository(DailyProgressRecord, self.log)
        self._achievements = BaseRepository(AchievementRecord, self.log)
        self._user_achievements = UserAchievementRepository(UserAchievementRecord, self.log)
        self._metrics = BaseRepository(UserMetricsRecord, self.log)

    # ------------------------------------------------------------------ #
    # Plumbing
    # ------------------------------------------------------------------ #

    async def _run(
        self,
        operation: str,
        fn: Callable[[], Awaitable[T]],
        *,
        retry: bool = False,
        context: Optional[Dict[str, Any]] = None,
    ) -> T:
        """Run `fn`, translating driver failures into domain exceptions."""
        try:
            if retry:
                return await self._retry.execute(
                    fn, operation_name=f"store.{operation}", context=context
                )
            return await fn()
        except ProgressionDomainException:
            raise
        except (SQLAlchemyError, OSError) as exc:
            extra = {
                "operation": operation,
                "error_type": type(exc).__name__,
                "error": str(exc),
                **(context or {}),
            }
            if _is_resource_exhaustion(exc):
                self.log.error("Progression store resource exhausted", extra=extra)
                raise ResourceExhaustedError(SERVICE_NAME, operation, str(exc)) from exc

            self.log.warning("Progression store operation failed", extra=extra, exc_info=True)
            raise ExternalServiceError(SERVICE_NAME, operation, str(exc)) from exc

    @staticmethod
    def _insert(session, model: Any):
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        raise ConfigurationError(
            "DATABASE_URL", f"Unsupported database dialect for progression store: {dialect}"
        )

    async def _insert_ignore(
        self,
        session,
        model: Any,
        values: Dict[str, Any],
        conflict_columns: Sequence[str],
    ) -> bool:
        """`INSERT ... ON CONFLICT DO NOTHING`. True when a row was inserted."""
        stmt = (
            self._insert(session, model)
            .values(**values)
            .on_conflict_do_nothing(index_elements=list(conflict_columns))
        )
        result = await session.execute(stmt)
        return result.rowcount != 0  # type: ignore[attr-defined]

    async def _lock_progress(self, session, user_id: str) -> UserProgressRecord:
        await self._insert_ignore(
            session,
            UserProgressRecord,
            {"user_id": user_id, "achievements": []},
            ["user_id"],
        )
        record = await self._progress.find_by_user(session, user_id, for_update=True)
        assert record is not None
        return record

    async def _lock_streak(self, session, user_id: str) -> StreakRecord:
        await self._insert_ignore(
            session, StreakRecord, {"user_id": user_id, "history": []}, ["user_id"]
        )
        record = await self._streaks.find_by_user(session, user_id, for_update=True)
        assert record is not None
        return record

    async def _lock_daily(self, session, user_id: str, day: date) -> DailyProgressRecord:
        await self._insert_ignore(
            session,
            DailyProgressRecord,
            {"user_id": user_id, "progress_date": day},
            ["user_id", "progress_date"],
        )
        record = await self._daily.find_for_day(session, user_id, day, for_update=True)
        assert record is not None
        return record

    # ------------------------------------------------------------------ #
    # User progress
    # ------------------------------------------------------------------ #

    async def get_user_progress(self, user_id: str) -> Optional[UserProgress]:
        async def op() -> Optional[UserProgress]:
            async with self._db.get_session() as session:
                record = await self._progress.find_by_user(session, user_id)
                return _progress_from_record(record) if record is not None else None

        return await self._run("get_user_progress", op, retry=True, context={"user_id": user_id})

    async def create_user_progress(self, user_id: str) -> UserProgress:
        async def op() -> UserProgress:
            async with self._db.get_transaction() as session:
                record = await self._lock_progress(session, user_id)
                return _progress_from_record(record)

        return await self._run("create_user_progress", op, context={"user_id": user_id})

    async def update_user_progress(
        self, user_id: str, mutate: ProgressMutator
    ) -> MutationResult[UserProgress]:
        async def op() -> MutationResult[UserProgress]:
            async with self._db.get_transaction() as session:
                record = await self._lock_progress(session, user_id)
                current = _progress_from_record(record)
                updated = mutate(current)
                if updated is None or updated == current:
                    return MutationResult(current, False)

                _apply_progress(record, updated)
                await session.flush()
                return MutationResult(_progress_from_record(record), True)

        return await self._run("update_user_progress", op, context={"user_id": user_id})

    # ------------------------------------------------------------------ #
    # XP ledger
    # ------------------------------------------------------------------ #

    async def apply_xp_transaction(
        self, txn: XPTransaction, mutate: Callable[[UserProgress], UserProgress]
    ) -> Optional[UserProgress]:
        async def op() -> Optional[UserProgress]:
            async with self._db.get_transaction() as session:
                inserted = await self._insert_ignore(
                    session,
                    XPTransactionRecord,
                    {
                        "transaction_uid": txn.id,
                        "user_id": txn.user_id,
                        "amount": txn.amount,
                        "source": txn.source.value,
                        "source_id": txn.source_id,
                        "description": txn.description,
                        "created_at": txn.timestamp,
                    },
                    ["user_id", "source", "source_id"],
                )
                if not inserted:
                    return None

                record = await self._lock_progress(session, txn.user_id)
                _apply_progress(record, mutate(_progress_from_record(record)))
                await session.flush()
                return _progress_from_record(record)

        return await self._run(
            "apply_xp_transaction",
            op,
            context={"user_id": txn.user_id, "source": txn.source.value},
        )

    async def xp_transaction_exists(self, user_id: str, source: XPSource, source_id: str) -> bool:
        async def op() -> bool:
            async with self._db.get_session() as session:
                return await self._transactions.exists_for_source(session, user_id, source, source_id)

        return await self._run("xp_transaction_exists", op, retry=True, context={"user_id": user_id})

    async def count_xp_transactions_by_source(self, user_id: str, source: XPSource) -> int:
        async def op() -> int:
            async with self._db.get_session() as session:
                return await self._transactions.count_for_source(session, user_id, source)

        return await self._run(
            "count_xp_transactions_by_source", op, retry=True, context={"user_id": user_id}
        )

    # ------------------------------------------------------------------ #
    # Streaks
    # ------------------------------------------------------------------ #

    async def get_streak_data(self, user_id: str) -> Optional[StreakData]:
        async def op() -> Optional[StreakData]:
            async with self._db.get_session() as session:
                record = await self._streaks.find_by_user(session, user_id)
                return _streak_from_record(record) if record is not None else None

        return await self._run("get_streak_data", op, retry=True, context={"user_id": user_id})

    async def update_streak(self, user_id: str, mutate: StreakMutator) -> MutationResult[StreakData]:
        async def op() -> MutationResult[StreakData]:
            async with self._db.get_transaction() as session:
                record = await self._lock_streak(session, user_id)
                current = _streak_from_record(record)
                updated = mutate(current)
                if updated is None or updated == current:
                    return MutationResult(current, False)

                _apply_streak(record, updated)
                await session.flush()
                return MutationResult(_streak_from_record(record), True)

        return await self._run("update_streak", op, context={"user_id": user_id})

    # ------------------------------------------------------------------ #
    # Daily progress
    # ------------------------------------------------------------------ #

    async def get_daily_progress(self, user_id: str, day: date) -> Optional[DailyProgress]:
        async def op() -> Optional[DailyProgress]:
            async with self._db.get_session() as session:
                record = await self._daily.find_for_day(session, user_id, day)
                return _daily_from_record(record) if record is not None else None

        return await self._run(
            "get_daily_progress",
            op,
            retry=True,
            context={"user_id": user_id, "date": day.isoformat()},
        )

    async def update_daily_progress(
        self, user_id: str, day: date, mutate: DailyProgressMutator
    ) -> MutationResult[DailyProgress]:
        async def op() -> MutationResult[DailyProgress]:
            async with self._db.get_transaction() as session:
                record = await self._lock_daily(session, user_id, day)
                current = _daily_from_record(record)
                updated = mutate(current)
                if updated is None or updated == current:
                    return MutationResult(current, False)

                _apply_daily(record, updated)
                await session.flush()
                return MutationResult(_daily_from_record(record), True)

        return await self._run(
            "update_daily_progress",
            op,
            context={"user_id": user_id, "date": day.isoformat()},
        )

    # ------------------------------------------------------------------ #
    # Achievements
    # ------------------------------------------------------------------ #

    async def get_all_achievements(self) -> List[Achievement]:
        async def op() -> List[Achievement]:
            async with self._db.get_session() as session:
                records = await self._achievements.find_many_where(
                    session,
                    AchievementRecord.is_active.is_(True),
                    order_by=AchievementRecord.id,
                )
                return [_achievement_from_record(record) for record in records]

        return await self._run("get_all_achievements", op, retry=True)

    async def get_achievement(self, achievement_id: str) -> Optional[Achievement]:
        async def op() -> Optional[Achievement]:
            async with self._db.get_session() as session:
                record = await self._achievements.find_one_where(
                    session, AchievementRecord.id == achievement_id
                )
                return _achievement_from_record(record) if record is not None else None

        return await self._run(
            "get_achievement", op, retry=True, context={"achievement_id": achievement_id}
        )

    async def get_user_achievements(self, user_id: str) -> List[UserAchievementEntry]:
        async def op() -> List[UserAchievementEntry]:
            async with self._db.get_session() as session:
                records = await self._user_achievements.find_many_where(
                    session,
                    UserAchievementRecord.user_id == user_id,
                    order_by=UserAchievementRecord.achievement_id,
                )
                return [_entry_from_record(record) for record in records]

        return await self._run("get_user_achievements", op, retry=True, context={"user_id": user_id})

    async def unlock_achievement(self, user_id: str, achievement_id: str) -> UnlockResult:
        async def mark_unlocked(session, now: datetime) -> bool:
            result = await session.execute(
                update(UserAchievementRecord)
                .where(
                    UserAchievementRecord.user_id == user_id,
                    UserAchievementRecord.achievement_id == achievement_id,
                    UserAchievementRecord.unlocked_at.is_(None),
                )
                .values(unlocked_at=now, progress=100, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1  # type: ignore[attr-defined]

        async def op() -> UnlockResult:
            now = utc_now()
            async with self._db.get_transaction() as session:
                if await mark_unlocked(session, now):
                    return UnlockResult(is_new_unlock=True, unlocked_at=now)

                inserted = await self._insert_ignore(
                    session,
                    UserAchievementRecord,
                    {
                        "user_id": user_id,
                        "achievement_id": achievement_id,
                        "unlocked_at": now,
                        "progress": 100,
                    },
                    ["user_id", "achievement_id"],
                )
                if inserted:
                    return UnlockResult(is_new_unlock=True, unlocked_at=now)

                # A progress-only row may have appeared between the two statements
                if await mark_unlocked(session, now):
                    return UnlockResult(is_new_unlock=True, unlocked_at=now)

                existing = await self._user_achievements.find_entry(session, user_id, achievement_id)
                unlocked_at = _as_utc(existing.unlocked_at) if existing is not None else None
                return UnlockResult(is_new_unlock=False, unlocked_at=unlocked_at or now)

        return await self._run(
            "unlock_achievement",
            op,
            context={"user_id": user_id, "achievement_id": achievement_id},
        )

    async def update_achievement_progress(
        self, user_id: str, achievement_id: str, progress: int
    ) -> UserAchievementEntry:
        async def op() -> UserAchievementEntry:
            async with self._db.get_transaction() as session:
                await self._insert_ignore(
                    session,
                    UserAchievementRecord,
                    {"user_id": user_id, "achievement_id": achievement_id, "progress": progress},
                    ["user_id", "achievement_id"],
                )
                # Unlocked entries stay at 100
                await session.execute(
                    update(UserAchievementRecord)
                    .where(
                        UserAchievementRecord.user_id == user_id,
                        UserAchievementRecord.achievement_id == achievement_id,
                        UserAchievementRecord.unlocked_at.is_(None),
                    )
                    .values(progress=progress)
                    .execution_options(synchronize_session=False)
                )
                record = await self._user_achievements.find_entry(session, user_id, achievement_id)
                assert record is not None
                return _entry_from_record(record)

        return await self._run(
            "update_achievement_progress",
            op,
            context={"user_id": user_id, "achievement_id": achievement_id},
        )

    async def mark_achievements_seen(self, user_id: str) -> int:
        async def op() -> int:
            async with self._db.get_transaction() as session:
                result = await session.execute(
                    update(UserAchievementRecord)
                    .where(
                        UserAchievementRecord.user_id == user_id,
                        UserAchievementRecord.unlocked_at.is_not(None),
                        UserAchievementRecord.seen.is_(False),
                    )
                    .values(seen=True)
                    .execution_options(synchronize_session=False)
                )
                return int(result.rowcount or 0)  # type: ignore[attr-defined]

        return await self._run("mark_achievements_seen", op, context={"user_id": user_id})

    async def upsert_achievement(self, achievement: Achievement) -> None:
        async def op() -> None:
            async with self._db.get_transaction() as session:
                record = await self._achievements.find_one_where(
                    session, AchievementRecord.id == achievement.id, for_update=True
                )
                if record is None:
                    record = AchievementRecord(id=achievement.id)
                    session.add(record)
                record.name = achievement.name
                record.description = achievement.description
                record.tier = achievement.tier.value
                record.xp_reward = achievement.xp_reward
                record.icon = achievement.icon
                record.is_active = achievement.is_active
                record.condition = achievement.condition.to_dict()

        await self._run("upsert_achievement", op, context={"achievement_id": achievement.id})

    # ------------------------------------------------------------------ #
    # Read-only aggregates
    # ------------------------------------------------------------------ #

    async def get_user_metrics(self, user_id: str) -> UserMetrics:
        async def op() -> UserMetrics:
            async with self._db.get_session() as session:
                record = await self._metrics.find_one_where(
                    session, UserMetricsRecord.user_id == user_id
                )
                if record is None:
                    return UserMetrics.empty(user_id)
                return UserMetrics.from_dict(user_id, record.payload or {})

        return await self._run("get_user_metrics", op, retry=True, context={"user_id": user_id})

    async def get_push_token(self, user_id: str) -> Optional[str]:
        async def op() -> Optional[str]:
            async with self._db.get_session() as session:
                result = await session.execute(
                    select(UserProgressRecord.push_token).where(UserProgressRecord.user_id == user_id)
                )
                return result.scalar_one_or_none()

        return await self._run("get_push_token", op, retry=True, context={"user_id": user_id})

    async def get_all_user_ids(self) -> List[str]:
        async def op() -> List[str]:
            async with self._db.get_session() as session:
                result = await session.execute(
                    select(UserProgressRecord.user_id).order_by(UserProgressRecord.user_id)
                )
                return [str(user_id) for user_id in result.scalars().all()]

        return await self._run("get_all_user_ids", op, retry=True)

    # ------------------------------------------------------------------ #
    # Admin helpers (not part of ProgressionStore)
    # ------------------------------------------------------------------ #

    async def set_push_token(self, user_id: str, token: Optional[str]) -> None:
        async def op() -> None:
            async with self._db.get_transaction() as session:
                record = await self._lock_progress(session, user_id)
                record.push_token = token

        await self._run("set_push_token", op, context={"user_id": user_id})

    async def save_user_metrics(self, metrics: UserMetrics) -> None:
        async def op() -> None:
            async with self._db.get_transaction() as session:
                await self._insert_ignore(
                    session,
                    UserMetricsRecord,
                    {"user_id": metrics.user_id, "payload": {}},
                    ["user_id"],
                )
                record = await self._metrics.find_one_where(
                    session, UserMetricsRecord.user_id == metrics.user_id, for_update=True
                )
                assert record is not None
                record.payload = metrics.to_dict()

        await self._run("save_user_metrics", op, context={"user_id": metrics.user_id})
