"""
Progression domain models.

Purpose
-------
Immutable value types passed between the progression services and the
persistence collaborator. Stores return these; services derive new values
with `dataclasses.replace` and hand them back through atomic mutators.

Non-Responsibilities
--------------------
- Persistence (ProgressionStore implementations)
- Database schema (studyquest.database.models)
- Business rules (services)
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    FrozenSet,
    Generic,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
)

from studyquest.domain.conditions import AchievementCondition, parse_condition
from studyquest.domain.enums import AchievementTier, XPSource
from studyquest.modules.shared.exceptions import ValidationError

if TYPE_CHECKING:
    from studyquest.modules.shared.formulas import LevelUpResult

T = TypeVar("T")


# ============================================================================
# USER PROGRESS / LEDGER
# ============================================================================


@dataclass(frozen=True)
class UserProgress:
    """
    Aggregate progression state for one learner.

    Invariant: `current_xp == total_xp - xp_for_level(level)` (or `total_xp`
    at level 0) and `xp_for_level(level) <= total_xp < xp_for_level(level + 1)`.
    """

    user_id: str
    level: int = 0
    current_xp: int = 0
    total_xp: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[datetime] = None
    achievements: Tuple[str, ...] = ()
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def has_achievement(self, achievement_id: str) -> bool:
        return achievement_id in self.achievements

    def with_achievement(self, achievement_id: str) -> UserProgress:
        if achievement_id in self.achievements:
            return self
        return replace(self, achievements=self.achievements + (achievement_id,))


@dataclass(frozen=True)
class XPTransaction:
    """Append-only ledger entry. `(user_id, source, source_id)` is unique."""

    id: str
    user_id: str
    amount: int
    source: XPSource
    source_id: str
    description: str
    timestamp: datetime


@dataclass(frozen=True)
class XPAwardResult:
    """
    Outcome of one XP application.

    `applied` is False when the `(user, source, source_id)` tuple was already
    in the ledger; `progress` is then the unchanged current state.
    """

    progress: UserProgress
    level_up: LevelUpResult
    applied: bool
    transaction: Optional[XPTransaction] = None

    @property
    def xp_awarded(self) -> int:
        return self.transaction.amount if self.transaction is not None and self.applied else 0


# ============================================================================
# STREAKS
# ============================================================================


@dataclass(frozen=True)
class StreakHistoryEntry:
    date: date
    count: int


@dataclass(frozen=True)
class StreakData:
    """Consecutive-day state. At most one history entry per calendar day."""

    user_id: str
    current: int = 0
    longest: int = 0
    last_update: Optional[datetime] = None
    history: Tuple[StreakHistoryEntry, ...] = ()

    def has_entry_for(self, day: date) -> bool:
        """True when the streak already counted `day`. Reset markers (count 0) do not count."""
        return any(entry.date == day and entry.count > 0 for entry in self.history)

    def with_entry(self, entry: StreakHistoryEntry) -> Tuple[StreakHistoryEntry, ...]:
        """History with `entry` replacing any entry for the same day, sorted by date."""
        kept = [item for item in self.history if item.date != entry.date]
        kept.append(entry)
        return tuple(sorted(kept, key=lambda item: item.date))


@dataclass(frozen=True)
class StreakBonus:
    bonus_awarded: int = 0
    milestone: Optional[int] = None


@dataclass(frozen=True)
class StreakUpdate:
    """Outcome of a streak transition. `changed` is False for same-day repeats."""

    streak: StreakData
    changed: bool
    bonus_awarded: int = 0
    milestone: Optional[int] = None


@dataclass(frozen=True)
class BatchUserError:
    user_id: str
    error: str
    error_type: str


@dataclass
class StreakBatchResult:
    """Statistics of one nightly reconciliation run."""

    processed: int = 0
    incremented: int = 0
    reset: int = 0
    started: int = 0
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
            "incremented": self.incremented,
            "reset": self.reset,
            "started": self.started,
            "skipped": self.skipped,
            "error_count": len(self.errors),
        }


# ============================================================================
# DAILY GOAL
# ============================================================================


@dataclass(frozen=True)
class DailyProgress:
    user_id: str
    date: date
    cards_reviewed: int = 0
    goal_met: bool = False
    xp_earned: int = 0
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class DailyGoalStatus:
    goal_met: bool
    cards_reviewed: int
    cards_remaining: int
    xp_earned: int
    target: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal_met": self.goal_met,
            "cards_reviewed": self.cards_reviewed,
            "cards_remaining": self.cards_remaining,
            "xp_earned": self.xp_earned,
            "target": self.target,
        }


# ============================================================================
# ACHIEVEMENTS
# ============================================================================


@dataclass(frozen=True)
class Achievement:
    """Catalog entry. Read-only for the engine."""

    id: str
    name: str
    tier: AchievementTier
    xp_reward: int
    condition: AchievementCondition
    description: str = ""
    icon: str = ""
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "tier": self.tier.value,
            "xp_reward": self.xp_reward,
            "icon": self.icon,
            "is_active": self.is_active,
            "condition": self.condition.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Achievement:
        """
        Build an Achievement from a catalog mapping (YAML seed or cache).

        Accepts both `xp_reward` and `xpReward` spellings. Raises
        ValidationError for malformed conditions or unknown tiers.
        """
        raw_tier = str(data.get("tier", "")).strip().lower()
        try:
            tier = AchievementTier(raw_tier)
        except ValueError:
            raise ValidationError("tier", f"unknown achievement tier {raw_tier!r}") from None

        raw_reward = data.get("xp_reward", data.get("xpReward", 0))
        if isinstance(raw_reward, bool) or not isinstance(raw_reward, (int, float)):
            raise ValidationError("xp_reward", f"must be a number, got {raw_reward!r}")

        return cls(
            id=str(data.get("id", "")).strip(),
            name=str(data.get("name", "")).strip(),
            description=str(data.get("description", "")).strip(),
            tier=tier,
            xp_reward=int(round(raw_reward)),
            icon=str(data.get("icon", "")).strip(),
            is_active=bool(data.get("is_active", data.get("isActive", True))),
            condition=parse_condition(data.get("condition") or {}),
        )


@dataclass(frozen=True)
class UserAchievementEntry:
    """Per-user achievement row. `unlocked_at` goes from None to a timestamp once."""

    user_id: str
    achievement_id: str
    unlocked_at: Optional[datetime] = None
    progress: int = 0
    seen: bool = False

    @property
    def is_unlocked(self) -> bool:
        return self.unlocked_at is not None


@dataclass(frozen=True)
class UnlockResult:
    is_new_unlock: bool
    unlocked_at: datetime


@dataclass(frozen=True)
class AchievementUnlock:
    """A first unlock together with the XP reward it granted."""

    achievement: Achievement
    unlocked_at: datetime
    xp_award: Optional[XPAwardResult] = None

    @property
    def xp_awarded(self) -> int:
        return self.xp_award.xp_awarded if self.xp_award is not None else 0


# ============================================================================
# USER METRICS
# ============================================================================


def _as_frozenset(value: Any) -> FrozenSet[str]:
    if not value:
        return frozenset()
    return frozenset(str(item) for item in value)


def _as_int(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class UserMetrics:
    """
    Externally aggregated per-user activity data.

    Read-only for the engine; consumed by custom achievement metrics.
    Day-keyed maps use ISO `YYYY-MM-DD` keys.
    """

    user_id: str
    unique_decks_studied: FrozenSet[str] = frozenset()
    difficulty_levels_used: FrozenSet[str] = frozenset()
    marketplace_decks_added: FrozenSet[str] = frozenset()
    decks_shared: FrozenSet[str] = frozenset()
    active_decks: FrozenSet[str] = frozenset()
    decks_completed: FrozenSet[str] = frozenset()
    deck_reviews_submitted: int = 0
    easy_cards_streak: int = 0
    hard_cards_completed: int = 0
    expert_cards_completed: int = 0
    card_review_iterations: int = 0
    profile_completed: bool = False
    cards_reviewed_by_day: Mapping[str, int] = field(default_factory=dict)
    cards_created_by_day: Mapping[str, int] = field(default_factory=dict)
    decks_studied_by_day: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    study_session_hours: Tuple[int, ...] = ()

    _SET_FIELDS = (
        "unique_decks_studied",
        "difficulty_levels_used",
        "marketplace_decks_added",
        "decks_shared",
        "active_decks",
        "decks_completed",
    )
    _COUNTER_FIELDS = (
        "deck_reviews_submitted",
        "easy_cards_streak",
        "hard_cards_completed",
        "expert_cards_completed",
        "card_review_iterations",
    )

    @classmethod
    def empty(cls, user_id: str) -> UserMetrics:
        return cls(user_id=user_id)

    @classmethod
    def from_dict(cls, user_id: str, data: Mapping[str, Any]) -> UserMetrics:
        kwargs: Dict[str, Any] = {"user_id": user_id}
        for name in cls._SET_FIELDS:
            kwargs[name] = _as_frozenset(data.get(name))
        for name in cls._COUNTER_FIELDS:
            kwargs[name] = _as_int(data.get(name))
        kwargs["profile_completed"] = bool(data.get("profile_completed", False))
        kwargs["cards_reviewed_by_day"] = {
            str(day): _as_int(count) for day, count in (data.get("cards_reviewed_by_day") or {}).items()
        }
        kwargs["cards_created_by_day"] = {
            str(day): _as_int(count) for day, count in (data.get("cards_created_by_day") or {}).items()
        }
        kwargs["decks_studied_by_day"] = {
            str(day): _as_frozenset(decks)
            for day, decks in (data.get("decks_studied_by_day") or {}).items()
        }
        kwargs["study_session_hours"] = tuple(
            int(hour) for hour in (data.get("study_session_hours") or ())
        )
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for name in self._SET_FIELDS:
            data[name] = sorted(getattr(self, name))
        for name in self._COUNTER_FIELDS:
            data[name] = getattr(self, name)
        data["profile_completed"] = self.profile_completed
        data["cards_reviewed_by_day"] = dict(self.cards_reviewed_by_day)
        data["cards_created_by_day"] = dict(self.cards_created_by_day)
        data["decks_studied_by_day"] = {
            day: sorted(decks) for day, decks in self.decks_studied_by_day.items()
        }
        data["study_session_hours"] = list(self.study_session_hours)
        return data


# ============================================================================
# STORE PRIMITIVES
# ============================================================================


@dataclass(frozen=True)
class MutationResult(Generic[T]):
    """Result of an atomic read-modify-write at the store boundary."""

    value: T
    changed: bool


def previous_day(day: date, days: int = 1) -> date:
    return day - timedelta(days=days)
