"""
Achievement condition evaluation.

Each condition type maps to one async handler that measures the learner's
current value for that condition. An achievement is satisfied when the
measured value reaches `condition.target`.

Handlers read through an `EvaluationContext`, which loads progress, streak,
metrics and per-source ledger counts at most once per user per check.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional

from studyquest.domain.conditions import (
    AchievementCondition,
    CustomCondition,
    DailyGoalCondition,
)
from studyquest.domain.enums import ConditionType, XPSource
from studyquest.domain.models import StreakData, UserMetrics, UserProgress
from studyquest.modules.achievement.metrics import MetricRegistry, default_metric_registry
from studyquest.modules.shared.exceptions import ValidationError

if TYPE_CHECKING:
    from studyquest.modules.store.protocol import ProgressionStore

ConditionHandler = Callable[[AchievementCondition, "EvaluationContext"], Awaitable[int]]


class EvaluationContext:
    """Per-user read cache for one achievement check."""

    def __init__(
        self,
        store: ProgressionStore,
        user_id: str,
        metric_registry: MetricRegistry,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self.metric_registry = metric_registry
        self._progress: Optional[UserProgress] = None
        self._streak: Optional[StreakData] = None
        self._metrics: Optional[UserMetrics] = None
        self._source_counts: Dict[XPSource, int] = {}

    async def progress(self) -> UserProgress:
        if self._progress is None:
            progress = await self.store.get_user_progress(self.user_id)
            self._progress = progress if progress is not None else UserProgress(user_id=self.user_id)
        return self._progress

    async def streak(self) -> StreakData:
        if self._streak is None:
            streak = await self.store.get_streak_data(self.user_id)
            self._streak = streak if streak is not None else StreakData(user_id=self.user_id)
        return self._streak

    async def metrics(self) -> UserMetrics:
        if self._metrics is None:
            self._metrics = await self.store.get_user_metrics(self.user_id)
        return self._metrics

    async def count_source(self, source: XPSource) -> int:
        if source not in self._source_counts:
            self._source_counts[source] = await self.store.count_xp_transactions_by_source(
                self.user_id, source
            )
        return self._source_counts[source]

    def invalidate(self) -> None:
        """Drop cached reads after this check granted XP."""
        self._progress = None
        self._source_counts.clear()


class ConditionRegistry:
    """Condition type -> measuring handler."""

    def __init__(self, metric_registry: Optional[MetricRegistry] = None) -> None:
        self._handlers: Dict[ConditionType, ConditionHandler] = {}
        self.metrics = metric_registry or default_metric_registry()

    def register(self, kind: ConditionType) -> Callable[[ConditionHandler], ConditionHandler]:
        def decorator(handler: ConditionHandler) -> ConditionHandler:
            self._handlers[kind] = handler
            return handler

        return decorator

    def types(self) -> List[ConditionType]:
        return sorted(self._handlers, key=lambda kind: kind.value)

    def context_for(self, store: ProgressionStore, user_id: str) -> EvaluationContext:
        return EvaluationContext(store, user_id, self.metrics)

    async def measure(self, condition: AchievementCondition, ctx: EvaluationContext) -> int:
        handler = self._handlers.get(condition.type)
        if handler is None:
            raise ValidationError(
                "condition.type", f"no handler registered for {condition.type.value!r}"
            )
        return max(0, int(await handler(condition, ctx)))

    async def is_satisfied(self, condition: AchievementCondition, ctx: EvaluationContext) -> bool:
        return await self.measure(condition, ctx) >= condition.target


def _count_by_source(source: XPSource) -> ConditionHandler:
    async def handler(condition: AchievementCondition, ctx: EvaluationContext) -> int:
        return await ctx.count_source(source)

    return handler


async def _daily_goal(condition: AchievementCondition, ctx: EvaluationContext) -> int:
    if isinstance(condition, DailyGoalCondition) and condition.consecutive:
        return (await ctx.streak()).current
    return await ctx.count_source(XPSource.DAILY_GOAL)


async def _streak(condition: AchievementCondition, ctx: EvaluationContext) -> int:
    return (await ctx.streak()).current


async def _xp_total(condition: AchievementCondition, ctx: EvaluationContext) -> int:
    return (await ctx.progress()).total_xp


async def _level_reached(condition: AchievementCondition, ctx: EvaluationContext) -> int:
    return (await ctx.progress()).level


async def _custom(condition: AchievementCondition, ctx: EvaluationContext) -> int:
    if not isinstance(condition, CustomCondition):
        raise ValidationError(
            "condition.type", f"custom metric handler cannot measure {condition.type.value!r}"
        )
    return ctx.metric_registry.evaluate(condition.metric, await ctx.metrics(), condition.options)


def default_condition_registry(metric_registry: Optional[MetricRegistry] = None) -> ConditionRegistry:
    registry = ConditionRegistry(metric_registry)
    registry.register(ConditionType.CARDS_CREATED)(_count_by_source(XPSource.CARD_CREATION))
    registry.register(ConditionType.REVIEWS_COMPLETED)(_count_by_source(XPSource.REVIEW))
    registry.register(ConditionType.DECK_CREATED)(_count_by_source(XPSource.DECK_CREATION))
    registry.register(ConditionType.DAILY_GOAL)(_daily_goal)
    registry.register(ConditionType.STREAK)(_streak)
    registry.register(ConditionType.XP_TOTAL)(_xp_total)
    registry.register(ConditionType.LEVEL_REACHED)(_level_reached)
    registry.register(ConditionType.CUSTOM)(_custom)
    return registry
