"""
Achievement condition variants.

Purpose
-------
Model an achievement's unlock condition as a tagged variant: one frozen
dataclass per condition type, each carrying exactly the parameters that type
needs. Illegal combinations (a `custom` condition without a metric, a
negative target) fail at parse time instead of at evaluation time.

Wire Format
-----------
Catalog entries use `{type, target, params?}`:

    {"type": "cards_created", "target": 10}
    {"type": "daily_goal", "target": 7, "params": {"consecutive": true}}
    {"type": "custom", "target": 5, "params": {"metric": "unique_decks_studied"}}

Extending
---------
Decorate a new variant with `@condition_type(ConditionType.X)` and give it a
`from_params(target, params)` classmethod. Evaluation is registered
separately in `studyquest.modules.achievement.evaluators`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Collection, Dict, Mapping, Optional, Type, TypeVar, Union

from studyquest.domain.enums import ConditionType
from studyquest.modules.shared.exceptions import ValidationError

C = TypeVar("C", bound="BaseCondition")

_CONDITION_TYPES: Dict[ConditionType, Type["BaseCondition"]] = {}


def condition_type(kind: ConditionType) -> Callable[[Type[C]], Type[C]]:
    """Register a condition variant for its discriminator."""

    def decorator(cls: Type[C]) -> Type[C]:
        cls.type = kind
        _CONDITION_TYPES[kind] = cls
        return cls

    return decorator


@dataclass(frozen=True)
class BaseCondition:
    type: ClassVar[ConditionType]
    target: int

    @classmethod
    def from_params(cls: Type[C], target: int, params: Mapping[str, Any]) -> C:
        return cls(target=target)

    def params(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type.value, "target": self.target}
        params = self.params()
        if params:
            data["params"] = params
        return data


@condition_type(ConditionType.CARDS_CREATED)
@dataclass(frozen=True)
class CardsCreatedCondition(BaseCondition):
    pass


@condition_type(ConditionType.REVIEWS_COMPLETED)
@dataclass(frozen=True)
class ReviewsCompletedCondition(BaseCondition):
    pass


@condition_type(ConditionType.DECK_CREATED)
@dataclass(frozen=True)
class DecksCreatedCondition(BaseCondition):
    pass


@condition_type(ConditionType.DAILY_GOAL)
@dataclass(frozen=True)
class DailyGoalCondition(BaseCondition):
    """`consecutive=True` measures the current streak instead of the total."""

    consecutive: bool = False

    @classmethod
    def from_params(cls, target: int, params: Mapping[str, Any]) -> DailyGoalCondition:
        consecutive = params.get("consecutive", False)
        if not isinstance(consecutive, bool):
            raise ValidationError("condition.params.consecutive", "must be a boolean")
        return cls(target=target, consecutive=consecutive)

    def params(self) -> Dict[str, Any]:
        return {"consecutive": True} if self.consecutive else {}


@condition_type(ConditionType.STREAK)
@dataclass(frozen=True)
class StreakCondition(BaseCondition):
    pass


@condition_type(ConditionType.XP_TOTAL)
@dataclass(frozen=True)
class XPTotalCondition(BaseCondition):
    pass


@condition_type(ConditionType.LEVEL_REACHED)
@dataclass(frozen=True)
class LevelReachedCondition(BaseCondition):
    pass


@condition_type(ConditionType.CUSTOM)
@dataclass(frozen=True)
class CustomCondition(BaseCondition):
    """Named metric over UserMetrics; extra params are passed to the metric."""

    metric: str = ""
    options: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_params(cls, target: int, params: Mapping[str, Any]) -> CustomCondition:
        metric = params.get("metric")
        if not isinstance(metric, str) or not metric.strip():
            raise ValidationError("condition.params.metric", "custom conditions require a metric name")
        options = {key: value for key, value in params.items() if key != "metric"}
        return cls(target=target, metric=metric.strip(), options=options)

    def params(self) -> Dict[str, Any]:
        return {"metric": self.metric, **dict(self.options)}

    def __hash__(self) -> int:
        return hash((self.type, self.target, self.metric, tuple(sorted(self.options))))


AchievementCondition = Union[
    CardsCreatedCondition,
    ReviewsCompletedCondition,
    DecksCreatedCondition,
    DailyGoalCondition,
    StreakCondition,
    XPTotalCondition,
    LevelReachedCondition,
    CustomCondition,
]


def _parse_target(raw: Any) -> int:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValidationError("condition.target", f"must be a number, got {raw!r}")
    if not math.isfinite(raw) or raw <= 0:
        raise ValidationError("condition.target", f"must be a positive finite number, got {raw!r}")
    return max(1, int(round(raw)))


def parse_condition(
    data: Mapping[str, Any],
    known_metrics: Optional[Collection[str]] = None,
) -> AchievementCondition:
    """
    Parse a `{type, target, params?}` mapping into its condition variant.

    Raises ValidationError for unknown types, bad targets, missing custom
    metric names, or (when `known_metrics` is given) unregistered metrics.
    """
    raw_type = data.get("type")
    try:
        kind = ConditionType(str(raw_type).strip().lower())
    except ValueError:
        raise ValidationError("condition.type", f"unknown condition type {raw_type!r}") from None

    params = data.get("params") or {}
    if not isinstance(params, Mapping):
        raise ValidationError("condition.params", "must be a mapping")

    condition = _CONDITION_TYPES[kind].from_params(_parse_target(data.get("target")), params)

    if (
        known_metrics is not None
        and isinstance(condition, CustomCondition)
        and condition.metric not in known_metrics
    ):
        raise ValidationError("condition.params.metric", f"unknown metric {condition.metric!r}")

    return condition  # type: ignore[return-value]


def registered_condition_types() -> list[ConditionType]:
    return sorted(_CONDITION_TYPES, key=lambda kind: kind.value)
