"""
Custom achievement metrics.

Purpose
-------
`custom` achievement conditions name a metric in `params.metric`. Each
metric is a pure function `(UserMetrics, options) -> int` registered by
name; the achievement unlocks when the value reaches the condition target.

Built-ins
---------
- set cardinality: unique_decks_studied, difficulty_levels_used,
  marketplace_decks_added, decks_shared, active_decks, decks_completed
- counters: deck_reviews_submitted, easy_cards_streak, hard_cards_completed,
  expert_cards_completed, card_review_iterations
- flag: profile_completed (0 or 1)
- running maxima: cards_reviewed_single_day, decks_studied_same_day
- session hours: study_sessions_before_hour / study_sessions_after_hour
  (`options.hour`, defaults 8 and 22)
- minimum_cards_consecutive_days: longest run of consecutive days with at
  least `options.minimumCardsPerDay` reviews
- cards_created_in_week: best 7-day rolling window of card creations

Usage
-----
    registry = default_metric_registry()

    @registry.register("weekend_reviews")
    def weekend_reviews(metrics, options):
        ...
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from studyquest.domain.models import UserMetrics
from studyquest.modules.shared.exceptions import ValidationError

MetricFn = Callable[[UserMetrics, Mapping[str, Any]], int]

DEFAULT_EARLY_HOUR = 8
DEFAULT_LATE_HOUR = 22
ROLLING_WINDOW_DAYS = 7


class MetricRegistry:
    """Name -> metric function map."""

    def __init__(self) -> None:
        self._metrics: Dict[str, MetricFn] = {}

    def register(self, name: str, fn: Optional[MetricFn] = None) -> Any:
        """Register `fn` under `name`; usable as a decorator when `fn` is omitted."""

        def decorator(metric: MetricFn) -> MetricFn:
            self._metrics[name] = metric
            return metric

        if fn is not None:
            return decorator(fn)
        return decorator

    def __contains__(self, name: object) -> bool:
        return name in self._metrics

    def names(self) -> List[str]:
        return sorted(self._metrics)

    def evaluate(self, name: str, metrics: UserMetrics, options: Mapping[str, Any]) -> int:
        try:
            metric = self._metrics[name]
        except KeyError:
            raise ValidationError("condition.params.metric", f"unknown metric {name!r}") from None
        return max(0, int(metric(metrics, options)))


# ============================================================================
# Helpers
# ============================================================================


def _parse_days(keys: Iterable[str]) -> Dict[date, str]:
    parsed: Dict[date, str] = {}
    for key in keys:
        try:
            parsed[date.fromisoformat(key)] = key
        except ValueError:
            continue
    return parsed


def _option_int(options: Mapping[str, Any], key: str, default: int) -> int:
    value = options.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"condition.params.{key}", f"must be a number, got {value!r}")
    return int(value)


def _set_size(field_name: str) -> MetricFn:
    def metric(metrics: UserMetrics, options: Mapping[str, Any]) -> int:
        return len(getattr(metrics, field_name))

    return metric


def _counter(field_name: str) -> MetricFn:
    def metric(metrics: UserMetrics, options: Mapping[str, Any]) -> int:
        return int(getattr(metrics, field_name))

    return metric


# ============================================================================
# Derived metrics
# ============================================================================


def profile_completed(metrics: UserMetrics, options: Mapping[str, Any]) -> int:
    return 1 if metrics.profile_completed else 0


def cards_reviewed_single_day(metrics: UserMetrics, options: Mapping[str, Any]) -> int:
    return max(metrics.cards_reviewed_by_day.values(), default=0)


def decks_studied_same_day(metrics: UserMetrics, options: Mapping[str, Any]) -> int:
    return max((len(decks) for decks in metrics.decks_studied_by_day.values()), default=0)


def study_sessions_before_hour(metrics: UserMetrics, options: Mapping[str, Any]) -> int:
    hour = _option_int(options, "hour", DEFAULT_EARLY_HOUR)
    return sum(1 for session_hour in metrics.study_session_hours if session_hour < hour)


def study_sessions_after_hour(metrics: UserMetrics, options: Mapping[str, Any]) -> int:
    hour = _option_int(options, "hour", DEFAULT_LATE_HOUR)
    return sum(1 for session_hour in metrics.study_session_hours if session_hour >= hour)


def minimum_cards_consecutive_days(metrics: UserMetrics, options: Mapping[str, Any]) -> int:
    """Longest run of calendar days each with `minimumCardsPerDay` reviews or more."""
    minimum = _option_int(options, "minimumCardsPerDay", 1)
    days = _parse_days(metrics.cards_reviewed_by_day)
    qualifying = sorted(
        day for day, key in days.items() if metrics.cards_reviewed_by_day[key] >= minimum
    )

    best = run = 0
    previous: Optional[date] = None
    for day in qualifying:
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        best = max(best, run)
        previous = day
    return best


def cards_created_in_week(metrics: UserMetrics, options: Mapping[str, Any]) -> int:
    """Most cards created in any 7-day window."""
    days = _parse_days(metrics.cards_created_by_day)
    best = 0
    for start in days:
        window_end = start + timedelta(days=ROLLING_WINDOW_DAYS)
        total = sum(
            metrics.cards_created_by_day[key]
            for day, key in days.items()
            if start <= day < window_end
        )
        best = max(best, total)
    return best


def default_metric_registry() -> MetricRegistry:
    registry = MetricRegistry()

    for field_name in (
        "unique_decks_studied",
        "difficulty_levels_used",
        "marketplace_decks_added",
        "decks_shared",
        "active_decks",
        "decks_completed",
    ):
        registry.register(field_name, _set_size(field_name))

    for field_name in (
        "deck_reviews_submitted",
        "easy_cards_streak",
        "hard_cards_completed",
        "expert_cards_completed",
        "card_review_iterations",
    ):
        registry.register(field_name, _counter(field_name))

    registry.register("profile_completed", profile_completed)
    registry.register("cards_reviewed_single_day", cards_reviewed_single_day)
    registry.register("decks_studied_same_day", decks_studied_same_day)
    registry.register("study_sessions_before_hour", study_sessions_before_hour)
    registry.register("study_sessions_after_hour", study_sessions_after_hour)
    registry.register("minimum_cards_consecutive_days", minimum_cards_consecutive_days)
    registry.register("cards_created_in_week", cards_created_in_week)
    return registry
