"""
Achievement module.

Exports:
- AchievementService
- AchievementCatalog, is_valid_achievement
- ConditionRegistry, default_condition_registry
- MetricRegistry, default_metric_registry
"""

from studyquest.modules.achievement.catalog import AchievementCatalog, is_valid_achievement
from studyquest.modules.achievement.evaluators import (
    ConditionRegistry,
    EvaluationContext,
    default_condition_registry,
)
from studyquest.modules.achievement.metrics import MetricRegistry, default_metric_registry
from studyquest.modules.achievement.service import AchievementService

__all__ = [
    "AchievementCatalog",
    "AchievementService",
    "ConditionRegistry",
    "EvaluationContext",
    "MetricRegistry",
    "default_condition_registry",
    "default_metric_registry",
    "is_valid_achievement",
]
