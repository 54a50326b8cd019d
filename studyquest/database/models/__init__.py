"""
StudyQuest ORM models.

Importing this package registers every table on `Base.metadata`.
"""

from studyquest.database.models.achievement import AchievementRecord, UserAchievementRecord
from studyquest.database.models.progression import (
    DailyProgressRecord,
    StreakRecord,
    UserMetricsRecord,
    UserProgressRecord,
    XPTransactionRecord,
)

__all__ = [
    # Achievement
    "AchievementRecord",
    "UserAchievementRecord",
    # Progression
    "DailyProgressRecord",
    "StreakRecord",
    "UserMetricsRecord",
    "UserProgressRecord",
    "XPTransactionRecord",
]
