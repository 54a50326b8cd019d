"""
Achievement ORM models.

Exports:
- AchievementRecord
- UserAchievementRecord
"""

from .achievement import AchievementRecord
from .user_achievement import UserAchievementRecord

__all__ = [
    "AchievementRecord",
    "UserAchievementRecord",
]
