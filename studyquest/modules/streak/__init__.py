"""
Streak module.

Exports:
- StreakService
"""

from studyquest.modules.streak.service import StreakService

__all__ = ["StreakService"]
