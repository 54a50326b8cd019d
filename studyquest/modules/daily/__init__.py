"""
Daily goal module.

Exports:
- DailyGoalService
"""

from studyquest.modules.daily.service import DailyGoalService

__all__ = ["DailyGoalService"]
