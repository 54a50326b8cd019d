"""
Batch entry points, invoked once per trigger (cron, CLI).

- `run_update_streaks`: nightly streak reconciliation
- `run_check_achievements`: hourly achievement sweep
"""

from studyquest.jobs.check_achievements import AchievementJobResult, run_check_achievements
from studyquest.jobs.update_streaks import run_update_streaks

__all__ = ["AchievementJobResult", "run_check_achievements", "run_update_streaks"]
