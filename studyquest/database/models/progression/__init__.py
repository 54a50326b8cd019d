"""
Progression ORM models.

Exports:
- DailyProgressRecord
- StreakRecord
- UserMetricsRecord
- UserProgressRecord
- XPTransactionRecord
"""

from .daily_progress import DailyProgressRecord
from .streak import StreakRecord
from .user_metrics import UserMetricsRecord
from .user_progress import UserProgressRecord
from .xp_transaction import XPTransactionRecord

__all__ = [
    "DailyProgressRecord",
    "StreakRecord",
    "UserMetricsRecord",
    "UserProgressRecord",
    "XPTransactionRecord",
]
