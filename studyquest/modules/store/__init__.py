"""
Persistence collaborator for the progression engine.

- `ProgressionStore`: the async protocol services depend on
- `SqlAlchemyProgressionStore`: SQLAlchemy 2.0 async implementation
"""

from studyquest.modules.store.protocol import (
    DailyProgressMutator,
    ProgressionStore,
    ProgressMutator,
    StreakMutator,
)
from studyquest.modules.store.sqlalchemy_store import SqlAlchemyProgressionStore

__all__ = [
    "ProgressionStore",
    "ProgressMutator",
    "StreakMutator",
    "DailyProgressMutator",
    "SqlAlchemyProgressionStore",
]
