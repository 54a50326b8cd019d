"""
UserProgress - aggregate XP, level and streak mirror for one learner.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from studyquest.core.database.base import Base, IdMixin, JSONType, TimestampMixin


class UserProgressRecord(Base, IdMixin, TimestampMixin):
    """
    One row per learner, created lazily on the first XP-affecting action.

    `current_streak` / `longest_streak` mirror the streaks table so profile
    reads need one row. `achievements` is the deduplicated list of unlocked
    achievement ids.
    """

    __tablename__ = "user_progress"

    user_id: Mapped[str] = mapped_column(String(256), nullable=False, unique=True, index=True)

    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    achievements: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    push_token: Mapped[Optional[str]] = mapped_column(
        String(512),
        nullable=True,
        doc="Device token for achievement push notifications",
    )
