"""
UserAchievementRecord - Per-User Unlock State
=============================================

Purpose
-------
Tracks progress toward, and the unlock of, each achievement per learner.

Unlock Semantics
----------------
`unlocked_at` goes from NULL to a timestamp exactly once. The unique
constraint on (user_id, achievement_id) plus a conditional
`UPDATE ... WHERE unlocked_at IS NULL` makes the first writer win; every
later attempt sees zero affected rows and reports a repeat unlock.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from studyquest.core.database.base import Base, IdMixin, TimestampMixin


class UserAchievementRecord(Base, IdMixin, TimestampMixin):
    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievements_user_achievement"),
    )

    user_id: Mapped[str] = mapped_column(String(256), nullable=False, index=True)
    achievement_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("achievements.id", ondelete="CASCADE"),
        nullable=False,
    )
    unlocked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    seen: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
