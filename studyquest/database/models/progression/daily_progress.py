"""
DailyProgressRecord - review counter and daily-goal state.
Schema only.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import Boolean, Date, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from studyquest.core.database.base import Base, IdMixin, TimestampMixin


class DailyProgressRecord(Base, IdMixin, TimestampMixin):
    """One row per learner per calendar day."""

    __tablename__ = "daily_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "progress_date", name="uq_daily_progress_user_date"),
    )

    user_id: Mapped[str] = mapped_column(String(256), nullable=False, index=True)
    progress_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    cards_reviewed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    goal_met: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    xp_earned: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Daily-goal reward; set once when the bonus is granted",
    )
