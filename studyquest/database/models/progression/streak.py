"""
StreakRecord - consecutive-day state per learner.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from studyquest.core.database.base import Base, IdMixin, JSONType, TimestampMixin


class StreakRecord(Base, IdMixin, TimestampMixin):
    """
    `history` holds `{"date": "YYYY-MM-DD", "count": n}` entries sorted by
    date, at most one per day.
    """

    __tablename__ = "streaks"

    user_id: Mapped[str] = mapped_column(String(256), nullable=False, unique=True, index=True)
    current: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_update: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    history: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
