"""
AchievementRecord - catalog entry.
Schema only. Seeded from `config/achievements.yaml`; read-only at runtime.
"""

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from studyquest.core.database.base import Base, JSONType, TimestampMixin


class AchievementRecord(Base, TimestampMixin):
    __tablename__ = "achievements"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tier: Mapped[str] = mapped_column(String(16), nullable=False)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    icon: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    condition: Mapped[Dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        doc="Tagged condition: {type, target, params?}",
    )
