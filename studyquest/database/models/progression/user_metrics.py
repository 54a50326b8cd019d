"""
UserMetricsRecord - externally aggregated activity data.
Schema only. Written by the analytics pipeline, read by custom achievement
metrics.
"""

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from studyquest.core.database.base import Base, IdMixin, JSONType, TimestampMixin


class UserMetricsRecord(Base, IdMixin, TimestampMixin):
    __tablename__ = "user_metrics"

    user_id: Mapped[str] = mapped_column(String(256), nullable=False, unique=True, index=True)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
