"""
XPTransactionRecord - Append-Only XP Ledger
===========================================

Purpose
-------
Every XP gain is recorded once. The unique constraint on
(user_id, source, source_id) is the database-level idempotency guard:
callers derive deterministic source ids (card id, `daily-goal-{date}`,
`streak-7-{date}`, achievement id) and a replayed action collides here
instead of granting XP twice.

Schema Design
-------------
- `transaction_uid` is the public transaction id
- Rows are never updated or deleted
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from studyquest.core.database.base import Base, IdMixin, utc_now


class XPTransactionRecord(Base, IdMixin):
    __tablename__ = "xp_transactions"
    __table_args__ = (
        UniqueConstraint("user_id", "source", "source_id", name="uq_xp_transactions_source"),
        Index("ix_xp_transactions_user_source", "user_id", "source"),
    )

    transaction_uid: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(String(256), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="XPSource value (review, achievement, daily_goal, ...)",
    )
    source_id: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
