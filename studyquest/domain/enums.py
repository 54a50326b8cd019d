"""
Progression Enums
=================

Type-safe constants shared by the domain layer, services, and ORM models.
Values are the wire/storage strings.
"""

from __future__ import annotations

import enum


class XPSource(str, enum.Enum):
    """Origin of an XP ledger entry."""

    REVIEW = "review"
    ACHIEVEMENT = "achievement"
    DAILY_GOAL = "daily_goal"
    STREAK_BONUS = "streak_bonus"
    CARD_CREATION = "card_creation"
    DECK_CREATION = "deck_creation"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class Difficulty(str, enum.Enum):
    """Review grade reported by the learner."""

    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"


class AchievementTier(str, enum.Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"


class ConditionType(str, enum.Enum):
    """
    Achievement condition discriminator.

    Built-in types map to progression state; CUSTOM selects a named metric
    over externally aggregated UserMetrics.
    """

    CARDS_CREATED = "cards_created"
    REVIEWS_COMPLETED = "reviews_completed"
    DECK_CREATED = "deck_created"
    DAILY_GOAL = "daily_goal"
    STREAK = "streak"
    XP_TOTAL = "xp_total"
    LEVEL_REACHED = "level_reached"
    CUSTOM = "custom"
