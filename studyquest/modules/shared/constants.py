"""
Progression Constants

Purpose
-------
Default values for the progression rules. ConfigManager keys under
`progression.*`, `jobs.*` and `achievements.*` override them at runtime;
these are the fallbacks used when a key is absent.

IMPORTANT:
Infrastructure limits (pool sizes, timeouts, retries) live in
`studyquest.core.config.config.Config`, not here.
"""

from __future__ import annotations

from typing import Final, Mapping

from studyquest.domain.enums import Difficulty

# ============================================================================
# XP TABLE
# ============================================================================

REVIEW_XP: Final[Mapping[Difficulty, int]] = {
    Difficulty.AGAIN: 5,
    Difficulty.HARD: 10,
    Difficulty.GOOD: 15,
    Difficulty.EASY: 20,
}

CARD_CREATION_XP: Final[int] = 25
DECK_CREATION_XP: Final[int] = 50
DAILY_GOAL_XP: Final[int] = 100
STREAK_7_DAYS_XP: Final[int] = 200
STREAK_30_DAYS_XP: Final[int] = 300

# ============================================================================
# DAILY GOAL / STREAKS
# ============================================================================

DAILY_GOAL_TARGET: Final[int] = 20  # cards reviewed per day

STREAK_MILESTONE_INTERVAL: Final[int] = 7  # every 7th day earns the minor bonus
STREAK_MAJOR_MILESTONE: Final[int] = 30  # one-off major bonus

# ============================================================================
# BATCH JOBS
# ============================================================================

STREAK_BATCH_SIZE: Final[int] = 10
STREAK_BATCH_DELAY_MS: Final[int] = 2000
STREAK_MAX_USERS_PER_RUN: Final[int] = 100
JOB_LOCK_TIMEOUT_SECONDS: Final[int] = 900
ACHIEVEMENT_JOB_BATCH_SIZE: Final[int] = 10
ACHIEVEMENT_JOB_BATCH_DELAY_MS: Final[int] = 2000
ACHIEVEMENT_JOB_MAX_LOGGED_ERRORS: Final[int] = 10

# ============================================================================
# ACHIEVEMENTS / NOTIFICATIONS
# ============================================================================

ACHIEVEMENT_CATALOG_CACHE_TTL_SECONDS: Final[int] = 300
ACHIEVEMENT_CATALOG_CACHE_KEY: Final[str] = "studyquest:achievements:catalog"

ACHIEVEMENT_PUSH_TITLE: Final[str] = "Achievement Unlocked!"
ACHIEVEMENT_PUSH_TYPE: Final[int] = 12

# ============================================================================
# IDEMPOTENCY KEYS
# ============================================================================


def daily_goal_source_id(day_iso: str) -> str:
    return f"daily-goal-{day_iso}"


def streak_milestone_source_id(milestone: int, day_iso: str) -> str:
    return f"streak-{milestone}-{day_iso}"
