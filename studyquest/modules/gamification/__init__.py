"""
Gamification module.

Exports:
- GamificationService
- CardReviewOutcome, CreationOutcome
"""

from studyquest.modules.gamification.service import (
    CardReviewOutcome,
    CreationOutcome,
    GamificationService,
)

__all__ = ["CardReviewOutcome", "CreationOutcome", "GamificationService"]
