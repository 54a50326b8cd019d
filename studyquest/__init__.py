"""
StudyQuest progression engine.

Converts learner actions (card reviews, card/deck creation, daily goals) into
XP, levels, streaks and achievement unlocks.
"""

__version__ = "1.0.0"
