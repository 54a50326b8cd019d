"""
Flow tests for GamificationService over the in-memory stack.

The daily target is lowered to 3 so a goal is reached in a few reviews.
"""

from datetime import timedelta

import pytest

from studyquest.domain.enums import XPSource
from tests.conftest import TODAY, make_achievement, seed_achievements

YESTERDAY = TODAY - timedelta(days=1)


@pytest.fixture
def config_overrides():
    return {"progression.daily_goal.target": 3}


@pytest.fixture
async def flow_catalog(store):
    await seed_achievements(
        store,
        [
            make_achievement("first_review", "reviews_completed", 1, xp_reward=50),
            make_achievement("goal_getter", "daily_goal", 1, xp_reward=25),
            make_achievement("first_card", "cards_created", 1, xp_reward=10),
        ],
    )


@pytest.mark.asyncio
class TestProcessCardReview:
    async def test_full_review_flow(self, gamification, store, flow_catalog):
        # Arrange / Act
        first = await gamification.process_card_review("u-1", "card-1", "good", TODAY)
        second = await gamification.process_card_review("u-1", "card-2", "good", TODAY)
        third = await gamification.process_card_review("u-1", "card-3", "good", TODAY)

        # Assert: first review unlocks first_review
        assert first.applied is True
        assert first.xp_awarded == 15
        assert [unlock.achievement.id for unlock in first.achievements] == ["first_review"]
        assert first.progress.total_xp == 65
        assert first.streak is None
        assert first.daily_goal.cards_remaining == 2

        assert second.progress.total_xp == 80
        assert second.achievements == []

        # Assert: third review meets the goal, starts a streak, pays the bonus
        assert third.daily_goal.goal_met is True
        assert third.daily_goal_xp == 100
        assert third.streak is not None
        assert third.streak.streak.current == 1
        assert [unlock.achievement.id for unlock in third.achievements] == ["goal_getter"]
        assert third.progress.total_xp == 220
        assert third.progress.level == 1
        assert third.progress.current_streak == 1
        assert third.level_up.leveled_up is True
        assert (third.level_up.old_level, third.level_up.new_level) == (0, 1)

        summary = third.to_dict()
        assert summary["xp_for_next_level"] == 400
        assert summary["xp_to_next_level"] == 180
        assert summary["achievements"] == ["goal_getter"]

    async def test_goal_bonus_paid_once_per_day(self, gamification, store):
        for index in range(5):
            await gamification.process_card_review("u-1", f"card-{index}", "hard", TODAY)

        bonuses = [txn for txn in store.transactions if txn.source is XPSource.DAILY_GOAL]
        assert [txn.source_id for txn in bonuses] == [f"daily-goal-{TODAY.isoformat()}"]
        assert store.daily[("u-1", TODAY)].cards_reviewed == 5
        assert store.daily[("u-1", TODAY)].xp_earned == 100
        assert store.progress["u-1"].total_xp == 5 * 10 + 100

    async def test_duplicate_review_short_circuits(self, gamification, store):
        await gamification.process_card_review("u-1", "card-1", "easy", TODAY)

        replay = await gamification.process_card_review("u-1", "card-1", "easy", TODAY)

        assert replay.applied is False
        assert replay.xp_awarded == 0
        assert replay.daily_goal.cards_reviewed == 1
        assert store.progress["u-1"].total_xp == 20

    async def test_same_card_next_day_counts(self, gamification, store):
        await gamification.process_card_review("u-1", "card-1", "easy", YESTERDAY)

        outcome = await gamification.process_card_review("u-1", "card-1", "easy", TODAY)

        assert outcome.applied is True
        assert store.progress["u-1"].total_xp == 40

    async def test_explicit_review_ids(self, gamification, store):
        await gamification.process_card_review("u-1", "card-1", "again", TODAY, review_id="r-1")
        await gamification.process_card_review("u-1", "card-1", "again", TODAY, review_id="r-2")

        assert store.progress["u-1"].total_xp == 10
        assert {txn.source_id for txn in store.transactions} == {"r-1", "r-2"}

    async def test_streak_continues_from_yesterday(self, gamification, streaks, store):
        store.seed_goal_met("u-1", YESTERDAY, cards=3)
        await streaks.start_new_streak("u-1", YESTERDAY)

        for index in range(3):
            outcome = await gamification.process_card_review("u-1", f"card-{index}", "good", TODAY)

        assert outcome.streak is not None
        assert outcome.streak.streak.current == 2
        assert store.streaks["u-1"].longest == 2
        assert store.progress["u-1"].current_streak == 2


@pytest.mark.asyncio
class TestCreation:
    async def test_card_created(self, gamification, store, flow_catalog):
        outcome = await gamification.record_card_created("u-1", "card-1")

        assert outcome.award.applied is True
        assert outcome.award.xp_awarded == 25
        assert [unlock.achievement.id for unlock in outcome.achievements] == ["first_card"]
        assert store.progress["u-1"].total_xp == 35

    async def test_card_created_twice(self, gamification, store, flow_catalog):
        await gamification.record_card_created("u-1", "card-1")

        again = await gamification.record_card_created("u-1", "card-1")

        assert again.award.applied is False
        assert again.achievements == []
        assert store.progress["u-1"].total_xp == 35

    async def test_deck_created(self, gamification, store):
        outcome = await gamification.record_deck_created("u-1", "deck-1")

        assert outcome.award.xp_awarded == 50
        assert store.progress["u-1"].total_xp == 50

    async def test_card_target_unlocks_on_tenth_card(self, gamification, store):
        # Arrange
        await seed_achievements(store, [make_achievement("card_collector", "cards_created", 10, xp_reward=100)])

        # Act
        early = [await gamification.record_card_created("u-1", f"card-{index}") for index in range(1, 10)]
        tenth = await gamification.record_card_created("u-1", "card-10")
        repeat = await gamification.record_card_created("u-1", "card-10")

        # Assert
        assert all(outcome.achievements == [] for outcome in early)
        assert store.progress["u-1"].achievements == ("card_collector",)
        assert [unlock.achievement.id for unlock in tenth.achievements] == ["card_collector"]
        assert tenth.achievements[0].xp_awarded == 100
        assert repeat.award.applied is False
        assert repeat.achievements == []
        assert store.progress["u-1"].total_xp == 10 * 25 + 100
