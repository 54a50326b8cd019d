"""
Unit tests for StreakService.

State machine transitions, milestone bonuses, the per-review decision point
and nightly batch reconciliation.
"""

from datetime import date, timedelta

import pytest

from studyquest.domain.enums import XPSource
from studyquest.domain.models import StreakData, StreakHistoryEntry
from studyquest.modules.shared.exceptions import (
    CriticalFailureError,
    ResourceExhaustedError,
    ValidationError,
)

DAY = date(2025, 3, 14)
YESTERDAY = DAY - timedelta(days=1)
DAY_BEFORE = DAY - timedelta(days=2)


def seed_streak(store, user_id: str, current: int, longest: int, last_day: date) -> None:
    store.streaks[user_id] = StreakData(
        user_id=user_id,
        current=current,
        longest=longest,
        history=(StreakHistoryEntry(date=last_day, count=current),),
    )


@pytest.mark.asyncio
class TestIncrementStreak:
    async def test_first_increment(self, streaks, store):
        update = await streaks.increment_streak("u-1", DAY)

        assert update.changed is True
        assert update.streak.current == 1
        assert update.streak.longest == 1
        assert store.progress["u-1"].current_streak == 1

    async def test_same_day_repeat_is_noop(self, streaks):
        await streaks.increment_streak("u-1", DAY)

        repeat = await streaks.increment_streak("u-1", DAY)

        assert repeat.changed is False
        assert repeat.streak.current == 1
        assert repeat.bonus_awarded == 0

    async def test_longest_tracks_maximum(self, streaks, store):
        seed_streak(store, "u-1", current=2, longest=9, last_day=YESTERDAY)

        update = await streaks.increment_streak("u-1", DAY)

        assert update.streak.current == 3
        assert update.streak.longest == 9

    async def test_seventh_day_earns_minor_bonus(self, streaks, store):
        # Arrange
        seed_streak(store, "u-1", current=6, longest=6, last_day=YESTERDAY)

        # Act
        update = await streaks.increment_streak("u-1", DAY)

        # Assert
        assert update.streak.current == 7
        assert update.bonus_awarded == 200
        assert update.milestone == 7
        bonus = [txn for txn in store.transactions if txn.source is XPSource.STREAK_BONUS]
        assert [txn.source_id for txn in bonus] == ["streak-7-2025-03-14"]
        assert store.progress["u-1"].total_xp == 200

    async def test_thirtieth_day_earns_major_bonus_only(self, streaks, store):
        seed_streak(store, "u-1", current=29, longest=29, last_day=YESTERDAY)

        update = await streaks.increment_streak("u-1", DAY)

        assert update.bonus_awarded == 300
        assert update.milestone == 30
        assert store.progress["u-1"].total_xp == 300


@pytest.mark.asyncio
class TestStreakBonus:
    @pytest.mark.parametrize(
        "current, expected",
        [(1, 0), (6, 0), (7, 200), (14, 200), (28, 200), (30, 300), (35, 200), (60, 0), (63, 200)],
    )
    async def test_milestone_table(self, streaks, current, expected):
        bonus = await streaks.check_streak_bonus("u-1", current, DAY)

        assert bonus.bonus_awarded == expected

    async def test_bonus_awarded_once_per_day(self, streaks, store):
        first = await streaks.check_streak_bonus("u-1", 7, DAY)
        second = await streaks.check_streak_bonus("u-1", 7, DAY)

        assert first.bonus_awarded == 200
        assert second.bonus_awarded == 0
        assert store.progress["u-1"].total_xp == 200

    async def test_negative_streak_rejected(self, streaks):
        with pytest.raises(ValidationError):
            await streaks.check_streak_bonus("u-1", -1, DAY)


@pytest.mark.asyncio
class TestResetAndRestart:
    async def test_reset_keeps_longest(self, streaks, store):
        seed_streak(store, "u-1", current=5, longest=8, last_day=DAY_BEFORE)

        streak = await streaks.reset_streak("u-1", DAY)

        assert streak.current == 0
        assert streak.longest == 8
        assert store.progress["u-1"].current_streak == 0
        assert store.progress["u-1"].longest_streak == 8

    async def test_idle_nights_keep_one_marker(self, streaks, store, mocker):
        # Arrange
        seed_streak(store, "u-1", current=5, longest=5, last_day=DAY_BEFORE)
        await streaks.reset_streak("u-1", YESTERDAY)
        update = mocker.spy(store, "update_user_progress")

        # Act
        streak = await streaks.reset_streak("u-1", DAY)
        later = await streaks.reset_streak("u-1", DAY + timedelta(days=1))

        # Assert
        assert streak.current == later.current == 0
        assert later.longest == 5
        assert [(entry.date, entry.count) for entry in store.streaks["u-1"].history] == [
            (DAY_BEFORE, 5),
            (YESTERDAY, 0),
        ]
        update.assert_not_called()

    async def test_start_new_streak(self, streaks, store):
        seed_streak(store, "u-1", current=4, longest=4, last_day=DAY_BEFORE)

        update = await streaks.start_new_streak("u-1", DAY)

        assert update.changed is True
        assert update.streak.current == 1
        assert update.streak.longest == 4
        assert update.bonus_awarded == 0

    async def test_start_new_streak_keeps_counted_day(self, streaks, store):
        seed_streak(store, "u-1", current=8, longest=8, last_day=DAY)

        update = await streaks.start_new_streak("u-1", DAY)

        assert update.changed is False
        assert update.streak.current == 8


@pytest.mark.asyncio
class TestCheckAndUpdateDailyStreak:
    async def test_goal_not_met_leaves_streak(self, streaks, store):
        assert await streaks.check_and_update_daily_streak("u-1", DAY) is None
        assert "u-1" not in store.streaks

    async def test_continues_when_yesterday_met(self, streaks, store):
        store.seed_goal_met("u-1", YESTERDAY, DAY)
        seed_streak(store, "u-1", current=3, longest=3, last_day=YESTERDAY)

        update = await streaks.check_and_update_daily_streak("u-1", DAY)

        assert update.changed is True
        assert update.streak.current == 4

    async def test_restarts_after_missed_day(self, streaks, store):
        store.seed_goal_met("u-1", DAY)
        seed_streak(store, "u-1", current=5, longest=5, last_day=DAY_BEFORE)

        update = await streaks.check_and_update_daily_streak("u-1", DAY)

        assert update.streak.current == 1
        assert update.streak.longest == 5

    async def test_second_call_same_day_unchanged(self, streaks, store):
        store.seed_goal_met("u-1", YESTERDAY, DAY)

        first = await streaks.check_and_update_daily_streak("u-1", DAY)
        second = await streaks.check_and_update_daily_streak("u-1", DAY)

        assert first.changed is True
        assert second.changed is False
        assert second.streak.current == first.streak.current


@pytest.mark.asyncio
class TestUpdateAllStreaks:
    async def _seed_three_users(self, store):
        store.seed_goal_met("a", DAY_BEFORE, YESTERDAY)
        store.seed_goal_met("b", YESTERDAY)
        await store.create_user_progress("c")
        seed_streak(store, "c", current=4, longest=4, last_day=DAY_BEFORE)

    async def test_reconciles_each_user(self, streaks, store):
        # Arrange
        await self._seed_three_users(store)

        # Act
        result = await streaks.update_all_streaks(batch_size=2, batch_delay_ms=0, max_users=None, today=DAY)

        # Assert
        assert result.to_dict() == {
            "status": "completed",
            "processed": 3,
            "incremented": 1,
            "reset": 1,
            "started": 1,
            "skipped": 0,
            "error_count": 0,
        }
        assert store.streaks["a"].current == 1
        assert store.streaks["b"].current == 1
        assert store.streaks["c"].current == 0
        assert store.streaks["c"].longest == 4

    async def test_already_counted_day_is_not_double_counted(self, streaks, store):
        store.seed_goal_met("a", DAY_BEFORE, YESTERDAY)
        await streaks.check_and_update_daily_streak("a", YESTERDAY)
        before = store.streaks["a"]

        await streaks.update_all_streaks(batch_delay_ms=0, today=DAY)

        assert store.streaks["a"].current == before.current

    async def test_max_users_limits_run(self, streaks, store):
        await self._seed_three_users(store)

        result = await streaks.update_all_streaks(batch_delay_ms=0, max_users=2, today=DAY)

        assert result.processed == 2
        assert result.skipped == 1

    async def test_user_failure_is_isolated(self, streaks, store, mocker):
        # Arrange
        await self._seed_three_users(store)
        original = store.get_daily_progress

        async def flaky(user_id, day):
            if user_id == "b":
                raise RuntimeError("row locked")
            return await original(user_id, day)

        mocker.patch.object(store, "get_daily_progress", side_effect=flaky)

        # Act
        result = await streaks.update_all_streaks(batch_delay_ms=0, today=DAY)

        # Assert
        assert result.processed == 3
        assert result.status == "completed"
        assert [(error.user_id, error.error_type) for error in result.errors] == [("b", "RuntimeError")]
        assert store.streaks["c"].current == 0

    async def test_resource_exhaustion_interrupts(self, streaks, store, mocker):
        await self._seed_three_users(store)
        original = store.get_daily_progress

        async def exhausted(user_id, day):
            if user_id == "b":
                raise ResourceExhaustedError("progression_store", "get_daily_progress", "pool timeout")
            return await original(user_id, day)

        mocker.patch.object(store, "get_daily_progress", side_effect=exhausted)

        result = await streaks.update_all_streaks(batch_delay_ms=0, today=DAY)

        assert result.status == "interrupted"
        assert result.processed == 2
        assert result.skipped == 1
        assert len(result.errors) == 1

    async def test_enumeration_failure_is_critical(self, streaks, store, mocker):
        mocker.patch.object(store, "get_all_user_ids", side_effect=RuntimeError("db down"))

        with pytest.raises(CriticalFailureError):
            await streaks.update_all_streaks(batch_delay_ms=0, today=DAY)

    async def test_pauses_between_batches(self, streaks, store, mocker):
        await self._seed_three_users(store)
        sleep = mocker.patch("studyquest.modules.streak.service.asyncio.sleep", new_callable=mocker.AsyncMock)

        await streaks.update_all_streaks(batch_size=1, batch_delay_ms=500, today=DAY)

        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.5)

    @pytest.mark.parametrize("kwargs", [{"batch_size": 0}, {"batch_delay_ms": -1}, {"max_users": 0}])
    async def test_rejects_bad_settings(self, streaks, kwargs):
        with pytest.raises(ValidationError):
            await streaks.update_all_streaks(today=DAY, **kwargs)
