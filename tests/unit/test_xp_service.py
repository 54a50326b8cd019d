"""
Unit tests for XPLedgerService.

Covers the review XP table, at-most-once application per
(user, source, source_id), level bookkeeping and emitted events.
"""

import asyncio

import pytest

from studyquest.core.logging.logger import get_logger
from studyquest.domain.enums import XPSource
from studyquest.modules.shared.exceptions import ValidationError
from studyquest.modules.xp import XPLedgerService
from tests.conftest import recorded_events
from tests.fakes import InMemoryProgressionStore


@pytest.fixture
def ledger_store() -> InMemoryProgressionStore:
    return InMemoryProgressionStore()


@pytest.fixture
def ledger(ledger_store, mock_config_manager, mock_event_bus) -> XPLedgerService:
    return XPLedgerService(ledger_store, mock_config_manager, mock_event_bus, get_logger("tests.xp"))


class TestReviewXP:
    @pytest.mark.parametrize(
        "difficulty, expected",
        [("again", 5), ("hard", 10), ("good", 15), ("easy", 20), (" EASY ", 20)],
    )
    def test_default_table(self, ledger, difficulty, expected):
        assert ledger.calculate_xp_for_review(difficulty) == expected

    def test_unknown_difficulty(self, ledger):
        with pytest.raises(ValidationError) as exc_info:
            ledger.calculate_xp_for_review("legendary")

        assert exc_info.value.field == "difficulty"

    def test_config_overrides_table(self, ledger, mock_config_manager):
        mock_config_manager.get_int.side_effect = lambda key, default: 99 if key.endswith(".easy") else default

        assert ledger.calculate_xp_for_review("easy") == 99
        assert ledger.calculate_xp_for_review("good") == 15


@pytest.mark.asyncio
class TestApplyXP:
    async def test_first_award_creates_progress(self, ledger, ledger_store):
        # Act
        result = await ledger.apply_xp("u-1", 150, XPSource.MANUAL_ADJUSTMENT, "grant-1")

        # Assert
        assert result.applied is True
        assert result.xp_awarded == 150
        assert result.progress.total_xp == 150
        assert result.progress.level == 1
        assert result.progress.current_xp == 50
        assert result.progress.last_activity_date is not None
        assert len(ledger_store.transactions) == 1

    async def test_duplicate_tuple_is_a_noop(self, ledger, ledger_store, mock_event_bus):
        # Arrange
        await ledger.apply_xp("u-1", 20, XPSource.REVIEW, "card-9")
        mock_event_bus.publish.reset_mock()

        # Act
        result = await ledger.apply_xp("u-1", 20, XPSource.REVIEW, "card-9")

        # Assert
        assert result.applied is False
        assert result.xp_awarded == 0
        assert result.progress.total_xp == 20
        assert result.level_up.leveled_up is False
        assert len(ledger_store.transactions) == 1
        mock_event_bus.publish.assert_not_called()

    async def test_same_source_id_for_other_source_applies(self, ledger):
        await ledger.apply_xp("u-1", 20, XPSource.REVIEW, "x-1")

        result = await ledger.apply_xp("u-1", 25, XPSource.CARD_CREATION, "x-1")

        assert result.applied is True
        assert result.progress.total_xp == 45

    async def test_level_up_event(self, ledger, mock_event_bus):
        await ledger.apply_xp("u-1", 90, XPSource.MANUAL_ADJUSTMENT, "a")

        result = await ledger.apply_xp("u-1", 320, XPSource.MANUAL_ADJUSTMENT, "b")

        assert result.level_up.leveled_up is True
        assert result.level_up.levels_gained == 2
        level_ups = recorded_events(mock_event_bus, "progression.level_up")
        assert level_ups == [{"user_id": "u-1", "old_level": 0, "new_level": 2, "levels_gained": 2}]
        assert len(recorded_events(mock_event_bus, "progression.xp_awarded")) == 2

    async def test_source_accepts_string(self, ledger):
        result = await ledger.apply_xp("u-1", 10, "Review", "card-1")

        assert result.transaction is not None
        assert result.transaction.source is XPSource.REVIEW

    @pytest.mark.parametrize("amount", [0, -5, 1.5, float("inf"), "10"])
    async def test_rejects_bad_amounts(self, ledger, ledger_store, amount):
        with pytest.raises(ValidationError):
            await ledger.apply_xp("u-1", amount, XPSource.REVIEW, "card-1")

        assert ledger_store.transactions == []

    async def test_rejects_unknown_source_and_blank_ids(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.apply_xp("u-1", 10, "lottery", "t-1")
        with pytest.raises(ValidationError):
            await ledger.apply_xp("  ", 10, XPSource.REVIEW, "t-1")
        with pytest.raises(ValidationError):
            await ledger.apply_xp("u-1", 10, XPSource.REVIEW, "")

    async def test_concurrent_duplicates_apply_once(self, ledger, ledger_store):
        results = await asyncio.gather(
            *[ledger.apply_xp("u-1", 15, XPSource.REVIEW, "review-1") for _ in range(10)]
        )

        assert sum(1 for result in results if result.applied) == 1
        assert ledger_store.progress["u-1"].total_xp == 15

    async def test_add_xp_delegates(self, ledger):
        result = await ledger.add_xp("u-1", 40, XPSource.MANUAL_ADJUSTMENT, "bonus")

        assert result.applied is True
        assert result.progress.total_xp == 40


@pytest.mark.asyncio
class TestProcessCardReview:
    async def test_review_awards_table_xp(self, ledger):
        result = await ledger.process_card_review("u-1", "card-9", "hard")

        assert result.xp_awarded == 10
        assert result.transaction.source_id == "card-9"

    async def test_review_id_is_ledger_key(self, ledger):
        first = await ledger.process_card_review("u-1", "card-9", "good", review_id="r-1")
        second = await ledger.process_card_review("u-1", "card-9", "good", review_id="r-2")
        replay = await ledger.process_card_review("u-1", "card-9", "good", review_id="r-1")

        assert first.applied and second.applied
        assert replay.applied is False
        assert replay.progress.total_xp == 30

    async def test_get_user_progress_creates_lazily(self, ledger, ledger_store):
        progress = await ledger.get_user_progress("new-user")

        assert progress.total_xp == 0
        assert progress.level == 0
        assert "new-user" in ledger_store.progress
