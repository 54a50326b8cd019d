"""
Integration tests for SqlAlchemyProgressionStore on SQLite (aiosqlite).

Overrides the `store` fixture, so the service fixtures from conftest run
against the SQL store in the flow tests at the bottom.
"""

from dataclasses import replace
from datetime import date

import pytest

from studyquest.core.database.base import utc_now
from studyquest.core.database.service import DatabaseService
from studyquest.domain.enums import XPSource
from studyquest.domain.models import StreakHistoryEntry, UserMetrics, XPTransaction
from studyquest.modules.store.protocol import ProgressionStore
from studyquest.modules.store.sqlalchemy_store import SqlAlchemyProgressionStore
from tests.conftest import TODAY, make_achievement

pytestmark = [pytest.mark.integration, pytest.mark.database]


@pytest.fixture
async def database(tmp_path):
    service = DatabaseService(f"sqlite+aiosqlite:///{tmp_path / 'studyquest.db'}")
    await service.initialize()
    await service.create_all()
    yield service
    await service.shutdown()


@pytest.fixture
def store(database):
    return SqlAlchemyProgressionStore(database)


def make_txn(user_id: str, source: XPSource, source_id: str, amount: int = 10) -> XPTransaction:
    return XPTransaction(
        id=f"{user_id}-{source.value}-{source_id}",
        user_id=user_id,
        amount=amount,
        source=source,
        source_id=source_id,
        description="test",
        timestamp=utc_now(),
    )


def add_total(amount: int):
    return lambda current: replace(current, total_xp=current.total_xp + amount)


@pytest.mark.asyncio
class TestUserProgress:
    async def test_satisfies_protocol(self, store):
        assert isinstance(store, ProgressionStore)

    async def test_lazy_creation(self, store):
        assert await store.get_user_progress("u-1") is None

        created = await store.create_user_progress("u-1")
        again = await store.create_user_progress("u-1")

        assert created.total_xp == 0
        assert again.user_id == "u-1"
        assert await store.get_all_user_ids() == ["u-1"]

    @pytest.mark.filterwarnings("error::sqlalchemy.exc.SAWarning")
    async def test_user_ids_sorted_and_unique(self, store):
        for user_id in ("u-3", "u-1", "u-2"):
            await store.create_user_progress(user_id)
        await store.create_user_progress("u-1")

        assert await store.get_all_user_ids() == ["u-1", "u-2", "u-3"]

    async def test_update_reports_changes(self, store):
        changed = await store.update_user_progress("u-1", lambda current: current.with_achievement("a-1"))
        unchanged = await store.update_user_progress("u-1", lambda current: None)

        assert changed.changed is True
        assert changed.value.achievements == ("a-1",)
        assert unchanged.changed is False
        assert (await store.get_user_progress("u-1")).achievements == ("a-1",)


@pytest.mark.asyncio
class TestXPLedger:
    async def test_transaction_applied_once(self, store):
        # Arrange
        txn = make_txn("u-1", XPSource.REVIEW, "card-1", amount=15)

        # Act
        first = await store.apply_xp_transaction(txn, add_total(15))
        replay = await store.apply_xp_transaction(
            replace(txn, id="another-uid"), add_total(15)
        )

        # Assert
        assert first is not None
        assert first.total_xp == 15
        assert replay is None
        assert (await store.get_user_progress("u-1")).total_xp == 15
        assert await store.xp_transaction_exists("u-1", XPSource.REVIEW, "card-1") is True
        assert await store.count_xp_transactions_by_source("u-1", XPSource.REVIEW) == 1

    async def test_same_source_id_for_other_source(self, store):
        await store.apply_xp_transaction(make_txn("u-1", XPSource.REVIEW, "x"), add_total(10))
        other = await store.apply_xp_transaction(
            make_txn("u-1", XPSource.CARD_CREATION, "x"), add_total(10)
        )

        assert other is not None
        assert other.total_xp == 20
        assert await store.count_xp_transactions_by_source("u-1", XPSource.CARD_CREATION) == 1


@pytest.mark.asyncio
class TestStreakAndDaily:
    async def test_streak_history_round_trip(self, store):
        entry = StreakHistoryEntry(date=TODAY, count=1)

        result = await store.update_streak(
            "u-1",
            lambda current: replace(
                current, current=1, longest=1, last_update=utc_now(), history=current.with_entry(entry)
            ),
        )
        stored = await store.get_streak_data("u-1")

        assert result.changed is True
        assert stored.current == 1
        assert stored.history == (entry,)
        assert stored.has_entry_for(TODAY)

    async def test_daily_progress_created_on_first_mutation(self, store):
        assert await store.get_daily_progress("u-1", TODAY) is None

        result = await store.update_daily_progress(
            "u-1", TODAY, lambda current: replace(current, cards_reviewed=current.cards_reviewed + 1)
        )

        assert result.value.cards_reviewed == 1
        assert result.value.date == TODAY
        assert await store.get_daily_progress("u-1", date(2025, 3, 13)) is None


@pytest.mark.asyncio
class TestAchievements:
    async def test_catalog_upsert_and_active_filter(self, store):
        await store.upsert_achievement(make_achievement("b_second", "streak", 7))
        await store.upsert_achievement(make_achievement("a_first", "reviews_completed", 1))
        retired = make_achievement("c_retired", "reviews_completed", 5)
        await store.upsert_achievement(replace(retired, is_active=False))
        await store.upsert_achievement(replace(make_achievement("a_first", "reviews_completed", 1), xp_reward=80))

        active = await store.get_all_achievements()

        assert [item.id for item in active] == ["a_first", "b_second"]
        assert active[0].xp_reward == 80
        assert (await store.get_achievement("c_retired")).is_active is False
        assert await store.get_achievement("missing") is None

    async def test_unlock_first_writer_wins(self, store):
        await store.upsert_achievement(make_achievement("a_first", "reviews_completed", 1))

        first = await store.unlock_achievement("u-1", "a_first")
        second = await store.unlock_achievement("u-1", "a_first")

        assert first.is_new_unlock is True
        assert second.is_new_unlock is False
        assert second.unlocked_at == first.unlocked_at

    async def test_progress_row_then_unlock(self, store):
        await store.upsert_achievement(make_achievement("a_first", "reviews_completed", 5))

        entry = await store.update_achievement_progress("u-1", "a_first", 40)
        unlock = await store.unlock_achievement("u-1", "a_first")
        after = await store.update_achievement_progress("u-1", "a_first", 60)

        assert entry.progress == 40
        assert entry.is_unlocked is False
        assert unlock.is_new_unlock is True
        assert after.progress == 100

    async def test_mark_seen_counts_unlocked_only(self, store):
        for achievement_id in ("a_one", "a_two", "a_three"):
            await store.upsert_achievement(make_achievement(achievement_id, "reviews_completed", 1))
        await store.unlock_achievement("u-1", "a_one")
        await store.unlock_achievement("u-1", "a_two")
        await store.update_achievement_progress("u-1", "a_three", 10)

        assert await store.mark_achievements_seen("u-1") == 2
        assert await store.mark_achievements_seen("u-1") == 0
        entries = {entry.achievement_id: entry for entry in await store.get_user_achievements("u-1")}
        assert entries["a_one"].seen is True
        assert entries["a_three"].seen is False


@pytest.mark.asyncio
class TestAggregates:
    async def test_metrics_default_and_saved(self, store):
        assert await store.get_user_metrics("u-1") == UserMetrics.empty("u-1")

        await store.save_user_metrics(
            UserMetrics.from_dict("u-1", {"unique_decks_studied": ["d1", "d2"], "hard_cards_completed": 4})
        )
        metrics = await store.get_user_metrics("u-1")

        assert metrics.unique_decks_studied == frozenset({"d1", "d2"})
        assert metrics.hard_cards_completed == 4

    async def test_push_token(self, store):
        assert await store.get_push_token("u-1") is None

        await store.set_push_token("u-1", "token-abc")

        assert await store.get_push_token("u-1") == "token-abc"


@pytest.mark.asyncio
class TestServicesOnSqlStore:
    async def test_review_flow(self, gamification, store):
        await store.upsert_achievement(make_achievement("first_review", "reviews_completed", 1))

        outcome = await gamification.process_card_review("u-1", "card-1", "easy", TODAY)
        replay = await gamification.process_card_review("u-1", "card-1", "easy", TODAY)

        assert [unlock.achievement.id for unlock in outcome.achievements] == ["first_review"]
        assert outcome.progress.total_xp == 70
        assert replay.applied is False
        progress = await store.get_user_progress("u-1")
        assert progress.total_xp == 70
        assert progress.achievements == ("first_review",)
        assert (await store.get_daily_progress("u-1", TODAY)).cards_reviewed == 1

    async def test_catalog_seed(self, catalog, store):
        summary = await catalog.seed_catalog(
            [
                make_achievement("first_review", "reviews_completed", 1).to_dict(),
                {"id": "broken", "tier": "bronze", "xp_reward": 5, "condition": {"type": "streak", "target": 0}},
            ]
        )

        assert summary == {"seeded": 1, "invalid": ["broken"]}
        assert [item.id for item in await store.get_all_achievements()] == ["first_review"]
