"""
Unit tests for AchievementCatalog: Redis read-through cache and seeding.
"""

from pathlib import Path

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from studyquest.core.config.manager import ConfigManager
from studyquest.core.logging.logger import get_logger
from studyquest.modules.achievement import AchievementCatalog, is_valid_achievement
from studyquest.modules.shared.constants import ACHIEVEMENT_CATALOG_CACHE_KEY
from tests.conftest import make_achievement, seed_achievements

REPO_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"


@pytest.fixture
def mock_redis(mocker):
    redis = mocker.MagicMock()
    redis.get_json = mocker.AsyncMock(return_value=None)
    redis.set_json = mocker.AsyncMock(return_value=True)
    redis.delete = mocker.AsyncMock(return_value=1)
    return redis


@pytest.fixture
def cached_catalog(store, config_manager, event_bus, mock_redis) -> AchievementCatalog:
    return AchievementCatalog(
        store, config_manager, event_bus, get_logger("tests.catalog"), redis=mock_redis
    )


class TestIsValidAchievement:
    def test_valid_entry(self):
        assert is_valid_achievement(make_achievement("first_card", "cards_created", 1))

    def test_negative_reward(self):
        assert not is_valid_achievement(make_achievement("x", "streak", 3, xp_reward=-1))

    def test_unknown_custom_metric(self):
        achievement = make_achievement("x", "custom", 1, params={"metric": "telepathy"})

        assert not is_valid_achievement(achievement)


@pytest.mark.asyncio
class TestCatalogReads:
    async def test_without_redis_reads_store(self, catalog, store):
        await seed_achievements(store, [make_achievement("b", "streak", 3), make_achievement("a", "streak", 1)])

        result = await catalog.get_all_achievements()

        assert [item.id for item in result] == ["a", "b"]

    async def test_cache_miss_populates_cache(self, cached_catalog, store, mock_redis):
        # Arrange
        await seed_achievements(store, [make_achievement("a", "streak", 1)])

        # Act
        result = await cached_catalog.get_all_achievements()

        # Assert
        assert [item.id for item in result] == ["a"]
        mock_redis.set_json.assert_awaited_once()
        key, payload = mock_redis.set_json.await_args.args
        assert key == ACHIEVEMENT_CATALOG_CACHE_KEY
        assert payload[0]["id"] == "a"
        assert mock_redis.set_json.await_args.kwargs["ttl_seconds"] == 300

    async def test_cache_hit_skips_store(self, cached_catalog, store, mock_redis, mocker):
        mock_redis.get_json.return_value = [make_achievement("cached", "streak", 2).to_dict()]
        spy = mocker.spy(store, "get_all_achievements")

        result = await cached_catalog.get_all_achievements()

        assert [item.id for item in result] == ["cached"]
        assert spy.call_count == 0

    async def test_redis_failure_falls_back_to_store(self, cached_catalog, store, mock_redis):
        await seed_achievements(store, [make_achievement("a", "streak", 1)])
        mock_redis.get_json.side_effect = RedisConnectionError("down")
        mock_redis.set_json.side_effect = RedisConnectionError("down")

        result = await cached_catalog.get_all_achievements()

        assert [item.id for item in result] == ["a"]

    async def test_stale_cache_payload_discarded(self, cached_catalog, store, mock_redis):
        await seed_achievements(store, [make_achievement("a", "streak", 1)])
        mock_redis.get_json.return_value = [{"id": "old", "tier": "mythril"}]

        result = await cached_catalog.get_all_achievements()

        assert [item.id for item in result] == ["a"]


@pytest.mark.asyncio
class TestSeedCatalog:
    async def test_seeds_valid_and_reports_invalid(self, cached_catalog, store, mock_redis):
        # Arrange
        entries = [
            make_achievement("first_card", "cards_created", 1).to_dict(),
            {"id": "bad_tier", "name": "Bad", "tier": "mythril", "condition": {"type": "streak", "target": 1}},
            {
                "id": "bad_metric",
                "name": "Bad metric",
                "tier": "gold",
                "condition": {"type": "custom", "target": 1, "params": {"metric": "telepathy"}},
            },
            {"name": "No id", "tier": "gold", "condition": {"type": "streak", "target": 1}},
        ]

        # Act
        summary = await cached_catalog.seed_catalog(entries)

        # Assert
        assert summary == {"seeded": 1, "invalid": ["bad_tier", "bad_metric", "#3"]}
        assert list(store.achievements) == ["first_card"]
        mock_redis.delete.assert_awaited_once_with(ACHIEVEMENT_CATALOG_CACHE_KEY)

    async def test_reseed_updates_existing(self, catalog, store):
        await catalog.seed_catalog([make_achievement("a", "streak", 3, xp_reward=10).to_dict()])

        await catalog.seed_catalog([make_achievement("a", "streak", 3, xp_reward=99).to_dict()])

        assert store.achievements["a"].xp_reward == 99

    async def test_shipped_catalog_is_valid(self, store, event_bus):
        # Arrange
        manager = ConfigManager(config_dir=REPO_CONFIG_DIR)
        catalog = AchievementCatalog(store, manager, event_bus, get_logger("tests.catalog"))
        expected = len(manager.get("achievements.catalog"))

        # Act
        summary = await catalog.seed_catalog()

        # Assert
        assert summary["invalid"] == []
        assert summary["seeded"] == expected
        assert len(store.achievements) == expected
