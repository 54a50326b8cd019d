"""
Unit tests for ServiceContainer lifecycle and accessors.
"""

import pytest

from studyquest.core.logging.logger import get_logger
from studyquest.core.services.container import ServiceContainer
from studyquest.modules.achievement import AchievementService
from studyquest.modules.gamification import GamificationService
from tests.fakes import RecordingPushSender


@pytest.fixture
def container(config_manager, event_bus, store):
    return ServiceContainer(
        config_manager=config_manager,
        event_bus=event_bus,
        logger=get_logger("tests.container"),
        store=store,
        push_sender=RecordingPushSender(),
    )


@pytest.mark.asyncio
class TestServiceContainer:
    async def test_accessors_require_initialize(self, container, store):
        with pytest.raises(RuntimeError, match="not initialized"):
            _ = container.gamification
        with pytest.raises(RuntimeError, match="not initialized"):
            _ = container.xp_ledger

        # Infrastructure is available before initialization
        assert container.store is store
        assert container.redis is None

    async def test_initialize_builds_every_service(self, container, event_bus):
        # Act
        await container.initialize()

        # Assert
        assert isinstance(container.gamification, GamificationService)
        assert isinstance(container.achievements, AchievementService)
        assert event_bus.get_listener_count("achievement.unlocked") == 1

        health = await container.health_check()
        assert health["initialized"] is True
        assert health["service_count"] == ServiceContainer.SERVICE_COUNT
        assert health["all_services_available"] is True

    async def test_initialize_twice_is_noop(self, container, event_bus):
        await container.initialize()
        first = container.xp_ledger

        await container.initialize()

        assert container.xp_ledger is first
        assert event_bus.get_listener_count("achievement.unlocked") == 1

    async def test_shutdown_unregisters_listener(self, container, event_bus):
        await container.initialize()

        await container.shutdown()

        assert event_bus.get_listener_count("achievement.unlocked") == 0
        health = await container.health_check()
        assert health["initialized"] is False
        with pytest.raises(RuntimeError):
            _ = container.achievements

    async def test_health_before_initialize(self, container):
        health = await container.health_check()

        assert health == {
            "initialized": False,
            "service_count": 0,
            "total_init_time_seconds": None,
            "all_services_available": False,
        }
