"""
Pytest Configuration and Fixtures for StudyQuest Tests
======================================================

Purpose
-------
Centralized fixtures for the progression engine test suite: mocks for unit
tests of single services, and a fully wired in-memory stack (real services,
real EventBus, `InMemoryProgressionStore`) for flow tests.

Architecture Notes
------------------
- Unit tests use mocks or the in-memory store (fast, isolated)
- Integration tests run the SQL store against SQLite via aiosqlite
- Config comes from an empty temporary directory, so services fall back to
  the built-in constants unless a test sets overrides
"""

from __future__ import annotations

import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from datetime import date  # noqa: E402
from typing import Any, Dict, Iterable, Mapping, Optional  # noqa: E402

import pytest  # noqa: E402

from studyquest.core.config.manager import ConfigManager  # noqa: E402
from studyquest.core.event.bus import EventBus  # noqa: E402
from studyquest.core.logging.logger import get_logger  # noqa: E402
from studyquest.domain.models import Achievement  # noqa: E402
from studyquest.modules.achievement import AchievementCatalog, AchievementService  # noqa: E402
from studyquest.modules.daily import DailyGoalService  # noqa: E402
from studyquest.modules.gamification import GamificationService  # noqa: E402
from studyquest.modules.streak import StreakService  # noqa: E402
from studyquest.modules.xp import XPLedgerService  # noqa: E402
from tests.fakes import InMemoryProgressionStore  # noqa: E402

TODAY = date(2025, 3, 14)


# ============================================================================
# MOCK FIXTURES (Unit Tests)
# ============================================================================


@pytest.fixture
def mock_event_bus(mocker):
    """
    Mock EventBus for unit tests.

    Scope: function
    Uses: Unit tests that assert on published events
    """
    mock_bus = mocker.MagicMock()
    mock_bus.publish = mocker.AsyncMock(return_value=[])
    mock_bus.subscribe = mocker.MagicMock()
    mock_bus.unsubscribe = mocker.MagicMock(return_value=True)
    mock_bus.drain = mocker.AsyncMock()
    return mock_bus


@pytest.fixture
def mock_config_manager(mocker):
    """
    Mock ConfigManager that answers every read with the caller's default.

    Scope: function
    """
    mock_config = mocker.MagicMock()
    mock_config.get = mocker.MagicMock(side_effect=lambda key, default=None: default)
    mock_config.get_int = mocker.MagicMock(side_effect=lambda key, default: default)
    mock_config.get_float = mocker.MagicMock(side_effect=lambda key, default: default)
    mock_config.get_bool = mocker.MagicMock(side_effect=lambda key, default: default)
    return mock_config


# ============================================================================
# IN-MEMORY STACK (Flow Tests)
# ============================================================================


@pytest.fixture
def config_overrides() -> Dict[str, Any]:
    """Override per test module: `@pytest.fixture def config_overrides(): ...`."""
    return {}


@pytest.fixture
def config_manager(tmp_path, config_overrides) -> ConfigManager:
    manager = ConfigManager(config_dir=tmp_path, overrides=config_overrides)
    manager.load()
    return manager


@pytest.fixture
def event_bus(config_manager) -> EventBus:
    return EventBus(config_manager)


@pytest.fixture
def store() -> InMemoryProgressionStore:
    return InMemoryProgressionStore()


@pytest.fixture
def xp_ledger(store, config_manager, event_bus) -> XPLedgerService:
    return XPLedgerService(store, config_manager, event_bus, get_logger("tests.xp"))


@pytest.fixture
def daily_goals(store, xp_ledger, config_manager, event_bus) -> DailyGoalService:
    return DailyGoalService(store, xp_ledger, config_manager, event_bus, get_logger("tests.daily"))


@pytest.fixture
def streaks(store, xp_ledger, daily_goals, config_manager, event_bus) -> StreakService:
    return StreakService(
        store, xp_ledger, daily_goals, config_manager, event_bus, get_logger("tests.streak")
    )


@pytest.fixture
def catalog(store, config_manager, event_bus) -> AchievementCatalog:
    return AchievementCatalog(store, config_manager, event_bus, get_logger("tests.catalog"))


@pytest.fixture
def achievements(store, catalog, xp_ledger, config_manager, event_bus) -> AchievementService:
    return AchievementService(
        store, catalog, xp_ledger, config_manager, event_bus, get_logger("tests.achievement")
    )


@pytest.fixture
def gamification(
    xp_ledger, daily_goals, streaks, achievements, config_manager, event_bus
) -> GamificationService:
    return GamificationService(
        xp_ledger,
        daily_goals,
        streaks,
        achievements,
        config_manager,
        event_bus,
        get_logger("tests.gamification"),
    )


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================


def make_achievement(
    achievement_id: str,
    condition_type: str,
    target: int,
    xp_reward: int = 50,
    tier: str = "bronze",
    params: Optional[Mapping[str, Any]] = None,
    name: Optional[str] = None,
) -> Achievement:
    condition: Dict[str, Any] = {"type": condition_type, "target": target}
    if params:
        condition["params"] = dict(params)
    return Achievement.from_dict(
        {
            "id": achievement_id,
            "name": name or achievement_id.replace("_", " ").title(),
            "tier": tier,
            "xp_reward": xp_reward,
            "condition": condition,
        }
    )


async def seed_achievements(store: InMemoryProgressionStore, items: Iterable[Achievement]) -> None:
    for item in items:
        await store.upsert_achievement(item)


def recorded_events(event_bus_mock, event_name: str) -> list:
    """Payloads published on a mock EventBus for `event_name`."""
    return [call.args[1] for call in event_bus_mock.publish.call_args_list if call.args[0] == event_name]
