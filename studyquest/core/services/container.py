"""
Service Container
=================

Purpose
-------
Dependency injection container for the progression services. Builds each
service once, in dependency order, and hands out the instances.

Responsibilities
----------------
- Construct services with explicit constructor injection
- Register the achievement push-notification listener
- Lifecycle (initialize / shutdown) and a small health snapshot

Non-Responsibilities
--------------------
- Infrastructure startup (DatabaseService, RedisService, ConfigManager are
  created and initialized by the caller, see `studyquest.main`)
- Business logic

Usage
-----
    container = ServiceContainer(config_manager, event_bus, logger, store, redis=redis)
    await container.initialize()
    outcome = await container.gamification.process_card_review("u-1", "card-9", "good")
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Dict, Optional

from studyquest.core.logging.logger import get_logger
from studyquest.modules.achievement import AchievementCatalog, AchievementService
from studyquest.modules.daily import DailyGoalService
from studyquest.modules.gamification import GamificationService
from studyquest.modules.notification import (
    AchievementNotificationListener,
    LoggingPushSender,
    PushNotificationSender,
)
from studyquest.modules.streak import StreakService
from studyquest.modules.xp import XPLedgerService

if TYPE_CHECKING:
    from logging import Logger

    from studyquest.core.config.manager import ConfigManager
    from studyquest.core.event.bus import EventBus
    from studyquest.core.redis.service import RedisService
    from studyquest.modules.store.protocol import ProgressionStore

_NOT_INITIALIZED = "ServiceContainer not initialized. Call initialize() first."


class ServiceContainer:
    """
    Holds one instance of every progression service.

    Args:
        config_manager: Progression configuration manager
        event_bus: Event bus shared by all services
        logger: Container logger
        store: Persistence collaborator
        redis: Optional Redis for the catalog cache and job locks
        push_sender: Push transport (defaults to a logging-only sender)
    """

    SERVICE_COUNT = 7

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        store: ProgressionStore,
        redis: Optional[RedisService] = None,
        push_sender: Optional[PushNotificationSender] = None,
    ) -> None:
        self._config_manager = config_manager
        self._event_bus = event_bus
        self._logger = logger
        self._store = store
        self._redis = redis
        self._push_sender = push_sender

        self._xp_ledger: Optional[XPLedgerService] = None
        self._daily_goals: Optional[DailyGoalService] = None
        self._streaks: Optional[StreakService] = None
        self._catalog: Optional[AchievementCatalog] = None
        self._achievements: Optional[AchievementService] = None
        self._gamification: Optional[GamificationService] = None
        self._notifications: Optional[AchievementNotificationListener] = None

        self._initialized = False
        self._service_init_times: Dict[str, float] = {}
        self._init_start: Optional[float] = None
        self._init_end: Optional[float] = None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def initialize(self) -> None:
        if self._initialized:
            self._logger.warning("ServiceContainer already initialized")
            return

        self._init_start = time.perf_counter()
        self._logger.info("Service container initialization starting...")

        try:
            self._xp_ledger = self._timed(
                "xp_ledger",
                lambda: XPLedgerService(
                    store=self._store,
                    config_manager=self._config_manager,
                    event_bus=self._event_bus,
                    logger=get_logger("studyquest.modules.xp.service.XPLedgerService"),
                ),
            )
            self._daily_goals = self._timed(
                "daily_goals",
                lambda: DailyGoalService(
                    store=self._store,
                    xp_ledger=self._xp_ledger,
                    config_manager=self._config_manager,
                    event_bus=self._event_bus,
                    logger=get_logger("studyquest.modules.daily.service.DailyGoalService"),
                ),
            )
            self._streaks = self._timed(
                "streaks",
                lambda: StreakService(
                    store=self._store,
                    xp_ledger=self._xp_ledger,
                    daily_goals=self._daily_goals,
                    config_manager=self._config_manager,
                    event_bus=self._event_bus,
                    logger=get_logger("studyquest.modules.streak.service.StreakService"),
                ),
            )
            self._catalog = self._timed(
                "catalog",
                lambda: AchievementCatalog(
                    store=self._store,
                    config_manager=self._config_manager,
                    event_bus=self._event_bus,
                    logger=get_logger("studyquest.modules.achievement.catalog.AchievementCatalog"),
                    redis=self._redis,
                ),
            )
            self._achievements = self._timed(
                "achievements",
                lambda: AchievementService(
                    store=self._store,
                    catalog=self._catalog,
                    xp_ledger=self._xp_ledger,
                    config_manager=self._config_manager,
                    event_bus=self._event_bus,
                    logger=get_logger("studyquest.modules.achievement.service.AchievementService"),
                ),
            )
            self._gamification = self._timed(
                "gamification",
                lambda: GamificationService(
                    xp_ledger=self._xp_ledger,
                    daily_goals=self._daily_goals,
                    streaks=self._streaks,
                    achievements=self._achievements,
                    config_manager=self._config_manager,
                    event_bus=self._event_bus,
                    logger=get_logger("studyquest.modules.gamification.service.GamificationService"),
                ),
            )

            notification_logger = get_logger("studyquest.modules.notification.service")
            self._notifications = self._timed(
                "notifications",
                lambda: AchievementNotificationListener(
                    store=self._store,
                    sender=self._push_sender or LoggingPushSender(notification_logger),
                    event_bus=self._event_bus,
                    logger=notification_logger,
                ),
            )
            self._notifications.register()

            self._init_end = time.perf_counter()
            self._initialized = True

            extra_data: Dict[str, Any] = {
                "total_time_seconds": round(self._init_end - self._init_start, 3),
                "service_count": len(self._service_init_times),
            }
            if self._service_init_times:
                slowest = max(self._service_init_times, key=self._service_init_times.__getitem__)
                extra_data["slowest_service"] = slowest
                extra_data["slowest_duration"] = round(self._service_init_times[slowest], 3)

            self._logger.info("Service container initialized successfully", extra=extra_data)

        except Exception as e:
            self._logger.critical(
                "Service container initialization failed",
                exc_info=True,
                extra={"error": str(e)},
            )
            raise

    def _timed(self, name: str, factory: Any) -> Any:
        start = time.perf_counter()
        try:
            instance = factory()
        except Exception:
            self._logger.error(f"Failed to initialize {name}", exc_info=True)
            raise

        duration = time.perf_counter() - start
        self._service_init_times[name] = duration
        self._logger.debug(f"Initialized {name} in {duration:.3f}s")
        return instance

    async def shutdown(self) -> None:
        """Unregister listeners and wait for in-flight notifications."""
        if not self._initialized:
            return

        self._logger.info("Shutting down service container...")
        if self._notifications is not None:
            self._notifications.unregister()
        await self._event_bus.drain()

        self._initialized = False
        self._logger.info("Service container shut down")

    async def health_check(self) -> Dict[str, Any]:
        return {
            "initialized": self._initialized,
            "service_count": len(self._service_init_times),
            "total_init_time_seconds": (
                round(self._init_end - self._init_start, 3)
                if self._init_start and self._init_end
                else None
            ),
            "all_services_available": self._initialized
            and len(self._service_init_times) == self.SERVICE_COUNT,
        }

    # ========================================================================
    # Accessors
    # ========================================================================

    def _require(self, service: Optional[Any]) -> Any:
        if not self._initialized or service is None:
            raise RuntimeError(_NOT_INITIALIZED)
        return service

    @property
    def config_manager(self) -> ConfigManager:
        return self._config_manager

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def store(self) -> ProgressionStore:
        return self._store

    @property
    def redis(self) -> Optional[RedisService]:
        return self._redis

    @property
    def xp_ledger(self) -> XPLedgerService:
        return self._require(self._xp_ledger)

    @property
    def daily_goals(self) -> DailyGoalService:
        return self._require(self._daily_goals)

    @property
    def streaks(self) -> StreakService:
        return self._require(self._streaks)

    @property
    def catalog(self) -> AchievementCatalog:
        return self._require(self._catalog)

    @property
    def achievements(self) -> AchievementService:
        return self._require(self._achievements)

    @property
    def gamification(self) -> GamificationService:
        return self._require(self._gamification)

    @property
    def notifications(self) -> AchievementNotificationListener:
        return self._require(self._notifications)
