"""
Achievement Catalog
===================

Purpose
-------
Read access to the externally authored achievement catalog, plus seeding
from `achievements.catalog` in the YAML config.

Caching
-------
Active achievements are cached as JSON in Redis under
`studyquest:achievements:catalog` for `achievements.catalog_cache_ttl_seconds`.
Redis is optional: without a client, or when Redis fails, reads go straight
to the store. Seeding invalidates the cache.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional

from redis.exceptions import RedisError

from studyquest.domain.conditions import CustomCondition
from studyquest.domain.models import Achievement
from studyquest.modules.achievement.metrics import MetricRegistry, default_metric_registry
from studyquest.modules.shared.base_service import BaseService
from studyquest.modules.shared.constants import (
    ACHIEVEMENT_CATALOG_CACHE_KEY,
    ACHIEVEMENT_CATALOG_CACHE_TTL_SECONDS,
)
from studyquest.modules.shared.exceptions import ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from studyquest.core.config.manager import ConfigManager
    from studyquest.core.event.bus import EventBus
    from studyquest.core.redis.service import RedisService
    from studyquest.modules.store.protocol import ProgressionStore


def is_valid_achievement(
    achievement: Achievement,
    metric_registry: Optional[MetricRegistry] = None,
) -> bool:
    """Non-empty id and name, non-negative reward, positive target, known metric."""
    if not achievement.id or not achievement.name:
        return False
    if achievement.xp_reward < 0:
        return False
    if achievement.condition.target <= 0:
        return False
    if isinstance(achievement.condition, CustomCondition):
        registry = metric_registry or default_metric_registry()
        return achievement.condition.metric in registry
    return True


class AchievementCatalog(BaseService):
    def __init__(
        self,
        store: ProgressionStore,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
        redis: Optional[RedisService] = None,
        metric_registry: Optional[MetricRegistry] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._store = store
        self._redis = redis
        self._metrics = metric_registry or default_metric_registry()

    @property
    def cache_ttl_seconds(self) -> int:
        return self.get_config_int(
            "achievements.catalog_cache_ttl_seconds", ACHIEVEMENT_CATALOG_CACHE_TTL_SECONDS
        )

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get_all_achievements(self) -> List[Achievement]:
        cached = await self._read_cache()
        if cached is not None:
            return cached

        achievements = await self._store.get_all_achievements()
        await self._write_cache(achievements)
        return achievements

    async def get_achievement(self, achievement_id: str) -> Optional[Achievement]:
        return await self._store.get_achievement(achievement_id)

    async def invalidate(self) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.delete(ACHIEVEMENT_CATALOG_CACHE_KEY)
        except (RedisError, RuntimeError) as exc:
            self.log.warning(
                "Failed to invalidate achievement catalog cache",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )

    # =========================================================================
    # SEEDING
    # =========================================================================

    async def seed_catalog(
        self,
        entries: Optional[Iterable[Mapping[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """
        Validate and upsert catalog entries (defaults to `achievements.catalog`).

        Invalid entries are logged and skipped; valid ones are upserted by id.

        Returns:
            {"seeded": <count>, "invalid": [<id or index>, ...]}
        """
        if entries is None:
            entries = self.get_config("achievements.catalog", []) or []

        seeded = 0
        invalid: List[str] = []
        for index, raw in enumerate(entries):
            label = str(raw.get("id") or f"#{index}")
            try:
                achievement = Achievement.from_dict(raw)
            except ValidationError as exc:
                self.log.warning(
                    "Skipping malformed achievement",
                    extra={"achievement_id": label, "error": exc.message},
                )
                invalid.append(label)
                continue

            if not is_valid_achievement(achievement, self._metrics):
                self.log.warning("Skipping invalid achievement", extra={"achievement_id": label})
                invalid.append(label)
                continue

            await self._store.upsert_achievement(achievement)
            seeded += 1

        await self.invalidate()
        self.log_operation("seed_catalog", seeded=seeded, invalid=len(invalid))
        return {"seeded": seeded, "invalid": invalid}

    # =========================================================================
    # CACHE HELPERS
    # =========================================================================

    async def _read_cache(self) -> Optional[List[Achievement]]:
        if self._redis is None:
            return None
        try:
            payload = await self._redis.get_json(ACHIEVEMENT_CATALOG_CACHE_KEY)
        except (RedisError, RuntimeError) as exc:
            self.log.warning(
                "Achievement catalog cache unavailable",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return None

        if not isinstance(payload, list):
            return None
        try:
            return [Achievement.from_dict(item) for item in payload]
        except ValidationError:
            self.log.warning("Discarding stale achievement catalog cache")
            return None

    async def _write_cache(self, achievements: List[Achievement]) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set_json(
                ACHIEVEMENT_CATALOG_CACHE_KEY,
                [achievement.to_dict() for achievement in achievements],
                ttl_seconds=self.cache_ttl_seconds,
            )
        except (RedisError, RuntimeError) as exc:
            self.log.warning(
                "Failed to cache achievement catalog",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
