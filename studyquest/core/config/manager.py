"""
ConfigManager: YAML-backed progression tunables for StudyQuest.

Purpose
-------
- Provide hierarchical, dot-notation access to tunable progression values
  (XP table, daily goal target, streak milestones, batch job settings,
  achievement catalog).
- Back configuration with YAML files from the `config/` directory.
- Keep an in-memory snapshot with read metrics.

Responsibilities
----------------
- Load and deep-merge every `*.yaml` / `*.yml` file under the config directory.
- Apply programmatic overrides on top of YAML (tests, CLI flags).
- Serve reads with typed helpers (`get_int`, `get_bool`, `get_float`).

Non-Responsibilities
--------------------
- Environment/static settings (handled by `Config`).
- Business rules; services decide what the values mean.

Key Design Decisions
--------------------
- YAML is the single source for defaults; overrides win over YAML.
- Missing keys return the caller-provided default, so services keep working
  with built-in constants when a YAML file is absent.
- Instances are explicit dependencies of services (constructor injection).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional

import yaml

from studyquest.core.config.config import Config
from studyquest.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Exceptions
# ============================================================================


class ConfigManagerError(RuntimeError):
    """Base error type for ConfigManager-related failures."""


class ConfigInitializationError(ConfigManagerError):
    """Raised when ConfigManager cannot initialize correctly."""


_MISSING = object()


@dataclass
class ConfigMetrics:
    gets: int = 0
    cache_misses: int = 0
    yaml_files_loaded: int = 0
    last_load_latency_ms: float = 0.0


# ============================================================================
# ConfigManager
# ============================================================================


class ConfigManager:
    """
    Dot-notation configuration access over merged YAML files.

    Usage
    -----
    >>> manager = ConfigManager()
    >>> await manager.initialize()
    >>> manager.get_int("progression.daily_goal.target", 20)
    20
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._config_dir = Path(config_dir) if config_dir is not None else Config.CONFIG_DIR
        self._overrides: Dict[str, Any] = dict(overrides or {})
        self._cache: Dict[str, Any] = {}
        self._initialized = False
        self._metrics = ConfigMetrics()

    # =========================================================================
    # YAML LOADING
    # =========================================================================

    @staticmethod
    def _deep_merge_dict(
        target: MutableMapping[str, Any],
        source: Mapping[str, Any],
    ) -> None:
        """Recursively merge `source` into `target` (in-place)."""
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                ConfigManager._deep_merge_dict(target[key], value)
            else:
                target[key] = value

    def _load_yaml_configs(self) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}

        if not self._config_dir.exists():
            logger.warning(
                "Config directory not found; using built-in defaults only",
                extra={"config_dir": str(self._config_dir)},
            )
            return merged

        yaml_files = sorted(
            list(self._config_dir.rglob("*.yaml")) + list(self._config_dir.rglob("*.yml"))
        )
        loaded_count = 0

        for yaml_file in yaml_files:
            relative = str(yaml_file.relative_to(self._config_dir))
            try:
                with yaml_file.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle)
            except (OSError, yaml.YAMLError) as exc:
                logger.warning(
                    "Failed to load YAML config",
                    extra={
                        "file": relative,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
                continue

            if isinstance(data, dict):
                self._deep_merge_dict(merged, data)
                loaded_count += 1
                logger.debug("Loaded YAML config", extra={"file": relative})
            elif data is not None:
                logger.warning(
                    "Ignoring non-dict YAML root object",
                    extra={"file": relative, "root_type": type(data).__name__},
                )

        self._metrics.yaml_files_loaded = loaded_count
        return merged

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    def load(self) -> None:
        """(Re)load YAML files and re-apply overrides."""
        start = time.perf_counter()
        cache = self._load_yaml_configs()
        for dotted_key, value in self._overrides.items():
            self._assign(cache, dotted_key, value)

        self._cache = cache
        self._initialized = True
        self._metrics.last_load_latency_ms = round((time.perf_counter() - start) * 1000, 2)

        logger.info(
            "ConfigManager loaded",
            extra={
                "config_dir": str(self._config_dir),
                "yaml_file_count": self._metrics.yaml_files_loaded,
                "override_count": len(self._overrides),
                "top_level_keys": sorted(self._cache.keys()),
                "latency_ms": self._metrics.last_load_latency_ms,
            },
        )

    async def initialize(self) -> None:
        """Async entry point used by the bootstrap sequence."""
        if self._initialized:
            return
        self.load()

    def set_override(self, key: str, value: Any) -> None:
        """Override a single dot-notation key at runtime."""
        self._overrides[key] = value
        if self._initialized:
            self._assign(self._cache, key, value)

    @staticmethod
    def _assign(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
        parts = dotted_key.split(".")
        node = target
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        """
        Retrieve a configuration value by dot-notation path.

        Examples
        --------
        >>> manager.get("progression.xp.review.easy", 20)
        20
        """
        self._metrics.gets += 1

        if not self._initialized:
            self.load()

        value: Any = self._cache
        for part in key.split("."):
            if not isinstance(value, dict):
                self._metrics.cache_misses += 1
                return default
            value = value.get(part, _MISSING)
            if value is _MISSING:
                self._metrics.cache_misses += 1
                return default

        return value

    def get_int(self, key: str, default: int) -> int:
        value = self.get(key, default)
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(
                "Config value is not an integer; using default",
                extra={"config_key": key, "value": repr(value), "default": default},
            )
            return default

    def get_float(self, key: str, default: float) -> float:
        value = self.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(
                "Config value is not a number; using default",
                extra={"config_key": key, "value": repr(value), "default": default},
            )
            return default

    def get_bool(self, key: str, default: bool) -> bool:
        value = self.get(key, default)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in {"true", "yes", "1", "on"}
        return bool(value)

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "gets": self._metrics.gets,
            "cache_misses": self._metrics.cache_misses,
            "yaml_files_loaded": self._metrics.yaml_files_loaded,
            "last_load_latency_ms": self._metrics.last_load_latency_ms,
        }
