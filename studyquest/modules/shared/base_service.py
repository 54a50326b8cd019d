"""
Base Service Foundation

Purpose
-------
Foundational class for all progression services. Services implement the
business rules, call the store through its atomic mutators, and emit domain
events.

Design Notes
------------
This base class provides:
- Structured logging with operation context
- Config access with constant fallbacks
- Event emission helpers

What this class does NOT do:
- Manage database transactions (the store does)
- Hold progression state (the store does)

Usage
-----
    class DailyGoalService(BaseService):
        def __init__(self, store, xp_ledger, config_manager, event_bus, logger):
            super().__init__(config_manager, event_bus, logger)
            self._store = store
            self._xp = xp_ledger
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from logging import Logger

    from studyquest.core.config.manager import ConfigManager
    from studyquest.core.event.bus import EventBus


class BaseService:
    """
    Base class for all domain services.

    Args:
        config_manager: Progression configuration manager
        event_bus: Event bus for cross-module communication
        logger: Structured logger instance
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger

    def get_config(self, key: str, default: Optional[Any] = None, required: bool = False) -> Any:
        """
        Safely retrieve a configuration value.

        Raises:
            ConfigurationError: If required=True and key is missing
        """
        value = self._config.get(key, default)
        if required and value is None:
            raise ConfigurationError(key, f"Required configuration key '{key}' is missing")
        return value

    def get_config_int(self, key: str, default: int) -> int:
        return self._config.get_int(key, default)

    async def emit_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self._events.publish(event_type, {**data, **(context or {})})

    def log_operation(self, operation: str, **context: Any) -> None:
        self.log.info(
            f"Service operation: {operation}",
            extra={"operation": operation, **context},
        )

    def log_error(self, operation: str, error: Exception, **context: Any) -> None:
        self.log.error(
            f"Service error during {operation}: {str(error)}",
            extra={
                "operation": operation,
                "error_type": type(error).__name__,
                "error_message": str(error),
                **context,
            },
        )
