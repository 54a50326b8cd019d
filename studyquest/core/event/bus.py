"""
StudyQuest EventBus: async pub/sub with tiered concurrency.

Purpose
-------
Decouple progression services from side effects. Services publish domain
events ("achievement.unlocked", "xp.awarded", "streak.milestone"); listeners
such as the push-notification sender subscribe without the services knowing
about them.

Responsibilities
----------------
- Register/unregister listeners with priorities (exact names or "prefix.*")
- Execute listeners according to the tiered concurrency model:
  * CRITICAL: sequential, ordered, awaited with timeout
  * HIGH: sequential, ordered, awaited with timeout
  * NORMAL: concurrent (gather), awaited
  * LOW: fire-and-forget background tasks
- Error isolation (one failing listener never blocks others or the publisher)
- Simple counters for publishes and listener errors

Design Decisions
----------------
- Instance-based so tests can build a fresh bus per case.
- LOW-tier tasks are kept in a set until done so they are not garbage
  collected mid-flight; `drain()` awaits them (used by tests and shutdown).
- Listener timeouts come from ConfigManager when one is supplied.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import Counter
from typing import TYPE_CHECKING, Any, Optional

from studyquest.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)
from studyquest.core.logging.logger import get_logger

if TYPE_CHECKING:
    from studyquest.core.config.manager import ConfigManager

logger = get_logger(__name__)


class EventBus:
    """
    Tiered async EventBus.

    Examples
    --------
    >>> bus = EventBus()
    >>> bus.subscribe("achievement.unlocked", notify, priority=ListenerPriority.LOW)
    >>> await bus.publish("achievement.unlocked", {"user_id": "u-1", "achievement_id": "first-card"})
    """

    def __init__(
        self,
        config_manager: Optional["ConfigManager"] = None,
        *,
        critical_timeout_seconds: Optional[float] = None,
        high_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._config_manager = config_manager
        self._listeners: dict[str, list[EventListener]] = {}
        self._wildcard_listeners: list[tuple[str, EventListener]] = []
        self._background_tasks: set[asyncio.Task[Any]] = set()

        self._published: Counter[str] = Counter()
        self._errors: Counter[str] = Counter()

        self._critical_timeout = self._load_timeout(
            "core.event.listener_timeout.critical_seconds", critical_timeout_seconds, 5.0
        )
        self._high_timeout = self._load_timeout(
            "core.event.listener_timeout.high_seconds", high_timeout_seconds, 5.0
        )

        logger.debug(
            "EventBus initialized",
            extra={
                "critical_timeout_seconds": self._critical_timeout,
                "high_timeout_seconds": self._high_timeout,
            },
        )

    def _load_timeout(self, key: str, override: Optional[float], default: float) -> float:
        if override is not None:
            return float(override)
        if self._config_manager is None:
            return float(default)
        return self._config_manager.get_float(key, default)

    # ------------------------------------------------------------------ #
    # Subscription API
    # ------------------------------------------------------------------ #

    @staticmethod
    def _validate_callback_signature(callback: CallbackType) -> None:
        try:
            sig = inspect.signature(callback)
        except (TypeError, ValueError):
            return

        params = list(sig.parameters.values())
        if len(params) != 1:
            callback_name = getattr(callback, "__qualname__", None) or getattr(
                callback, "__name__", repr(callback)
            )
            raise ValueError(
                f"Event listener must accept exactly 1 parameter (EventPayload), "
                f"got {len(params)} parameters for '{callback_name}'"
            )

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
    ) -> str:
        """
        Subscribe a callback to an event name or a "prefix.*" pattern.

        Registering the same identifier twice for one event is a no-op.
        Returns the listener identifier for `unsubscribe`.
        """
        self._validate_callback_signature(callback)

        listener = EventListener.from_callback(
            event_name=event_name,
            callback=callback,
            priority=priority,
            identifier=identifier,
            once=once,
        )

        if "*" in event_name:
            if any(
                pattern == event_name and lst.identifier == listener.identifier
                for pattern, lst in self._wildcard_listeners
            ):
                logger.warning(
                    "EventBus: duplicate listener prevented",
                    extra={"event_name": event_name, "listener_id": listener.identifier},
                )
                return listener.identifier
            self._wildcard_listeners.append((event_name, listener))
            self._wildcard_listeners.sort(
                key=lambda pl: (pl[1].priority.value, pl[1].identifier)
            )
        else:
            listeners = self._listeners.setdefault(event_name, [])
            if any(lst.identifier == listener.identifier for lst in listeners):
                logger.warning(
                    "EventBus: duplicate listener prevented",
                    extra={"event_name": event_name, "listener_id": listener.identifier},
                )
                return listener.identifier
            listeners.append(listener)
            listeners.sort(key=lambda lst: (lst.priority.value, lst.identifier))

        logger.debug(
            "EventBus: subscribed listener",
            extra={
                "event_name": event_name,
                "listener_id": listener.identifier,
                "priority": listener.priority.name,
                "once": listener.once,
            },
        )
        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        removed = False

        if event_name in self._listeners:
            before = len(self._listeners[event_name])
            self._listeners[event_name] = [
                lst for lst in self._listeners[event_name] if lst.identifier != identifier
            ]
            removed = len(self._listeners[event_name]) != before
            if not self._listeners[event_name]:
                del self._listeners[event_name]

        before_wild = len(self._wildcard_listeners)
        self._wildcard_listeners = [
            (pattern, lst)
            for pattern, lst in self._wildcard_listeners
            if not (pattern == event_name and lst.identifier == identifier)
        ]
        removed = removed or len(self._wildcard_listeners) != before_wild

        if removed:
            logger.debug(
                "EventBus: unsubscribed listener",
                extra={"event_name": event_name, "listener_id": identifier},
            )
        return removed

    def clear(self) -> None:
        total = self.get_listener_count()
        self._listeners.clear()
        self._wildcard_listeners.clear()
        logger.info("EventBus: cleared all listeners", extra={"previous_listener_count": total})

    # ------------------------------------------------------------------ #
    # Routing
    # ------------------------------------------------------------------ #

    @staticmethod
    def _matches(event_name: str, pattern: str) -> bool:
        if pattern == "*":
            return True
        if pattern.endswith(".*"):
            return event_name.startswith(pattern[:-1])
        return event_name == pattern

    def _extract_listeners(self, event_name: str) -> list[EventListener]:
        exact = self._listeners.get(event_name, [])
        wildcard = [
            lst for pattern, lst in self._wildcard_listeners if self._matches(event_name, pattern)
        ]
        selected = sorted(exact + wildcard, key=lambda lst: (lst.priority.value, lst.identifier))

        # once=True listeners are pruned before they run
        if any(lst.once for lst in selected):
            if event_name in self._listeners:
                self._listeners[event_name] = [lst for lst in exact if not lst.once]
            self._wildcard_listeners = [
                (pattern, lst)
                for pattern, lst in self._wildcard_listeners
                if not (lst.once and lst in wildcard)
            ]

        return selected

    # ------------------------------------------------------------------ #
    # Publish API
    # ------------------------------------------------------------------ #

    async def publish(self, event_name: str, data: EventPayload) -> list[Any]:
        """
        Publish an event to all matching listeners.

        Returns results from CRITICAL/HIGH/NORMAL listeners. LOW-tier listeners
        run in the background and never delay or fail the publisher.
        """
        self._published[event_name] += 1

        listeners = self._extract_listeners(event_name)
        if not listeners:
            logger.debug("EventBus: no listeners for event", extra={"event_name": event_name})
            return []

        logger.debug(
            "EventBus: publishing event",
            extra={
                "event_name": event_name,
                "listener_count": len(listeners),
                "payload_keys": list(data.keys()),
            },
        )

        results: list[Any] = []

        for listener in listeners:
            if listener.priority == ListenerPriority.CRITICAL:
                results.append(
                    await self._run_with_timeout(listener, event_name, data, self._critical_timeout)
                )
        for listener in listeners:
            if listener.priority == ListenerPriority.HIGH:
                results.append(
                    await self._run_with_timeout(listener, event_name, data, self._high_timeout)
                )

        normal = [lst for lst in listeners if lst.priority == ListenerPriority.NORMAL]
        if normal:
            results.extend(
                await asyncio.gather(
                    *[self._run_listener(lst, event_name, data) for lst in normal]
                )
            )

        loop = asyncio.get_running_loop()
        for listener in listeners:
            if listener.priority != ListenerPriority.LOW:
                continue
            task = loop.create_task(
                self._run_listener(listener, event_name, data),
                name=f"eventbus-low-{event_name}-{listener.identifier}",
            )
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

        return results

    async def _run_with_timeout(
        self,
        listener: EventListener,
        event_name: str,
        payload: EventPayload,
        timeout: Optional[float],
    ) -> Any:
        if timeout is None or timeout <= 0:
            return await self._run_listener(listener, event_name, payload)

        try:
            return await asyncio.wait_for(
                self._run_listener(listener, event_name, payload), timeout=timeout
            )
        except asyncio.TimeoutError:
            self._errors[event_name] += 1
            logger.error(
                "EventBus listener timeout",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "timeout_seconds": timeout,
                },
            )
            return None

    async def _run_listener(
        self,
        listener: EventListener,
        event_name: str,
        payload: EventPayload,
    ) -> Any:
        try:
            if inspect.iscoroutinefunction(listener.callback):
                return await listener.callback(payload)

            result = listener.callback(payload)
            if inspect.isawaitable(result):
                return await result
            return result

        except Exception as exc:
            self._errors[event_name] += 1
            logger.error(
                "EventBus listener failed",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return None

    async def drain(self) -> None:
        """Await all in-flight LOW-tier listener tasks."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def get_listener_count(self, event_name: Optional[str] = None) -> int:
        if event_name:
            return len(self._listeners.get(event_name, [])) + sum(
                1 for pattern, _ in self._wildcard_listeners if self._matches(event_name, pattern)
            )
        return sum(len(v) for v in self._listeners.values()) + len(self._wildcard_listeners)

    def get_background_task_count(self) -> int:
        return len(self._background_tasks)

    def get_metrics_summary(self) -> dict[str, Any]:
        total_published = sum(self._published.values())
        total_errors = sum(self._errors.values())
        return {
            "total_events_published": total_published,
            "events_by_type": dict(self._published),
            "total_errors": total_errors,
            "errors_by_event": dict(self._errors),
            "total_listeners": self.get_listener_count(),
            "background_tasks": self.get_background_task_count(),
        }
