"""
Achievement Push Notifications
==============================

Purpose
-------
Turn `achievement.unlocked` events into push notifications.

The listener is subscribed at LOW priority, so the EventBus runs it as a
background task: the unlock that published the event never waits for
delivery and never fails because of it. Delivery itself is the sender's
concern; `LoggingPushSender` is the default when no transport is wired.

Payload
-------
    title: "Achievement Unlocked!"
    body:  "You unlocked: {name}"
    data:  {"type": "achievement", "achievementId": ..., "xpReward": ..., "pushType": 12}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol, runtime_checkable

from studyquest.core.event.types import EventPayload, ListenerPriority
from studyquest.modules.shared.constants import ACHIEVEMENT_PUSH_TITLE, ACHIEVEMENT_PUSH_TYPE

if TYPE_CHECKING:
    from logging import Logger

    from studyquest.core.event.bus import EventBus
    from studyquest.modules.store.protocol import ProgressionStore


@dataclass(frozen=True)
class PushNotification:
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class PushNotificationSender(Protocol):
    async def send_push_notification(self, token: str, notification: PushNotification) -> None: ...


class LoggingPushSender:
    """Sender that only logs; used when no push transport is configured."""

    def __init__(self, logger: Logger) -> None:
        self.log = logger

    async def send_push_notification(self, token: str, notification: PushNotification) -> None:
        self.log.info(
            "Push notification (not delivered)",
            extra={"title": notification.title, "body": notification.body, **notification.data},
        )


def build_achievement_notification(payload: EventPayload) -> PushNotification:
    return PushNotification(
        title=ACHIEVEMENT_PUSH_TITLE,
        body=f"You unlocked: {payload.get('name', '')}",
        data={
            "type": "achievement",
            "achievementId": payload.get("achievement_id"),
            "xpReward": payload.get("xp_reward", 0),
            "pushType": ACHIEVEMENT_PUSH_TYPE,
        },
    )


class AchievementNotificationListener:
    EVENT_NAME = "achievement.unlocked"
    LISTENER_ID = "notification.achievement_unlocked"

    def __init__(
        self,
        store: ProgressionStore,
        sender: PushNotificationSender,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        self._store = store
        self._sender = sender
        self._events = event_bus
        self.log = logger
        self._registered = False

    def register(self) -> None:
        if self._registered:
            return
        self._events.subscribe(
            self.EVENT_NAME,
            self.handle_achievement_unlocked,
            priority=ListenerPriority.LOW,
            identifier=self.LISTENER_ID,
        )
        self._registered = True

    def unregister(self) -> None:
        if self._registered:
            self._events.unsubscribe(self.EVENT_NAME, self.LISTENER_ID)
            self._registered = False

    async def handle_achievement_unlocked(self, payload: EventPayload) -> Optional[PushNotification]:
        """Send the unlock notification; errors are logged and never raised."""
        user_id = payload.get("user_id")
        if not user_id:
            self.log.warning("achievement.unlocked event without user_id", extra={"payload_keys": list(payload)})
            return None

        try:
            token = await self._store.get_push_token(user_id)
            if not token:
                self.log.debug("No push token registered", extra={"user_id": user_id})
                return None

            notification = build_achievement_notification(payload)
            await self._sender.send_push_notification(token, notification)
        except Exception as exc:
            self.log.error(
                "Failed to send achievement notification",
                extra={
                    "user_id": user_id,
                    "achievement_id": payload.get("achievement_id"),
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return None

        self.log.info(
            "Achievement notification sent",
            extra={"user_id": user_id, "achievement_id": payload.get("achievement_id")},
        )
        return notification
