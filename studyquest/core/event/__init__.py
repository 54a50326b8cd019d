"""
StudyQuest event system.

Usage
-----
>>> from studyquest.core.event import EventBus, ListenerPriority
>>> bus = EventBus()
>>> bus.subscribe("achievement.unlocked", on_unlock, priority=ListenerPriority.LOW)
"""

from studyquest.core.event.bus import EventBus
from studyquest.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)

__all__ = [
    "EventBus",
    "CallbackType",
    "EventListener",
    "EventPayload",
    "ListenerPriority",
]
