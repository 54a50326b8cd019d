"""
Notification module.

Exports:
- AchievementNotificationListener
- PushNotification, PushNotificationSender, LoggingPushSender
"""

from studyquest.modules.notification.service import (
    AchievementNotificationListener,
    LoggingPushSender,
    PushNotification,
    PushNotificationSender,
    build_achievement_notification,
)

__all__ = [
    "AchievementNotificationListener",
    "LoggingPushSender",
    "PushNotification",
    "PushNotificationSender",
    "build_achievement_notification",
]
