"""Notification dispatch for engine events."""

from .dispatcher import (
    ADMIN_AUDIENCE,
    LoggingNotificationDispatcher,
    Notification,
    NotificationDispatcher,
    get_notification_dispatcher,
)

__all__ = [
    "ADMIN_AUDIENCE",
    "LoggingNotificationDispatcher",
    "Notification",
    "NotificationDispatcher",
    "get_notification_dispatcher",
]
