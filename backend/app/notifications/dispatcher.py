"""
Notification dispatcher interface.

Delivery (in-app, email, push) belongs to the surrounding platform. The
engine only hands over a Notification after its own transaction commits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)

ADMIN_AUDIENCE = "admins"


@dataclass(frozen=True)
class Notification:
    event_type: str
    title: str
    message: str
    recipient_id: Optional[str] = None
    audience: str = "user"
    data: Dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher(Protocol):
    def dispatch(self, notification: Notification) -> None:
        """Hand a notification to the delivery layer. May raise; callers contain failures."""
        ...


class LoggingNotificationDispatcher:
    """Default dispatcher: writes notifications to the log."""

    def dispatch(self, notification: Notification) -> None:
        logger.info(
            "[NOTIFY] %s -> %s",
            notification.event_type,
            notification.recipient_id or notification.audience,
            extra={
                "event_type": notification.event_type,
                "recipient_id": notification.recipient_id,
                "audience": notification.audience,
                "data": notification.data,
            },
        )


_dispatcher: NotificationDispatcher = LoggingNotificationDispatcher()


def get_notification_dispatcher() -> NotificationDispatcher:
    return _dispatcher
