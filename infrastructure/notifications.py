"""Notification hook implementations"""
import logging
from typing import List

from domain.notifications import Notification, NotificationHook

logger = logging.getLogger(__name__)


class LoggingNotificationHook(NotificationHook):
    """Writes guest notifications to the log instead of sending email"""

    async def send(self, notification: Notification) -> None:
        logger.info(
            "Notification %s for %s should be sent to: %s",
            notification.event.value,
            notification.booking_reference,
            notification.recipient,
        )


class InMemoryNotificationHook(NotificationHook):
    """Keeps notifications in a list; used by tests and local runs"""

    def __init__(self):
        self.sent: List[Notification] = []

    async def send(self, notification: Notification) -> None:
        self.sent.append(notification)
