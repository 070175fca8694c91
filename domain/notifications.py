"""Domain Notification Interface"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from domain.enums import NotificationEvent


class Notification(BaseModel):
    """Event emitted after a reservation change has been committed"""
    event: NotificationEvent
    hotel_id: str
    booking_reference: str
    recipient: str
    payload: Dict[str, Any] = {}
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationHook(ABC):
    """Best-effort delivery of guest notifications"""

    @abstractmethod
    async def send(self, notification: Notification) -> None:
        """Deliver notification; may raise, callers must not depend on success"""
        pass


def build_notification(event: NotificationEvent, reservation, payload: Optional[Dict[str, Any]] = None) -> Notification:
    return Notification(
        event=event,
        hotel_id=reservation.hotel_id,
        booking_reference=reservation.booking_reference,
        recipient=reservation.customer_email,
        payload=payload or {},
    )
