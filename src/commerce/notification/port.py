"""Notifier port: abstract interface for customer notifications."""

from abc import ABC, abstractmethod
from enum import Enum


class NotificationKind(Enum):
    ORDER_PAID = "order_paid"
    ORDER_FULFILLED = "order_fulfilled"
    ORDER_DELIVERED = "order_delivered"
    ORDER_CANCELLED = "order_cancelled"


class Notifier(ABC):
    """Abstract interface for notification dispatch adapters (email, SMS)."""

    @abstractmethod
    def send(self, kind: NotificationKind, payload: dict) -> None:
        """Deliver a notification. May raise; callers never let it propagate."""
        ...
