"""Notifier registry and fire-and-forget dispatch.

Provides singleton access to the active notifier; the log notifier is used
until a real adapter (or a test fake) is installed with ``set_notifier()``.
"""

import structlog

from commerce.notification.adapters import FakeNotifier, LogNotifier
from commerce.notification.port import NotificationKind, Notifier

logger = structlog.get_logger(__name__)

_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = LogNotifier()
    return _notifier


def set_notifier(notifier: Notifier) -> None:
    global _notifier
    _notifier = notifier


def reset_notifier() -> None:
    global _notifier
    _notifier = None


def dispatch(kind: NotificationKind, order) -> None:
    """Send a notification about ``order``. Never raises."""
    payload = {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "customer_id": str(order.customer_id) if order.customer_id else None,
        "status": order.status,
        "total": order.total,
        "currency": order.currency,
        "tracking_number": order.tracking_number,
        "carrier": order.carrier,
    }
    try:
        get_notifier().send(kind, payload)
    except Exception as e:
        logger.error(
            "Notification dispatch failed",
            kind=kind.value,
            order_id=payload["order_id"],
            error=str(e),
        )


__all__ = [
    "FakeNotifier",
    "LogNotifier",
    "NotificationKind",
    "Notifier",
    "dispatch",
    "get_notifier",
    "reset_notifier",
    "set_notifier",
]
