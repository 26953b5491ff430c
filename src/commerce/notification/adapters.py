"""Notifier adapters: a structured-log notifier for development and a
recording fake for tests."""

import structlog

from commerce.notification.port import NotificationKind, Notifier

logger = structlog.get_logger(__name__)


class LogNotifier(Notifier):
    """Writes each notification to the log instead of delivering it."""

    def send(self, kind: NotificationKind, payload: dict) -> None:
        logger.info("Notification dispatched", kind=kind.value, **payload)


class FakeNotifier(Notifier):
    """Notifier that records messages in memory for test assertions."""

    def __init__(self) -> None:
        self.sent: list[tuple[NotificationKind, dict]] = []
        self.should_succeed = True
        self.failure_reason = "Notification delivery failed"

    def configure(self, should_succeed: bool = True, failure_reason: str = "Notification delivery failed") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def send(self, kind: NotificationKind, payload: dict) -> None:
        if not self.should_succeed:
            raise RuntimeError(self.failure_reason)
        self.sent.append((kind, payload))

    def kinds(self) -> list[NotificationKind]:
        return [kind for kind, _ in self.sent]
