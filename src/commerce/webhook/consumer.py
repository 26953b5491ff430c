"""Webhook consumer: reconciles recorded notifications.

Runs independently of ingress: in-process right after a webhook has been
acknowledged, and from ``worker.py`` for anything left in the log. Claiming a
receipt is a compare-and-set from RECEIVED to PROCESSING, so two consumers
never reconcile the same receipt. A claim lapses after
``webhook_claim_lease_seconds``; a receipt whose consumer died before settling
it is then picked up again by ``process_pending``.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog
from protean.utils.globals import current_domain

from commerce.config import EngineSettings, get_settings
from commerce.payment.reconciliation import PaymentReconciler
from commerce.utils.locks import KeyedLocks
from commerce.webhook.receipt import ReceiptStatus, WebhookReceipt
from commerce.webhook.recording import ClaimWebhookReceipt, SettleWebhookReceipt, receipt_locks

logger = structlog.get_logger(__name__)


class WebhookConsumer:
    def __init__(
        self,
        reconciler: PaymentReconciler | None = None,
        locks: KeyedLocks | None = None,
        settings: EngineSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.reconciler = reconciler or PaymentReconciler()
        self.settings = settings or get_settings()
        self._locks = locks or receipt_locks
        self._clock = clock or (lambda: datetime.now(UTC))

    def process(self, receipt_id: str) -> str | None:
        """Reconcile one receipt. Returns its final status, or None if another consumer has it."""
        now = self._clock()
        with self._locks.hold(receipt_id):
            claimed = current_domain.process(
                ClaimWebhookReceipt(receipt_id=receipt_id, claimed_at=now, stale_before=self._stale_before(now)),
                asynchronous=False,
            )
        if not claimed:
            return None

        receipt = current_domain.repository_for(WebhookReceipt).get(receipt_id)
        if receipt.attempts and receipt.attempts > 1:
            logger.warning(
                "Reclaimed webhook receipt after lapsed claim",
                receipt_id=receipt_id,
                provider=receipt.provider,
                reference=receipt.external_reference,
                attempts=receipt.attempts,
            )
        try:
            outcome = self.reconciler.apply(receipt.to_event())
        except Exception as exc:
            logger.error(
                "Webhook processing failed",
                receipt_id=receipt_id,
                provider=receipt.provider,
                reference=receipt.external_reference,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return self._settle(receipt_id, ReceiptStatus.FAILED, error=f"{type(exc).__name__}: {exc}")

        return self._settle(receipt_id, ReceiptStatus.PROCESSED, caused_transition=outcome.transitioned)

    def process_pending(self, limit: int = 50) -> int:
        """Process up to ``limit`` RECEIVED or lapsed receipts, oldest first. Returns how many were handled."""
        stale_before = self._stale_before(self._clock())
        pending = self._receipts(ReceiptStatus.RECEIVED, limit)
        lapsed = [
            receipt
            for receipt in self._receipts(ReceiptStatus.PROCESSING, limit)
            if receipt.claimable(stale_before)
        ]

        handled = 0
        for receipt in (pending + lapsed)[:limit]:
            if self.process(receipt.receipt_id) is not None:
                handled += 1
        return handled

    def _stale_before(self, now: datetime) -> datetime:
        return now - timedelta(seconds=self.settings.webhook_claim_lease_seconds)

    @staticmethod
    def _receipts(status: ReceiptStatus, limit: int) -> list[WebhookReceipt]:
        return (
            current_domain.repository_for(WebhookReceipt)
            ._dao.query.filter(status=status.value)
            .order_by("received_at")
            .limit(limit)
            .all()
            .items
        )

    def _settle(self, receipt_id: str, status: ReceiptStatus, caused_transition: bool = False, error=None) -> str:
        with self._locks.hold(receipt_id):
            return current_domain.process(
                SettleWebhookReceipt(
                    receipt_id=receipt_id,
                    status=status.value,
                    caused_transition=caused_transition,
                    error=error,
                ),
                asynchronous=False,
            )
