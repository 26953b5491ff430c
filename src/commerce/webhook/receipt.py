"""WebhookReceipt aggregate: the durable log of provider notifications.

Every notification that reaches ingress is written here before it is
acknowledged. A receipt is keyed by ``(provider, reference, payload hash)``,
so an exact redelivery maps onto the receipt that already exists, while a
new payload for the same reference (``initiated`` then ``completed``) gets
its own.

Lifecycle:
    RECEIVED → PROCESSING → PROCESSED | FAILED
    REJECTED (signature or shape failure; never processed)

A claim is a lease: a receipt left in PROCESSING past ``claimed_at`` plus the
configured lease (its consumer died mid-flight) can be claimed again.
"""

import hashlib
import json
from datetime import datetime
from decimal import Decimal
from enum import Enum

from protean.fields import Boolean, DateTime, Integer, String, Text

from commerce.domain import commerce
from commerce.gateway.port import PaymentEvent, PaymentOutcome


class ReceiptStatus(Enum):
    RECEIVED = "RECEIVED"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"


class ReceiptSource(Enum):
    WEBHOOK = "webhook"
    VERIFY = "verify"


def receipt_id_for(provider: str, reference: str, payload_hash: str) -> str:
    return hashlib.sha256(f"{provider}|{reference}|{payload_hash}".encode()).hexdigest()


def as_datetime(value) -> datetime:
    return datetime.fromisoformat(value) if isinstance(value, str) else value


@commerce.aggregate
class WebhookReceipt:
    receipt_id = String(identifier=True, required=True, max_length=64)
    provider = String(required=True, max_length=50)
    external_reference = String(max_length=255)
    payload_hash = String(required=True, max_length=64)
    raw_body = Text()
    reported_amount = String()
    reported_currency = String(max_length=3)
    outcome = String(choices=PaymentOutcome)
    metadata = Text()  # JSON object
    source = String(choices=ReceiptSource, default=ReceiptSource.WEBHOOK.value)
    status = String(choices=ReceiptStatus, default=ReceiptStatus.RECEIVED.value)
    error = Text()
    caused_transition = Boolean(default=False)
    received_at = DateTime(required=True)
    processed_at = DateTime()
    claimed_at = DateTime()
    attempts = Integer(default=0)

    @property
    def current_status(self) -> ReceiptStatus:
        return ReceiptStatus(self.status)

    def claimable(self, stale_before: datetime | None = None) -> bool:
        """RECEIVED, or PROCESSING under a claim taken before ``stale_before``."""
        status = self.current_status
        if status == ReceiptStatus.RECEIVED:
            return True
        if status != ReceiptStatus.PROCESSING or stale_before is None or self.claimed_at is None:
            return False
        return as_datetime(self.claimed_at) < stale_before

    def to_event(self) -> PaymentEvent:
        """Rebuild the normalized notification this receipt recorded."""
        received_at = as_datetime(self.received_at)
        return PaymentEvent(
            provider=self.provider,
            external_reference=self.external_reference,
            reported_amount=Decimal(self.reported_amount) if self.reported_amount is not None else None,
            reported_currency=self.reported_currency,
            outcome=PaymentOutcome(self.outcome),
            raw_payload_hash=self.payload_hash,
            received_at=received_at,
            metadata=json.loads(self.metadata) if self.metadata else {},
        )
