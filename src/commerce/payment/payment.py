"""Payment aggregate (Event Sourced): one attempt to collect money for an order.

A payment is found by reference, not by order: retried attempts for the same
order are separate payments, and a provider callback identifies the attempt
by the reference it was opened with.

State Machine:
    PENDING → AUTHORIZED → COMPLETED | FAILED
    PENDING → COMPLETED | FAILED
    COMPLETED → PARTIALLY_REFUNDED → REFUNDED
    COMPLETED → REFUNDED

Status only moves forward. A notification that would not advance the status
(a redelivery, or a stale PENDING after COMPLETED) changes nothing except,
when it carries new provider details, the metadata.
"""

import json
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from protean import apply
from protean.fields import DateTime, Identifier, String, Text, ValueObject

from commerce.domain import commerce
from commerce.gateway.port import PaymentOutcome
from commerce.payment.events import (
    PaymentAuthorized,
    PaymentCompleted,
    PaymentFailed,
    PaymentInitiated,
    PaymentMetadataEnriched,
    PaymentRefunded,
)
from commerce.shared.errors import InvalidTransition
from commerce.shared.money import ZERO, Money, format_amount, to_decimal


class PaymentStatus(Enum):
    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    REFUNDED = "REFUNDED"


_RANK = {
    PaymentStatus.PENDING: 0,
    PaymentStatus.AUTHORIZED: 1,
    PaymentStatus.COMPLETED: 2,
    PaymentStatus.FAILED: 2,
    PaymentStatus.PARTIALLY_REFUNDED: 3,
    PaymentStatus.REFUNDED: 3,
}

SETTLED_STATUSES = frozenset(
    {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.PARTIALLY_REFUNDED,
        PaymentStatus.REFUNDED,
    }
)

_REFUNDABLE = frozenset({PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED})

# Keys that change on every delivery and never count as new information
_VOLATILE_METADATA = frozenset({"callback_received_at"})


@commerce.aggregate(is_event_sourced=True)
class Payment:
    reference = String(required=True, max_length=255)
    merchant_reference = String(max_length=255)
    order_id = Identifier(required=True)
    amount = ValueObject(Money)
    gateway = String(required=True, max_length=50)
    status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    failure_reason = String(max_length=500)
    metadata = Text()  # JSON object
    refunded_total = String(default="0")
    paid_at = DateTime()
    failed_at = DateTime()
    refunded_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        reference: str,
        merchant_reference: str,
        order_id: str,
        amount: Decimal,
        currency: str,
        gateway: str,
    ):
        """Record a new PENDING payment opened with ``gateway``.

        ``reference`` is what the provider will quote back in notifications;
        ``merchant_reference`` is the reference this engine generated (the
        two coincide for redirect providers).
        """
        money = Money.of(amount, currency)
        payment = cls._create_new()
        payment.raise_(
            PaymentInitiated(
                payment_id=str(payment.id),
                reference=reference,
                merchant_reference=merchant_reference,
                order_id=str(order_id),
                amount=money.amount,
                currency=money.currency,
                gateway=gateway,
                initiated_at=datetime.now(UTC),
            )
        )
        return payment

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def is_settled(self) -> bool:
        return self.current_status in SETTLED_STATUSES

    def total_amount(self) -> Decimal:
        return self.amount.decimal()

    def metadata_dict(self) -> dict:
        return json.loads(self.metadata) if self.metadata else {}

    # -------------------------------------------------------------------
    # Provider outcomes
    # -------------------------------------------------------------------
    def apply_outcome(self, outcome: PaymentOutcome, metadata: dict | None = None, reason: str | None = None) -> bool:
        """Advance the status to ``outcome`` if that moves it forward.

        Returns True when the status changed. A non-advancing outcome only
        records metadata the payment did not have yet.
        """
        if outcome == PaymentOutcome.REFUNDED:
            raise InvalidTransition(self.status, outcome.value)

        metadata = metadata or {}
        target = PaymentStatus(outcome.value)
        current = self.current_status
        if current in SETTLED_STATUSES or _RANK[target] <= _RANK[current]:
            self._enrich(metadata)
            return False

        now = datetime.now(UTC)
        merged = json.dumps({**self.metadata_dict(), **metadata}, default=str)
        payment_id = str(self.id)
        if target == PaymentStatus.AUTHORIZED:
            self.raise_(
                PaymentAuthorized(
                    payment_id=payment_id,
                    reference=self.reference,
                    order_id=str(self.order_id),
                    metadata=merged,
                    authorized_at=now,
                )
            )
        elif target == PaymentStatus.COMPLETED:
            self.raise_(
                PaymentCompleted(
                    payment_id=payment_id,
                    reference=self.reference,
                    order_id=str(self.order_id),
                    amount=self.amount.amount,
                    currency=self.amount.currency,
                    metadata=merged,
                    paid_at=now,
                )
            )
        else:
            self.raise_(
                PaymentFailed(
                    payment_id=payment_id,
                    reference=self.reference,
                    order_id=str(self.order_id),
                    reason=reason,
                    metadata=merged,
                    failed_at=now,
                )
            )
        return True

    def refund(self, amount: Decimal | None = None, metadata: dict | None = None) -> bool:
        """Record a provider refund of ``amount`` (the unrefunded balance when None).

        Returns False once the payment is already fully refunded. Raises
        InvalidTransition when the payment never completed.
        """
        current = self.current_status
        if current == PaymentStatus.REFUNDED:
            self._enrich(metadata or {})
            return False
        if current not in _REFUNDABLE:
            raise InvalidTransition(current.value, PaymentStatus.REFUNDED.value)

        total = self.total_amount()
        already = to_decimal(self.refunded_total or "0")
        remaining = total - already
        refunded = remaining if amount is None else min(to_decimal(amount), remaining)
        if refunded <= ZERO:
            return False

        new_total = already + refunded
        self.raise_(
            PaymentRefunded(
                payment_id=str(self.id),
                reference=self.reference,
                order_id=str(self.order_id),
                amount=format_amount(refunded, self.amount.currency),
                refunded_total=format_amount(new_total, self.amount.currency),
                fully_refunded=new_total >= total,
                metadata=json.dumps({**self.metadata_dict(), **(metadata or {})}, default=str),
                refunded_at=datetime.now(UTC),
            )
        )
        return True

    def _enrich(self, metadata: dict) -> None:
        existing = self.metadata_dict()
        fresh = {
            key: value
            for key, value in metadata.items()
            if key not in _VOLATILE_METADATA and existing.get(key) != value
        }
        if not fresh:
            return
        self.raise_(
            PaymentMetadataEnriched(
                payment_id=str(self.id),
                reference=self.reference,
                metadata=json.dumps({**existing, **fresh}, default=str),
                enriched_at=datetime.now(UTC),
            )
        )

    # -------------------------------------------------------------------
    # @apply methods: rebuild state during event replay
    # -------------------------------------------------------------------
    @apply
    def _on_payment_initiated(self, event: PaymentInitiated):
        self.id = event.payment_id
        self.reference = event.reference
        self.merchant_reference = event.merchant_reference
        self.order_id = event.order_id
        self.amount = Money(amount=event.amount, currency=event.currency)
        self.gateway = event.gateway
        self.status = PaymentStatus.PENDING.value
        self.refunded_total = "0"
        self.metadata = json.dumps({})
        self.created_at = event.initiated_at
        self.updated_at = event.initiated_at

    @apply
    def _on_payment_authorized(self, event: PaymentAuthorized):
        self.status = PaymentStatus.AUTHORIZED.value
        self.metadata = event.metadata
        self.updated_at = event.authorized_at

    @apply
    def _on_payment_completed(self, event: PaymentCompleted):
        self.status = PaymentStatus.COMPLETED.value
        self.metadata = event.metadata
        self.paid_at = event.paid_at
        self.updated_at = event.paid_at

    @apply
    def _on_payment_failed(self, event: PaymentFailed):
        self.status = PaymentStatus.FAILED.value
        self.failure_reason = event.reason
        self.metadata = event.metadata
        self.failed_at = event.failed_at
        self.updated_at = event.failed_at

    @apply
    def _on_payment_refunded(self, event: PaymentRefunded):
        self.refunded_total = event.refunded_total
        self.status = (
            PaymentStatus.REFUNDED.value if event.fully_refunded else PaymentStatus.PARTIALLY_REFUNDED.value
        )
        self.metadata = event.metadata
        self.refunded_at = event.refunded_at
        self.updated_at = event.refunded_at

    @apply
    def _on_payment_metadata_enriched(self, event: PaymentMetadataEnriched):
        self.metadata = event.metadata
        self.updated_at = event.enriched_at
