"""Domain events for the Payment aggregate.

The payment stream is the audit log of every status change a provider
reported. Amounts are decimal text in major currency units; provider metadata
is carried as a JSON object.
"""

from protean.fields import Boolean, DateTime, Identifier, String, Text

from commerce.domain import commerce


@commerce.event(part_of="Payment")
class PaymentInitiated:
    """A payment was opened with a provider for an order."""

    __version__ = 1

    payment_id = Identifier(required=True)
    reference = String(required=True)
    merchant_reference = String(required=True)
    order_id = Identifier(required=True)
    amount = String(required=True)
    currency = String(required=True)
    gateway = String(required=True)
    initiated_at = DateTime(required=True)


@commerce.event(part_of="Payment")
class PaymentAuthorized:
    __version__ = 1

    payment_id = Identifier(required=True)
    reference = String(required=True)
    order_id = Identifier(required=True)
    metadata = Text()
    authorized_at = DateTime(required=True)


@commerce.event(part_of="Payment")
class PaymentCompleted:
    """The provider confirmed the money was captured."""

    __version__ = 1

    payment_id = Identifier(required=True)
    reference = String(required=True)
    order_id = Identifier(required=True)
    amount = String(required=True)
    currency = String(required=True)
    metadata = Text()
    paid_at = DateTime(required=True)


@commerce.event(part_of="Payment")
class PaymentFailed:
    __version__ = 1

    payment_id = Identifier(required=True)
    reference = String(required=True)
    order_id = Identifier(required=True)
    reason = String()
    metadata = Text()
    failed_at = DateTime(required=True)


@commerce.event(part_of="Payment")
class PaymentRefunded:
    """Some or all of a completed payment was returned to the customer."""

    __version__ = 1

    payment_id = Identifier(required=True)
    reference = String(required=True)
    order_id = Identifier(required=True)
    amount = String(required=True)
    refunded_total = String(required=True)
    fully_refunded = Boolean(required=True)
    metadata = Text()
    refunded_at = DateTime(required=True)


@commerce.event(part_of="Payment")
class PaymentMetadataEnriched:
    """A notification added provider details without changing the status."""

    __version__ = 1

    payment_id = Identifier(required=True)
    reference = String(required=True)
    metadata = Text(required=True)
    enriched_at = DateTime(required=True)
