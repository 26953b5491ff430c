"""Domain events for the Order aggregate.

One event per state an order can enter; together they form the order's
audit trail and rebuild its state via @apply.
"""

from protean.fields import DateTime, Identifier, String, Text

from commerce.domain import commerce


@commerce.event(part_of="Order")
class OrderCreated:
    """A checkout produced a new order awaiting payment."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=50)
    store_id = Identifier(required=True)
    customer_id = Identifier()
    currency = String(required=True, max_length=3)
    subtotal = String(required=True)
    tax = String(required=True)
    shipping = String(required=True)
    discount = String(required=True)
    total = String(required=True)
    lines = Text(required=True)  # JSON list of line snapshots
    shipping_address = Text()  # JSON
    billing_address = Text()  # JSON
    created_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderPaid:
    __version__ = 1

    order_id = Identifier(required=True)
    payment_reference = String(max_length=255)
    paid_at = DateTime(required=True)


@commerce.event(part_of="Order")
class InventoryShortfallRecorded:
    """Stock could not back some lines of a paid order; needs backorder handling."""

    __version__ = 1

    order_id = Identifier(required=True)
    lines = Text(required=True)  # JSON list of {key, requested, available}
    recorded_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderConfirmed:
    __version__ = 1

    order_id = Identifier(required=True)
    confirmed_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderProcessing:
    __version__ = 1

    order_id = Identifier(required=True)
    started_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderFulfilled:
    __version__ = 1

    order_id = Identifier(required=True)
    tracking_number = String(max_length=255)
    carrier = String(max_length=100)
    fulfilled_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderShipped:
    __version__ = 1

    order_id = Identifier(required=True)
    tracking_number = String(max_length=255)
    carrier = String(max_length=100)
    shipped_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderDelivered:
    __version__ = 1

    order_id = Identifier(required=True)
    delivered_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderCancelled:
    __version__ = 1

    order_id = Identifier(required=True)
    previous_status = String(required=True, max_length=20)
    reason = String(max_length=500)
    cancelled_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderReturned:
    __version__ = 1

    order_id = Identifier(required=True)
    reason = String(max_length=500)
    returned_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderRefunded:
    """The order's payment was refunded by the provider."""

    __version__ = 1

    order_id = Identifier(required=True)
    payment_reference = String(max_length=255)
    refunded_at = DateTime(required=True)
