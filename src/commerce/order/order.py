"""Order aggregate (Event Sourced): one customer purchase intent.

All state changes are captured as domain events and the current state is
rebuilt by replaying them via @apply, giving every order a complete audit
trail. Orders are never deleted; terminal states are final.

State Machine:
    PENDING → PAID | CANCELLED
    PAID → PROCESSING | CANCELLED
    CONFIRMED → PROCESSING | CANCELLED
    PROCESSING → FULFILLED | CANCELLED
    FULFILLED → SHIPPED | DELIVERED | RETURNED
    SHIPPED → DELIVERED | RETURNED
    DELIVERED → RETURNED
    CANCELLED, RETURNED, REFUNDED are terminal

REFUNDED is not in the table: it is entered only when the order's payment is
refunded at the provider (``mark_refunded``).
"""

import json
import secrets
import string
import time
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from protean import apply
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from commerce.domain import commerce
from commerce.order.events import (
    InventoryShortfallRecorded,
    OrderCancelled,
    OrderConfirmed,
    OrderCreated,
    OrderDelivered,
    OrderFulfilled,
    OrderPaid,
    OrderProcessing,
    OrderRefunded,
    OrderReturned,
    OrderShipped,
)
from commerce.shared.errors import InvalidTransition
from commerce.shared.money import ZERO, quantize, to_decimal


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    FULFILLED = "FULFILLED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    RETURNED = "RETURNED"
    REFUNDED = "REFUNDED"


class OrderPaymentStatus(Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"


class FulfillmentStatus(Enum):
    UNFULFILLED = "UNFULFILLED"
    FULFILLED = "FULFILLED"
    DELIVERED = "DELIVERED"


TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.FULFILLED, OrderStatus.CANCELLED}),
    OrderStatus.FULFILLED: frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.RETURNED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.RETURNED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.RETURNED}),
    OrderStatus.CANCELLED: frozenset(),  # Terminal
    OrderStatus.RETURNED: frozenset(),  # Terminal
    OrderStatus.REFUNDED: frozenset(),  # Terminal
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


def generate_order_number() -> str:
    """``ORD-<base36 epoch millis>-<4 random chars>``."""
    alphabet = string.digits + string.ascii_uppercase
    millis = int(time.time() * 1000)
    encoded = ""
    while millis:
        millis, remainder = divmod(millis, 36)
        encoded = alphabet[remainder] + encoded
    suffix = "".join(secrets.choice(alphabet) for _ in range(4))
    return f"ORD-{encoded or '0'}-{suffix}"


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@commerce.value_object(part_of="Order")
class Address:
    """Shipping or billing address as captured at checkout; never updated."""

    name = String(max_length=255)
    line1 = String(required=True, max_length=255)
    line2 = String(max_length=255)
    city = String(required=True, max_length=100)
    region = String(max_length=100)
    postal_code = String(max_length=20)
    country = String(required=True, max_length=100)
    phone = String(max_length=30)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@commerce.entity(part_of="Order")
class OrderLine:
    """Snapshot of a purchased product/variant at the time of ordering.

    Later catalogue edits never touch historical lines.
    """

    product_id = Identifier(required=True)
    variant_id = Identifier()
    sku = String(max_length=100)
    title = String(max_length=255)
    unit_price = String(required=True)
    quantity = Integer(required=True, min_value=1)
    line_total = String(required=True)

    @property
    def inventory_key(self) -> str:
        return str(self.variant_id or self.product_id)


# ---------------------------------------------------------------------------
# Aggregate Root (Event Sourced)
# ---------------------------------------------------------------------------
@commerce.aggregate(is_event_sourced=True)
class Order:
    order_number = String(max_length=50)
    store_id = Identifier(required=True)
    customer_id = Identifier()
    currency = String(max_length=3, required=True)
    subtotal = String(default="0")
    tax = String(default="0")
    shipping = String(default="0")
    discount = String(default="0")
    total = String(default="0")
    lines = HasMany(OrderLine)
    shipping_address = ValueObject(Address)
    billing_address = ValueObject(Address)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment_status = String(choices=OrderPaymentStatus, default=OrderPaymentStatus.PENDING.value)
    fulfillment_status = String(choices=FulfillmentStatus, default=FulfillmentStatus.UNFULFILLED.value)
    payment_reference = String(max_length=255)
    inventory_committed = Boolean(default=False)
    inventory_shortfall = Text()  # JSON list of {key, requested, available}
    cancellation_reason = String(max_length=500)
    return_reason = String(max_length=500)
    tracking_number = String(max_length=255)
    carrier = String(max_length=100)
    paid_at = DateTime()
    cancelled_at = DateTime()
    fulfilled_at = DateTime()
    delivered_at = DateTime()
    returned_at = DateTime()
    refunded_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        store_id,
        currency,
        lines,
        tax=ZERO,
        shipping=ZERO,
        discount=ZERO,
        subtotal=None,
        total=None,
        customer_id=None,
        shipping_address=None,
        billing_address=None,
    ):
        """Create a PENDING order from checkout data.

        Args:
            lines: List of dicts with product_id, variant_id, sku, title,
                   unit_price, quantity and optionally line_total.
            subtotal, total: Optional; when given they must agree with the
                   lines and with ``subtotal + tax + shipping - discount``.
            shipping_address, billing_address: Optional address dicts.
        """
        currency = (currency or "").upper()
        if len(currency) != 3:
            raise ValidationError({"currency": ["Currency must be a 3-letter code"]})
        if not lines:
            raise ValidationError({"lines": ["An order needs at least one line"]})

        snapshots = [_line_snapshot(line, currency) for line in lines]
        computed_subtotal = sum((to_decimal(line["line_total"]) for line in snapshots), ZERO)

        amounts = {
            "tax": quantize(tax or ZERO, currency),
            "shipping": quantize(shipping or ZERO, currency),
            "discount": quantize(discount or ZERO, currency),
        }
        for field_name, value in amounts.items():
            if value < ZERO:
                raise ValidationError({field_name: [f"{field_name} cannot be negative"]})

        if subtotal is not None and quantize(subtotal, currency) != computed_subtotal:
            raise ValidationError({"subtotal": [f"Subtotal {subtotal} does not equal sum of lines {computed_subtotal}"]})

        computed_total = computed_subtotal + amounts["tax"] + amounts["shipping"] - amounts["discount"]
        if computed_total < ZERO:
            raise ValidationError({"discount": ["Discount exceeds order value"]})
        if total is not None and quantize(total, currency) != computed_total:
            raise ValidationError(
                {"total": [f"Total {total} does not equal subtotal + tax + shipping - discount ({computed_total})"]}
            )

        order = cls._create_new()
        order.raise_(
            OrderCreated(
                order_id=str(order.id),
                order_number=generate_order_number(),
                store_id=str(store_id),
                customer_id=str(customer_id) if customer_id else None,
                currency=currency,
                subtotal=str(computed_subtotal),
                tax=str(amounts["tax"]),
                shipping=str(amounts["shipping"]),
                discount=str(amounts["discount"]),
                total=str(computed_total),
                lines=json.dumps(snapshots),
                shipping_address=json.dumps(shipping_address) if shipping_address else None,
                billing_address=json.dumps(billing_address) if billing_address else None,
                created_at=datetime.now(UTC),
            )
        )
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.current_status in TERMINAL_STATUSES

    def total_amount(self) -> Decimal:
        return to_decimal(self.total)

    def shortfall_keys(self) -> set[str]:
        if not self.inventory_shortfall:
            return set()
        return {entry["key"] for entry in json.loads(self.inventory_shortfall)}

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------
    def assert_can_transition(self, target: OrderStatus) -> None:
        current = self.current_status
        if not can_transition(current, target):
            raise InvalidTransition(current.value, target.value)

    def transition_to(
        self,
        target: OrderStatus,
        reason: str | None = None,
        tracking_number: str | None = None,
        carrier: str | None = None,
        payment_reference: str | None = None,
    ) -> None:
        """Move to ``target`` through the transition table, raising the matching event."""
        self.assert_can_transition(target)
        now = datetime.now(UTC)
        order_id = str(self.id)

        if target == OrderStatus.PAID:
            event = OrderPaid(order_id=order_id, payment_reference=payment_reference, paid_at=now)
        elif target == OrderStatus.CONFIRMED:
            event = OrderConfirmed(order_id=order_id, confirmed_at=now)
        elif target == OrderStatus.PROCESSING:
            event = OrderProcessing(order_id=order_id, started_at=now)
        elif target == OrderStatus.FULFILLED:
            event = OrderFulfilled(
                order_id=order_id,
                tracking_number=tracking_number,
                carrier=carrier,
                fulfilled_at=now,
            )
        elif target == OrderStatus.SHIPPED:
            event = OrderShipped(
                order_id=order_id,
                tracking_number=tracking_number,
                carrier=carrier,
                shipped_at=now,
            )
        elif target == OrderStatus.DELIVERED:
            event = OrderDelivered(order_id=order_id, delivered_at=now)
        elif target == OrderStatus.CANCELLED:
            event = OrderCancelled(
                order_id=order_id,
                previous_status=self.status,
                reason=reason,
                cancelled_at=now,
            )
        else:
            event = OrderReturned(order_id=order_id, reason=reason, returned_at=now)

        self.raise_(event)

    def mark_refunded(self, payment_reference: str | None = None) -> None:
        """Enter REFUNDED after the provider refunded this order's payment."""
        if self.is_terminal:
            raise InvalidTransition(self.status, OrderStatus.REFUNDED.value)
        self.raise_(
            OrderRefunded(
                order_id=str(self.id),
                payment_reference=payment_reference,
                refunded_at=datetime.now(UTC),
            )
        )

    def record_shortfall(self, lines: list[dict]) -> None:
        self.raise_(
            InventoryShortfallRecorded(
                order_id=str(self.id),
                lines=json.dumps(lines),
                recorded_at=datetime.now(UTC),
            )
        )

    # -------------------------------------------------------------------
    # @apply methods: rebuild state during event replay
    # -------------------------------------------------------------------
    @apply
    def _on_order_created(self, event: OrderCreated):
        self.id = event.order_id
        self.order_number = event.order_number
        self.store_id = event.store_id
        self.customer_id = event.customer_id
        self.currency = event.currency
        self.subtotal = event.subtotal
        self.tax = event.tax
        self.shipping = event.shipping
        self.discount = event.discount
        self.total = event.total
        self.status = OrderStatus.PENDING.value
        self.payment_status = OrderPaymentStatus.PENDING.value
        self.fulfillment_status = FulfillmentStatus.UNFULFILLED.value
        self.inventory_committed = False
        self.created_at = event.created_at
        self.updated_at = event.created_at

        # Line ids are part of the event so replay is deterministic
        self.lines = [OrderLine(**line) for line in json.loads(event.lines)]

        if event.shipping_address:
            self.shipping_address = Address(**json.loads(event.shipping_address))
        if event.billing_address:
            self.billing_address = Address(**json.loads(event.billing_address))

    @apply
    def _on_order_paid(self, event: OrderPaid):
        self.status = OrderStatus.PAID.value
        self.payment_status = OrderPaymentStatus.PAID.value
        self.payment_reference = event.payment_reference
        self.inventory_committed = True
        self.paid_at = event.paid_at
        self.updated_at = event.paid_at

    @apply
    def _on_inventory_shortfall_recorded(self, event: InventoryShortfallRecorded):
        self.inventory_shortfall = event.lines
        self.updated_at = event.recorded_at

    @apply
    def _on_order_confirmed(self, event: OrderConfirmed):
        self.status = OrderStatus.CONFIRMED.value
        self.updated_at = event.confirmed_at

    @apply
    def _on_order_processing(self, event: OrderProcessing):
        self.status = OrderStatus.PROCESSING.value
        self.updated_at = event.started_at

    @apply
    def _on_order_fulfilled(self, event: OrderFulfilled):
        self.status = OrderStatus.FULFILLED.value
        self.fulfillment_status = FulfillmentStatus.FULFILLED.value
        self.tracking_number = event.tracking_number
        self.carrier = event.carrier
        self.fulfilled_at = event.fulfilled_at
        self.updated_at = event.fulfilled_at

    @apply
    def _on_order_shipped(self, event: OrderShipped):
        self.status = OrderStatus.SHIPPED.value
        if event.tracking_number:
            self.tracking_number = event.tracking_number
        if event.carrier:
            self.carrier = event.carrier
        self.updated_at = event.shipped_at

    @apply
    def _on_order_delivered(self, event: OrderDelivered):
        self.status = OrderStatus.DELIVERED.value
        self.fulfillment_status = FulfillmentStatus.DELIVERED.value
        self.delivered_at = event.delivered_at
        self.updated_at = event.delivered_at

    @apply
    def _on_order_cancelled(self, event: OrderCancelled):
        self.status = OrderStatus.CANCELLED.value
        self.cancellation_reason = event.reason
        self.cancelled_at = event.cancelled_at
        self.updated_at = event.cancelled_at

    @apply
    def _on_order_returned(self, event: OrderReturned):
        self.status = OrderStatus.RETURNED.value
        self.return_reason = event.reason
        self.returned_at = event.returned_at
        self.updated_at = event.returned_at

    @apply
    def _on_order_refunded(self, event: OrderRefunded):
        self.status = OrderStatus.REFUNDED.value
        self.payment_status = OrderPaymentStatus.REFUNDED.value
        self.refunded_at = event.refunded_at
        self.updated_at = event.refunded_at


def _line_snapshot(line: dict, currency: str) -> dict:
    """Validate one checkout line and freeze it as a JSON-safe snapshot."""
    if not line.get("product_id"):
        raise ValidationError({"lines": ["Each line needs a product_id"]})

    quantity = line.get("quantity")
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError({"lines": [f"Invalid quantity for {line.get('product_id')}: {quantity!r}"]})

    unit_price = quantize(line.get("unit_price"), currency)
    if unit_price < ZERO:
        raise ValidationError({"lines": [f"Negative unit price for {line.get('product_id')}"]})

    line_total = quantize(unit_price * quantity, currency)
    if line.get("line_total") is not None and quantize(line["line_total"], currency) != line_total:
        raise ValidationError(
            {"lines": [f"Line total for {line.get('product_id')} does not equal unit_price x quantity"]}
        )

    return {
        "id": str(uuid4()),
        "product_id": str(line["product_id"]),
        "variant_id": str(line["variant_id"]) if line.get("variant_id") else None,
        "sku": line.get("sku"),
        "title": line.get("title"),
        "unit_price": str(unit_price),
        "quantity": quantity,
        "line_total": str(line_total),
    }
