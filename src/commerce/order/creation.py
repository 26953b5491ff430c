"""Order creation: command and handler.

The checkout collaborator submits the priced order; line, price and address
data arrive as JSON snapshots and are never re-read from the catalogue.
"""

import json

from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.order.order import Order


@commerce.command(part_of="Order")
class CreateOrder:
    """Create a new PENDING order from checkout data."""

    store_id = Identifier(required=True)
    customer_id = Identifier()
    currency = String(required=True, max_length=3)
    lines = Text(required=True)  # JSON list of line dicts
    subtotal = String()
    tax = String(default="0")
    shipping = String(default="0")
    discount = String(default="0")
    total = String()
    shipping_address = Text()  # JSON
    billing_address = Text()  # JSON


@commerce.command_handler(part_of=Order)
class CreateOrderHandler:
    @handle(CreateOrder)
    def create_order(self, command):
        order = Order.create(
            store_id=command.store_id,
            customer_id=command.customer_id,
            currency=command.currency,
            lines=json.loads(command.lines),
            subtotal=command.subtotal,
            tax=command.tax,
            shipping=command.shipping,
            discount=command.discount,
            total=command.total,
            shipping_address=json.loads(command.shipping_address) if command.shipping_address else None,
            billing_address=json.loads(command.billing_address) if command.billing_address else None,
        )
        current_domain.repository_for(Order).add(order)
        return str(order.id)
