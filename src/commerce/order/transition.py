"""Order status changes: commands and handler.

Only the order state machine issues these; it holds the order's lock and has
already applied the inventory side effect by the time they are processed.
"""

import json

from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.order.order import Order, OrderStatus


@commerce.command(part_of="Order")
class TransitionOrder:
    order_id = Identifier(required=True)
    target_status = String(required=True, choices=OrderStatus)
    reason = String(max_length=500)
    tracking_number = String(max_length=255)
    carrier = String(max_length=100)
    payment_reference = String(max_length=255)
    shortfall = Text()  # JSON list, only with target PAID


@commerce.command(part_of="Order")
class MarkOrderRefunded:
    order_id = Identifier(required=True)
    payment_reference = String(max_length=255)


@commerce.command_handler(part_of=Order)
class OrderTransitionHandler:
    @handle(TransitionOrder)
    def transition_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)

        order.transition_to(
            OrderStatus(command.target_status),
            reason=command.reason,
            tracking_number=command.tracking_number,
            carrier=command.carrier,
            payment_reference=command.payment_reference,
        )
        if command.shortfall:
            order.record_shortfall(json.loads(command.shortfall))

        repo.add(order)
        return order.status

    @handle(MarkOrderRefunded)
    def mark_refunded(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.mark_refunded(payment_reference=command.payment_reference)
        repo.add(order)
        return order.status
