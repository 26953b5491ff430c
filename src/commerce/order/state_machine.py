"""Order state machine: the only path that changes an order's status.

Every status change, whether requested by an operator or triggered by a
payment outcome, goes through ``transition()``:

1. take the order's lock (orders never share one);
2. load the order and check the transition table;
3. apply the inventory side effect for the destination;
4. commit the status change as an event on the order stream, reversing the
   inventory side effect if the commit is refused;
5. release the lock, then notify the customer (fire-and-forget).

An inventory shortfall on PAID does not stop the payment being recorded: the
money is already captured, so the order still becomes PAID and the shortfall
is recorded on the order for manual backorder handling.
"""

import json

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from commerce.inventory.ledger import InventoryLedger, LineAdjustment, PartialShortfall
from commerce.notification import NotificationKind, dispatch
from commerce.order.order import Order, OrderStatus
from commerce.order.transition import MarkOrderRefunded, TransitionOrder
from commerce.shared.errors import NotFound
from commerce.utils.locks import KeyedLocks

logger = structlog.get_logger(__name__)

_order_locks = KeyedLocks("order")

_NOTIFY_ON = {
    OrderStatus.PAID: NotificationKind.ORDER_PAID,
    OrderStatus.FULFILLED: NotificationKind.ORDER_FULFILLED,
    OrderStatus.DELIVERED: NotificationKind.ORDER_DELIVERED,
    OrderStatus.CANCELLED: NotificationKind.ORDER_CANCELLED,
}

# Statuses in which money has been captured but goods have not left
_PAID_UNSHIPPED = frozenset({OrderStatus.PAID, OrderStatus.CONFIRMED, OrderStatus.PROCESSING})


def load_order(order_id: str) -> Order:
    try:
        return current_domain.repository_for(Order).get(order_id)
    except ObjectNotFoundError as exc:
        raise NotFound("order", order_id) from exc


class OrderStateMachine:
    def __init__(self, ledger: InventoryLedger | None = None, locks: KeyedLocks | None = None) -> None:
        self.ledger = ledger or InventoryLedger()
        self._locks = locks or _order_locks

    # -------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------
    def transition(
        self,
        order_id: str,
        target: "OrderStatus | str",
        reason: str | None = None,
        tracking_number: str | None = None,
        carrier: str | None = None,
        payment_reference: str | None = None,
    ) -> Order:
        """Move an order to ``target``.

        Raises NotFound for an unknown order and InvalidTransition (leaving the
        order and stock untouched) for a move the table does not allow.
        """
        order, _ = self._transition(
            str(order_id),
            _status(target),
            reason=reason,
            tracking_number=tracking_number,
            carrier=carrier,
            payment_reference=payment_reference,
        )
        return order

    def cancel(self, order_id: str, reason: str | None = None) -> Order:
        return self.transition(order_id, OrderStatus.CANCELLED, reason=reason)

    def fulfill(self, order_id: str, tracking_number: str | None = None, carrier: str | None = None) -> Order:
        return self.transition(order_id, OrderStatus.FULFILLED, tracking_number=tracking_number, carrier=carrier)

    def on_payment_completed(self, order_id: str, payment_reference: str | None = None) -> Order:
        return self.transition(order_id, OrderStatus.PAID, payment_reference=payment_reference)

    def on_payment_failed(self, order_id: str, payment_reference: str | None = None) -> Order:
        """Cancel an order whose payment failed, if it is still awaiting payment.

        A failed attempt must not cancel an order that another attempt has
        already paid for, so anything past PENDING is left alone.
        """
        order, changed = self._transition(
            str(order_id),
            OrderStatus.CANCELLED,
            reason="Payment failed",
            payment_reference=payment_reference,
            only_from=frozenset({OrderStatus.PENDING}),
        )
        if not changed:
            logger.warning(
                "Payment failed for an order that already progressed; leaving it unchanged",
                order_id=str(order_id),
                status=order.status,
                payment_reference=payment_reference,
            )
        return order

    def on_payment_refunded(self, order_id: str, payment_reference: str | None = None) -> Order:
        """Mark a non-terminal order REFUNDED after its payment was refunded."""
        order_id = str(order_id)
        with self._locks.hold(order_id):
            order = load_order(order_id)
            if order.is_terminal:
                logger.warning(
                    "Refund received for an order in a terminal state; leaving it unchanged",
                    order_id=order_id,
                    status=order.status,
                    payment_reference=payment_reference,
                )
                return order
            current_domain.process(
                MarkOrderRefunded(order_id=order_id, payment_reference=payment_reference),
                asynchronous=False,
            )
            return load_order(order_id)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _transition(
        self,
        order_id: str,
        target: OrderStatus,
        reason: str | None = None,
        tracking_number: str | None = None,
        carrier: str | None = None,
        payment_reference: str | None = None,
        only_from: frozenset | None = None,
    ) -> tuple[Order, bool]:
        with self._locks.hold(order_id):
            order = load_order(order_id)
            previous = order.current_status
            if only_from is not None and previous not in only_from:
                return order, False

            order.assert_can_transition(target)

            shortfall = None
            decremented: list[LineAdjustment] = []
            restored: list[LineAdjustment] = []
            if target == OrderStatus.PAID:
                lines = self._stock_lines(order)
                result = self.ledger.decrement(lines, order_id=order_id)
                short_keys = set()
                if isinstance(result, PartialShortfall):
                    shortfall = json.dumps([line.to_dict() for line in result.lines])
                    short_keys = result.keys
                decremented = [line for line in lines if line.key not in short_keys]
            elif target in (OrderStatus.CANCELLED, OrderStatus.RETURNED) and order.inventory_committed:
                restored = self._stock_lines(order, committed_only=True)
                self.ledger.restore(restored, order_id=order_id)

            try:
                current_domain.process(
                    TransitionOrder(
                        order_id=order_id,
                        target_status=target.value,
                        reason=reason,
                        tracking_number=tracking_number,
                        carrier=carrier,
                        payment_reference=payment_reference,
                        shortfall=shortfall,
                    ),
                    asynchronous=False,
                )
            except Exception:
                # The stored order moved on (another process) or the write failed
                self._undo_inventory(order_id, target, decremented, restored)
                raise
            order = load_order(order_id)

        logger.info(
            "Order transitioned",
            order_id=order_id,
            from_status=previous.value,
            to_status=target.value,
        )
        if target == OrderStatus.CANCELLED and previous in _PAID_UNSHIPPED:
            logger.warning(
                "Paid order cancelled; payment must be refunded",
                order_id=order_id,
                payment_reference=order.payment_reference,
                total=order.total,
                currency=order.currency,
            )

        if target in _NOTIFY_ON:
            dispatch(_NOTIFY_ON[target], order)
        return order, True

    def _undo_inventory(
        self,
        order_id: str,
        target: OrderStatus,
        decremented: list[LineAdjustment],
        restored: list[LineAdjustment],
    ) -> None:
        """Reverse the stock movement of a transition whose status change was not committed."""
        if not decremented and not restored:
            return
        logger.warning(
            "Order transition not committed; reversing inventory side effect",
            order_id=order_id,
            to_status=target.value,
        )
        if decremented:
            self.ledger.restore(decremented, order_id=order_id)
        if restored:
            self.ledger.decrement(restored, order_id=order_id)

    @staticmethod
    def _stock_lines(order: Order, committed_only: bool = False) -> list[LineAdjustment]:
        """Inventory adjustments for the order's lines.

        With ``committed_only``, lines that were short at payment time (and
        therefore never decremented) are skipped so a restore gives back
        exactly what was taken.
        """
        skipped = order.shortfall_keys() if committed_only else set()
        return [
            LineAdjustment(key=line.inventory_key, quantity=line.quantity, sku=line.sku)
            for line in order.lines
            if line.inventory_key not in skipped
        ]


def _status(target: "OrderStatus | str") -> OrderStatus:
    if isinstance(target, OrderStatus):
        return target
    try:
        return OrderStatus(str(target).upper())
    except ValueError as exc:
        raise ValidationError({"target_status": [f"Unknown order status: {target}"]}) from exc
