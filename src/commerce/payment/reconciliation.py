"""Payment reconciliation: folds a normalized provider notification into a payment.

``PaymentReconciler.reconcile(event)``:

1. find the payment by the reference the provider quoted (UnknownReference
   if there is none);
2. reject a reported amount or currency that disagrees with the payment
   beyond the configured tolerance (AmountMismatch);
3. under the payment's lock, compare-and-set the status forward; a payment
   that is already settled only records new metadata;
4. after the lock is released, and only for the caller whose notification
   actually moved the status, drive the order: COMPLETED pays it, FAILED
   cancels it if still pending, a full refund marks it refunded.

Two concurrent deliveries of the same outcome therefore produce one status
change and one order transition; the loser sees the settled payment and does
nothing.
"""

import json
from dataclasses import dataclass

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from commerce.config import EngineSettings, get_settings
from commerce.domain import commerce
from commerce.gateway.port import PaymentEvent, PaymentOutcome
from commerce.order.state_machine import OrderStateMachine
from commerce.payment.payment import Payment, PaymentStatus
from commerce.payment.reference import find_payment
from commerce.shared.errors import AmountMismatch, InvalidTransition, UnknownReference
from commerce.shared.money import within_tolerance
from commerce.utils.locks import KeyedLocks

logger = structlog.get_logger(__name__)

_payment_locks = KeyedLocks("payment")


@commerce.command(part_of="Payment")
class ApplyPaymentOutcome:
    payment_id = Identifier(required=True)
    outcome = String(required=True, choices=PaymentOutcome)
    amount = String()  # refund amount, major units
    metadata = Text()  # JSON object
    reason = String(max_length=500)


@commerce.command_handler(part_of=Payment)
class PaymentOutcomeHandler:
    @handle(ApplyPaymentOutcome)
    def apply_outcome(self, command):
        """Returns True when the payment's status changed."""
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        metadata = json.loads(command.metadata) if command.metadata else {}

        outcome = PaymentOutcome(command.outcome)
        if outcome == PaymentOutcome.REFUNDED:
            changed = payment.refund(command.amount, metadata)
        else:
            changed = payment.apply_outcome(outcome, metadata, reason=command.reason)

        repo.add(payment)
        return changed


@dataclass(frozen=True)
class ReconcileOutcome:
    payment: Payment
    transitioned: bool


class PaymentReconciler:
    def __init__(
        self,
        state_machine: OrderStateMachine | None = None,
        settings: EngineSettings | None = None,
        locks: KeyedLocks | None = None,
    ) -> None:
        self.state_machine = state_machine or OrderStateMachine()
        self.settings = settings or get_settings()
        self._locks = locks or _payment_locks

    def reconcile(self, event: PaymentEvent) -> Payment:
        return self.apply(event).payment

    def apply(self, event: PaymentEvent) -> ReconcileOutcome:
        payment = find_payment(event.external_reference)
        if payment is None:
            logger.error(
                "Payment notification for unknown reference",
                provider=event.provider,
                reference=event.external_reference,
                outcome=event.outcome.value,
            )
            raise UnknownReference(event.provider, event.external_reference)

        payment_id = str(payment.id)
        with self._locks.hold(payment_id):
            payment = current_domain.repository_for(Payment).get(payment_id)
            self._check_amount(payment, event)

            metadata = dict(event.metadata)
            metadata["callback_received_at"] = event.received_at.isoformat()
            changed = current_domain.process(
                ApplyPaymentOutcome(
                    payment_id=payment_id,
                    outcome=event.outcome.value,
                    amount=str(event.reported_amount) if event.reported_amount is not None else None,
                    metadata=json.dumps(metadata, default=str),
                    reason=_failure_reason(event),
                ),
                asynchronous=False,
            )
            payment = current_domain.repository_for(Payment).get(payment_id)

        if changed:
            logger.info(
                "Payment status changed",
                reference=payment.reference,
                order_id=str(payment.order_id),
                status=payment.status,
                provider=event.provider,
            )
            self._propagate(payment)
        else:
            logger.info(
                "Payment notification caused no status change",
                reference=payment.reference,
                status=payment.status,
                outcome=event.outcome.value,
            )
        return ReconcileOutcome(payment=payment, transitioned=bool(changed))

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _check_amount(self, payment: Payment, event: PaymentEvent) -> None:
        expected = payment.total_amount()
        currency = payment.amount.currency

        if event.reported_currency is not None and event.reported_currency.upper() != currency:
            self._mismatch(payment, event, f"{expected} {currency}")

        if event.reported_amount is None:
            return

        absolute = self.settings.absolute_tolerance(currency)
        percent = self.settings.amount_tolerance_percent
        if event.outcome == PaymentOutcome.REFUNDED:
            # A refund may be partial but never larger than the payment
            if event.reported_amount <= expected or within_tolerance(
                expected, event.reported_amount, absolute, percent
            ):
                return
        elif within_tolerance(expected, event.reported_amount, absolute, percent):
            return
        self._mismatch(payment, event, f"{expected} {currency}")

    @staticmethod
    def _mismatch(payment: Payment, event: PaymentEvent, expected: str) -> None:
        reported = f"{event.reported_amount} {event.reported_currency or payment.amount.currency}"
        logger.warning(
            "Reported payment amount does not match",
            reference=payment.reference,
            provider=event.provider,
            expected=expected,
            reported=reported,
            outcome=event.outcome.value,
        )
        raise AmountMismatch(payment.reference, expected, reported)

    def _propagate(self, payment: Payment) -> None:
        order_id = str(payment.order_id)
        status = payment.current_status
        try:
            if status == PaymentStatus.COMPLETED:
                self.state_machine.on_payment_completed(order_id, payment_reference=payment.reference)
            elif status == PaymentStatus.FAILED:
                self.state_machine.on_payment_failed(order_id, payment_reference=payment.reference)
            elif status == PaymentStatus.REFUNDED:
                self.state_machine.on_payment_refunded(order_id, payment_reference=payment.reference)
        except ObjectNotFoundError:
            logger.error(
                "Payment settled for an order that cannot be found",
                order_id=order_id,
                reference=payment.reference,
                status=payment.status,
            )
        except InvalidTransition as exc:
            logger.warning(
                "Order could not follow its payment",
                order_id=order_id,
                reference=payment.reference,
                status=payment.status,
                order_status=exc.current,
            )


def _failure_reason(event: PaymentEvent) -> str | None:
    if event.outcome != PaymentOutcome.FAILED:
        return None
    for key in ("gateway_response", "result_desc", "processor_response", "reason"):
        if event.metadata.get(key):
            return str(event.metadata[key])[:500]
    return "Payment failed at provider"
