"""Out-of-band payment verification.

Asks the provider for a payment's current status. The provider call holds no
lock; its answer is recorded in the webhook log like any notification and
reconciled through the same path, so a verify racing a webhook cannot apply
an outcome twice.
"""

import structlog

from commerce.gateway import get_gateway
from commerce.payment.payment import Payment
from commerce.payment.reference import find_payment
from commerce.shared.errors import NotFound
from commerce.webhook.consumer import WebhookConsumer
from commerce.webhook.ingress import WebhookIngress
from commerce.webhook.receipt import ReceiptSource

logger = structlog.get_logger(__name__)


def verify_payment(
    reference: str,
    ingress: WebhookIngress | None = None,
    consumer: WebhookConsumer | None = None,
) -> Payment:
    payment = find_payment(reference)
    if payment is None:
        raise NotFound("payment", reference)

    event = get_gateway(payment.gateway).verify(payment.reference)
    logger.info(
        "Payment verified with provider",
        reference=payment.reference,
        provider=payment.gateway,
        outcome=event.outcome.value,
    )

    ack = (ingress or WebhookIngress()).record(event, source=ReceiptSource.VERIFY)
    if ack.needs_processing:
        (consumer or WebhookConsumer()).process(ack.receipt_id)
    return find_payment(reference)
