"""Payment initiation entry point.

The merchant reference is reserved before the provider is called, and the
provider call itself runs with no lock held. A failed call releases the
reservation. The payment records the amount the provider will actually
collect, which for M-Pesa is the requested amount rounded to whole units.
"""

import time

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from commerce.gateway.port import GatewayName, InitiationRequest
from commerce.order.order import OrderStatus
from commerce.order.state_machine import load_order
from commerce.payment.initiation import InitiatePayment
from commerce.payment.reference import ReleasePaymentReference, ReservePaymentReference
from commerce.payment.selection import ensure_gateway_available
from commerce.shared.errors import DuplicateReference
from commerce.shared.money import ZERO, format_amount, quantize
from commerce.utils.locks import KeyedLocks

logger = structlog.get_logger(__name__)

_reference_locks = KeyedLocks("payment-reference")


def generate_reference(order_id: str) -> str:
    return f"PAY-{int(time.time() * 1000)}-{order_id}"


def initiate_payment(
    order_id: str,
    amount,
    currency: str,
    gateway_choice: "GatewayName | str",
    customer_email: str | None = None,
    customer_phone: str | None = None,
    customer_name: str | None = None,
    reference: str | None = None,
    description: str | None = None,
) -> dict:
    """Open a payment with the chosen provider for an order awaiting payment.

    Returns ``{reference, merchant_reference, action_target, provider,
    amount, message}`` where ``action_target`` is the redirect URL (or, for mobile
    money, the phone number that was prompted).
    """
    order_id = str(order_id)
    currency = (currency or "").upper()
    order = load_order(order_id)

    if order.current_status != OrderStatus.PENDING:
        raise ValidationError({"order_id": [f"Order {order_id} is not awaiting payment ({order.status})"]})
    if currency != order.currency:
        raise ValidationError({"currency": [f"Order is in {order.currency}, not {currency}"]})

    value = quantize(amount, currency)
    if value <= ZERO:
        raise ValidationError({"amount": ["Amount must be positive"]})

    gateway = ensure_gateway_available(gateway_choice, currency)

    merchant_reference = reference or generate_reference(order_id)
    with _reference_locks.hold(merchant_reference):
        current_domain.process(ReservePaymentReference(reference=merchant_reference), asynchronous=False)

    try:
        result = gateway.initiate(
            InitiationRequest(
                reference=merchant_reference,
                order_id=order_id,
                amount=value,
                currency=currency,
                customer_email=customer_email,
                customer_phone=customer_phone,
                customer_name=customer_name,
                description=description,
            )
        )
    except Exception:
        _release(merchant_reference)
        raise

    charged = quantize(result.charged_amount, currency) if result.charged_amount is not None else value
    if charged != value:
        logger.info(
            "Provider charges a different amount than requested",
            order_id=order_id,
            merchant_reference=merchant_reference,
            provider=gateway.name.value,
            requested=format_amount(value, currency),
            charged=format_amount(charged, currency),
        )

    with _reference_locks.hold(merchant_reference):
        try:
            current_domain.process(
                InitiatePayment(
                    reference=result.provider_reference,
                    merchant_reference=merchant_reference,
                    order_id=order_id,
                    amount=format_amount(charged, currency),
                    currency=currency,
                    gateway=gateway.name.value,
                ),
                asynchronous=False,
            )
        except DuplicateReference:
            logger.error(
                "Provider returned a reference that is already in use",
                order_id=order_id,
                reference=result.provider_reference,
                merchant_reference=merchant_reference,
                provider=gateway.name.value,
            )
            _release(merchant_reference)
            raise

    logger.info(
        "Payment initiated",
        order_id=order_id,
        reference=result.provider_reference,
        merchant_reference=merchant_reference,
        provider=gateway.name.value,
        amount=format_amount(charged, currency),
        currency=currency,
    )
    return {
        "reference": result.provider_reference,
        "merchant_reference": merchant_reference,
        "action_target": result.action_target,
        "provider": gateway.name.value,
        "amount": format_amount(charged, currency),
        "message": result.message,
    }


def _release(merchant_reference: str) -> None:
    with _reference_locks.hold(merchant_reference):
        current_domain.process(ReleasePaymentReference(reference=merchant_reference), asynchronous=False)
