"""FastAPI routes for the commerce engine: orders, inventory, payments, webhooks."""

import json

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from fastapi.responses import JSONResponse
from protean.utils.globals import current_domain

from commerce.api.schemas import (
    CancelOrderRequest,
    CreateOrderRequest,
    FulfillOrderRequest,
    GatewaysResponse,
    InitializeStockRequest,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    OrderIdResponse,
    OrderResponse,
    PaymentResponse,
    StockLevelResponse,
    TransitionOrderRequest,
)
from commerce.domain import commerce
from commerce.gateway import GatewayName, get_gateway
from commerce.inventory.adjustment import InitializeStock
from commerce.inventory.ledger import InventoryLedger
from commerce.order.creation import CreateOrder
from commerce.order.state_machine import OrderStateMachine, load_order
from commerce.payment.reference import find_payment
from commerce.payment.selection import available_gateways
from commerce.payment.service import initiate_payment as start_payment
from commerce.payment.verification import verify_payment as run_verification
from commerce.shared.errors import NotFound
from commerce.webhook.consumer import WebhookConsumer
from commerce.webhook.ingress import WebhookIngress


def _order_response(order) -> OrderResponse:
    return OrderResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        status=order.status,
        payment_status=order.payment_status,
        fulfillment_status=order.fulfillment_status,
        currency=order.currency,
        subtotal=order.subtotal,
        tax=order.tax,
        shipping=order.shipping,
        discount=order.discount,
        total=order.total,
        lines=[
            {
                "product_id": str(line.product_id),
                "variant_id": str(line.variant_id) if line.variant_id else None,
                "sku": line.sku,
                "title": line.title,
                "unit_price": line.unit_price,
                "quantity": line.quantity,
                "line_total": line.line_total,
            }
            for line in order.lines
        ],
        payment_reference=order.payment_reference,
        inventory_shortfall=json.loads(order.inventory_shortfall) if order.inventory_shortfall else [],
        tracking_number=order.tracking_number,
        carrier=order.carrier,
        cancellation_reason=order.cancellation_reason,
    )


def _payment_response(payment) -> PaymentResponse:
    return PaymentResponse(
        payment_id=str(payment.id),
        reference=payment.reference,
        merchant_reference=payment.merchant_reference,
        order_id=str(payment.order_id),
        gateway=payment.gateway,
        status=payment.status,
        amount=payment.amount.amount,
        currency=payment.amount.currency,
        refunded_total=payment.refunded_total,
        failure_reason=payment.failure_reason,
        metadata=payment.metadata_dict(),
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=OrderIdResponse)
async def create_order(body: CreateOrderRequest) -> OrderIdResponse:
    """Create a PENDING order from priced checkout data."""
    data = body.model_dump(mode="json")
    command = CreateOrder(
        store_id=data["store_id"],
        customer_id=data["customer_id"],
        currency=data["currency"],
        lines=json.dumps(data["lines"]),
        subtotal=data["subtotal"],
        tax=data["tax"],
        shipping=data["shipping"],
        discount=data["discount"],
        total=data["total"],
        shipping_address=json.dumps(data["shipping_address"]) if data["shipping_address"] else None,
        billing_address=json.dumps(data["billing_address"]) if data["billing_address"] else None,
    )
    order_id = current_domain.process(command, asynchronous=False)
    return OrderIdResponse(order_id=order_id)


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str) -> OrderResponse:
    return _order_response(load_order(order_id))


@order_router.post("/{order_id}/transition", response_model=OrderResponse)
async def transition_order(order_id: str, body: TransitionOrderRequest) -> OrderResponse:
    """Move an order through the transition table."""
    order = OrderStateMachine().transition(
        order_id,
        body.target_status,
        reason=body.reason,
        tracking_number=body.tracking_number,
        carrier=body.carrier,
    )
    return _order_response(order)


@order_router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(order_id: str, body: CancelOrderRequest) -> OrderResponse:
    return _order_response(OrderStateMachine().cancel(order_id, reason=body.reason))


@order_router.post("/{order_id}/fulfill", response_model=OrderResponse)
async def fulfill_order(order_id: str, body: FulfillOrderRequest) -> OrderResponse:
    order = OrderStateMachine().fulfill(order_id, tracking_number=body.tracking_number, carrier=body.carrier)
    return _order_response(order)


# ---------------------------------------------------------------------------
# Inventory Router
# ---------------------------------------------------------------------------
inventory_router = APIRouter(prefix="/inventory", tags=["inventory"])


@inventory_router.post("/{key}", response_model=StockLevelResponse)
async def initialize_stock(key: str, body: InitializeStockRequest) -> StockLevelResponse:
    """Start tracking stock for an inventory key, or reset its count."""
    on_hand = current_domain.process(InitializeStock(key=key, quantity=body.quantity, sku=body.sku), asynchronous=False)
    return StockLevelResponse(key=key, on_hand=on_hand)


@inventory_router.get("/{key}", response_model=StockLevelResponse)
async def get_stock_level(key: str) -> StockLevelResponse:
    on_hand = InventoryLedger().stock_level(key)
    if on_hand is None:
        raise NotFound("stock_item", key)
    return StockLevelResponse(key=key, on_hand=on_hand)


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("", status_code=201, response_model=InitiatePaymentResponse)
def initiate_payment(body: InitiatePaymentRequest) -> InitiatePaymentResponse:
    """Open a payment with the chosen provider.

    Plain ``def``: the provider call blocks, so FastAPI runs it in its
    threadpool and webhook acknowledgements are not held up.
    """
    result = start_payment(
        order_id=body.order_id,
        amount=body.amount,
        currency=body.currency,
        gateway_choice=body.gateway,
        customer_email=body.customer_email,
        customer_phone=body.customer_phone,
        customer_name=body.customer_name,
        reference=body.reference,
    )
    return InitiatePaymentResponse(**result)


@payment_router.get("/gateways", response_model=GatewaysResponse)
async def list_gateways(currency: str) -> GatewaysResponse:
    """Providers that may be offered at checkout for ``currency``."""
    return GatewaysResponse(
        currency=currency.upper(),
        gateways=[name.value for name in available_gateways(currency)],
    )


@payment_router.get("/{reference}", response_model=PaymentResponse)
async def get_payment(reference: str) -> PaymentResponse:
    payment = find_payment(reference)
    if payment is None:
        raise NotFound("payment", reference)
    return _payment_response(payment)


@payment_router.post("/{reference}/verify", response_model=PaymentResponse)
def verify_payment(reference: str) -> PaymentResponse:
    """Ask the provider for the payment's current status and reconcile it (threadpool, like ``initiate_payment``)."""
    return _payment_response(run_verification(reference))


# ---------------------------------------------------------------------------
# Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def process_receipt(receipt_id: str) -> None:
    """Background task: reconcile a receipt after the provider was acknowledged."""
    with commerce.domain_context():
        WebhookConsumer().process(receipt_id)


@webhook_router.post("/mpesa/timeout")
async def mpesa_timeout() -> JSONResponse:
    """M-Pesa queue-timeout notifications carry no outcome; acknowledge only."""
    return JSONResponse(content=get_gateway(GatewayName.MPESA).acknowledgement(None))


@webhook_router.post("/{provider}")
async def receive_webhook(provider: str, request: Request, background_tasks: BackgroundTasks) -> JSONResponse:
    """Record a provider notification and acknowledge it.

    The body is read as raw bytes; signatures are checked against exactly
    what the provider sent.
    """
    try:
        name = GatewayName(provider.lower())
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown payment provider: {provider}") from None

    raw_body = await request.body()
    ack = WebhookIngress().receive(name, raw_body, dict(request.headers))
    if ack.needs_processing:
        background_tasks.add_task(process_receipt, ack.receipt_id)
    return JSONResponse(status_code=200, content=get_gateway(name).acknowledgement(ack))
