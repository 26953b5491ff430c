"""Pydantic request/response schemas for the commerce API.

These are external contracts, kept separate from the internal Protean
commands. Money crosses the wire as decimal strings.
"""

from decimal import Decimal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class AddressSchema(BaseModel):
    name: str | None = None
    line1: str
    line2: str | None = None
    city: str
    region: str | None = None
    postal_code: str | None = None
    country: str
    phone: str | None = None


class OrderLineSchema(BaseModel):
    product_id: str
    variant_id: str | None = None
    sku: str | None = None
    title: str | None = None
    unit_price: Decimal = Field(ge=0)
    quantity: int = Field(ge=1)
    line_total: Decimal | None = None


# ---------------------------------------------------------------------------
# Order Schemas
# ---------------------------------------------------------------------------
class CreateOrderRequest(BaseModel):
    store_id: str
    customer_id: str | None = None
    currency: str = Field(min_length=3, max_length=3)
    lines: list[OrderLineSchema] = Field(min_length=1)
    subtotal: Decimal | None = None
    tax: Decimal = Decimal("0")
    shipping: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    total: Decimal | None = None
    shipping_address: AddressSchema | None = None
    billing_address: AddressSchema | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "store_id": "store-001",
                    "customer_id": "cust-001",
                    "currency": "KES",
                    "lines": [
                        {
                            "product_id": "prod-001",
                            "sku": "TSHIRT-M",
                            "title": "T-shirt (M)",
                            "unit_price": "1500.00",
                            "quantity": 2,
                        }
                    ],
                    "shipping": "200.00",
                }
            ]
        }
    }


class TransitionOrderRequest(BaseModel):
    target_status: str
    reason: str | None = None
    tracking_number: str | None = None
    carrier: str | None = None


class CancelOrderRequest(BaseModel):
    reason: str | None = None


class FulfillOrderRequest(BaseModel):
    tracking_number: str | None = None
    carrier: str | None = None


class OrderIdResponse(BaseModel):
    order_id: str


class OrderLineResponse(BaseModel):
    product_id: str
    variant_id: str | None = None
    sku: str | None = None
    title: str | None = None
    unit_price: str
    quantity: int
    line_total: str


class OrderResponse(BaseModel):
    order_id: str
    order_number: str | None = None
    status: str
    payment_status: str | None = None
    fulfillment_status: str | None = None
    currency: str
    subtotal: str
    tax: str
    shipping: str
    discount: str
    total: str
    lines: list[OrderLineResponse]
    payment_reference: str | None = None
    inventory_shortfall: list[dict] = Field(default_factory=list)
    tracking_number: str | None = None
    carrier: str | None = None
    cancellation_reason: str | None = None


# ---------------------------------------------------------------------------
# Inventory Schemas
# ---------------------------------------------------------------------------
class InitializeStockRequest(BaseModel):
    quantity: int = Field(ge=0)
    sku: str | None = None


class StockLevelResponse(BaseModel):
    key: str
    on_hand: int


# ---------------------------------------------------------------------------
# Payment Schemas
# ---------------------------------------------------------------------------
class InitiatePaymentRequest(BaseModel):
    order_id: str
    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    gateway: str
    customer_email: str | None = None
    customer_phone: str | None = None
    customer_name: str | None = None
    reference: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_id": "7f1c0e4e-2f1b-4a55-9d0a-7c1c1f1f5b11",
                    "amount": "3200.00",
                    "currency": "KES",
                    "gateway": "mpesa",
                    "customer_phone": "0712345678",
                }
            ]
        }
    }


class InitiatePaymentResponse(BaseModel):
    reference: str
    merchant_reference: str
    action_target: str
    provider: str
    amount: str
    message: str | None = None


class GatewaysResponse(BaseModel):
    currency: str
    gateways: list[str]


class PaymentResponse(BaseModel):
    payment_id: str
    reference: str
    merchant_reference: str | None = None
    order_id: str
    gateway: str
    status: str
    amount: str
    currency: str
    refunded_total: str | None = None
    failure_reason: str | None = None
    metadata: dict = Field(default_factory=dict)
