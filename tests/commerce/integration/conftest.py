import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from protean.integrations.fastapi import register_exception_handlers

from commerce.api import (
    inventory_router,
    order_router,
    payment_router,
    register_commerce_exception_handlers,
    webhook_router,
)
from commerce.domain import commerce


@pytest.fixture()
def client():
    app = FastAPI()

    @app.middleware("http")
    async def domain_context_middleware(request: Request, call_next):
        with commerce.domain_context():
            return await call_next(request)

    app.include_router(order_router)
    app.include_router(inventory_router)
    app.include_router(payment_router)
    app.include_router(webhook_router)
    register_exception_handlers(app)
    register_commerce_exception_handlers(app)
    return TestClient(app)


@pytest.fixture()
def order_payload():
    return {
        "store_id": "store-001",
        "customer_id": "cust-001",
        "currency": "KES",
        "lines": [{"product_id": "prod-O1", "sku": "TSHIRT-M", "title": "T-shirt (M)", "unit_price": "500.00", "quantity": 2}],
    }
