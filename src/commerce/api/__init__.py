"""Commerce engine API package."""

from commerce.api.errors import register_commerce_exception_handlers
from commerce.api.routes import inventory_router, order_router, payment_router, webhook_router

__all__ = [
    "inventory_router",
    "order_router",
    "payment_router",
    "register_commerce_exception_handlers",
    "webhook_router",
]
