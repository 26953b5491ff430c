"""Commerce engine FastAPI application.

Processes order, inventory and payment commands synchronously over HTTP and
accepts provider webhooks. Every request runs inside the commerce domain
context.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers

from commerce.config import get_settings
from commerce.domain import commerce
from commerce.utils.logging import add_context, clear_context, configure_logging

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# Each uvicorn worker process initializes its own copy. State is shared
# through the configured database and event store (see domain.toml); in-process
# locks only serialize work within one worker.
commerce.init()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(level=settings.log_level, format_type=settings.log_format)
    yield


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Commerce Engine API",
    description="Order lifecycle and payment reconciliation",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the commerce domain context for each request."""
    clear_context()
    add_context(method=request.method, path=request.url.path)
    with commerce.domain_context():
        response = await call_next(request)
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from commerce.api import (  # noqa: E402
    inventory_router,
    order_router,
    payment_router,
    register_commerce_exception_handlers,
    webhook_router,
)

app.include_router(order_router)
app.include_router(inventory_router)
app.include_router(payment_router)
app.include_router(webhook_router)

register_exception_handlers(app)
register_commerce_exception_handlers(app)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(
        content={
            "status": "ok",
            "domain": commerce.name,
            "environment": get_settings().environment,
        }
    )
