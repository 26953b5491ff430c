"""HTTP mapping for commerce errors that protean's handlers do not cover.

protean's ``register_exception_handlers`` already answers ValidationError with
400 and ObjectNotFoundError with 404. These handlers are more specific and
take precedence for their subclasses.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from commerce.shared.errors import GatewayError, InvalidTransition

logger = structlog.get_logger(__name__)


def register_commerce_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(InvalidTransition)
    async def _invalid_transition(request: Request, exc: InvalidTransition) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={
                "error": exc.messages,
                "current": exc.current,
                "target": exc.target,
            },
        )

    @app.exception_handler(GatewayError)
    async def _gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        logger.error("Payment provider call failed", provider=exc.provider, error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=502,
            content={"error": str(exc), "provider": exc.provider},
        )
