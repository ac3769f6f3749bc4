"""Map marketplace exceptions to HTTP responses."""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.integrations.fastapi import register_exception_handlers as register_protean_handlers

from marketplace.exceptions import (
    GatewayError,
    InsufficientStockError,
    InvalidTransitionError,
    SignatureVerificationError,
)

logger = structlog.get_logger(__name__)


def _detail(exc: Exception):
    return getattr(exc, "messages", None) or str(exc)


def _responder(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"error": _detail(exc)})

    return handler


async def _gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
    logger.error(
        "gateway_error",
        path=request.url.path,
        gateway=exc.gateway,
        message=exc.message,
        detail=exc.detail,
    )
    return JSONResponse(status_code=500, content={"error": "Payment provider request failed"})


def register_exception_handlers(app: FastAPI) -> None:
    """Install Protean's default handlers, then the marketplace-specific ones.

    Handlers are resolved along the exception's MRO, so the subclasses below
    take precedence over the generic ValidationError mapping.
    """
    register_protean_handlers(app)
    app.add_exception_handler(ValidationError, _responder(400))
    app.add_exception_handler(SignatureVerificationError, _responder(400))
    app.add_exception_handler(ObjectNotFoundError, _responder(404))
    app.add_exception_handler(InsufficientStockError, _responder(409))
    app.add_exception_handler(InvalidTransitionError, _responder(409))
    app.add_exception_handler(GatewayError, _gateway_error)
