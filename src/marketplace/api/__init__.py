"""Marketplace API package."""

from marketplace.api.errors import register_exception_handlers
from marketplace.api.routes import order_router, payment_router

__all__ = ["order_router", "payment_router", "register_exception_handlers"]
