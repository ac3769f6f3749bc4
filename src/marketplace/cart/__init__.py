"""Cart store wiring and the fire-and-forget clear used after checkout."""

import structlog

from marketplace.cart.memory_adapter import InMemoryCartStore
from marketplace.cart.port import CartStore

logger = structlog.get_logger(__name__)

_cart_store: CartStore | None = None


def get_cart_store() -> CartStore:
    global _cart_store
    if _cart_store is None:
        _cart_store = InMemoryCartStore()
    return _cart_store


def set_cart_store(store: CartStore) -> None:
    global _cart_store
    _cart_store = store


def reset_cart_store() -> None:
    global _cart_store
    _cart_store = None


def clear_cart_quietly(buyer_id: str) -> None:
    """Empty the buyer's cart. Failures are logged and never propagate."""
    try:
        get_cart_store().clear_for_user(buyer_id)
    except Exception as exc:
        logger.warning("cart_clear_failed", buyer_id=buyer_id, error=str(exc))
