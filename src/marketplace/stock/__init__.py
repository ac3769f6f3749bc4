"""Product store and stock ledger wiring.

Provides get_product_store() / set_product_store() and get_stock_ledger() so
command handlers and tests share one ledger over one store.
"""

import os

from marketplace.stock.ledger import StockLedger
from marketplace.stock.port import ProductStore

_product_store: ProductStore | None = None
_stock_ledger: StockLedger | None = None


def get_product_store() -> ProductStore:
    """Return the configured product store. Defaults to the in-memory store."""
    global _product_store
    if _product_store is None:
        adapter = os.environ.get("PRODUCT_STORE_ADAPTER", "memory")
        if adapter == "memory":
            from marketplace.stock.memory_adapter import InMemoryProductStore

            _product_store = InMemoryProductStore()
        else:
            raise ValueError(f"Unknown product store adapter: {adapter}")
    return _product_store


def set_product_store(store: ProductStore) -> None:
    """Swap the product store; the ledger is rebuilt over the new store."""
    global _product_store, _stock_ledger
    _product_store = store
    _stock_ledger = None


def get_stock_ledger() -> StockLedger:
    global _stock_ledger
    if _stock_ledger is None:
        _stock_ledger = StockLedger(get_product_store())
    return _stock_ledger


def reset_stock() -> None:
    """Drop the store and ledger singletons (useful for testing)."""
    global _product_store, _stock_ledger
    _product_store = None
    _stock_ledger = None


def release_order_stock(order) -> None:
    """Return an order's stock to the shelf.

    Call only after persisting an order whose ``claim_stock_release()`` returned True.
    """
    get_stock_ledger().release(order.order_number, order.stock_lines())
