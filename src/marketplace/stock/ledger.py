"""Stock ledger: reserve and restore inventory for an order.

A reservation is a sequence of atomic conditional decrements, one per order
line. If any line cannot be covered, lines already decremented for the same
request are put back before ``InsufficientStockError`` is raised, so a failed
checkout never leaks stock.

The ledger keeps no state of its own. Releasing an order's stock at most once
is guarded by ``Order.stock_released_at``, persisted with the order.
"""

from collections.abc import Iterable

import structlog

from marketplace.exceptions import InsufficientStockError
from marketplace.stock.port import ProductStore

logger = structlog.get_logger(__name__)


class StockLedger:
    def __init__(self, store: ProductStore) -> None:
        self.store = store

    def reserve(self, order_number: str, lines: Iterable[tuple[str, int]]) -> None:
        """Decrement stock for every ``(product_id, quantity)`` line, or none of them."""
        reserved: list[tuple[str, int]] = []
        for product_id, quantity in lines:
            if self.store.atomic_decrement_stock(product_id, quantity):
                reserved.append((product_id, quantity))
                continue

            for done_id, done_qty in reserved:
                self.store.atomic_increment_stock(done_id, done_qty)
            logger.info(
                "stock_reservation_failed",
                order_number=order_number,
                product_id=product_id,
                quantity=quantity,
                rolled_back=len(reserved),
            )
            raise InsufficientStockError({"items": [f"Insufficient stock for product {product_id}"]})

        for product_id, quantity in reserved:
            self.store.increment_sales_count(product_id, quantity)

        logger.info("stock_reserved", order_number=order_number, lines=len(reserved))

    def release(self, order_number: str, lines: Iterable[tuple[str, int]]) -> None:
        """Put back stock for an order."""
        count = 0
        for product_id, quantity in lines:
            self.store.atomic_increment_stock(product_id, quantity)
            self.store.increment_sales_count(product_id, -quantity)
            count += 1

        logger.info("stock_released", order_number=order_number, lines=count)
