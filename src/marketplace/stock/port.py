"""Product store port.

The marketplace does not own products; it reads them and adjusts their stock
through this narrow interface. Every stock mutation must be a single atomic
operation in the backing store (a conditional update, never read-then-write).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class ProductSnapshot:
    """Read-only view of a product as the order sees it."""

    id: str
    name: str
    price: float
    seller_id: str | None
    stock: int
    is_active: bool = True
    image_ref: str | None = None
    sales_count: int = 0


class ProductStore(ABC):
    @abstractmethod
    def find_active_by_id(self, product_id: str) -> ProductSnapshot | None:
        """Return the product if it exists and is active, else None."""
        ...

    @abstractmethod
    def atomic_decrement_stock(self, product_id: str, quantity: int) -> bool:
        """Decrement stock by ``quantity`` iff at least that much is available.

        Returns False (and changes nothing) when stock is insufficient.
        """
        ...

    @abstractmethod
    def atomic_increment_stock(self, product_id: str, quantity: int) -> None: ...

    @abstractmethod
    def increment_sales_count(self, product_id: str, delta: int) -> None: ...
