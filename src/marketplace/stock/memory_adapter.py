"""In-memory product store for development and tests."""

from dataclasses import replace
from threading import Lock

from marketplace.stock.port import ProductSnapshot, ProductStore


class InMemoryProductStore(ProductStore):
    """Dictionary-backed store; one lock serialises every mutation."""

    def __init__(self) -> None:
        self._products: dict[str, ProductSnapshot] = {}
        self._lock = Lock()

    def add_product(
        self,
        product_id: str,
        name: str,
        price: float,
        stock: int,
        seller_id: str | None = "seller-001",
        is_active: bool = True,
        image_ref: str | None = None,
    ) -> ProductSnapshot:
        product = ProductSnapshot(
            id=product_id,
            name=name,
            price=price,
            seller_id=seller_id,
            stock=stock,
            is_active=is_active,
            image_ref=image_ref,
        )
        with self._lock:
            self._products[product_id] = product
        return product

    def get(self, product_id: str) -> ProductSnapshot | None:
        """Return the product regardless of its active flag."""
        return self._products.get(product_id)

    def find_active_by_id(self, product_id: str) -> ProductSnapshot | None:
        product = self._products.get(product_id)
        if product is None or not product.is_active:
            return None
        return product

    def atomic_decrement_stock(self, product_id: str, quantity: int) -> bool:
        with self._lock:
            product = self._products.get(product_id)
            if product is None or product.stock < quantity:
                return False
            self._products[product_id] = replace(product, stock=product.stock - quantity)
            return True

    def atomic_increment_stock(self, product_id: str, quantity: int) -> None:
        with self._lock:
            product = self._products.get(product_id)
            if product is not None:
                self._products[product_id] = replace(product, stock=product.stock + quantity)

    def increment_sales_count(self, product_id: str, delta: int) -> None:
        with self._lock:
            product = self._products.get(product_id)
            if product is not None:
                self._products[product_id] = replace(product, sales_count=max(product.sales_count + delta, 0))

    def clear(self) -> None:
        with self._lock:
            self._products.clear()
