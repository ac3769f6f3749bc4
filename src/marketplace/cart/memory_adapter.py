"""In-memory cart store for development and tests."""

from marketplace.cart.port import CartStore


class InMemoryCartStore(CartStore):
    def __init__(self) -> None:
        self.carts: dict[str, list[dict]] = {}
        self.fail_on_clear = False

    def put(self, buyer_id: str, items: list[dict]) -> None:
        self.carts[buyer_id] = list(items)

    def items_for(self, buyer_id: str) -> list[dict]:
        return self.carts.get(buyer_id, [])

    def clear_for_user(self, buyer_id: str) -> None:
        if self.fail_on_clear:
            raise ConnectionError("cart store unavailable")
        self.carts[buyer_id] = []
