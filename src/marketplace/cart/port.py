"""Cart store port. The marketplace only ever empties a buyer's cart."""

from abc import ABC, abstractmethod


class CartStore(ABC):
    @abstractmethod
    def clear_for_user(self, buyer_id: str) -> None: ...
