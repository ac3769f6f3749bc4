"""Order repository with the lookups the lifecycle and reconciliation need."""

from marketplace.domain import marketplace
from marketplace.exceptions import NotFoundError
from marketplace.order.order import Order


@marketplace.repository(part_of=Order)
class OrderRepository:
    def find_by_order_number(self, order_number: str) -> Order | None:
        results = self._dao.query.filter(order_number=order_number).all().items
        return results[0] if results else None

    def find_by_correlation_id(self, correlation_id: str) -> Order | None:
        if not correlation_id:
            return None
        results = self._dao.query.filter(gateway_correlation_id=correlation_id).all().items
        return results[0] if results else None

    def get_for_buyer(self, order_id: str, buyer_id: str) -> Order:
        """Fetch an order owned by ``buyer_id``; other buyers' orders do not exist."""
        results = self._dao.query.filter(id=order_id, buyer_id=buyer_id).all().items
        if not results:
            raise NotFoundError("Order not found")
        return results[0]

    def list_for_buyer(self, buyer_id: str, page: int = 1, limit: int = 10, status: str | None = None):
        """Newest-first page of a buyer's orders. Returns ``(orders, total)``."""
        criteria = {"buyer_id": buyer_id}
        if status:
            criteria["status"] = status
        page = max(page, 1)
        result = (
            self._dao.query.filter(**criteria)
            .order_by("-created_at")
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return result.items, result.total
