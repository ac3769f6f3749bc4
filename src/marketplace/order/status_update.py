"""Privileged status updates: command and handler.

Moves an order along the fulfilment graph. Cancelling from any pre-delivery
state releases the order's stock.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.audit import audit
from marketplace.domain import marketplace
from marketplace.order.order import Order, OrderStatus
from marketplace.stock import release_order_stock

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Order")
class UpdateOrderStatus:
    order_id = Identifier(required=True)
    status = String(required=True, max_length=30)
    note = String(max_length=500)
    tracking_number = String(max_length=100)
    courier_service = String(max_length=100)
    updated_by = String(max_length=100, default="admin")


@marketplace.command_handler(part_of=Order)
class UpdateOrderStatusHandler:
    @handle(UpdateOrderStatus)
    def update_status(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(str(command.order_id))
        previous = order.status

        order.update_status(
            command.status,
            note=command.note,
            tracking_number=command.tracking_number,
            courier_service=command.courier_service,
        )
        restock = order.status == OrderStatus.CANCELLED.value and order.claim_stock_release()
        repo.add(order)

        if restock:
            release_order_stock(order)

        audit(order, "order_status_updated", actor=command.updated_by or "admin", previous=previous, status=order.status)
        logger.info(
            "order_status_updated",
            order_id=str(order.id),
            previous_status=previous,
            new_status=order.status,
        )
