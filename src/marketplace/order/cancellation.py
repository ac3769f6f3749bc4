"""Buyer cancellation: command and handler."""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.audit import audit
from marketplace.domain import marketplace
from marketplace.order.order import Order
from marketplace.stock import release_order_stock

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    buyer_id = Identifier(required=True)
    reason = String(max_length=500)


@marketplace.command_handler(part_of=Order)
class CancelOrderHandler:
    @handle(CancelOrder)
    def cancel_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get_for_buyer(str(command.order_id), str(command.buyer_id))

        order.cancel_by_buyer(command.reason)
        restock = order.claim_stock_release()
        repo.add(order)

        if restock:
            release_order_stock(order)
        audit(order, "order_cancelled", actor=str(command.buyer_id), reason=order.cancellation_reason)
        logger.info("order_cancelled", order_id=str(order.id), order_number=order.order_number, by="buyer")
