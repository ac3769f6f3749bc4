"""Client-driven payment verification: command and handler.

Asks the owning gateway for the current payment state and applies it with
the same transitions a webhook would.
"""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier
from protean.utils.globals import current_domain

from marketplace.domain import marketplace
from marketplace.gateway import get_gateway
from marketplace.order.order import Order
from marketplace.payment.reconciliation import reconcile_payment_status

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Order")
class VerifyPayment:
    order_id = Identifier(required=True)
    buyer_id = Identifier(required=True)


@marketplace.command_handler(part_of=Order)
class VerifyPaymentHandler:
    @handle(VerifyPayment)
    def verify_payment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get_for_buyer(str(command.order_id), str(command.buyer_id))

        if not order.gateway_correlation_id:
            raise ValidationError({"gateway_correlation_id": ["Payment has not been initiated for this order"]})

        gateway = get_gateway(order.gateway_name)
        result = gateway.verify(order.gateway_correlation_id)
        logger.info(
            "payment_verified",
            order_id=str(order.id),
            gateway=gateway.name,
            provider_status=result.provider_status,
            synthetic=result.synthetic,
        )

        changed = reconcile_payment_status(
            order,
            result.status,
            source="verify",
            actor=f"buyer:{command.buyer_id}",
            provider_payment_id=result.provider_payment_id,
        )
        return {
            "order_id": str(order.id),
            "payment_status": order.payment_status,
            "status": order.status,
            "provider_status": result.provider_status,
            "updated": changed,
            "synthetic": result.synthetic,
        }
