"""Payment intent creation: command and handler.

Registers a placed order with the gateway that settles its payment method
and stores the provider reference on the order. The provider is called
before anything on the order changes.
"""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier
from protean.utils.globals import current_domain

from marketplace.audit import audit
from marketplace.domain import marketplace
from marketplace.exceptions import IdempotentNoop
from marketplace.gateway import gateway_for_method
from marketplace.order.order import Order, OrderStatus, PaymentStatus

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Order")
class CreatePaymentIntent:
    order_id = Identifier(required=True)
    buyer_id = Identifier(required=True)


@marketplace.command_handler(part_of=Order)
class CreatePaymentIntentHandler:
    @handle(CreatePaymentIntent)
    def create_intent(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get_for_buyer(str(command.order_id), str(command.buyer_id))

        if order.status == OrderStatus.CANCELLED.value:
            raise ValidationError({"status": ["Cannot pay for a cancelled order"]})
        if order.payment_status != PaymentStatus.PENDING.value:
            raise ValidationError({"payment_status": [f"Payment already {order.payment_status}"]})

        gateway = gateway_for_method(order.payment_method)
        intent = gateway.create_intent(order)

        try:
            order.attach_payment_intent(gateway.name, intent.correlation_id, synthetic=intent.synthetic)
        except IdempotentNoop:
            return intent

        repo.add(order)
        audit(order, "payment_intent_created", actor=str(command.buyer_id), gateway=gateway.name)
        logger.info(
            "payment_intent_created",
            order_id=str(order.id),
            gateway=gateway.name,
            correlation_id=intent.correlation_id,
            synthetic=intent.synthetic,
        )
        return intent
