"""Refund processing: command and handler.

A refund is only requested from the provider once the order's money has been
received. The order is updated only after the provider confirms, so a failed
provider call leaves it exactly as it was.
"""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, Identifier, String
from protean.utils.globals import current_domain

from marketplace.audit import audit
from marketplace.domain import marketplace
from marketplace.exceptions import GatewayError, IdempotentNoop
from marketplace.gateway import gateway_for_method, get_gateway
from marketplace.order.order import MONEY_TOLERANCE, Order

logger = structlog.get_logger(__name__)

DEFAULT_REFUND_REASON = "Customer requested refund"


@marketplace.command(part_of="Order")
class RequestRefund:
    order_id = Identifier(required=True)
    buyer_id = Identifier()  # scopes the lookup when a buyer asks
    amount = Float()  # defaults to the remaining refundable balance
    reason = String(max_length=500)
    requested_by = String(max_length=100)


@marketplace.command_handler(part_of=Order)
class RequestRefundHandler:
    @handle(RequestRefund)
    def request_refund(self, command):
        repo = current_domain.repository_for(Order)
        if command.buyer_id:
            order = repo.get_for_buyer(str(command.order_id), str(command.buyer_id))
        else:
            order = repo.get(str(command.order_id))

        if not order.can_accept_refund():
            raise ValidationError({"payment_status": ["Order is not paid"]})
        if not order.gateway_correlation_id:
            raise ValidationError({"gateway_correlation_id": ["Order has no payment reference to refund"]})

        remaining = order.remaining_refundable
        amount = command.amount if command.amount is not None else remaining
        if amount <= 0:
            raise ValidationError({"amount": ["Refund amount must be positive"]})
        if amount > remaining + MONEY_TOLERANCE:
            raise ValidationError({"amount": [f"Refund amount exceeds refundable balance of {remaining}"]})
        reason = command.reason or DEFAULT_REFUND_REASON

        gateway = get_gateway(order.gateway_name) if order.gateway_name else gateway_for_method(order.payment_method)
        refund_reference = f"{order.gateway_correlation_id}-{len(order.refunds) + 1}"
        try:
            confirmation = gateway.refund(
                order.gateway_correlation_id,
                amount,
                reason,
                refund_reference,
                payment_reference=order.gateway_payment_id,
            )
        except GatewayError as exc:
            logger.error(
                "refund_request_failed",
                order_id=str(order.id),
                gateway=gateway.name,
                amount=amount,
                detail=exc.detail,
            )
            raise

        try:
            order.record_refund(confirmation.refund_id, amount, reason=reason, source="refund")
        except IdempotentNoop:
            # Provider answered with a refund this order already holds
            logger.warning(
                "refund_already_recorded",
                order_id=str(order.id),
                gateway=gateway.name,
                refund_id=confirmation.refund_id,
            )
        else:
            repo.add(order)
            actor = command.requested_by or (f"buyer:{command.buyer_id}" if command.buyer_id else "admin")
            audit(order, "refund_recorded", actor=actor, refund_id=confirmation.refund_id, amount=amount)
            logger.info(
                "refund_processed",
                order_id=str(order.id),
                gateway=gateway.name,
                refund_id=confirmation.refund_id,
                amount=amount,
                payment_status=order.payment_status,
            )
        return {
            "order_id": str(order.id),
            "refund_id": confirmation.refund_id,
            "amount": amount,
            "refund_status": confirmation.provider_status,
            "payment_status": order.payment_status,
            "status": order.status,
            "synthetic": confirmation.synthetic,
        }
