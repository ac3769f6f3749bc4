"""Gateway webhook reconciliation: command and handler.

The API layer authenticates and translates a provider callback into a
``ReconcilePaymentEvent``; this handler finds the order strictly by the
provider reference stored on it and applies the canonical event. Duplicate
and out-of-order deliveries are acknowledged without changing anything.
"""

import structlog
from protean import handle
from protean.fields import Float, String
from protean.utils.globals import current_domain

from marketplace.audit import audit
from marketplace.domain import marketplace
from marketplace.exceptions import IdempotentNoop, NotFoundError
from marketplace.gateway.port import PaymentEventType
from marketplace.order.order import MONEY_TOLERANCE, Order, PaymentStatus
from marketplace.payment.reconciliation import reconcile_payment_status

logger = structlog.get_logger(__name__)

APPLIED = "applied"
NOOP = "noop"
IGNORED = "ignored"

_EVENT_STATUS = {
    PaymentEventType.AUTHORIZED: PaymentStatus.PROCESSING,
    PaymentEventType.CAPTURED: PaymentStatus.PAID,
    PaymentEventType.FAILED: PaymentStatus.FAILED,
}


def _already_recorded(order, amount) -> bool:
    """True when recorded refunds already cover a refund event that carries no refund id."""
    if not order.refunds:
        return False
    if amount is None:
        return True
    return (order.refund_amount or 0.0) + MONEY_TOLERANCE >= amount


@marketplace.command(part_of="Order")
class ReconcilePaymentEvent:
    gateway = String(required=True, max_length=20)
    correlation_id = String(required=True, max_length=255)
    event_type = String(max_length=50)  # PaymentEventType value, empty when unsupported
    provider_event = String(max_length=100)
    provider_status = String(max_length=50)
    provider_payment_id = String(max_length=255)
    amount = Float()
    refund_id = String(max_length=255)
    reason = String(max_length=500)
    source = String(max_length=20, default="webhook")


@marketplace.command_handler(part_of=Order)
class ReconcilePaymentEventHandler:
    @handle(ReconcilePaymentEvent)
    def reconcile(self, command):
        log = logger.bind(
            gateway=command.gateway,
            correlation_id=command.correlation_id,
            provider_event=command.provider_event,
            source=command.source,
        )

        repo = current_domain.repository_for(Order)
        order = repo.find_by_correlation_id(command.correlation_id)
        if order is None or (order.gateway_name and order.gateway_name != command.gateway):
            log.warning("payment_event_for_unknown_order")
            raise NotFoundError(f"No order found for payment reference {command.correlation_id}")

        if not command.event_type:
            log.info("payment_event_unsupported", provider_status=command.provider_status)
            return IGNORED

        event_type = PaymentEventType(command.event_type)
        if event_type == PaymentEventType.REFUND_PROCESSED:
            return self._apply_refund(order, command, log)

        changed = reconcile_payment_status(
            order,
            _EVENT_STATUS[event_type],
            source=command.source,
            actor=f"gateway:{command.gateway}",
            provider_payment_id=command.provider_payment_id,
            reason=command.reason,
        )
        return APPLIED if changed else NOOP

    def _apply_refund(self, order, command, log):
        captured_now = False
        if order.payment_status in (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value):
            # The refund overtook the capture it reverses
            log.warning("refund_event_before_capture", payment_status=order.payment_status)
            captured_now = reconcile_payment_status(
                order,
                PaymentStatus.PAID,
                source=command.source,
                actor=f"gateway:{command.gateway}",
                provider_payment_id=command.provider_payment_id,
            )
        result_if_unchanged = APPLIED if captured_now else NOOP

        if not order.can_accept_refund():
            log.warning("refund_event_ignored", payment_status=order.payment_status)
            return result_if_unchanged

        refund_id = command.refund_id
        if not refund_id:
            if _already_recorded(order, command.amount):
                log.info("refund_event_already_recorded", refund_amount=order.refund_amount, amount=command.amount)
                return result_if_unchanged
            refund_id = f"{order.gateway_correlation_id}-event-{len(order.refunds) + 1}"

        amount = command.amount or order.remaining_refundable
        amount = min(amount, order.remaining_refundable)
        if amount <= 0:
            log.info("refund_event_nothing_left", refund_amount=order.refund_amount)
            return result_if_unchanged

        try:
            order.record_refund(refund_id, amount, reason=command.reason, source=command.source)
        except IdempotentNoop:
            log.info("refund_event_duplicate", refund_id=refund_id)
            return result_if_unchanged

        current_domain.repository_for(Order).add(order)
        audit(
            order,
            "refund_recorded",
            actor=f"gateway:{command.gateway}",
            refund_id=refund_id,
            amount=amount,
        )
        log.info("refund_event_applied", refund_id=refund_id, amount=amount, payment_status=order.payment_status)
        return APPLIED
