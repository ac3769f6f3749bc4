"""Apply a canonical payment outcome to an order.

Shared by client verification, provider webhooks and browser callbacks so
all three move an order through exactly the same idempotent transitions.
"""

import structlog
from protean.utils.globals import current_domain

from marketplace.audit import audit
from marketplace.exceptions import IdempotentNoop
from marketplace.order.order import Order, OrderStatus, PaymentStatus
from marketplace.stock import release_order_stock

logger = structlog.get_logger(__name__)


def reconcile_payment_status(
    order: Order,
    status: PaymentStatus | None,
    source: str,
    actor: str,
    provider_payment_id: str | None = None,
    reason: str | None = None,
) -> bool:
    """Move ``order`` towards ``status``. Returns False when nothing changed."""
    log = logger.bind(
        order_id=str(order.id),
        order_number=order.order_number,
        source=source,
        target=status.value if status else None,
        payment_status=order.payment_status,
    )
    previous_status = order.status

    try:
        if status == PaymentStatus.PAID:
            if order.payment_status == PaymentStatus.FAILED.value:
                log.warning("capture_after_failure_needs_review")
            order.mark_paid(source, provider_payment_id)
            if previous_status == OrderStatus.CANCELLED.value:
                log.warning("capture_on_cancelled_order_needs_refund")
        elif status == PaymentStatus.PROCESSING:
            order.mark_payment_processing(source)
        elif status == PaymentStatus.FAILED:
            order.mark_payment_failed(source, reason or "Payment failed")
        else:
            log.info("payment_status_not_actionable")
            return False
    except IdempotentNoop as exc:
        log.info("payment_transition_noop", detail=exc.message)
        return False

    restock = order.status == OrderStatus.CANCELLED.value and order.claim_stock_release()
    current_domain.repository_for(Order).add(order)

    if restock:
        release_order_stock(order)

    audit(
        order,
        f"payment_{order.payment_status}",
        actor=actor,
        source=source,
        status=order.status,
    )
    log.info("payment_status_reconciled", new_payment_status=order.payment_status, status=order.status)
    return True
