"""Domain events for the Order aggregate.

Raised by the aggregate and persisted alongside it; each one records a
single fact about an order's lifecycle or its money.
"""

from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String

from marketplace.domain import marketplace


@marketplace.event(part_of="Order")
class OrderPlaced:
    """A buyer checked out and stock was reserved for every line."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    buyer_id = Identifier(required=True)
    payment_method = String(required=True)
    item_count = Integer(required=True)
    total = Float(required=True)
    currency = String(default="INR")
    placed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderCancelled:
    """The order moved to cancelled; its stock is due back on the shelf."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    previous_status = String(required=True)
    reason = String()
    cancelled_by = String(required=True)  # buyer, admin, payment_gateway
    cancelled_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class OrderStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    note = String()
    changed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class PaymentIntentAttached:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    gateway = String(required=True)
    correlation_id = String(required=True)
    synthetic = Boolean(default=False)


@marketplace.event(part_of="Order")
class PaymentStatusChanged:
    """The order's payment status moved forward (processing, paid, failed)."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    previous_payment_status = String(required=True)
    new_payment_status = String(required=True)
    source = String()  # webhook, verify, callback, delivery
    changed_at = DateTime(required=True)


@marketplace.event(part_of="Order")
class RefundRecorded:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    gateway_refund_id = String(required=True)
    amount = Float(required=True)
    total_refunded = Float(required=True)
    fully_refunded = Boolean(default=False)
    processed_at = DateTime(required=True)
