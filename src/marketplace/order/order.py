"""Order aggregate: the durable record of a checkout and everything after it.

Two independent status axes live on an order:

Fulfilment (driven by buyers and admins, plus a few payment-driven moves):
    placed → confirmed → processing → packed → shipped → out_for_delivery → delivered
    any pre-delivery state → cancelled
    delivered → returned → refunded

Payment (driven by gateways; forward-only, idempotent):
    pending → processing → paid | failed
    paid → partially_refunded → refunded

Payment-driven fulfilment moves:
    capture on a placed order        → confirmed
    failure on a cancellable order   → cancelled
    refund reaching the order total  → refunded
"""

from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    ValueObject,
)

from marketplace.domain import marketplace
from marketplace.exceptions import IdempotentNoop, InvalidTransitionError
from marketplace.order.events import (
    OrderCancelled,
    OrderPlaced,
    OrderStatusChanged,
    PaymentIntentAttached,
    PaymentStatusChanged,
    RefundRecorded,
)

MONEY_TOLERANCE = 0.01


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PLACED = "placed"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    PACKED = "packed"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"
    REFUNDED = "refunded"


class PaymentStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


class PaymentMethod(Enum):
    COD = "cod"
    ZOHO_CARD = "zoho_card"
    ZOHO_UPI = "zoho_upi"
    ZOHO_NETBANKING = "zoho_netbanking"
    ZOHO_WALLET = "zoho_wallet"
    PAYTM = "paytm"
    PAYTM_UPI = "paytm_upi"
    PAYTM_CARD = "paytm_card"
    PAYTM_NETBANKING = "paytm_netbanking"
    PAYTM_WALLET = "paytm_wallet"


class AddressType(Enum):
    HOME = "home"
    OFFICE = "office"
    OTHER = "other"


# Fulfilment transitions available to the privileged status-update path
_VALID_TRANSITIONS = {
    OrderStatus.PLACED: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.PACKED, OrderStatus.CANCELLED},
    OrderStatus.PACKED: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED},
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: {OrderStatus.RETURNED},
    OrderStatus.RETURNED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REFUNDED: set(),  # Terminal
}

# States a buyer may cancel from
_BUYER_CANCELLABLE_STATES = {OrderStatus.PLACED, OrderStatus.CONFIRMED}

# States with stock still committed to the order and nothing delivered yet
_PRE_DELIVERY_STATES = {
    OrderStatus.PLACED,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.PACKED,
    OrderStatus.SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY,
}

_MONEY_RECEIVED_STATES = {
    PaymentStatus.PAID,
    PaymentStatus.PARTIALLY_REFUNDED,
    PaymentStatus.REFUNDED,
}


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@marketplace.value_object(part_of="Order")
class Address:
    """Shipping or billing address captured at checkout; never edited afterwards."""

    full_name = String(required=True, max_length=100)
    phone = String(required=True, max_length=20)
    email = String(max_length=254)
    address_line1 = String(required=True, max_length=255)
    address_line2 = String(max_length=255)
    city = String(required=True, max_length=100)
    state = String(required=True, max_length=100)
    zip_code = String(required=True, max_length=10)
    country = String(max_length=100, default="India")
    landmark = String(max_length=255)
    address_type = String(choices=AddressType, default=AddressType.HOME.value)


@marketplace.value_object(part_of="Order")
class OrderPricing:
    """Amounts locked at checkout. ``total`` is computed once and never recomputed."""

    subtotal = Float(default=0.0, min_value=0.0)
    shipping_cost = Float(default=0.0, min_value=0.0)
    tax = Float(default=0.0, min_value=0.0)
    total = Float(default=0.0, min_value=0.0)
    currency = String(max_length=3, default="INR")


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@marketplace.entity(part_of="Order")
class OrderItem:
    """Snapshot of a product line as it was when the order was placed."""

    product_id = Identifier(required=True)
    seller_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    unit_price = Float(required=True, min_value=0.0)
    quantity = Integer(required=True, min_value=1, max_value=10)
    image_ref = String(max_length=500)


@marketplace.entity(part_of="Order")
class StatusEntry:
    status = String(required=True, max_length=30)
    note = String(max_length=500)
    timestamp = DateTime(required=True)


@marketplace.entity(part_of="Order")
class RefundRecord:
    gateway_refund_id = String(required=True, max_length=255)
    amount = Float(required=True, min_value=0.0)
    reason = String(max_length=500)
    processed_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@marketplace.aggregate
class Order:
    order_number = String(required=True, max_length=40, unique=True)
    buyer_id = Identifier(required=True)
    items = HasMany(OrderItem)
    pricing = ValueObject(OrderPricing)
    shipping_address = ValueObject(Address)
    billing_address = ValueObject(Address)

    payment_method = String(required=True, choices=PaymentMethod)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    gateway_name = String(max_length=20)
    gateway_correlation_id = String(max_length=255)
    gateway_payment_id = String(max_length=255)
    paid_at = DateTime()

    status = String(choices=OrderStatus, default=OrderStatus.PLACED.value)
    status_history = HasMany(StatusEntry)
    cancellation_reason = String(max_length=500)
    cancelled_at = DateTime()
    delivered_at = DateTime()
    tracking_number = String(max_length=100)
    courier_service = String(max_length=100)

    refunds = HasMany(RefundRecord)
    refund_amount = Float(default=0.0)
    refund_reason = String(max_length=500)
    refunded_at = DateTime()
    stock_released_at = DateTime()

    notes = String(max_length=500)
    is_gift = Boolean(default=False)
    gift_message = String(max_length=200)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def total_must_equal_sum_of_components(self):
        if self.pricing is None:
            return
        expected = self.pricing.subtotal + self.pricing.shipping_cost + self.pricing.tax
        if abs(self.pricing.total - expected) > MONEY_TOLERANCE:
            raise ValidationError({"pricing": ["Total must equal subtotal + shipping + tax"]})

    @invariant.post
    def received_payment_must_have_paid_at(self):
        if self.payment_status in {s.value for s in _MONEY_RECEIVED_STATES} and self.paid_at is None:
            raise ValidationError({"paid_at": ["A paid order must record when it was paid"]})

    @invariant.post
    def refunds_cannot_exceed_total(self):
        if self.pricing is not None and (self.refund_amount or 0.0) > self.pricing.total + MONEY_TOLERANCE:
            raise ValidationError({"refund_amount": ["Refunded amount cannot exceed the order total"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        order_number,
        buyer_id,
        items_data,
        pricing,
        shipping_address,
        payment_method,
        gateway_name,
        billing_address=None,
        notes=None,
        is_gift=False,
        gift_message=None,
    ):
        """Build a freshly placed order.

        Args:
            items_data: list of dicts with product_id, seller_id, name,
                        unit_price, quantity and optionally image_ref.
            pricing: dict as returned by ``compute_pricing``.
            shipping_address / billing_address: address dicts.
        """
        now = datetime.now(UTC)
        order = cls(
            order_number=order_number,
            buyer_id=buyer_id,
            items=[OrderItem(**item) for item in items_data],
            pricing=OrderPricing(**pricing),
            shipping_address=Address(**shipping_address),
            billing_address=Address(**billing_address) if billing_address else None,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING.value,
            gateway_name=gateway_name,
            status=OrderStatus.PLACED.value,
            status_history=[
                StatusEntry(
                    status=OrderStatus.PLACED.value,
                    note="Order placed successfully",
                    timestamp=now,
                )
            ],
            notes=notes,
            is_gift=bool(is_gift),
            gift_message=gift_message if is_gift else None,
            created_at=now,
            updated_at=now,
        )
        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order_number,
                buyer_id=str(buyer_id),
                payment_method=payment_method,
                item_count=len(items_data),
                total=order.pricing.total,
                currency=order.pricing.currency,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @property
    def is_cancellable(self) -> bool:
        """True while the order has not been delivered, cancelled or returned."""
        return OrderStatus(self.status) in _PRE_DELIVERY_STATES

    @property
    def remaining_refundable(self) -> float:
        return round(self.pricing.total - (self.refund_amount or 0.0), 2)

    def stock_lines(self) -> list[tuple[str, int]]:
        return [(str(item.product_id), item.quantity) for item in self.items]

    def claim_stock_release(self) -> bool:
        """Mark the order's stock as returned. False if that was already done."""
        if self.stock_released_at is not None:
            return False
        self.stock_released_at = datetime.now(UTC)
        return True

    def has_refund(self, gateway_refund_id) -> bool:
        return any(r.gateway_refund_id == gateway_refund_id for r in self.refunds)

    def _append_history(self, status, note, timestamp):
        self.add_status_history(StatusEntry(status=status, note=note, timestamp=timestamp))

    def _assert_can_transition(self, target_status: OrderStatus) -> None:
        current = OrderStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransitionError(
                {"status": [f"Cannot transition from {current.value} to {target_status.value}"]}
            )

    def _set_payment_status(self, target: PaymentStatus, source: str, now) -> None:
        previous = self.payment_status
        self.payment_status = target.value
        self.updated_at = now
        self.raise_(
            PaymentStatusChanged(
                order_id=str(self.id),
                order_number=self.order_number,
                previous_payment_status=previous,
                new_payment_status=target.value,
                source=source,
                changed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Fulfilment
    # -------------------------------------------------------------------
    def cancel_by_buyer(self, reason=None):
        """Buyer-initiated cancellation, only before processing starts."""
        current = OrderStatus(self.status)
        if current not in _BUYER_CANCELLABLE_STATES:
            raise InvalidTransitionError({"status": [f"Order cannot be cancelled in {current.value} status"]})
        self._mark_cancelled(reason or "Cancelled by customer", cancelled_by="buyer")

    def update_status(self, new_status, note=None, tracking_number=None, courier_service=None):
        """Privileged status change along the fulfilment graph."""
        try:
            target = OrderStatus(new_status)
        except ValueError:
            raise ValidationError({"status": [f"Invalid order status: {new_status}"]}) from None
        self._assert_can_transition(target)

        if target == OrderStatus.CANCELLED:
            self._mark_cancelled(note or "Cancelled by admin", cancelled_by="admin")
            return

        now = datetime.now(UTC)
        previous = self.status
        with atomic_change(self):
            self.status = target.value
            self.updated_at = now
            if tracking_number:
                self.tracking_number = tracking_number
            if courier_service:
                self.courier_service = courier_service
            if target == OrderStatus.DELIVERED:
                self.delivered_at = now
            self._append_history(target.value, note or f"Order status updated to {target.value}", now)

            # Cash collected at the door
            if (
                target == OrderStatus.DELIVERED
                and self.payment_method == PaymentMethod.COD.value
                and self.payment_status == PaymentStatus.PENDING.value
            ):
                self.paid_at = now
                self._set_payment_status(PaymentStatus.PAID, "delivery", now)

        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                order_number=self.order_number,
                previous_status=previous,
                new_status=target.value,
                note=note,
                changed_at=now,
            )
        )

    def _mark_cancelled(self, reason, cancelled_by):
        now = datetime.now(UTC)
        previous = self.status
        with atomic_change(self):
            self.status = OrderStatus.CANCELLED.value
            self.cancellation_reason = reason
            self.cancelled_at = now
            self.updated_at = now
            self._append_history(OrderStatus.CANCELLED.value, reason, now)

        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                order_number=self.order_number,
                previous_status=previous,
                reason=reason,
                cancelled_by=cancelled_by,
                cancelled_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Payment
    # -------------------------------------------------------------------
    def attach_payment_intent(self, gateway_name, correlation_id, synthetic=False):
        """Record the provider reference for this order. The reference is set once."""
        if self.gateway_correlation_id:
            if self.gateway_correlation_id == correlation_id:
                raise IdempotentNoop("Payment intent already attached", order_number=self.order_number)
            raise ValidationError({"gateway_correlation_id": ["Order already has a payment reference"]})
        if self.payment_status != PaymentStatus.PENDING.value:
            raise ValidationError({"payment_status": [f"Payment already {self.payment_status}"]})

        now = datetime.now(UTC)
        with atomic_change(self):
            self.gateway_name = gateway_name
            self.gateway_correlation_id = correlation_id
            self.updated_at = now
            if self.payment_method != PaymentMethod.COD.value:
                self._set_payment_status(PaymentStatus.PROCESSING, "intent", now)

        self.raise_(
            PaymentIntentAttached(
                order_id=str(self.id),
                order_number=self.order_number,
                gateway=gateway_name,
                correlation_id=correlation_id,
                synthetic=synthetic,
            )
        )

    def mark_payment_processing(self, source):
        """Provider authorised but has not captured; only meaningful from pending."""
        if self.payment_status != PaymentStatus.PENDING.value:
            raise IdempotentNoop(f"Payment already {self.payment_status}", order_number=self.order_number)
        self._set_payment_status(PaymentStatus.PROCESSING, source, datetime.now(UTC))

    def mark_paid(self, source, provider_payment_id=None):
        """Record captured money.

        A capture on a placed order confirms it. A capture on an order that
        was already cancelled records the money (so it can be refunded) and
        leaves the order cancelled.
        """
        current = PaymentStatus(self.payment_status)
        if current in _MONEY_RECEIVED_STATES:
            raise IdempotentNoop(f"Payment already {current.value}", order_number=self.order_number)
        if current == PaymentStatus.FAILED:
            raise IdempotentNoop("Capture received after payment failure", order_number=self.order_number)

        now = datetime.now(UTC)
        previous_status = self.status
        with atomic_change(self):
            self.paid_at = now
            if provider_payment_id:
                self.gateway_payment_id = provider_payment_id
            self._set_payment_status(PaymentStatus.PAID, source, now)
            if OrderStatus(self.status) == OrderStatus.PLACED:
                self.status = OrderStatus.CONFIRMED.value
                self._append_history(OrderStatus.CONFIRMED.value, "Payment received", now)
            elif OrderStatus(self.status) == OrderStatus.CANCELLED:
                self._append_history(OrderStatus.CANCELLED.value, "Payment captured after cancellation", now)

        if self.status != previous_status:
            self.raise_(
                OrderStatusChanged(
                    order_id=str(self.id),
                    order_number=self.order_number,
                    previous_status=previous_status,
                    new_status=self.status,
                    note="Payment received",
                    changed_at=now,
                )
            )

    def mark_payment_failed(self, source, reason=None) -> bool:
        """Record a failed payment. Returns True when this cancelled the order."""
        current = PaymentStatus(self.payment_status)
        if current not in {PaymentStatus.PENDING, PaymentStatus.PROCESSING}:
            raise IdempotentNoop(f"Payment already {current.value}", order_number=self.order_number)

        self._set_payment_status(PaymentStatus.FAILED, source, datetime.now(UTC))
        if self.is_cancellable:
            self._mark_cancelled(reason or "Payment failed", cancelled_by="payment_gateway")
            return True
        return False

    def can_accept_refund(self) -> bool:
        return self.payment_status in (PaymentStatus.PAID.value, PaymentStatus.PARTIALLY_REFUNDED.value)

    def record_refund(self, gateway_refund_id, amount, reason=None, source="refund"):
        """Apply a provider-confirmed refund.

        De-duplicated by ``gateway_refund_id``. Cumulative refunds reaching the
        order total mark the payment refunded and move the order to refunded.
        """
        if self.has_refund(gateway_refund_id):
            raise IdempotentNoop("Refund already recorded", order_number=self.order_number)
        if not self.can_accept_refund():
            raise ValidationError({"payment_status": ["Order is not paid"]})
        if amount is None or amount <= 0:
            raise ValidationError({"amount": ["Refund amount must be positive"]})
        if amount > self.remaining_refundable + MONEY_TOLERANCE:
            raise ValidationError({"amount": [f"Refund amount exceeds refundable balance of {self.remaining_refundable}"]})

        now = datetime.now(UTC)
        reason = reason or "Customer requested refund"
        previous_status = self.status
        with atomic_change(self):
            self.add_refunds(
                RefundRecord(
                    gateway_refund_id=gateway_refund_id,
                    amount=amount,
                    reason=reason,
                    processed_at=now,
                )
            )
            self.refund_amount = round((self.refund_amount or 0.0) + amount, 2)
            if not self.refund_reason:
                self.refund_reason = reason

            fully_refunded = self.refund_amount >= self.pricing.total - MONEY_TOLERANCE
            if fully_refunded:
                self.refunded_at = now
                self.status = OrderStatus.REFUNDED.value
                self._set_payment_status(PaymentStatus.REFUNDED, source, now)
                self._append_history(OrderStatus.REFUNDED.value, f"Refund processed: {reason}", now)
            else:
                if self.payment_status != PaymentStatus.PARTIALLY_REFUNDED.value:
                    self._set_payment_status(PaymentStatus.PARTIALLY_REFUNDED, source, now)
                self._append_history(self.status, f"Partial refund of {amount:.2f} processed: {reason}", now)

        self.raise_(
            RefundRecorded(
                order_id=str(self.id),
                order_number=self.order_number,
                gateway_refund_id=gateway_refund_id,
                amount=amount,
                total_refunded=self.refund_amount,
                fully_refunded=fully_refunded,
                processed_at=now,
            )
        )
        if self.status != previous_status:
            self.raise_(
                OrderStatusChanged(
                    order_id=str(self.id),
                    order_number=self.order_number,
                    previous_status=previous_status,
                    new_status=self.status,
                    note="Refund processed",
                    changed_at=now,
                )
            )
