"""Cash on delivery.

There is no provider to talk to: the intent is a local reference, payment is
pending until the order is delivered, and refunds are paid out by hand.
"""

from protean.exceptions import ValidationError

from marketplace.gateway.port import (
    PaymentGateway,
    PaymentIntent,
    RefundConfirmation,
    VerificationResult,
)
from marketplace.order.order import PaymentStatus

COD_HANDLING_FEE = 25.0

_STATUS_MAP = {
    "cash_pending": PaymentStatus.PENDING,
    "cash_collected": PaymentStatus.PAID,
}


class CashOnDeliveryGateway(PaymentGateway):
    name = "cod"
    display_name = "Cash on Delivery"
    payment_methods = ("cod",)

    def __init__(self) -> None:
        super().__init__(synthetic=False)

    def create_intent(self, order) -> PaymentIntent:
        return PaymentIntent(
            gateway=self.name,
            correlation_id=f"COD-{order.order_number}",
            amount=order.pricing.total,
            currency=order.pricing.currency,
        )

    def verify(self, correlation_id: str) -> VerificationResult:
        return VerificationResult(
            correlation_id=correlation_id,
            status=PaymentStatus.PENDING,
            provider_status="cash_pending",
        )

    def refund(self, correlation_id, amount, reason, refund_reference, payment_reference=None) -> RefundConfirmation:  # noqa: ARG002
        return RefundConfirmation(
            refund_id=f"COD-REF-{refund_reference}",
            amount=amount,
            provider_status="manual",
        )

    def map_status(self, provider_status):
        return _STATUS_MAP.get(provider_status)

    def parse_webhook(self, raw_body, headers=None, form=None):  # noqa: ARG002
        raise ValidationError({"gateway": ["Cash on delivery does not send webhooks"]})

    def describe_methods(self) -> list[dict]:
        return [
            {
                "id": "cod",
                "gateway": self.name,
                "name": "Cash on Delivery",
                "description": "Pay when your order is delivered",
                "fees": f"₹{COD_HANDLING_FEE:.0f} handling fee",
            }
        ]
