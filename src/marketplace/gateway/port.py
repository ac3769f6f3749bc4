"""Payment gateway port (abstract interface).

Every provider is reached through this contract. Adapters own all provider
vocabulary: they translate provider statuses to ``PaymentStatus`` and provider
callbacks to ``WebhookEvent`` so nothing past this boundary ever sees a
provider-specific string.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from marketplace.order.order import PaymentStatus


class PaymentEventType(Enum):
    AUTHORIZED = "payment.authorized"
    CAPTURED = "payment.captured"
    FAILED = "payment.failed"
    REFUND_PROCESSED = "refund.processed"


@dataclass(frozen=True)
class PaymentIntent:
    """What the client needs to start paying for an order."""

    gateway: str
    correlation_id: str
    amount: float
    currency: str = "INR"
    redirect_url: str | None = None
    token: str | None = None
    synthetic: bool = False
    extra: dict = field(default_factory=dict)


@dataclass(frozen=True)
class VerificationResult:
    correlation_id: str
    status: PaymentStatus | None
    provider_status: str
    provider_payment_id: str | None = None
    amount: float | None = None
    synthetic: bool = False


@dataclass(frozen=True)
class RefundConfirmation:
    refund_id: str
    amount: float
    provider_status: str
    synthetic: bool = False


@dataclass(frozen=True)
class WebhookEvent:
    """A provider callback, authenticated and translated to canonical terms."""

    gateway: str
    event_type: PaymentEventType | None
    correlation_id: str
    provider_event: str | None = None
    provider_status: str | None = None
    provider_payment_id: str | None = None
    amount: float | None = None
    refund_id: str | None = None
    reason: str | None = None

    @property
    def is_success(self) -> bool:
        return self.event_type == PaymentEventType.CAPTURED


def normalise_headers(headers: Mapping | None) -> dict[str, str]:
    return {str(k).lower(): v for k, v in (headers or {}).items()}


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    name: str = ""
    display_name: str = ""
    payment_methods: tuple[str, ...] = ()

    def __init__(self, synthetic: bool = False) -> None:
        self.synthetic = synthetic

    @abstractmethod
    def create_intent(self, order) -> PaymentIntent:
        """Register the order with the provider and return how to pay for it."""
        ...

    @abstractmethod
    def verify(self, correlation_id: str) -> VerificationResult:
        """Ask the provider for the current state of a payment."""
        ...

    @abstractmethod
    def refund(
        self,
        correlation_id: str,
        amount: float,
        reason: str,
        refund_reference: str,
        payment_reference: str | None = None,
    ) -> RefundConfirmation:
        """Refund ``amount`` against a captured payment.

        ``refund_reference`` is derived from the order's recorded refunds, so it
        is unique per refund and the same across restarts. Providers that take
        a merchant reference receive it.
        """
        ...

    @abstractmethod
    def map_status(self, provider_status: str | None) -> PaymentStatus | None:
        """Translate a provider status string; None when it has no canonical meaning."""
        ...

    @abstractmethod
    def parse_webhook(
        self,
        raw_body: bytes,
        headers: Mapping | None = None,
        form: Mapping | None = None,
    ) -> WebhookEvent:
        """Authenticate a callback and translate it.

        Raises ``SignatureVerificationError`` before looking at the payload
        when authentication fails.
        """
        ...

    def describe_methods(self) -> list[dict]:
        return [{"id": method, "gateway": self.name, "name": method} for method in self.payment_methods]

    def configuration_status(self) -> dict:
        return {
            "gateway": self.name,
            "display_name": self.display_name,
            "mode": "synthetic" if self.synthetic else "live",
            "payment_methods": list(self.payment_methods),
        }
