"""Zoho Payments adapter.

Live mode talks to the Zoho Payments REST API with an OAuth client-credentials
token. Amounts cross the wire in paise. Webhooks are signed with a hex
HMAC-SHA256 of the raw request body, sent in ``X-Zoho-Signature``.

Without credentials (or with ``USE_MOCK_PAYMENTS=true``) the adapter runs
synthetic: deterministic, successful responses flagged ``synthetic=True`` and
no signature checks.
"""

import json
import os
import time

import requests
import structlog

from marketplace.exceptions import GatewayError, MalformedWebhookError, SignatureVerificationError
from marketplace.gateway.port import (
    PaymentEventType,
    PaymentGateway,
    PaymentIntent,
    RefundConfirmation,
    VerificationResult,
    WebhookEvent,
    normalise_headers,
)
from marketplace.gateway.signing import hmac_sha256_hex, signatures_match
from marketplace.order.order import PaymentStatus

logger = structlog.get_logger(__name__)

PRODUCTION_URL = "https://payments.zoho.in/api/v1"
SANDBOX_URL = "https://payments-sandbox.zoho.in/api/v1"
SIGNATURE_HEADER = "x-zoho-signature"

_STATUS_MAP = {
    "created": PaymentStatus.PENDING,
    "attempted": PaymentStatus.PROCESSING,
    "authorized": PaymentStatus.PROCESSING,
    "captured": PaymentStatus.PAID,
    "paid": PaymentStatus.PAID,
    "failed": PaymentStatus.FAILED,
    "refunded": PaymentStatus.REFUNDED,
}

_EVENT_MAP = {
    "payment.authorized": PaymentEventType.AUTHORIZED,
    "payment.captured": PaymentEventType.CAPTURED,
    "payment.failed": PaymentEventType.FAILED,
    "refund.processed": PaymentEventType.REFUND_PROCESSED,
}

_METHODS = [
    {"id": "zoho_card", "name": "Credit/Debit Card", "description": "Pay using Visa, MasterCard, RuPay", "fees": "2.9% + ₹3"},
    {"id": "zoho_upi", "name": "UPI", "description": "Pay using any UPI app", "fees": "₹2 per transaction"},
    {"id": "zoho_netbanking", "name": "Net Banking", "description": "Pay directly from your bank account", "fees": "₹15 per transaction"},
    {"id": "zoho_wallet", "name": "Wallet", "description": "Pay using digital wallets", "fees": "2.4% + ₹3"},
]


def _to_paise(amount: float) -> int:
    return int(round(amount * 100))


def _from_paise(value) -> float | None:
    if value in (None, ""):
        return None
    return round(float(value) / 100, 2)


class ZohoPaymentsGateway(PaymentGateway):
    name = "zoho"
    display_name = "Zoho Payments"
    payment_methods = tuple(m["id"] for m in _METHODS)

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        webhook_secret: str | None = None,
        base_url: str = SANDBOX_URL,
        client_url: str = "http://localhost:8080",
        timeout: float = 15.0,
        synthetic: bool | None = None,
        session: requests.Session | None = None,
    ) -> None:
        if synthetic is None:
            synthetic = not (client_id and client_secret)
        super().__init__(synthetic=synthetic)
        self.client_id = client_id
        self.client_secret = client_secret
        self.webhook_secret = webhook_secret
        self.base_url = base_url.rstrip("/")
        self.client_url = client_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_env(cls) -> "ZohoPaymentsGateway":
        production = os.environ.get("PROTEAN_ENV") == "production"
        if production:
            base_url = os.environ.get("ZOHO_PAYMENTS_BASE_URL", PRODUCTION_URL)
        else:
            base_url = os.environ.get("ZOHO_PAYMENTS_SANDBOX_URL", SANDBOX_URL)
        client_id = os.environ.get("ZOHO_PAYMENTS_CLIENT_ID")
        client_secret = os.environ.get("ZOHO_PAYMENTS_CLIENT_SECRET")
        force_mock = os.environ.get("USE_MOCK_PAYMENTS", "").lower() == "true"
        return cls(
            client_id=client_id,
            client_secret=client_secret,
            webhook_secret=os.environ.get("ZOHO_PAYMENTS_WEBHOOK_SECRET"),
            base_url=base_url,
            client_url=os.environ.get("CLIENT_URL", "http://localhost:8080"),
            timeout=float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "15")),
            synthetic=True if force_mock else not (client_id and client_secret),
        )

    # -------------------------------------------------------------------
    # HTTP plumbing
    # -------------------------------------------------------------------
    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        data = self._send(
            "POST",
            "/oauth/v2/token",
            authenticated=False,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
                "scope": "ZohoPayments.payments.CREATE,ZohoPayments.payments.READ",
            },
        )
        token = data.get("access_token")
        if not token:
            raise GatewayError("Payment provider authentication failed", gateway=self.name, detail=data)
        self._token = token
        # Refresh a minute early
        self._token_expires_at = time.monotonic() + max(int(data.get("expires_in", 3600)) - 60, 0)
        return token

    def _send(self, method: str, path: str, authenticated: bool = True, **kwargs) -> dict:
        headers = kwargs.pop("headers", {})
        if authenticated:
            headers["Authorization"] = f"Bearer {self._access_token()}"
        url = f"{self.base_url}{path}"

        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error("zoho_request_failed", method=method, path=path, error=str(exc))
            raise GatewayError("Payment provider unreachable", gateway=self.name, detail=str(exc)) from exc

        if not response.ok:
            logger.error(
                "zoho_request_rejected",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text,
            )
            raise GatewayError(
                "Payment provider rejected the request",
                gateway=self.name,
                detail={"status_code": response.status_code, "body": response.text},
            )

        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError("Payment provider returned invalid JSON", gateway=self.name, detail=response.text) from exc

    # -------------------------------------------------------------------
    # Port implementation
    # -------------------------------------------------------------------
    def create_intent(self, order) -> PaymentIntent:
        amount = order.pricing.total
        if self.synthetic:
            correlation_id = f"SYN-ZOHO-{order.order_number}"
            return PaymentIntent(
                gateway=self.name,
                correlation_id=correlation_id,
                amount=amount,
                currency=order.pricing.currency,
                redirect_url=f"{self.client_url}/mock-payment?orderId={order.id}&mockOrderId={correlation_id}&amount={amount}",
                synthetic=True,
            )

        address = order.shipping_address
        data = self._send(
            "POST",
            "/orders",
            json={
                "amount": _to_paise(amount),
                "currency": order.pricing.currency,
                "receipt": order.order_number,
                "payment_capture": True,
                "notes": {"order_id": str(order.id)},
                "customer": {
                    "name": address.full_name if address else None,
                    "email": address.email if address else None,
                    "contact": address.phone if address else None,
                },
                "callback_url": f"{self.client_url}/payment/callback",
                "callback_method": "get",
            },
        )
        correlation_id = data.get("id")
        if not correlation_id:
            raise GatewayError("Payment provider did not return an order id", gateway=self.name, detail=data)

        return PaymentIntent(
            gateway=self.name,
            correlation_id=correlation_id,
            amount=_from_paise(data.get("amount")) or amount,
            currency=data.get("currency", order.pricing.currency),
            redirect_url=data.get("short_url") or data.get("payment_url"),
            extra={"receipt": data.get("receipt"), "status": data.get("status")},
        )

    def verify(self, correlation_id: str) -> VerificationResult:
        if self.synthetic:
            return VerificationResult(
                correlation_id=correlation_id,
                status=PaymentStatus.PAID,
                provider_status="captured",
                provider_payment_id=f"SYN-PAY-{correlation_id}",
                synthetic=True,
            )

        data = self._send("GET", f"/orders/{correlation_id}")
        payments = data.get("payments") or []
        latest = payments[-1] if payments else {}
        provider_status = latest.get("status") or data.get("status")
        return VerificationResult(
            correlation_id=correlation_id,
            status=self.map_status(provider_status),
            provider_status=provider_status or "",
            provider_payment_id=latest.get("id"),
            amount=_from_paise(latest.get("amount", data.get("amount"))),
        )

    def refund(self, correlation_id, amount, reason, refund_reference, payment_reference=None) -> RefundConfirmation:
        if self.synthetic:
            return RefundConfirmation(
                refund_id=f"SYN-REF-{refund_reference}",
                amount=amount,
                provider_status="processed",
                synthetic=True,
            )

        payment_id = payment_reference or correlation_id
        data = self._send(
            "POST",
            f"/payments/{payment_id}/refund",
            json={
                "amount": _to_paise(amount),
                "receipt": f"refund_{refund_reference}",
                "notes": {"reason": reason, "order_id": correlation_id},
            },
        )
        if data.get("status") == "failed" or not data.get("id"):
            raise GatewayError("Payment provider refused the refund", gateway=self.name, detail=data)

        return RefundConfirmation(
            refund_id=data["id"],
            amount=_from_paise(data.get("amount")) or amount,
            provider_status=data.get("status", "processed"),
        )

    def map_status(self, provider_status):
        if not provider_status:
            return None
        return _STATUS_MAP.get(str(provider_status).lower())

    def verify_signature(self, raw_body: bytes, signature: str | None) -> None:
        if self.synthetic:
            return
        if not self.webhook_secret:
            logger.error("zoho_webhook_secret_missing")
            raise SignatureVerificationError("Webhook secret is not configured", gateway=self.name)
        if not signatures_match(hmac_sha256_hex(self.webhook_secret, raw_body), signature):
            raise SignatureVerificationError("Invalid webhook signature", gateway=self.name)

    def parse_webhook(self, raw_body, headers=None, form=None) -> WebhookEvent:  # noqa: ARG002
        self.verify_signature(raw_body, normalise_headers(headers).get(SIGNATURE_HEADER))

        try:
            payload = json.loads(raw_body or b"{}")
        except ValueError as exc:
            raise MalformedWebhookError("Webhook body is not valid JSON", gateway=self.name) from exc
        if not isinstance(payload, dict):
            raise MalformedWebhookError("Webhook body is not a JSON object", gateway=self.name)

        correlation_id = payload.get("order_id")
        if not correlation_id:
            raise MalformedWebhookError("Webhook payload has no order_id", gateway=self.name)

        provider_event = payload.get("event")
        event_type = _EVENT_MAP.get(provider_event)
        notes = payload.get("notes") or {}

        refund_id = None
        amount = _from_paise(payload.get("amount"))
        if event_type == PaymentEventType.REFUND_PROCESSED:
            refund_id = payload.get("refund_id")
            amount = _from_paise(payload.get("refund_amount", payload.get("amount")))

        return WebhookEvent(
            gateway=self.name,
            event_type=event_type,
            correlation_id=correlation_id,
            provider_event=provider_event,
            provider_status=payload.get("status"),
            provider_payment_id=payload.get("payment_id"),
            amount=amount,
            refund_id=refund_id,
            reason=notes.get("reason") if isinstance(notes, dict) else None,
        )

    def describe_methods(self) -> list[dict]:
        return [{**method, "gateway": self.name} for method in _METHODS]

    def configuration_status(self) -> dict:
        return {
            **super().configuration_status(),
            "base_url": self.base_url,
            "client_id_configured": bool(self.client_id),
            "webhook_secret_configured": bool(self.webhook_secret),
        }
