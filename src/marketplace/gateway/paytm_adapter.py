"""Paytm adapter.

Paytm identifies a payment by our order number (``ORDERID``). Requests and
callbacks are authenticated with a checksum: hex HMAC-SHA256, keyed with the
merchant key, over the parameters sorted by name and joined as ``k=v&k=v``.
Server-to-server notifications carry the checksum in ``X-Paytm-Signature``;
the browser callback posts it as the ``CHECKSUMHASH`` form field.
"""

import json
import os
from urllib.parse import parse_qsl

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
from marketplace.gateway.signing import canonical_param_string, hmac_sha256_hex, param_checksum, signatures_match
from marketplace.order.order import PaymentStatus

logger = structlog.get_logger(__name__)

STAGING_URL = "https://securegw-stage.paytm.in"
PRODUCTION_URL = "https://securegw.paytm.in"
SIGNATURE_HEADER = "x-paytm-signature"
CHECKSUM_FIELD = "CHECKSUMHASH"
_PLACEHOLDER_MID = "MERCHANT_ID_PLACEHOLDER"

_STATUS_MAP = {
    "TXN_SUCCESS": PaymentStatus.PAID,
    "PENDING": PaymentStatus.PROCESSING,
    "TXN_FAILURE": PaymentStatus.FAILED,
}

_STATUS_EVENTS = {
    "TXN_SUCCESS": PaymentEventType.CAPTURED,
    "PENDING": PaymentEventType.AUTHORIZED,
    "TXN_FAILURE": PaymentEventType.FAILED,
}

_METHODS = [
    {"id": "paytm", "name": "Paytm", "description": "Pay using Paytm wallet, UPI, cards or net banking"},
    {"id": "paytm_upi", "name": "Paytm UPI", "description": "Pay using UPI through Paytm"},
    {"id": "paytm_card", "name": "Paytm Cards", "description": "Credit or debit card through Paytm"},
    {"id": "paytm_netbanking", "name": "Paytm Net Banking", "description": "Net banking through Paytm"},
    {"id": "paytm_wallet", "name": "Paytm Wallet", "description": "Pay from your Paytm wallet balance"},
]


def _amount(value) -> float | None:
    if value in (None, ""):
        return None
    return round(float(value), 2)


class PaytmGateway(PaymentGateway):
    name = "paytm"
    display_name = "Paytm"
    payment_methods = tuple(m["id"] for m in _METHODS)

    def __init__(
        self,
        merchant_id: str | None = None,
        merchant_key: str | None = None,
        website: str = "WEBSTAGING",
        channel_id: str = "WEB",
        industry_type: str = "Retail",
        callback_url: str | None = None,
        client_url: str = "http://localhost:8080",
        base_url: str = STAGING_URL,
        timeout: float = 15.0,
        synthetic: bool | None = None,
        session: requests.Session | None = None,
    ) -> None:
        if synthetic is None:
            synthetic = not merchant_id or merchant_id == _PLACEHOLDER_MID or not merchant_key
        super().__init__(synthetic=synthetic)
        self.merchant_id = merchant_id
        self.merchant_key = merchant_key
        self.website = website
        self.channel_id = channel_id
        self.industry_type = industry_type
        self.callback_url = callback_url
        self.client_url = client_url.rstrip("/")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_env(cls) -> "PaytmGateway":
        merchant_id = os.environ.get("PAYTM_MERCHANT_ID")
        merchant_key = os.environ.get("PAYTM_MERCHANT_KEY")
        production = os.environ.get("PROTEAN_ENV") == "production" and bool(merchant_id)
        force_mock = os.environ.get("USE_MOCK_PAYMENTS", "").lower() == "true"
        server_url = os.environ.get("SERVER_URL", "http://localhost:8000")
        return cls(
            merchant_id=merchant_id,
            merchant_key=merchant_key,
            website=os.environ.get("PAYTM_WEBSITE", "WEBSTAGING"),
            channel_id=os.environ.get("PAYTM_CHANNEL_ID", "WEB"),
            industry_type=os.environ.get("PAYTM_INDUSTRY_TYPE", "Retail"),
            callback_url=os.environ.get("PAYTM_CALLBACK_URL", f"{server_url}/payments/paytm/callback"),
            client_url=os.environ.get("CLIENT_URL", "http://localhost:8080"),
            base_url=PRODUCTION_URL if production else STAGING_URL,
            timeout=float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "15")),
            synthetic=True if force_mock else None,
        )

    # -------------------------------------------------------------------
    # Checksums
    # -------------------------------------------------------------------
    def checksum(self, params: dict) -> str:
        return param_checksum(params, self.merchant_key or "")

    def _signed(self, body: dict) -> dict:
        return {"body": body, "head": {"signature": hmac_sha256_hex(self.merchant_key or "", canonical_param_string(body))}}

    def _post(self, path: str, body: dict, query: dict | None = None) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.post(url, params=query, json=self._signed(body), timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error("paytm_request_failed", path=path, error=str(exc))
            raise GatewayError("Payment provider unreachable", gateway=self.name, detail=str(exc)) from exc

        if not response.ok:
            logger.error("paytm_request_rejected", path=path, status_code=response.status_code, body=response.text)
            raise GatewayError(
                "Payment provider rejected the request",
                gateway=self.name,
                detail={"status_code": response.status_code, "body": response.text},
            )
        try:
            return response.json().get("body") or {}
        except ValueError as exc:
            raise GatewayError("Payment provider returned invalid JSON", gateway=self.name, detail=response.text) from exc

    # -------------------------------------------------------------------
    # Port implementation
    # -------------------------------------------------------------------
    def create_intent(self, order) -> PaymentIntent:
        amount = order.pricing.total
        if self.synthetic:
            correlation_id = f"SYN-PAYTM-{order.order_number}"
            token = f"SYN-TXN-{order.order_number}"
            return PaymentIntent(
                gateway=self.name,
                correlation_id=correlation_id,
                amount=amount,
                currency=order.pricing.currency,
                redirect_url=(
                    f"{self.client_url}/mock-payment/paytm?orderId={order.id}"
                    f"&mockOrderId={correlation_id}&amount={amount}&txnToken={token}"
                ),
                token=token,
                synthetic=True,
            )

        address = order.shipping_address
        full_name = (address.full_name if address else "") or ""
        first_name, _, last_name = full_name.partition(" ")
        body = {
            "requestType": "Payment",
            "mid": self.merchant_id,
            "websiteName": self.website,
            "orderId": order.order_number,
            "txnAmount": {"value": f"{amount:.2f}", "currency": order.pricing.currency},
            "userInfo": {
                "custId": str(order.buyer_id),
                "mobile": address.phone if address else None,
                "email": address.email if address else None,
                "firstName": first_name,
                "lastName": last_name,
            },
            "callbackUrl": self.callback_url,
            "channelId": self.channel_id,
            "industryType": self.industry_type,
        }
        data = self._post(
            "/theia/api/v1/initiateTransaction",
            body,
            query={"mid": self.merchant_id, "orderId": order.order_number},
        )
        result = data.get("resultInfo") or {}
        if result.get("resultStatus") != "S" or not data.get("txnToken"):
            raise GatewayError("Payment provider refused the transaction", gateway=self.name, detail=data)

        return PaymentIntent(
            gateway=self.name,
            correlation_id=order.order_number,
            amount=amount,
            currency=order.pricing.currency,
            redirect_url=(
                f"{self.base_url}/theia/api/v1/showPaymentPage?mid={self.merchant_id}&orderId={order.order_number}"
            ),
            token=data["txnToken"],
            extra={"mid": self.merchant_id},
        )

    def verify(self, correlation_id: str) -> VerificationResult:
        if self.synthetic:
            return VerificationResult(
                correlation_id=correlation_id,
                status=PaymentStatus.PAID,
                provider_status="TXN_SUCCESS",
                provider_payment_id=f"SYN-PAY-{correlation_id}",
                synthetic=True,
            )

        data = self._post("/v3/order/status", {"mid": self.merchant_id, "orderId": correlation_id})
        provider_status = (data.get("resultInfo") or {}).get("resultStatus", "")
        return VerificationResult(
            correlation_id=correlation_id,
            status=self.map_status(provider_status),
            provider_status=provider_status,
            provider_payment_id=data.get("txnId"),
            amount=_amount(data.get("txnAmount")),
        )

    def refund(self, correlation_id, amount, reason, refund_reference, payment_reference=None) -> RefundConfirmation:  # noqa: ARG002
        if self.synthetic:
            return RefundConfirmation(
                refund_id=f"SYN-REF-{refund_reference}",
                amount=amount,
                provider_status="TXN_SUCCESS",
                synthetic=True,
            )

        if not payment_reference:
            raise GatewayError("Refund requires the provider transaction id", gateway=self.name)

        ref_id = f"REFUND_{refund_reference}"
        data = self._post(
            "/refund/apply",
            {
                "mid": self.merchant_id,
                "txnType": "REFUND",
                "orderId": correlation_id,
                "txnId": payment_reference,
                "refId": ref_id,
                "refundAmount": f"{amount:.2f}",
            },
        )
        provider_status = (data.get("resultInfo") or {}).get("resultStatus", "")
        if provider_status not in ("TXN_SUCCESS", "PENDING"):
            raise GatewayError("Payment provider refused the refund", gateway=self.name, detail=data)

        return RefundConfirmation(
            refund_id=data.get("refundId") or ref_id,
            amount=amount,
            provider_status=provider_status,
        )

    def map_status(self, provider_status):
        if not provider_status:
            return None
        return _STATUS_MAP.get(str(provider_status).upper())

    def verify_signature(self, params: dict, signature: str | None) -> None:
        if self.synthetic:
            return
        if not signatures_match(self.checksum(params), signature):
            raise SignatureVerificationError("Invalid checksum", gateway=self.name)

    @staticmethod
    def _params_from(raw_body: bytes, form) -> dict:
        if form is not None:
            return dict(form)
        text = (raw_body or b"").decode("utf-8", errors="replace").strip()
        if not text:
            return {}
        if text.startswith("{"):
            try:
                return json.loads(text)
            except ValueError:
                # Left to checksum verification
                logger.warning("paytm_payload_unparseable", length=len(text))
                return {}
        return dict(parse_qsl(text, keep_blank_values=True))

    def parse_webhook(self, raw_body, headers=None, form=None) -> WebhookEvent:
        params = self._params_from(raw_body, form)
        signature = params.get(CHECKSUM_FIELD) or normalise_headers(headers).get(SIGNATURE_HEADER)
        self.verify_signature(params, signature)

        correlation_id = params.get("ORDERID")
        provider_status = params.get("STATUS")
        if not correlation_id:
            raise MalformedWebhookError("Callback has no ORDERID", gateway=self.name)

        if str(params.get("TXNTYPE", "")).upper() == "REFUND":
            return WebhookEvent(
                gateway=self.name,
                event_type=PaymentEventType.REFUND_PROCESSED if provider_status == "TXN_SUCCESS" else None,
                correlation_id=correlation_id,
                provider_event="REFUND",
                provider_status=provider_status,
                provider_payment_id=params.get("TXNID"),
                amount=_amount(params.get("REFUNDAMOUNT")),
                refund_id=params.get("REFUNDID") or None,
                reason=params.get("RESPMSG"),
            )

        return WebhookEvent(
            gateway=self.name,
            event_type=_STATUS_EVENTS.get(str(provider_status or "").upper()),
            correlation_id=correlation_id,
            provider_event=params.get("TXNTYPE") or "PAYMENT",
            provider_status=provider_status,
            provider_payment_id=params.get("TXNID"),
            amount=_amount(params.get("TXNAMOUNT")),
            reason=params.get("RESPMSG"),
        )

    def describe_methods(self) -> list[dict]:
        return [{**method, "gateway": self.name} for method in _METHODS]

    def configuration_status(self) -> dict:
        return {
            **super().configuration_status(),
            "base_url": self.base_url,
            "merchant_id_configured": bool(self.merchant_id) and self.merchant_id != _PLACEHOLDER_MID,
            "merchant_key_configured": bool(self.merchant_key),
            "website": self.website,
            "callback_url": self.callback_url,
        }
