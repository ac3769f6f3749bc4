"""Tests for the payment gateway adapters and registry."""

import json
from unittest.mock import MagicMock

import pytest
import requests
from protean.exceptions import ValidationError

from marketplace.exceptions import GatewayError, MalformedWebhookError, SignatureVerificationError
from marketplace.gateway import (
    available_payment_methods,
    gateway_for_method,
    gateway_statuses,
    get_gateway,
    register_gateway,
)
from marketplace.gateway.cod_adapter import CashOnDeliveryGateway
from marketplace.gateway.paytm_adapter import PaytmGateway
from marketplace.gateway.port import PaymentEventType
from marketplace.gateway.signing import hmac_sha256_hex, param_checksum
from marketplace.gateway.zoho_adapter import ZohoPaymentsGateway
from marketplace.order.order import PaymentStatus

WEBHOOK_SECRET = "whsec_test"
MERCHANT_KEY = "merchant_key_test"


@pytest.fixture()
def zoho():
    return ZohoPaymentsGateway(
        client_id="cid",
        client_secret="secret",
        webhook_secret=WEBHOOK_SECRET,
        synthetic=False,
        session=MagicMock(),
    )


@pytest.fixture()
def paytm():
    return PaytmGateway(merchant_id="MID123", merchant_key=MERCHANT_KEY, synthetic=False, session=MagicMock())


def _zoho_body(**payload):
    return json.dumps(payload).encode()


def _signed_paytm_params(**params):
    params["CHECKSUMHASH"] = param_checksum(params, MERCHANT_KEY)
    return params


class TestZohoWebhooks:
    def test_valid_signature_is_accepted(self, zoho):
        body = _zoho_body(event="payment.captured", order_id="zo_1", payment_id="pay_1", status="captured", amount=31300)
        event = zoho.parse_webhook(body, {"X-Zoho-Signature": hmac_sha256_hex(WEBHOOK_SECRET, body)})

        assert event.event_type == PaymentEventType.CAPTURED
        assert event.correlation_id == "zo_1"
        assert event.provider_payment_id == "pay_1"
        assert event.amount == 313.0
        assert event.is_success

    def test_tampered_body_is_rejected(self, zoho):
        body = _zoho_body(event="payment.captured", order_id="zo_1")
        signature = hmac_sha256_hex(WEBHOOK_SECRET, body)
        tampered = _zoho_body(event="payment.captured", order_id="zo_2")
        with pytest.raises(SignatureVerificationError):
            zoho.parse_webhook(tampered, {"x-zoho-signature": signature})

    def test_missing_signature_is_rejected(self, zoho):
        with pytest.raises(SignatureVerificationError):
            zoho.parse_webhook(_zoho_body(event="payment.captured", order_id="zo_1"), {})

    def test_missing_secret_rejects_everything(self):
        gateway = ZohoPaymentsGateway(client_id="cid", client_secret="secret", synthetic=False, session=MagicMock())
        body = _zoho_body(event="payment.captured", order_id="zo_1")
        with pytest.raises(SignatureVerificationError):
            gateway.parse_webhook(body, {"x-zoho-signature": hmac_sha256_hex("", body)})

    def test_malformed_json_is_rejected_as_unusable(self, zoho):
        body = b"{not json"
        with pytest.raises(MalformedWebhookError):
            zoho.parse_webhook(body, {"x-zoho-signature": hmac_sha256_hex(WEBHOOK_SECRET, body)})

    def test_missing_order_id_is_rejected_as_unusable(self, zoho):
        body = _zoho_body(event="payment.captured")
        with pytest.raises(MalformedWebhookError) as exc:
            zoho.parse_webhook(body, {"x-zoho-signature": hmac_sha256_hex(WEBHOOK_SECRET, body)})
        assert exc.value.gateway == "zoho"

    def test_refund_event_in_rupees(self, zoho):
        body = _zoho_body(event="refund.processed", order_id="zo_1", refund_id="rf_1", refund_amount=10000)
        event = zoho.parse_webhook(body, {"x-zoho-signature": hmac_sha256_hex(WEBHOOK_SECRET, body)})
        assert event.event_type == PaymentEventType.REFUND_PROCESSED
        assert event.refund_id == "rf_1"
        assert event.amount == 100.0

    def test_refund_event_without_id_leaves_it_empty(self, zoho):
        body = _zoho_body(event="refund.processed", order_id="zo_1", refund_amount=10000)
        event = zoho.parse_webhook(body, {"x-zoho-signature": hmac_sha256_hex(WEBHOOK_SECRET, body)})
        assert event.refund_id is None
        assert event.amount == 100.0

    def test_unknown_event_has_no_canonical_type(self, zoho):
        body = _zoho_body(event="payment.dispute_created", order_id="zo_1")
        event = zoho.parse_webhook(body, {"x-zoho-signature": hmac_sha256_hex(WEBHOOK_SECRET, body)})
        assert event.event_type is None

    def test_synthetic_mode_skips_signature(self):
        gateway = ZohoPaymentsGateway(synthetic=True)
        event = gateway.parse_webhook(_zoho_body(event="payment.failed", order_id="SYN-ZOHO-1"), {})
        assert event.event_type == PaymentEventType.FAILED


class TestZohoLiveCalls:
    def test_intent_sends_paise_and_returns_provider_reference(self, zoho, http_response, place_order, load_order):
        order = load_order(place_order())
        zoho.session.request.side_effect = [
            http_response({"access_token": "tok", "expires_in": 3600}),
            http_response({"id": "zo_1", "amount": 31300, "currency": "INR", "short_url": "https://pay.example/zo_1"}),
        ]

        intent = zoho.create_intent(order)

        assert intent.correlation_id == "zo_1"
        assert intent.amount == 313.0
        assert intent.redirect_url == "https://pay.example/zo_1"
        assert intent.synthetic is False
        create_call = zoho.session.request.call_args_list[1]
        assert create_call.kwargs["json"]["amount"] == 31300
        assert create_call.kwargs["json"]["receipt"] == order.order_number
        assert create_call.kwargs["headers"]["Authorization"] == "Bearer tok"

    def test_access_token_is_reused(self, zoho, http_response):
        zoho.session.request.side_effect = [
            http_response({"access_token": "tok", "expires_in": 3600}),
            http_response({"id": "zo_1", "status": "paid"}),
            http_response({"id": "zo_1", "status": "paid"}),
        ]
        zoho.verify("zo_1")
        zoho.verify("zo_1")

        token_calls = [c for c in zoho.session.request.call_args_list if c.args[1].endswith("/oauth/v2/token")]
        assert len(token_calls) == 1

    def test_rejected_request_raises_gateway_error(self, zoho, http_response):
        zoho.session.request.side_effect = [
            http_response({"access_token": "tok", "expires_in": 3600}),
            http_response({"error": "bad amount"}, ok=False, status_code=400),
        ]
        with pytest.raises(GatewayError) as exc:
            zoho.refund("zo_1", 100.0, "Damaged", "zo_1-1", payment_reference="pay_1")
        assert exc.value.gateway == "zoho"
        assert exc.value.detail["status_code"] == 400

    def test_network_failure_raises_gateway_error(self, zoho):
        zoho.session.request.side_effect = requests.ConnectionError("no route to host")
        with pytest.raises(GatewayError):
            zoho.verify("zo_1")

    def test_refund_targets_provider_payment(self, zoho, http_response):
        zoho.session.request.side_effect = [
            http_response({"access_token": "tok", "expires_in": 3600}),
            http_response({"id": "rfnd_1", "amount": 5000, "status": "processed"}),
        ]
        confirmation = zoho.refund("zo_1", 50.0, "Damaged", "zo_1-2", payment_reference="pay_1")

        assert confirmation.refund_id == "rfnd_1"
        assert confirmation.amount == 50.0
        method, url = zoho.session.request.call_args_list[1].args
        assert url.endswith("/payments/pay_1/refund")
        assert zoho.session.request.call_args_list[1].kwargs["json"]["receipt"] == "refund_zo_1-2"

    @pytest.mark.parametrize(
        "provider_status,expected",
        [
            ("captured", PaymentStatus.PAID),
            ("CAPTURED", PaymentStatus.PAID),
            ("authorized", PaymentStatus.PROCESSING),
            ("failed", PaymentStatus.FAILED),
            ("something_new", None),
            (None, None),
        ],
    )
    def test_status_mapping(self, zoho, provider_status, expected):
        assert zoho.map_status(provider_status) == expected


class TestPaytmCallbacks:
    def test_signed_form_post_is_accepted(self, paytm):
        params = _signed_paytm_params(ORDERID="ORD-1", STATUS="TXN_SUCCESS", TXNID="T100", TXNAMOUNT="313.00")
        event = paytm.parse_webhook(b"", form=params)

        assert event.event_type == PaymentEventType.CAPTURED
        assert event.correlation_id == "ORD-1"
        assert event.provider_payment_id == "T100"
        assert event.amount == 313.0

    def test_tampered_form_is_rejected(self, paytm):
        params = _signed_paytm_params(ORDERID="ORD-1", STATUS="TXN_FAILURE")
        params["STATUS"] = "TXN_SUCCESS"
        with pytest.raises(SignatureVerificationError):
            paytm.parse_webhook(b"", form=params)

    def test_json_notification_with_header_signature(self, paytm):
        payload = {"ORDERID": "ORD-1", "STATUS": "TXN_FAILURE", "RESPMSG": "Bank declined"}
        body = json.dumps(payload).encode()
        event = paytm.parse_webhook(body, {"X-Paytm-Signature": param_checksum(payload, MERCHANT_KEY)})
        assert event.event_type == PaymentEventType.FAILED
        assert event.reason == "Bank declined"

    def test_urlencoded_body(self, paytm):
        params = _signed_paytm_params(ORDERID="ORD-1", STATUS="PENDING")
        body = "&".join(f"{k}={v}" for k, v in params.items()).encode()
        event = paytm.parse_webhook(body, {})
        assert event.event_type == PaymentEventType.AUTHORIZED

    def test_successful_refund_notification(self, paytm):
        params = _signed_paytm_params(
            ORDERID="ORD-1", STATUS="TXN_SUCCESS", TXNTYPE="REFUND", REFUNDID="RF-9", REFUNDAMOUNT="100.00"
        )
        event = paytm.parse_webhook(b"", form=params)
        assert event.event_type == PaymentEventType.REFUND_PROCESSED
        assert event.refund_id == "RF-9"
        assert event.amount == 100.0

    def test_missing_order_id_is_rejected_as_unusable(self, paytm):
        with pytest.raises(MalformedWebhookError):
            paytm.parse_webhook(b"", form=_signed_paytm_params(STATUS="TXN_SUCCESS"))

    def test_unparseable_json_fails_checksum(self, paytm):
        with pytest.raises(SignatureVerificationError):
            paytm.parse_webhook(b"{not json", {"X-Paytm-Signature": "deadbeef"})

    def test_unparseable_json_in_synthetic_mode_is_unusable(self):
        with pytest.raises(MalformedWebhookError):
            PaytmGateway().parse_webhook(b"{not json", {})

    def test_placeholder_credentials_run_synthetic(self):
        assert PaytmGateway(merchant_id="MERCHANT_ID_PLACEHOLDER", merchant_key="k").synthetic is True
        assert PaytmGateway().synthetic is True

    def test_live_refund_needs_transaction_id(self, paytm):
        with pytest.raises(GatewayError):
            paytm.refund("ORD-1", 100.0, "Damaged", "ORD-1-1")


class TestCashOnDelivery:
    def test_verify_is_always_pending(self):
        result = CashOnDeliveryGateway().verify("COD-ORD-1")
        assert result.status == PaymentStatus.PENDING

    def test_refund_id_follows_the_refund_reference(self):
        first = CashOnDeliveryGateway().refund("COD-ORD-1", 10.0, "Damaged", "COD-ORD-1-1")
        # A fresh adapter derives the same id from the same reference
        again = CashOnDeliveryGateway().refund("COD-ORD-1", 10.0, "Damaged", "COD-ORD-1-1")
        assert first.refund_id == "COD-REF-COD-ORD-1-1"
        assert again.refund_id == first.refund_id
        assert first.provider_status == "manual"

    def test_has_no_webhooks(self):
        with pytest.raises(ValidationError):
            CashOnDeliveryGateway().parse_webhook(b"{}")


class TestGatewayRegistry:
    def test_lookup_by_name(self):
        assert get_gateway("zoho").name == "zoho"
        assert get_gateway("paytm").name == "paytm"
        assert get_gateway("cod").name == "cod"

    def test_unknown_gateway(self):
        with pytest.raises(ValidationError):
            get_gateway("stripe")

    @pytest.mark.parametrize(
        "method,gateway", [("cod", "cod"), ("zoho_wallet", "zoho"), ("paytm", "paytm"), ("paytm_card", "paytm")]
    )
    def test_lookup_by_payment_method(self, method, gateway):
        assert gateway_for_method(method).name == gateway

    def test_unsupported_payment_method(self):
        with pytest.raises(ValidationError):
            gateway_for_method("bitcoin")

    def test_environment_forces_synthetic_providers(self):
        statuses = gateway_statuses()
        assert statuses["zoho"]["mode"] == "synthetic"
        assert statuses["paytm"]["mode"] == "synthetic"
        assert statuses["cod"]["mode"] == "live"

    def test_available_methods_cover_every_gateway(self):
        ids = {method["id"] for method in available_payment_methods()}
        assert {"cod", "zoho_upi", "zoho_card", "paytm", "paytm_upi"} <= ids

    def test_register_replaces_adapter(self, zoho):
        register_gateway(zoho)
        assert get_gateway("zoho") is zoho
