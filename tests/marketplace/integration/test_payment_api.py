"""Integration tests for the payment API endpoints."""

from unittest.mock import MagicMock, patch

import pytest
import requests
from fastapi import FastAPI
from fastapi.testclient import TestClient

from marketplace.api import payment_router, register_exception_handlers
from marketplace.gateway import get_gateway, register_gateway
from marketplace.gateway.zoho_adapter import ZohoPaymentsGateway

BUYER = {"X-Buyer-Id": "buyer-001"}


@pytest.fixture()
def client():
    app = FastAPI()
    app.include_router(payment_router)
    register_exception_handlers(app)
    return TestClient(app)


class TestPaymentMethodsAPI:
    def test_lists_methods_of_every_gateway(self, client):
        response = client.get("/payments/methods")
        assert response.status_code == 200
        ids = {m["id"] for m in response.json()["methods"]}
        assert {"cod", "zoho_upi", "paytm_upi"} <= ids

    def test_gateway_configuration_outside_production(self, client):
        response = client.get("/payments/gateways")
        assert response.status_code == 200
        assert response.json()["gateways"]["zoho"]["mode"] == "synthetic"

    def test_gateway_configuration_hidden_in_production(self, client, monkeypatch):
        monkeypatch.setenv("PROTEAN_ENV", "production")
        assert client.get("/payments/gateways").status_code == 403


class TestCreatePaymentIntentAPI:
    def test_returns_intent(self, client, place_order, load_order):
        order_id = place_order()
        response = client.post("/payments/create-order", json={"order_id": order_id}, headers=BUYER)
        assert response.status_code == 200
        data = response.json()
        assert data["gateway"] == "zoho"
        assert data["correlation_id"] == f"SYN-ZOHO-{load_order(order_id).order_number}"
        assert data["amount"] == 313.0
        assert data["synthetic"] is True

    def test_requires_buyer(self, client, place_order):
        order_id = place_order()
        assert client.post("/payments/create-order", json={"order_id": order_id}).status_code == 401

    def test_second_intent_is_400(self, client, place_order):
        order_id = place_order()
        client.post("/payments/create-order", json={"order_id": order_id}, headers=BUYER)
        response = client.post("/payments/create-order", json={"order_id": order_id}, headers=BUYER)
        assert response.status_code == 400

    def test_provider_failure_is_500_without_details(self, client, place_order):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("connection refused to 10.0.0.1")
        register_gateway(ZohoPaymentsGateway(client_id="cid", client_secret="secret", synthetic=False, session=session))

        order_id = place_order()
        response = client.post("/payments/create-order", json={"order_id": order_id}, headers=BUYER)

        assert response.status_code == 500
        assert response.json() == {"error": "Payment provider request failed"}


class TestVerifyPaymentAPI:
    def test_verifies_synthetic_payment(self, client, place_order, create_intent):
        order_id = place_order()
        create_intent(order_id)
        response = client.post("/payments/verify", json={"order_id": order_id}, headers=BUYER)
        assert response.status_code == 200
        data = response.json()
        assert data["payment_status"] == "paid"
        assert data["status"] == "confirmed"
        assert data["updated"] is True

    def test_uninitiated_payment_is_400(self, client, place_order):
        order_id = place_order()
        response = client.post("/payments/verify", json={"order_id": order_id}, headers=BUYER)
        assert response.status_code == 400


class TestRefundAPI:
    def test_refund_on_pending_payment_is_400_without_provider_call(self, client, place_order, create_intent, load_order):
        order_id = place_order()
        create_intent(order_id)

        with patch.object(get_gateway("zoho"), "refund") as provider_refund:
            response = client.post("/payments/refund", json={"order_id": order_id}, headers=BUYER)

        assert response.status_code == 400
        assert response.json() == {"error": {"payment_status": ["Order is not paid"]}}
        provider_refund.assert_not_called()
        assert load_order(order_id).refund_amount == 0.0

    def test_full_refund(self, client, paid_order):
        response = client.post("/payments/refund", json={"order_id": paid_order, "reason": "Damaged"}, headers=BUYER)
        assert response.status_code == 200
        data = response.json()
        assert data["amount"] == 313.0
        assert data["payment_status"] == "refunded"
        assert data["status"] == "refunded"

    def test_partial_refund(self, client, paid_order):
        response = client.post("/payments/refund", json={"order_id": paid_order, "amount": 100.0}, headers=BUYER)
        assert response.json()["payment_status"] == "partially_refunded"

    def test_admin_refund(self, client, paid_order):
        response = client.post("/payments/refund", json={"order_id": paid_order}, headers={"X-Admin-Id": "ops-1"})
        assert response.status_code == 200

    def test_requires_identity(self, client, paid_order):
        assert client.post("/payments/refund", json={"order_id": paid_order}).status_code == 401

    def test_other_buyer_is_404(self, client, paid_order):
        response = client.post("/payments/refund", json={"order_id": paid_order}, headers={"X-Buyer-Id": "buyer-999"})
        assert response.status_code == 404


class TestPaymentStatusAPI:
    def test_reports_payment_state(self, client, paid_order, load_order):
        response = client.get(f"/payments/order/{paid_order}/status", headers=BUYER)
        assert response.status_code == 200
        data = response.json()
        order = load_order(paid_order)
        assert data["order_number"] == order.order_number
        assert data["payment_status"] == "paid"
        assert data["total"] == 313.0
        assert data["refund_amount"] == 0.0
        assert data["correlation_id"] == order.gateway_correlation_id
        assert data["paid_at"] is not None

    def test_other_buyer_is_404(self, client, paid_order):
        response = client.get(f"/payments/order/{paid_order}/status", headers={"X-Buyer-Id": "buyer-999"})
        assert response.status_code == 404
