import json

import pytest
from protean import current_domain
from protean.integrations.pytest import DomainFixture

from marketplace.audit import reset_audit_sink, set_audit_sink
from marketplace.audit.sinks import InMemoryAuditSink
from marketplace.cart import get_cart_store, reset_cart_store
from marketplace.gateway import reset_gateways
from marketplace.stock import get_product_store, get_stock_ledger, reset_stock

SHIPPING_ADDRESS = {
    "full_name": "Asha Rao",
    "phone": "9876543210",
    "email": "asha@example.com",
    "address_line1": "12 Temple Street",
    "city": "Jaipur",
    "state": "Rajasthan",
    "zip_code": "302001",
}


@pytest.fixture(scope="session")
def marketplace_bed():
    from marketplace.domain import marketplace

    bed = DomainFixture(marketplace)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(scope="session", autouse=True)
def setup_db(marketplace_bed):
    from marketplace.domain import marketplace
    from marketplace.utils.db import drop_db, setup_db

    setup_db(marketplace)

    yield

    drop_db(marketplace)


@pytest.fixture(autouse=True)
def _ctx(marketplace_bed):
    with marketplace_bed.domain_context():
        yield

        # Clear all databases and drain the event store
        for _, provider in current_domain.providers.items():
            provider._data_reset()
        current_domain.event_store.store._data_reset()


@pytest.fixture(autouse=True)
def _collaborators():
    """Fresh product store, ledger, cart store, gateways and audit trail per test."""
    reset_stock()
    reset_cart_store()
    reset_gateways()
    set_audit_sink(InMemoryAuditSink())
    yield
    reset_stock()
    reset_cart_store()
    reset_gateways()
    reset_audit_sink()


@pytest.fixture()
def product_store():
    return get_product_store()


@pytest.fixture()
def stock_ledger():
    return get_stock_ledger()


@pytest.fixture()
def cart_store():
    return get_cart_store()


@pytest.fixture()
def audit_log():
    from marketplace.audit import get_audit_sink

    return get_audit_sink()


@pytest.fixture()
def products(product_store):
    product_store.add_product("prod-vase", "Hand-painted Vase", price=125.0, stock=10, seller_id="seller-001")
    product_store.add_product("prod-rug", "Handwoven Rug", price=600.0, stock=5, seller_id="seller-002")
    product_store.add_product("prod-lamp", "Brass Lamp", price=50.0, stock=1, seller_id="seller-001")
    return product_store


@pytest.fixture()
def shipping_address():
    return dict(SHIPPING_ADDRESS)


@pytest.fixture()
def place_order(products):
    """Place an order through the command handler and return its id."""
    from marketplace.order.creation import PlaceOrder

    def _place(buyer_id="buyer-001", items=None, payment_method="zoho_upi", **overrides):
        items = items if items is not None else [{"product_id": "prod-vase", "quantity": 2}]
        fields = {
            "buyer_id": buyer_id,
            "items": json.dumps(items),
            "shipping_address": json.dumps(SHIPPING_ADDRESS),
            "payment_method": payment_method,
        }
        fields.update(overrides)
        return current_domain.process(PlaceOrder(**fields), asynchronous=False)

    return _place


@pytest.fixture()
def load_order():
    from marketplace.order.order import Order

    def _load(order_id):
        return current_domain.repository_for(Order).get(order_id)

    return _load


@pytest.fixture()
def create_intent():
    """Register an order with its gateway and return the PaymentIntent."""
    from marketplace.payment.intent import CreatePaymentIntent

    def _create(order_id, buyer_id="buyer-001"):
        return current_domain.process(CreatePaymentIntent(order_id=order_id, buyer_id=buyer_id), asynchronous=False)

    return _create


@pytest.fixture()
def paid_order(place_order, create_intent):
    """A synthetic-gateway order that has been captured. Returns its id."""
    from marketplace.payment.verification import VerifyPayment

    order_id = place_order()
    create_intent(order_id)
    current_domain.process(VerifyPayment(order_id=order_id, buyer_id="buyer-001"), asynchronous=False)
    return order_id


@pytest.fixture()
def http_response():
    """Build a stand-in for ``requests.Response``."""
    from unittest.mock import MagicMock

    def _build(data, ok=True, status_code=200):
        response = MagicMock(ok=ok, status_code=status_code, text=json.dumps(data))
        response.json.return_value = data
        return response

    return _build
