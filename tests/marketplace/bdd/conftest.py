"""Shared BDD fixtures and step definitions for the marketplace."""

import json

import pytest
from protean import current_domain
from protean.exceptions import ValidationError
from pytest_bdd import given, parsers, then

from marketplace.order.creation import PlaceOrder
from marketplace.order.order import Order

SHIPPING_ADDRESS = {
    "full_name": "Asha Rao",
    "phone": "9876543210",
    "address_line1": "12 Temple Street",
    "city": "Jaipur",
    "state": "Rajasthan",
    "zip_code": "302001",
}


@pytest.fixture()
def buyer_id():
    return "buyer-001"


@pytest.fixture()
def error():
    """Container for captured validation errors."""
    return {"exc": None}


@pytest.fixture()
def gateway_result():
    return {"value": None}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('the catalogue has "{product_id}" priced {price:f} with {stock:d} in stock'))
def _catalogue(product_store, product_id, price, stock):
    product_store.add_product(product_id, product_id.replace("prod-", "").title(), price=price, stock=stock)


@given(
    parsers.cfparse('the buyer has placed an order for {quantity:d} of "{product_id}" paid by "{method}"'),
    target_fixture="order_id",
)
def _placed_order(buyer_id, quantity, product_id, method):
    command = PlaceOrder(
        buyer_id=buyer_id,
        items=json.dumps([{"product_id": product_id, "quantity": quantity}]),
        shipping_address=json.dumps(SHIPPING_ADDRESS),
        payment_method=method,
    )
    return current_domain.process(command, asynchronous=False)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
def _order(order_id):
    return current_domain.repository_for(Order).get(order_id)


@then(parsers.cfparse('the order status is "{status}"'))
def _order_status(order_id, status):
    assert _order(order_id).status == status


@then(parsers.cfparse('the payment status is "{status}"'))
def _payment_status(order_id, status):
    assert _order(order_id).payment_status == status


@then(parsers.cfparse("the order total is {total:f}"))
def _order_total(order_id, total):
    assert _order(order_id).pricing.total == total


@then(parsers.cfparse("the refunded amount is {amount:f}"))
def _refunded_amount(order_id, amount):
    assert _order(order_id).refund_amount == amount


@then(parsers.cfparse("the order history has {count:d} entries"))
def _history_length(order_id, count):
    assert len(_order(order_id).status_history) == count


@then(parsers.cfparse('"{product_id}" has {stock:d} in stock'))
def _stock_level(product_store, product_id, stock):
    assert product_store.get(product_id).stock == stock


@then(parsers.cfparse('the request is rejected with "{message}"'))
def _rejected(error, message):
    assert error["exc"] is not None, "Expected a validation error but none was raised"
    assert isinstance(error["exc"], ValidationError)
    assert message in str(error["exc"].messages)
