"""Order placement: command and handler.

Checkout validates every line against the product store, prices the order,
reserves stock line by line (all or nothing), persists the order and then
empties the buyer's cart.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, Identifier, String, Text
from protean.utils.globals import current_domain

from marketplace.audit import audit
from marketplace.cart import clear_cart_quietly
from marketplace.domain import marketplace
from marketplace.exceptions import InsufficientStockError, NotFoundError
from marketplace.gateway import gateway_for_method
from marketplace.order.order import Address, Order, PaymentMethod
from marketplace.order.pricing import compute_pricing, generate_order_number
from marketplace.stock import get_product_store, get_stock_ledger

MAX_ITEMS = 20
MAX_QUANTITY = 10
ORDER_NUMBER_ATTEMPTS = 5

logger = structlog.get_logger(__name__)

_ADDRESS_FIELDS = {
    "full_name",
    "phone",
    "email",
    "address_line1",
    "address_line2",
    "city",
    "state",
    "zip_code",
    "country",
    "landmark",
    "address_type",
}


@marketplace.command(part_of="Order")
class PlaceOrder:
    buyer_id = Identifier(required=True)
    items = Text(required=True)  # JSON: [{"product_id": ..., "quantity": ...}]
    shipping_address = Text(required=True)  # JSON: address dict
    billing_address = Text()  # JSON: address dict
    use_shipping_as_billing = Boolean(default=True)
    payment_method = String(required=True, max_length=30)
    notes = String(max_length=500)
    is_gift = Boolean(default=False)
    gift_message = String(max_length=200)


def _loads(value):
    if value is None or not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        raise ValidationError({"payload": ["Malformed JSON"]}) from None


def _clean_address(data, field_name):
    if not isinstance(data, dict):
        raise ValidationError({field_name: ["Address is required"]})
    cleaned = {k: v for k, v in data.items() if k in _ADDRESS_FIELDS and v not in (None, "")}
    # Construct once so field validation fails before any stock moves
    Address(**cleaned)
    return cleaned


def _validate_lines(lines):
    if not isinstance(lines, list) or not lines:
        raise ValidationError({"items": ["Order must contain at least one item"]})
    if len(lines) > MAX_ITEMS:
        raise ValidationError({"items": [f"Order cannot contain more than {MAX_ITEMS} items"]})

    validated = []
    for line in lines:
        product_id = line.get("product_id") if isinstance(line, dict) else None
        quantity = line.get("quantity") if isinstance(line, dict) else None
        if not product_id:
            raise ValidationError({"items": ["Each item needs a product_id"]})
        if not isinstance(quantity, int) or isinstance(quantity, bool) or not 1 <= quantity <= MAX_QUANTITY:
            raise ValidationError({"items": [f"Quantity must be between 1 and {MAX_QUANTITY}"]})
        validated.append((str(product_id), quantity))
    return validated


def _unique_order_number(repo) -> str:
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = generate_order_number()
        if repo.find_by_order_number(candidate) is None:
            return candidate
        logger.warning("order_number_collision", order_number=candidate)
    raise ValidationError({"order_number": ["Could not allocate a unique order number"]})


@marketplace.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        lines = _validate_lines(_loads(command.items))

        try:
            payment_method = PaymentMethod(command.payment_method).value
        except ValueError:
            raise ValidationError({"payment_method": [f"Unsupported payment method: {command.payment_method}"]}) from None
        gateway = gateway_for_method(payment_method)

        shipping_address = _clean_address(_loads(command.shipping_address), "shipping_address")
        if command.use_shipping_as_billing or not command.billing_address:
            billing_address = dict(shipping_address)
        else:
            billing_address = _clean_address(_loads(command.billing_address), "billing_address")

        store = get_product_store()
        items_data = []
        for product_id, quantity in lines:
            product = store.find_active_by_id(product_id)
            if product is None:
                raise NotFoundError(f"Product {product_id} not found or unavailable")
            if not product.seller_id:
                raise ValidationError({"items": [f"Product {product.name} has no seller"]})
            if product.stock < quantity:
                raise InsufficientStockError(
                    {"items": [f"Insufficient stock for {product.name}. Available: {product.stock}"]}
                )
            items_data.append(
                {
                    "product_id": product.id,
                    "seller_id": product.seller_id,
                    "name": product.name,
                    "unit_price": product.price,
                    "quantity": quantity,
                    "image_ref": product.image_ref,
                }
            )

        pricing = compute_pricing((item["unit_price"], item["quantity"]) for item in items_data)

        repo = current_domain.repository_for(Order)
        order_number = _unique_order_number(repo)

        ledger = get_stock_ledger()
        ledger.reserve(order_number, lines)
        try:
            order = Order.create(
                order_number=order_number,
                buyer_id=command.buyer_id,
                items_data=items_data,
                pricing=pricing,
                shipping_address=shipping_address,
                billing_address=billing_address,
                payment_method=payment_method,
                gateway_name=gateway.name,
                notes=command.notes,
                is_gift=command.is_gift,
                gift_message=command.gift_message,
            )
            repo.add(order)
        except Exception:
            ledger.release(order_number, lines)
            logger.error("order_persist_failed_stock_released", order_number=order_number)
            raise

        audit(order, "order_placed", actor=str(command.buyer_id), total=pricing["total"], items=len(lines))
        logger.info(
            "order_placed",
            order_id=str(order.id),
            order_number=order_number,
            buyer_id=str(command.buyer_id),
            total=pricing["total"],
        )

        clear_cart_quietly(str(command.buyer_id))
        return str(order.id)
