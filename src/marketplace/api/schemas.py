"""Pydantic request/response schemas for the marketplace API.

These are external contracts, kept separate from the internal Protean
commands and aggregates.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

Timestamp = datetime | str | None


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class AddressSchema(BaseModel):
    full_name: str = Field(min_length=1, max_length=100)
    phone: str = Field(min_length=1, max_length=20)
    email: str | None = None
    address_line1: str = Field(min_length=1, max_length=255)
    address_line2: str | None = None
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    zip_code: str = Field(min_length=1, max_length=10)
    country: str = "India"
    landmark: str | None = None
    address_type: Literal["home", "office", "other"] = "home"


class OrderLineSchema(BaseModel):
    product_id: str
    quantity: int = Field(ge=1, le=10)


# ---------------------------------------------------------------------------
# Order request schemas
# ---------------------------------------------------------------------------
class PlaceOrderRequest(BaseModel):
    items: list[OrderLineSchema] = Field(min_length=1, max_length=20)
    shipping_address: AddressSchema
    billing_address: AddressSchema | None = None
    use_shipping_as_billing: bool = True
    payment_method: str
    notes: str | None = Field(default=None, max_length=500)
    is_gift: bool = False
    gift_message: str | None = Field(default=None, max_length=200)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "items": [{"product_id": "prod-001", "quantity": 2}],
                    "shipping_address": {
                        "full_name": "Asha Rao",
                        "phone": "9876543210",
                        "address_line1": "12 Temple Street",
                        "city": "Jaipur",
                        "state": "Rajasthan",
                        "zip_code": "302001",
                    },
                    "payment_method": "zoho_upi",
                }
            ]
        }
    }


class CancelOrderRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class UpdateOrderStatusRequest(BaseModel):
    status: str
    note: str | None = Field(default=None, max_length=500)
    tracking_number: str | None = None
    courier_service: str | None = None


# ---------------------------------------------------------------------------
# Order response schemas
# ---------------------------------------------------------------------------
class OrderItemResponse(BaseModel):
    id: str | None = None
    product_id: str
    seller_id: str
    name: str
    unit_price: float
    quantity: int
    image_ref: str | None = None


class PricingResponse(BaseModel):
    subtotal: float
    shipping_cost: float
    tax: float
    total: float
    currency: str


class StatusEntryResponse(BaseModel):
    status: str
    note: str | None = None
    timestamp: Timestamp = None


class RefundRecordResponse(BaseModel):
    gateway_refund_id: str
    amount: float
    reason: str | None = None
    processed_at: Timestamp = None


class OrderResponse(BaseModel):
    id: str
    order_number: str
    buyer_id: str
    items: list[OrderItemResponse] = []
    pricing: PricingResponse
    shipping_address: AddressSchema
    billing_address: AddressSchema | None = None
    payment_method: str
    payment_status: str
    gateway_name: str | None = None
    gateway_correlation_id: str | None = None
    paid_at: Timestamp = None
    status: str
    status_history: list[StatusEntryResponse] = []
    cancellation_reason: str | None = None
    cancelled_at: Timestamp = None
    delivered_at: Timestamp = None
    tracking_number: str | None = None
    courier_service: str | None = None
    refunds: list[RefundRecordResponse] = []
    refund_amount: float = 0.0
    refund_reason: str | None = None
    refunded_at: Timestamp = None
    notes: str | None = None
    is_gift: bool = False
    gift_message: str | None = None
    created_at: Timestamp = None
    updated_at: Timestamp = None


class PaginationResponse(BaseModel):
    current_page: int
    total_pages: int
    total_orders: int
    has_next: bool
    has_prev: bool


class OrderListResponse(BaseModel):
    orders: list[OrderResponse]
    pagination: PaginationResponse


class OrderActionResponse(BaseModel):
    message: str
    order: OrderResponse


# ---------------------------------------------------------------------------
# Payment schemas
# ---------------------------------------------------------------------------
class OrderReferenceRequest(BaseModel):
    order_id: str


class RefundRequest(BaseModel):
    order_id: str
    amount: float | None = Field(default=None, gt=0)
    reason: str | None = Field(default=None, max_length=500)


class PaymentIntentResponse(BaseModel):
    order_id: str
    gateway: str
    correlation_id: str
    amount: float
    currency: str
    redirect_url: str | None = None
    token: str | None = None
    synthetic: bool = False


class VerificationResponse(BaseModel):
    order_id: str
    payment_status: str
    status: str
    provider_status: str
    updated: bool
    synthetic: bool = False


class RefundResponse(BaseModel):
    order_id: str
    refund_id: str
    amount: float
    refund_status: str
    payment_status: str
    status: str
    synthetic: bool = False


class PaymentStatusResponse(BaseModel):
    order_id: str
    order_number: str
    payment_method: str
    payment_status: str
    status: str
    total: float
    refund_amount: float
    gateway: str | None = None
    correlation_id: str | None = None
    paid_at: Timestamp = None


class WebhookAckResponse(BaseModel):
    status: str
    result: str


class PaymentMethodsResponse(BaseModel):
    methods: list[dict]
