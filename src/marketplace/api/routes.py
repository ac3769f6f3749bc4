"""FastAPI routes for the marketplace: orders and payments.

The requester's identity arrives in ``X-Buyer-Id`` (or ``X-Admin-Id`` for
privileged calls), set by the authentication layer in front of this service.
"""

import json
import math
import os

import structlog
from fastapi import APIRouter, Header, HTTPException, Query, Request
from fastapi.responses import RedirectResponse
from protean.utils.globals import current_domain

from marketplace.api.schemas import (
    CancelOrderRequest,
    OrderActionResponse,
    OrderListResponse,
    OrderReferenceRequest,
    OrderResponse,
    PaginationResponse,
    PaymentIntentResponse,
    PaymentMethodsResponse,
    PaymentStatusResponse,
    PlaceOrderRequest,
    RefundRequest,
    RefundResponse,
    UpdateOrderStatusRequest,
    VerificationResponse,
    WebhookAckResponse,
)
from marketplace.exceptions import MalformedWebhookError, NotFoundError, SignatureVerificationError
from marketplace.gateway import (
    DEFAULT_WEBHOOK_GATEWAY,
    available_payment_methods,
    gateway_statuses,
    get_gateway,
)
from marketplace.gateway.port import PaymentEventType
from marketplace.order.cancellation import CancelOrder
from marketplace.order.creation import PlaceOrder
from marketplace.order.order import Order
from marketplace.order.status_update import UpdateOrderStatus
from marketplace.payment.intent import CreatePaymentIntent
from marketplace.payment.refund import RequestRefund
from marketplace.payment.verification import VerifyPayment
from marketplace.payment.webhook import IGNORED, ReconcilePaymentEvent

logger = structlog.get_logger(__name__)


def _order_response(order) -> OrderResponse:
    return OrderResponse(**order.to_dict())


def _require_buyer(x_buyer_id: str) -> str:
    if not x_buyer_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_buyer_id


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=OrderResponse)
async def place_order(body: PlaceOrderRequest, x_buyer_id: str = Header(default="")) -> OrderResponse:
    """Turn the buyer's selected items into an order and reserve their stock."""
    buyer_id = _require_buyer(x_buyer_id)
    command = PlaceOrder(
        buyer_id=buyer_id,
        items=json.dumps([line.model_dump() for line in body.items]),
        shipping_address=json.dumps(body.shipping_address.model_dump()),
        billing_address=json.dumps(body.billing_address.model_dump()) if body.billing_address else None,
        use_shipping_as_billing=body.use_shipping_as_billing,
        payment_method=body.payment_method,
        notes=body.notes,
        is_gift=body.is_gift,
        gift_message=body.gift_message,
    )
    order_id = current_domain.process(command, asynchronous=False)
    return _order_response(current_domain.repository_for(Order).get(order_id))


@order_router.get("/mine", response_model=OrderListResponse)
async def list_my_orders(
    x_buyer_id: str = Header(default=""),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: str | None = None,
) -> OrderListResponse:
    buyer_id = _require_buyer(x_buyer_id)
    orders, total = current_domain.repository_for(Order).list_for_buyer(buyer_id, page=page, limit=limit, status=status)
    total_pages = math.ceil(total / limit) if total else 0
    return OrderListResponse(
        orders=[_order_response(order) for order in orders],
        pagination=PaginationResponse(
            current_page=page,
            total_pages=total_pages,
            total_orders=total,
            has_next=page < total_pages,
            has_prev=page > 1,
        ),
    )


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str, x_buyer_id: str = Header(default="")) -> OrderResponse:
    buyer_id = _require_buyer(x_buyer_id)
    return _order_response(current_domain.repository_for(Order).get_for_buyer(order_id, buyer_id))


@order_router.patch("/{order_id}/cancel", response_model=OrderActionResponse)
async def cancel_order(
    order_id: str,
    body: CancelOrderRequest | None = None,
    x_buyer_id: str = Header(default=""),
) -> OrderActionResponse:
    buyer_id = _require_buyer(x_buyer_id)
    command = CancelOrder(order_id=order_id, buyer_id=buyer_id, reason=body.reason if body else None)
    current_domain.process(command, asynchronous=False)
    order = current_domain.repository_for(Order).get(order_id)
    return OrderActionResponse(message="Order cancelled successfully", order=_order_response(order))


@order_router.patch("/{order_id}/status", response_model=OrderActionResponse)
async def update_order_status(
    order_id: str,
    body: UpdateOrderStatusRequest,
    x_admin_id: str = Header(default=""),
) -> OrderActionResponse:
    """Privileged: move an order along the fulfilment graph."""
    if not x_admin_id:
        raise HTTPException(status_code=403, detail="Admin access required")
    command = UpdateOrderStatus(
        order_id=order_id,
        status=body.status,
        note=body.note,
        tracking_number=body.tracking_number,
        courier_service=body.courier_service,
        updated_by=f"admin:{x_admin_id}",
    )
    current_domain.process(command, asynchronous=False)
    order = current_domain.repository_for(Order).get(order_id)
    return OrderActionResponse(message="Order status updated successfully", order=_order_response(order))


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.get("/methods", response_model=PaymentMethodsResponse)
async def list_payment_methods() -> PaymentMethodsResponse:
    return PaymentMethodsResponse(methods=available_payment_methods())


@payment_router.get("/gateways")
async def gateway_configuration() -> dict:
    """Which gateways are live and which run synthetic (non-production only)."""
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")
    return {"gateways": gateway_statuses()}


@payment_router.post("/create-order", response_model=PaymentIntentResponse)
async def create_payment_intent(
    body: OrderReferenceRequest,
    x_buyer_id: str = Header(default=""),
) -> PaymentIntentResponse:
    buyer_id = _require_buyer(x_buyer_id)
    intent = current_domain.process(
        CreatePaymentIntent(order_id=body.order_id, buyer_id=buyer_id),
        asynchronous=False,
    )
    return PaymentIntentResponse(
        order_id=body.order_id,
        gateway=intent.gateway,
        correlation_id=intent.correlation_id,
        amount=intent.amount,
        currency=intent.currency,
        redirect_url=intent.redirect_url,
        token=intent.token,
        synthetic=intent.synthetic,
    )


@payment_router.post("/verify", response_model=VerificationResponse)
async def verify_payment(body: OrderReferenceRequest, x_buyer_id: str = Header(default="")) -> VerificationResponse:
    buyer_id = _require_buyer(x_buyer_id)
    result = current_domain.process(VerifyPayment(order_id=body.order_id, buyer_id=buyer_id), asynchronous=False)
    return VerificationResponse(**result)


@payment_router.post("/refund", response_model=RefundResponse)
async def request_refund(
    body: RefundRequest,
    x_buyer_id: str = Header(default=""),
    x_admin_id: str = Header(default=""),
) -> RefundResponse:
    if not (x_buyer_id or x_admin_id):
        raise HTTPException(status_code=401, detail="Authentication required")
    command = RequestRefund(
        order_id=body.order_id,
        buyer_id=None if x_admin_id else x_buyer_id,
        amount=body.amount,
        reason=body.reason,
        requested_by=f"admin:{x_admin_id}" if x_admin_id else f"buyer:{x_buyer_id}",
    )
    result = current_domain.process(command, asynchronous=False)
    return RefundResponse(**result)


@payment_router.get("/order/{order_id}/status", response_model=PaymentStatusResponse)
async def payment_status(order_id: str, x_buyer_id: str = Header(default="")) -> PaymentStatusResponse:
    buyer_id = _require_buyer(x_buyer_id)
    order = current_domain.repository_for(Order).get_for_buyer(order_id, buyer_id)
    return PaymentStatusResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        payment_method=order.payment_method,
        payment_status=order.payment_status,
        status=order.status,
        total=order.pricing.total,
        refund_amount=order.refund_amount or 0.0,
        gateway=order.gateway_name,
        correlation_id=order.gateway_correlation_id,
        paid_at=order.paid_at,
    )


def _reconcile(gateway_name: str, raw_body: bytes, headers, form=None, source: str = "webhook"):
    """Authenticate and translate a provider callback, then apply it."""
    gateway = get_gateway(gateway_name)
    event = gateway.parse_webhook(raw_body, headers, form=form)
    command = ReconcilePaymentEvent(
        gateway=gateway.name,
        correlation_id=event.correlation_id,
        event_type=event.event_type.value if event.event_type else None,
        provider_event=event.provider_event,
        provider_status=event.provider_status,
        provider_payment_id=event.provider_payment_id,
        amount=event.amount,
        refund_id=event.refund_id,
        reason=event.reason,
        source=source,
    )
    return event, current_domain.process(command, asynchronous=False)


async def _acknowledge(gateway_name: str, request: Request) -> WebhookAckResponse:
    """Acknowledge a callback; an authenticated payload that cannot be applied is ignored."""
    try:
        _, result = _reconcile(gateway_name, await request.body(), request.headers)
    except MalformedWebhookError as exc:
        logger.warning("payment_webhook_unusable", gateway=gateway_name, reason=exc.message)
        result = IGNORED
    return WebhookAckResponse(status="received", result=result)


@payment_router.post("/webhook", response_model=WebhookAckResponse)
async def default_webhook(request: Request) -> WebhookAckResponse:
    """Webhook endpoint for the default provider."""
    return await _acknowledge(DEFAULT_WEBHOOK_GATEWAY, request)


@payment_router.post("/{gateway}/webhook", response_model=WebhookAckResponse)
async def gateway_webhook(gateway: str, request: Request) -> WebhookAckResponse:
    return await _acknowledge(gateway, request)


@payment_router.post("/{gateway}/callback")
async def gateway_callback(gateway: str, request: Request) -> RedirectResponse:
    """Browser return from the provider's payment page (form post)."""
    client_url = os.environ.get("CLIENT_URL", "http://localhost:8080").rstrip("/")
    raw_body = await request.body()
    form = await request.form()

    try:
        event, result = _reconcile(gateway, raw_body, request.headers, form=form, source="callback")
    except SignatureVerificationError:
        logger.warning("payment_callback_rejected", gateway=gateway)
        return RedirectResponse(f"{client_url}/payment-failed?error=invalid_checksum", status_code=302)
    except MalformedWebhookError as exc:
        logger.warning("payment_callback_unusable", gateway=gateway, reason=exc.message)
        return RedirectResponse(f"{client_url}/payment-failed?error=invalid_payload", status_code=302)
    except NotFoundError:
        logger.warning("payment_callback_unknown_order", gateway=gateway)
        return RedirectResponse(f"{client_url}/payment-failed?error=order_not_found", status_code=302)

    order = current_domain.repository_for(Order).find_by_correlation_id(event.correlation_id)
    order_id = str(order.id) if order else ""
    if event.event_type == PaymentEventType.CAPTURED and result != IGNORED:
        return RedirectResponse(f"{client_url}/payment-success?orderId={order_id}", status_code=302)
    return RedirectResponse(
        f"{client_url}/payment-failed?orderId={order_id}&status={event.provider_status or ''}",
        status_code=302,
    )
