"""Payment gateway registry.

Adapters are registered by name and looked up by name or by the payment
method stored on an order. Defaults are built from environment variables the
first time the registry is touched:

- ``cod``   CashOnDeliveryGateway
- ``zoho``  ZohoPaymentsGateway (synthetic without ZOHO_PAYMENTS_CLIENT_ID/SECRET)
- ``paytm`` PaytmGateway (synthetic without PAYTM_MERCHANT_ID/KEY)
"""

from protean.exceptions import ValidationError

from marketplace.gateway.cod_adapter import CashOnDeliveryGateway
from marketplace.gateway.paytm_adapter import PaytmGateway
from marketplace.gateway.port import PaymentGateway
from marketplace.gateway.zoho_adapter import ZohoPaymentsGateway

DEFAULT_WEBHOOK_GATEWAY = "zoho"

_gateways: dict[str, PaymentGateway] | None = None


def _registry() -> dict[str, PaymentGateway]:
    global _gateways
    if _gateways is None:
        _gateways = {}
        for gateway in (CashOnDeliveryGateway(), ZohoPaymentsGateway.from_env(), PaytmGateway.from_env()):
            _gateways[gateway.name] = gateway
    return _gateways


def get_gateway(name: str) -> PaymentGateway:
    """Return the adapter registered under ``name``."""
    try:
        return _registry()[name]
    except KeyError:
        raise ValidationError({"gateway": [f"Unknown payment gateway: {name}"]}) from None


def gateway_for_method(payment_method: str) -> PaymentGateway:
    """Return the adapter that settles ``payment_method``."""
    for gateway in _registry().values():
        if payment_method in gateway.payment_methods:
            return gateway
    raise ValidationError({"payment_method": [f"No gateway supports payment method {payment_method}"]})


def register_gateway(gateway: PaymentGateway) -> None:
    """Add or replace an adapter (useful for tests and new providers)."""
    _registry()[gateway.name] = gateway


def reset_gateways() -> None:
    """Drop all adapters; defaults are rebuilt from the environment on next use."""
    global _gateways
    _gateways = None


def available_payment_methods() -> list[dict]:
    methods = []
    for gateway in _registry().values():
        methods.extend(gateway.describe_methods())
    return methods


def gateway_statuses() -> dict[str, dict]:
    return {name: gateway.configuration_status() for name, gateway in _registry().items()}
