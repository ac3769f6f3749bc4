"""Error taxonomy for the marketplace.

Validation-flavoured failures extend Protean's ``ValidationError`` so they
carry a field-keyed ``messages`` dict; lookups extend ``ObjectNotFoundError``.
The API layer maps each class to an HTTP status.
"""

from protean.exceptions import ObjectNotFoundError, ValidationError


class MarketplaceError(Exception):
    """Base class for failures that are not input validation."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    @property
    def messages(self):
        return self.message


class NotFoundError(ObjectNotFoundError):
    """Referenced order or product does not exist (or is not visible to the caller)."""


class InsufficientStockError(ValidationError):
    """A product cannot cover the requested quantity."""


class InvalidTransitionError(ValidationError):
    """The requested status change is not allowed from the current status."""


class SignatureVerificationError(MarketplaceError):
    """A gateway callback failed authentication."""


class MalformedWebhookError(MarketplaceError):
    """An authenticated gateway callback whose payload cannot be applied."""

    def __init__(self, message: str, gateway: str = "", **context):
        super().__init__(message, gateway=gateway, **context)
        self.gateway = gateway


class GatewayError(MarketplaceError):
    """A payment provider call failed.

    ``detail`` holds whatever the provider returned; it is logged but never
    surfaced to API callers.
    """

    def __init__(self, message: str, gateway: str = "", detail=None, **context):
        super().__init__(message, gateway=gateway, **context)
        self.gateway = gateway
        self.detail = detail


class IdempotentNoop(MarketplaceError):
    """The transition has already been applied; nothing to do."""
