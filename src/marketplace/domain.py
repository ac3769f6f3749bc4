"""Marketplace bounded context: order lifecycle and payment reconciliation.

Owns the Order aggregate, the stock reservations it makes against the product
store, and the reconciliation of order state against payment gateways
(cash on delivery, Zoho Payments, Paytm).
"""

import structlog
from protean.domain import Domain

marketplace = Domain(name="marketplace")

logger = structlog.get_logger(__name__)
