"""Order pricing and order-number generation.

Amounts are whole rupees. Tax is rounded half-up, never to even.
"""

import random
import string
import time
from decimal import ROUND_HALF_UP, Decimal

FREE_SHIPPING_THRESHOLD = Decimal("1000")
FLAT_SHIPPING_COST = Decimal("50")
TAX_RATE = Decimal("0.05")
CURRENCY = "INR"

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def _money(value) -> Decimal:
    return Decimal(str(value))


def compute_pricing(lines) -> dict:
    """Price ``(unit_price, quantity)`` lines.

    Shipping is free strictly above the threshold; tax is 5% of the subtotal
    rounded half-up to a whole unit.
    """
    subtotal = sum((_money(price) * int(quantity) for price, quantity in lines), Decimal("0"))
    shipping_cost = Decimal("0") if subtotal > FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING_COST
    tax = (subtotal * TAX_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    total = subtotal + shipping_cost + tax

    return {
        "subtotal": float(subtotal),
        "shipping_cost": float(shipping_cost),
        "tax": float(tax),
        "total": float(total),
        "currency": CURRENCY,
    }


def generate_order_number(now_ms: int | None = None, rng: random.Random | None = None) -> str:
    """``ORD-<epoch millis>-<6 uppercase alphanumerics>``."""
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    rng = rng or random.SystemRandom()
    suffix = "".join(rng.choice(_SUFFIX_ALPHABET) for _ in range(6))
    return f"ORD-{now_ms}-{suffix}"
