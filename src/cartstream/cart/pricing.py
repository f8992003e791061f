"""Pricing engine — per-item discounted price and cart-level totals.

Pure functions only. Rounding policy:

    - a unit price is rounded to cents when it is computed;
    - at summary time only ``tax`` and ``total`` are rounded; ``subtotal`` and
      ``discount_amount`` are returned exactly as used in the computation, so
      ``total == round_money(max(0, subtotal - discount_amount) + tax + shipping)``
      can always be re-derived from a summary.

Cents are rounded half-up through ``Decimal(str(value))``.
"""

import math
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Protocol

_CENT = Decimal("0.01")


class DiscountType(Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class Priceable(Protocol):
    """Anything that has a base price and a percentage discount."""

    price: float
    discount_percent: float


class PricedLine(Protocol):
    """A cart line as seen by the engine: cached unit price and quantity."""

    price: float
    quantity: int


@dataclass(frozen=True)
class AppliedDiscount:
    """Snapshot of the coupon attached to a cart."""

    coupon_id: str
    code: str
    type: DiscountType
    value: float

    @classmethod
    def from_dict(cls, data: dict | None) -> "AppliedDiscount | None":
        if not data:
            return None
        return cls(
            coupon_id=str(data.get("coupon_id", "")),
            code=data["code"],
            type=DiscountType(data["type"]),
            value=float(data["value"]),
        )

    def to_dict(self) -> dict:
        return {"coupon_id": self.coupon_id, "code": self.code, "type": self.type.value, "value": self.value}


@dataclass(frozen=True)
class CartTotals:
    subtotal: float
    tax_rate: float
    tax: float
    shipping: float
    discount: AppliedDiscount | None
    discount_amount: float
    total: float


def round_money(value: float) -> float:
    """Round to cents, half-up. Non-finite input collapses to 0."""
    if value is None or not math.isfinite(value):
        return 0.0
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def unit_price(product: Priceable) -> float:
    """Discounted unit price: ``base - base * clamp(discount, 0, 100) / 100``."""
    base = _as_float(product.price)
    discount = min(max(_as_float(product.discount_percent), 0.0), 100.0)
    return round_money(base - base * discount / 100)


def discount_amount_for(subtotal: float, discount: AppliedDiscount | None) -> float:
    """Discount for ``subtotal``, clamped to ``[0, subtotal]``."""
    if discount is None:
        return 0.0
    if discount.type is DiscountType.PERCENT:
        amount = subtotal * discount.value / 100
    else:
        amount = discount.value
    return min(max(amount, 0.0), max(subtotal, 0.0))


def summarize(
    lines: Iterable[PricedLine],
    tax_rate: float,
    shipping: float = 0.0,
    discount: AppliedDiscount | None = None,
) -> CartTotals:
    subtotal = sum((line.price * line.quantity for line in lines), 0.0)
    discount_amount = discount_amount_for(subtotal, discount)
    taxable = max(0.0, subtotal - discount_amount)
    tax = round_money(taxable * tax_rate)
    total = round_money(taxable + tax + shipping)

    return CartTotals(
        subtotal=subtotal,
        tax_rate=tax_rate,
        tax=tax,
        shipping=shipping,
        discount=discount,
        discount_amount=discount_amount,
        total=total,
    )


def _as_float(value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0
