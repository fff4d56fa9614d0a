"""
Order pricing.

Computes subtotal, shipping, tax, discount and total for a cart. The same
arithmetic backs the totals shown to the shopper and the authoritative totals
stored on an order, so it is kept free of I/O.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

from pydantic import Field

from .schemas import CamelModel


FREE_SHIPPING_THRESHOLD = Decimal("50.00")
FLAT_SHIPPING_FEE = Decimal("4.99")
ZERO = Decimal("0.00")
CENT = Decimal("0.01")

Amount = Union[Decimal, float, int, str]


class CartLine(CamelModel):
    """One product and quantity in a shopper's cart."""

    product_id: str = Field(..., min_length=1)
    shopify_variant_id: Optional[str] = None
    name: str = ""
    price: Decimal = Field(..., ge=0, decimal_places=2, description="Unit price in store currency")
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal

    def as_dict(self) -> dict[str, float]:
        return {
            "subtotal": float(self.subtotal),
            "shipping": float(self.shipping),
            "tax": float(self.tax),
            "discount": float(self.discount),
            "total": float(self.total),
        }


def to_money(value: Amount) -> Decimal:
    """Quantize an amount to whole cents, rounding half up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_subtotal(lines: Iterable[CartLine]) -> Decimal:
    return to_money(sum((Decimal(line.price) * line.quantity for line in lines), ZERO))


def calculate_shipping(subtotal: Amount) -> Decimal:
    """Flat fee below the free-shipping threshold, free at or above it."""
    if to_money(subtotal) >= FREE_SHIPPING_THRESHOLD:
        return ZERO
    return FLAT_SHIPPING_FEE


def calculate_totals(lines: Iterable[CartLine], discount: Amount = ZERO) -> PriceBreakdown:
    """Price a cart.

    Args:
        lines: Cart lines; their order does not affect the result.
        discount: Discount amount already validated for this subtotal.

    Returns:
        A PriceBreakdown. The total never goes below zero, so a fixed
        discount larger than the order is absorbed rather than refunded.
    """
    subtotal = calculate_subtotal(lines)
    shipping = calculate_shipping(subtotal)
    discount_amount = to_money(discount)
    total = subtotal + shipping - discount_amount
    if total < ZERO:
        total = ZERO
    return PriceBreakdown(
        subtotal=subtotal,
        shipping=shipping,
        tax=ZERO,
        discount=discount_amount,
        total=to_money(total),
    )
