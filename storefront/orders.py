"""
Order recording.

record_order() is the checkout path: it prices the cart, re-checks and
redeems the discount code, asks the checkout backend for a payment page, and
only then writes the order. A backend failure therefore leaves no order row
behind; the surrounding request transaction rolls back the redemption too.
"""

import json
import logging
import secrets
import time
from datetime import datetime
from typing import Optional, Sequence

from pydantic import Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from . import discounts
from .errors import NotFound, ValidationFailure
from .models import Order, OrderItem, User
from .payments import CheckoutBackend
from .pricing import ZERO, CartLine, PriceBreakdown, calculate_totals
from .schemas import CamelModel, ShippingAddress

logger = logging.getLogger(__name__)

PAYMENT_STATUSES = {"pending", "paid", "failed", "refunded"}


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class CheckoutRequest(CamelModel):
    """Schema for starting a checkout."""

    items: list[CartLine] = Field(default_factory=list)
    shipping_address: ShippingAddress
    discount_code: Optional[str] = None
    # Client-side display value; the server recomputes it from discount_code.
    discount: Optional[float] = None


class CheckoutResponse(CamelModel):
    url: str


class OrderItemResponse(CamelModel):
    id: int
    product_id: str
    variant_id: Optional[str] = None
    quantity: int
    price: float
    product: dict


class OrderResponse(CamelModel):
    id: int
    order_number: str
    status: str
    subtotal: float
    shipping: float
    tax: float
    discount: float
    discount_code: Optional[str] = None
    total: float
    shipping_address: Optional[dict] = None
    payment_method: str
    payment_status: str
    payment_reference: Optional[str] = None
    created_at: datetime
    items: list[OrderItemResponse] = Field(default_factory=list)


class RecordedOrder(CamelModel):
    order: OrderResponse
    url: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def generate_order_number() -> str:
    """Timestamp-derived order number, e.g. ``GC-1718000000000-3FA2``."""
    return f"GC-{int(time.time() * 1000)}-{secrets.token_hex(2).upper()}"


def _order_to_response(order: Order) -> OrderResponse:
    """Convert an Order ORM object to an OrderResponse, parsing the address JSON."""
    address = None
    if order.shipping_address:
        try:
            address = json.loads(order.shipping_address)
        except (json.JSONDecodeError, TypeError):
            address = None

    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        status=order.status,
        subtotal=order.subtotal,
        shipping=order.shipping,
        tax=order.tax,
        discount=order.discount,
        discount_code=order.discount_code,
        total=order.total,
        shipping_address=address,
        payment_method=order.payment_method,
        payment_status=order.payment_status,
        payment_reference=order.payment_reference,
        created_at=order.created_at,
        items=[
            OrderItemResponse(
                id=item.id,
                product_id=item.product_id,
                variant_id=item.variant_id,
                quantity=item.quantity,
                price=item.price,
                product={"name": item.name, "images": [item.image] if item.image else []},
            )
            for item in order.items
        ],
    )


async def _load_order(db: AsyncSession, order_id: int) -> Order:
    stmt = select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
    result = await db.execute(stmt)
    return result.scalar_one()


async def price_checkout(
    db: AsyncSession,
    lines: Sequence[CartLine],
    discount_code: Optional[str],
) -> tuple[PriceBreakdown, Optional[str]]:
    """Price a cart with its discount code validated server-side.

    Returns the breakdown and the normalized code (None without a code).
    Raises ValidationFailure when the code is given but not applicable.
    """
    undiscounted = calculate_totals(lines)
    code = discounts.normalize_code(discount_code) or None
    if code is None:
        return undiscounted, None

    result = await discounts.validate_discount(db, code, undiscounted.subtotal)
    if not result.valid:
        raise ValidationFailure(result.error or discounts.INVALID_CODE)
    return calculate_totals(lines, result.discount), code


# ---------------------------------------------------------------------------
# Operations (all async)
# ---------------------------------------------------------------------------


async def record_order(
    db: AsyncSession,
    user: User,
    lines: Sequence[CartLine],
    shipping_address: ShippingAddress,
    backend: CheckoutBackend,
    discount_code: Optional[str] = None,
) -> RecordedOrder:
    """Create the checkout session and persist exactly one pending order.

    Args:
        db: Async database session; the caller commits.
        user: Owner of the order.
        lines: Validated cart lines.
        shipping_address: Address to ship to.
        backend: Checkout backend that produces the payment page.
        discount_code: Optional code to redeem.

    Returns:
        The stored order and the payment redirect URL.

    Raises:
        ValidationFailure: empty cart or unusable discount code.
        UpstreamFailure: the backend could not create a session.
    """
    if not lines:
        raise ValidationFailure("Cart is empty")

    breakdown, code = await price_checkout(db, lines, discount_code)
    if code is not None:
        await discounts.redeem_discount(db, code)

    order_number = generate_order_number()
    session = await backend.create_session(order_number, lines, breakdown, discount_code=code)

    order = Order(
        order_number=order_number,
        user_id=user.id,
        status="pending",
        subtotal=float(breakdown.subtotal),
        shipping=float(breakdown.shipping),
        tax=float(breakdown.tax),
        discount=float(breakdown.discount),
        discount_code=code if breakdown.discount > ZERO else None,
        total=float(breakdown.total),
        shipping_address=shipping_address.model_dump_json(by_alias=True),
        payment_method=backend.name,
        payment_status="pending",
        payment_reference=session.reference,
        items=[
            OrderItem(
                product_id=line.product_id,
                variant_id=line.shopify_variant_id,
                name=line.name,
                image=line.image,
                price=float(line.price),
                quantity=line.quantity,
            )
            for line in lines
        ],
    )
    db.add(order)
    await db.flush()
    logger.info(
        "Order %s recorded via %s: total=%s user=%s",
        order_number, backend.name, breakdown.total, user.id,
    )
    return RecordedOrder(order=_order_to_response(await _load_order(db, order.id)), url=session.url)


async def list_orders(db: AsyncSession, user_id: int) -> list[OrderResponse]:
    """List a user's orders, newest first, with their line items."""
    stmt = (
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    result = await db.execute(stmt)
    return [_order_to_response(o) for o in result.scalars().all()]


async def update_payment_status(
    db: AsyncSession,
    order_number: str,
    payment_status: str,
) -> OrderResponse:
    """Apply a payment callback to an order.

    A paid order moves on to "processing"; a failed one is cancelled.
    """
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationFailure(f"Unknown payment status: {payment_status}")

    stmt = (
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.order_number == order_number)
    )
    result = await db.execute(stmt)
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found")

    order.payment_status = payment_status
    if payment_status == "paid":
        order.status = "processing"
    elif payment_status == "failed":
        order.status = "cancelled"
    await db.flush()
    return _order_to_response(await _load_order(db, order.id))
