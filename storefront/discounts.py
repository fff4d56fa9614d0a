"""
Discount code validation and redemption.

Validation is read-only and reports the first failing rule with a
shopper-facing message. Redemption is a separate step that bumps used_count
with a single conditional UPDATE, so two concurrent checkouts cannot both
consume the last use of a limited code.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ValidationFailure
from .models import DiscountCode
from .pricing import ZERO, Amount, to_money

logger = logging.getLogger(__name__)

INVALID_CODE = "Invalid code"
CODE_EXPIRED = "Code expired"
USAGE_LIMIT_REACHED = "Code usage limit reached"
CODE_REQUIRED = "Code is required"


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class DiscountValidateRequest(BaseModel):
    """Schema for checking a code against a cart subtotal."""

    code: Optional[str] = None
    subtotal: float = Field(0, ge=0)


class DiscountValidateResponse(BaseModel):
    valid: bool
    discount: Optional[float] = None
    error: Optional[str] = None


class DiscountCodeCreate(BaseModel):
    """Schema for creating a discount code."""

    code: str = Field(..., min_length=1, max_length=50)
    type: Literal["percentage", "fixed"]
    value: float = Field(..., gt=0)
    min_purchase: Optional[float] = Field(None, ge=0)
    max_discount: Optional[float] = Field(None, gt=0)
    valid_from: datetime
    valid_until: datetime
    usage_limit: Optional[int] = Field(None, ge=1)
    is_active: bool = True


@dataclass(frozen=True)
class DiscountResult:
    valid: bool
    discount: Decimal = ZERO
    error: Optional[str] = None
    code: Optional[str] = None

    def to_response(self) -> DiscountValidateResponse:
        if self.valid:
            return DiscountValidateResponse(valid=True, discount=float(self.discount))
        return DiscountValidateResponse(valid=False, error=self.error)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_code(code: Optional[str]) -> str:
    """Codes are stored upper-cased; lookups are case-insensitive."""
    return (code or "").strip().upper()


def _as_naive_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is compared as naive UTC.
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _format_amount(value: float) -> str:
    return format(Decimal(str(value)).normalize(), "f")


def evaluate_discount(
    discount: Optional[DiscountCode],
    subtotal: Amount,
    now: Optional[datetime] = None,
) -> DiscountResult:
    """Apply the validation rules to a looked-up code.

    Rules are checked in a fixed order and the first failure wins:
    existence/active flag, validity window (inclusive), usage limit,
    minimum purchase.
    """
    if discount is None or not discount.is_active:
        return DiscountResult(valid=False, error=INVALID_CODE)

    current = _as_naive_utc(now or datetime.now(timezone.utc))
    if current < _as_naive_utc(discount.valid_from) or current > _as_naive_utc(discount.valid_until):
        return DiscountResult(valid=False, error=CODE_EXPIRED)

    if discount.usage_limit is not None and discount.used_count >= discount.usage_limit:
        return DiscountResult(valid=False, error=USAGE_LIMIT_REACHED)

    subtotal_amount = Decimal(str(subtotal))
    if discount.min_purchase and subtotal_amount < Decimal(str(discount.min_purchase)):
        return DiscountResult(
            valid=False,
            error=f"Minimum purchase of £{_format_amount(discount.min_purchase)} required",
        )

    value = Decimal(str(discount.value))
    if discount.type == "percentage":
        amount = subtotal_amount * value / Decimal(100)
        if discount.max_discount:
            amount = min(amount, Decimal(str(discount.max_discount)))
    else:
        amount = value

    return DiscountResult(valid=True, discount=to_money(amount), code=discount.code)


# ---------------------------------------------------------------------------
# Database operations (all async)
# ---------------------------------------------------------------------------


async def get_discount_code(db: AsyncSession, code: str) -> Optional[DiscountCode]:
    result = await db.execute(
        select(DiscountCode).where(DiscountCode.code == normalize_code(code))
    )
    return result.scalar_one_or_none()


async def validate_discount(
    db: AsyncSession,
    code: Optional[str],
    subtotal: Amount,
    now: Optional[datetime] = None,
) -> DiscountResult:
    """Look up a code and evaluate it against a subtotal. Never mutates."""
    if not normalize_code(code):
        return DiscountResult(valid=False, error=CODE_REQUIRED)
    discount = await get_discount_code(db, code)
    return evaluate_discount(discount, subtotal, now=now)


async def redeem_discount(db: AsyncSession, code: str) -> None:
    """Consume one use of a code.

    The increment only happens while used_count is below usage_limit, checked
    in the same statement. Raises ValidationFailure when no use is left.
    """
    normalized = normalize_code(code)
    stmt = (
        update(DiscountCode)
        .where(DiscountCode.code == normalized)
        .where(
            or_(
                DiscountCode.usage_limit.is_(None),
                DiscountCode.used_count < DiscountCode.usage_limit,
            )
        )
        .values(used_count=DiscountCode.used_count + 1)
        .execution_options(synchronize_session="fetch")
    )
    result = await db.execute(stmt)
    if result.rowcount == 0:
        logger.info("Redemption refused for discount code %s", normalized)
        raise ValidationFailure(USAGE_LIMIT_REACHED)


async def create_discount_code(db: AsyncSession, body: DiscountCodeCreate) -> DiscountCode:
    """Create a discount code, rejecting duplicates and out-of-range percentages."""
    code = normalize_code(body.code)
    if await get_discount_code(db, code) is not None:
        raise ValidationFailure("Discount code already exists")
    if body.type == "percentage" and body.value > 100:
        raise ValidationFailure("Percentage discount must be between 0 and 100")
    if _as_naive_utc(body.valid_until) < _as_naive_utc(body.valid_from):
        raise ValidationFailure("valid_until must not precede valid_from")

    discount = DiscountCode(
        code=code,
        type=body.type,
        value=body.value,
        min_purchase=body.min_purchase,
        max_discount=body.max_discount,
        valid_from=_as_naive_utc(body.valid_from),
        valid_until=_as_naive_utc(body.valid_until),
        usage_limit=body.usage_limit,
        used_count=0,
        is_active=body.is_active,
    )
    db.add(discount)
    await db.flush()
    await db.refresh(discount)
    return discount
