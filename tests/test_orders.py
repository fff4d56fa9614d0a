"""
Tests for storefront/orders.py -- checkout recording, order history, payment callbacks.

Uses in-memory SQLite with async sessions and a fake checkout backend.
"""

import json
import re
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from storefront.discounts import DiscountCodeCreate, create_discount_code, get_discount_code
from storefront.errors import NotFound, UpstreamFailure, ValidationFailure
from storefront.models import Order, User
from storefront.orders import (
    generate_order_number,
    list_orders,
    record_order,
    update_payment_status,
)
from storefront.payments import CheckoutSession
from storefront.pricing import CartLine
from storefront.schemas import ShippingAddress


class FakeBackend:
    """Checkout backend that records calls instead of talking to a provider."""

    name = "stripe"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    async def create_session(self, order_number, lines, breakdown, discount_code=None):
        self.calls.append((order_number, breakdown, discount_code))
        if self.fail:
            raise UpstreamFailure("Failed to create checkout session")
        return CheckoutSession(url=f"https://pay.example/{order_number}", reference=f"ref-{order_number}")


ADDRESS = ShippingAddress(
    full_name="Ada Lovelace",
    phone="07700 900000",
    address_line1="1 Analytical Way",
    city="London",
    state="Greater London",
    zip_code="N1 1AA",
    country="UK",
)


def lines(*rows):
    return [
        CartLine(product_id=str(i), name=name, price=price, quantity=qty)
        for i, (name, price, qty) in enumerate(rows, start=1)
    ]


@pytest_asyncio.fixture
async def user(db):
    u = User(email="ada@example.com", name="Ada")
    db.add(u)
    await db.flush()
    return u


async def add_welcome10(db, **overrides):
    now = datetime.now(timezone.utc)
    fields = {
        "code": "WELCOME10",
        "type": "percentage",
        "value": 10,
        "valid_from": now - timedelta(days=1),
        "valid_until": now + timedelta(days=1),
    }
    fields.update(overrides)
    return await create_discount_code(db, DiscountCodeCreate(**fields))


async def order_count(db) -> int:
    return await db.scalar(select(func.count()).select_from(Order))


def test_order_number_format():
    assert re.fullmatch(r"GC-\d{13}-[0-9A-F]{4}", generate_order_number())


class TestRecordOrder:
    @pytest.mark.asyncio
    async def test_records_pending_order(self, db, user):
        backend = FakeBackend()
        recorded = await record_order(db, user, lines(("Coat", "30.00", 2)), ADDRESS, backend)

        order = recorded.order
        assert recorded.url == f"https://pay.example/{order.order_number}"
        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.payment_method == "stripe"
        assert order.payment_reference == f"ref-{order.order_number}"
        assert (order.subtotal, order.shipping, order.tax, order.discount, order.total) == (
            60.0, 0.0, 0.0, 0.0, 60.0
        )
        assert order.discount_code is None
        assert [(i.product_id, i.quantity, i.price) for i in order.items] == [("1", 2, 30.0)]
        assert order.items[0].product == {"name": "Coat", "images": []}
        assert await order_count(db) == 1

    @pytest.mark.asyncio
    async def test_shipping_address_snapshot(self, db, user):
        recorded = await record_order(db, user, lines(("Hat", "10.00", 1)), ADDRESS, FakeBackend())
        assert recorded.order.shipping_address["fullName"] == "Ada Lovelace"
        assert recorded.order.shipping_address["zipCode"] == "N1 1AA"

        stored = await db.scalar(select(Order.shipping_address))
        assert json.loads(stored)["addressLine1"] == "1 Analytical Way"

    @pytest.mark.asyncio
    async def test_discount_validated_and_redeemed(self, db, user):
        await add_welcome10(db, usage_limit=5)
        backend = FakeBackend()
        recorded = await record_order(
            db, user, lines(("Hat", "10.00", 1)), ADDRESS, backend, discount_code="welcome10"
        )

        order = recorded.order
        assert order.discount == 1.0
        assert order.shipping == 4.99
        assert order.total == 13.99
        assert order.discount_code == "WELCOME10"
        assert backend.calls[0][2] == "WELCOME10"

        code = await get_discount_code(db, "WELCOME10")
        await db.refresh(code)
        assert code.used_count == 1

    @pytest.mark.asyncio
    async def test_invalid_discount_rejected_before_backend(self, db, user):
        backend = FakeBackend()
        with pytest.raises(ValidationFailure) as exc_info:
            await record_order(
                db, user, lines(("Hat", "10.00", 1)), ADDRESS, backend, discount_code="BOGUS"
            )
        assert exc_info.value.message == "Invalid code"
        assert backend.calls == []
        assert await order_count(db) == 0

    @pytest.mark.asyncio
    async def test_exhausted_discount_rejected(self, db, user):
        await add_welcome10(db, usage_limit=1)
        await record_order(
            db, user, lines(("Hat", "10.00", 1)), ADDRESS, FakeBackend(), discount_code="WELCOME10"
        )
        with pytest.raises(ValidationFailure) as exc_info:
            await record_order(
                db, user, lines(("Hat", "10.00", 1)), ADDRESS, FakeBackend(), discount_code="WELCOME10"
            )
        assert exc_info.value.message == "Code usage limit reached"
        assert await order_count(db) == 1

    @pytest.mark.asyncio
    async def test_backend_failure_writes_no_order(self, db, user):
        with pytest.raises(UpstreamFailure):
            await record_order(db, user, lines(("Hat", "10.00", 1)), ADDRESS, FakeBackend(fail=True))
        assert await order_count(db) == 0

    @pytest.mark.asyncio
    async def test_empty_cart_rejected(self, db, user):
        backend = FakeBackend()
        with pytest.raises(ValidationFailure):
            await record_order(db, user, [], ADDRESS, backend)
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_order_numbers_unique(self, db, user):
        numbers = set()
        for _ in range(3):
            recorded = await record_order(db, user, lines(("Hat", "10.00", 1)), ADDRESS, FakeBackend())
            numbers.add(recorded.order.order_number)
        assert len(numbers) == 3


class TestListOrders:
    @pytest.mark.asyncio
    async def test_newest_first_and_scoped_to_user(self, db, user):
        other = User(email="other@example.com")
        db.add(other)
        await db.flush()

        first = await record_order(db, user, lines(("Hat", "10.00", 1)), ADDRESS, FakeBackend())
        second = await record_order(db, user, lines(("Coat", "30.00", 2)), ADDRESS, FakeBackend())
        await record_order(db, other, lines(("Hat", "10.00", 1)), ADDRESS, FakeBackend())

        orders = await list_orders(db, user.id)
        assert [o.order_number for o in orders] == [
            second.order.order_number, first.order.order_number,
        ]

    @pytest.mark.asyncio
    async def test_no_orders(self, db, user):
        assert await list_orders(db, user.id) == []


class TestUpdatePaymentStatus:
    @pytest.mark.asyncio
    async def test_paid_moves_to_processing(self, db, user):
        recorded = await record_order(db, user, lines(("Hat", "10.00", 1)), ADDRESS, FakeBackend())
        order = await update_payment_status(db, recorded.order.order_number, "paid")
        assert order.payment_status == "paid"
        assert order.status == "processing"

    @pytest.mark.asyncio
    async def test_failed_cancels(self, db, user):
        recorded = await record_order(db, user, lines(("Hat", "10.00", 1)), ADDRESS, FakeBackend())
        order = await update_payment_status(db, recorded.order.order_number, "failed")
        assert order.status == "cancelled"

    @pytest.mark.asyncio
    async def test_unknown_status(self, db, user):
        recorded = await record_order(db, user, lines(("Hat", "10.00", 1)), ADDRESS, FakeBackend())
        with pytest.raises(ValidationFailure):
            await update_payment_status(db, recorded.order.order_number, "shipped")

    @pytest.mark.asyncio
    async def test_missing_order(self, db):
        with pytest.raises(NotFound):
            await update_payment_status(db, "GC-0-0000", "paid")
