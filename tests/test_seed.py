"""
Tests for storefront/seed.py -- sample data loading.
"""

import pytest
from sqlalchemy import func, select

from storefront.auth import get_user_by_token
from storefront.discounts import validate_discount
from storefront.models import Product, User
from storefront.seed import SEED_PRODUCTS, SEED_USERS, seed


class TestSeed:
    @pytest.mark.asyncio
    async def test_inserts_users_products_and_code(self, db):
        tokens = await seed(db)

        assert await db.scalar(select(func.count()).select_from(Product)) == len(SEED_PRODUCTS)
        assert await db.scalar(select(func.count()).select_from(User)) == len(SEED_USERS)
        admin = await get_user_by_token(db, tokens["admin@globalcity.com"])
        assert admin.role == "admin"

        result = await validate_discount(db, "welcome10", 10)
        assert result.valid is True

    @pytest.mark.asyncio
    async def test_rerun_adds_nothing(self, db):
        await seed(db)
        tokens = await seed(db)
        assert tokens == {}
        assert await db.scalar(select(func.count()).select_from(Product)) == len(SEED_PRODUCTS)
