"""
Seed the local database with sample users, products and a discount code.

Usage:
    python -m storefront.seed [--database-url URL]

Existing rows are left alone, so the command can be re-run safely. Bearer
tokens for the seeded users are printed on the first run only.
"""

import argparse
import asyncio
import json
import logging
import os
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from .auth import issue_token
from .database import dispose_engine, get_session_factory, init_db
from .discounts import DiscountCodeCreate, create_discount_code, get_discount_code
from .models import Product, User

logger = logging.getLogger(__name__)

SEED_USERS = [
    {"email": "admin@globalcity.com", "name": "Admin User", "role": "admin"},
    {"email": "customer@globalcity.com", "name": "Test Customer", "role": "customer"},
]

SEED_PRODUCTS = [
    {"name": "Classic Leather Bag", "description": "Premium leather bag perfect for everyday use.",
     "price": 89.99, "compare_at_price": 129.99, "category": "Bags", "sku": "BAG-001", "inventory": 50,
     "images": ["https://images.unsplash.com/photo-1553062407-98eeb64c6a62?w=800"]},
    {"name": "Cotton Hoodie", "description": "Comfortable cotton hoodie with modern fit.",
     "price": 49.99, "compare_at_price": 69.99, "category": "Hoodies", "sku": "HOO-001", "inventory": 100,
     "images": ["https://images.unsplash.com/photo-1556821840-3a63f95609a7?w=800"]},
    {"name": "Premium T-Shirt", "description": "High-quality cotton t-shirt with classic design.",
     "price": 24.99, "compare_at_price": 34.99, "category": "T-Shirts", "sku": "TSH-001", "inventory": 150,
     "images": ["https://images.unsplash.com/photo-1521572163474-6864f9cf17ab?w=800"]},
    {"name": "Slim Fit Trousers", "description": "Modern slim-fit trousers for office or casual wear.",
     "price": 59.99, "compare_at_price": 79.99, "category": "Trousers", "sku": "TRO-001", "inventory": 75,
     "images": ["https://images.unsplash.com/photo-1473966968600-fa801b869a1a?w=800"]},
    {"name": "Winter Jacket", "description": "Warm and stylish winter jacket with water-resistant material.",
     "price": 129.99, "compare_at_price": 179.99, "category": "Jackets", "sku": "JAC-001", "inventory": 40,
     "images": ["https://images.unsplash.com/photo-1551028719-00167b16eac5?w=800"]},
    {"name": "Athletic Sneakers", "description": "Comfortable athletic sneakers for sports and daily activities.",
     "price": 79.99, "compare_at_price": 99.99, "category": "Sneakers", "sku": "SNE-001", "inventory": 60,
     "images": ["https://images.unsplash.com/photo-1542291026-7eec264c27ff?w=800"]},
]


async def seed(db: AsyncSession) -> dict[str, str]:
    """Insert missing seed rows. Returns tokens issued for new users by email."""
    tokens: dict[str, str] = {}
    for fields in SEED_USERS:
        existing = await db.scalar(select(User).where(User.email == fields["email"]))
        if existing is None:
            user = User(**fields)
            db.add(user)
            await db.flush()
            tokens[user.email] = await issue_token(db, user)

    for fields in SEED_PRODUCTS:
        existing = await db.scalar(select(Product).where(Product.sku == fields["sku"]))
        if existing is None:
            db.add(Product(**{**fields, "images": json.dumps(fields["images"])}))

    if await get_discount_code(db, "WELCOME10") is None:
        now = datetime.now(timezone.utc)
        await create_discount_code(db, DiscountCodeCreate(
            code="WELCOME10",
            type="percentage",
            value=10,
            valid_from=now,
            valid_until=now + timedelta(days=365),
        ))

    await db.flush()
    return tokens


async def _run() -> None:
    await init_db()
    async with get_session_factory()() as session:
        async with session.begin():
            tokens = await seed(session)
    await dispose_engine()
    for email, token in tokens.items():
        print(f"{email}: {token}")
    logger.info("Seeded %d products", len(SEED_PRODUCTS))


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the storefront database")
    parser.add_argument("--database-url", help="Override DATABASE_URL")
    args = parser.parse_args()

    if args.database_url:
        os.environ["DATABASE_URL"] = args.database_url
        config.reset_settings()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(_run())


if __name__ == "__main__":
    main()
