"""
Admin dashboard queries.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .catalog import ProductResponse, product_to_response
from .models import Order, Product, User
from .schemas import CamelModel


class StatsResponse(CamelModel):
    total_products: int
    total_orders: int
    total_users: int
    total_revenue: float


async def get_stats(db: AsyncSession) -> StatsResponse:
    """Headline counts; revenue only counts orders that were paid."""
    total_products = await db.scalar(select(func.count()).select_from(Product))
    total_orders = await db.scalar(select(func.count()).select_from(Order))
    total_users = await db.scalar(select(func.count()).select_from(User))
    revenue = await db.scalar(
        select(func.coalesce(func.sum(Order.total), 0.0)).where(Order.payment_status == "paid")
    )
    return StatsResponse(
        total_products=total_products or 0,
        total_orders=total_orders or 0,
        total_users=total_users or 0,
        total_revenue=round(float(revenue or 0), 2),
    )


async def list_all_products(db: AsyncSession) -> list[ProductResponse]:
    """Every local product, inactive ones included, newest first."""
    result = await db.execute(
        select(Product).order_by(Product.created_at.desc(), Product.id.desc())
    )
    return [product_to_response(p) for p in result.scalars().all()]
