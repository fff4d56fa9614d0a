"""
REST API router for the storefront.

Mount this router in server.py with:
    from .api import router as api_router
    app.include_router(api_router)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import accounts
from . import admin as admin_mod
from . import discounts
from . import orders as orders_mod
from .auth import get_current_user, require_admin
from .catalog import (
    CatalogSource,
    ProductDetailResponse,
    ProductFilters,
    ProductResponse,
    get_catalog_source,
)
from .database import commit_or_fail, get_db
from .errors import UpstreamFailure
from .models import User
from .payments import CheckoutBackend, get_checkout_backend
from .schemas import CamelModel

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api", tags=["storefront"])

SORT_KEYS = ("newest", "price-low", "price-high", "name")


# ---------------------------------------------------------------------------
# Response envelopes
# ---------------------------------------------------------------------------

class ProductListResponse(CamelModel):
    products: list[ProductResponse]


class ProductDetailEnvelope(CamelModel):
    product: ProductDetailResponse


class OrderListResponse(CamelModel):
    orders: list[orders_mod.OrderResponse]


class PaymentStatusUpdate(CamelModel):
    payment_status: str = Field(..., min_length=1)


# ===========================================================================
# CATALOG ENDPOINTS
# ===========================================================================


@router.get("/products", response_model=ProductListResponse)
async def list_products(
    category: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    sort_by: str = Query("newest", alias="sortBy"),
    featured: bool = Query(False),
    limit: int = Query(100, ge=1, le=1000),
    catalog: CatalogSource = Depends(get_catalog_source),
):
    """List catalog products from the configured source."""
    filters = ProductFilters(
        category=category or None,
        search=search or None,
        min_price=min_price,
        max_price=max_price,
        sort_by=sort_by if sort_by in SORT_KEYS else "newest",
        featured=featured,
        limit=limit,
    )
    try:
        products = await catalog.list_products(filters)
    except UpstreamFailure as e:
        logger.warning("Product listing failed on %s catalog: %s", catalog.name, e.message)
        return JSONResponse(
            status_code=e.status_code,
            content={"error": "Failed to fetch products", "products": []},
        )
    return ProductListResponse(products=products)


@router.get("/products/{product_id}", response_model=ProductDetailEnvelope)
async def get_product(
    product_id: str,
    catalog: CatalogSource = Depends(get_catalog_source),
):
    """Get one product with its reviews."""
    try:
        product = await catalog.get_product(product_id)
    except UpstreamFailure as e:
        logger.warning("Product %s fetch failed on %s catalog: %s", product_id, catalog.name, e.message)
        return JSONResponse(status_code=e.status_code, content={"error": "Failed to fetch product"})
    return ProductDetailEnvelope(product=product)


# ===========================================================================
# DISCOUNT ENDPOINTS
# ===========================================================================


@router.post(
    "/discount/validate",
    response_model=discounts.DiscountValidateResponse,
    response_model_exclude_none=True,
)
async def validate_discount(
    body: discounts.DiscountValidateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Check a discount code against a subtotal without redeeming it."""
    try:
        result = await discounts.validate_discount(db, body.code, body.subtotal)
    except SQLAlchemyError:
        logger.exception("Discount validation failed")
        return JSONResponse(
            status_code=500, content={"valid": False, "error": "Failed to validate code"}
        )
    return result.to_response()


# ===========================================================================
# CHECKOUT & ORDER ENDPOINTS
# ===========================================================================


@router.post("/checkout/create", response_model=orders_mod.CheckoutResponse)
async def create_checkout(
    body: orders_mod.CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    backend: CheckoutBackend = Depends(get_checkout_backend),
):
    """Record a pending order and return the payment redirect URL."""
    recorded = await orders_mod.record_order(
        db,
        user,
        body.items,
        body.shipping_address,
        backend,
        discount_code=body.discount_code,
    )
    # The payment URL is only handed out once the order is durable.
    await commit_or_fail(db, "Failed to record order")
    return orders_mod.CheckoutResponse(url=recorded.url)


@router.get("/orders", response_model=OrderListResponse)
async def list_orders(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """List the current user's orders."""
    return OrderListResponse(orders=await orders_mod.list_orders(db, user.id))


# ===========================================================================
# ACCOUNT ENDPOINTS
# ===========================================================================


@router.get("/account/profile", response_model=accounts.ProfileResponse)
async def get_profile(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Get the current user's profile and default address."""
    return await accounts.get_profile(db, user)


@router.put("/account/profile")
async def update_profile(
    body: accounts.ProfileUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Update the current user's profile."""
    await accounts.update_profile(db, user, body)
    await commit_or_fail(db, "Failed to update profile")
    return {"message": "Profile updated successfully"}


# ===========================================================================
# ADMIN ENDPOINTS
# ===========================================================================


@router.get(
    "/admin/stats",
    response_model=admin_mod.StatsResponse,
    dependencies=[Depends(require_admin)],
)
async def get_stats(db: AsyncSession = Depends(get_db)):
    """Headline dashboard numbers."""
    return await admin_mod.get_stats(db)


@router.get(
    "/admin/products",
    response_model=ProductListResponse,
    dependencies=[Depends(require_admin)],
)
async def list_admin_products(db: AsyncSession = Depends(get_db)):
    """List every local product, inactive ones included."""
    return ProductListResponse(products=await admin_mod.list_all_products(db))


@router.post(
    "/admin/orders/{order_number}/payment-status",
    response_model=orders_mod.OrderResponse,
    dependencies=[Depends(require_admin)],
)
async def update_payment_status(
    order_number: str,
    body: PaymentStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Record the payment outcome for an order."""
    order = await orders_mod.update_payment_status(db, order_number, body.payment_status)
    await commit_or_fail(db, "Failed to update payment status")
    return order
