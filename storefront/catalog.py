"""
Product catalog sources.

A request is served either by the local database or by the external commerce
platform. Which one is decided once, from Settings.commerce_enabled, when the
CatalogSource dependency is resolved; handlers only see the CatalogSource
interface. Both sources return the same ProductResponse shape.

Failures of the external platform are never papered over with local data:
they propagate as UpstreamFailure and the API reports them.
"""

import json
import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal, Optional, Protocol

from fastapi import Depends
from pydantic import Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .commerce import (
    GET_PRODUCT_BY_HANDLE_QUERY,
    GET_PRODUCTS_QUERY,
    MAX_PAGE_SIZE,
    StorefrontClient,
    get_storefront_client,
    normalize_product,
)
from .config import Settings, get_settings
from .database import get_db
from .errors import NotFound
from .models import Product, Review
from .schemas import CamelModel

logger = logging.getLogger(__name__)

SortKey = Literal["newest", "price-low", "price-high", "name"]


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class ProductFilters(CamelModel):
    """Listing filters shared by both catalog sources."""

    category: Optional[str] = None
    search: Optional[str] = None
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    sort_by: SortKey = "newest"
    featured: bool = False
    limit: int = Field(100, ge=1, le=1000)


class VariantResponse(CamelModel):
    id: str
    shopify_id: Optional[str] = None
    title: str
    price: float
    compare_at_price: Optional[float] = None
    available_for_sale: bool = True
    quantity_available: int = 0
    sku: Optional[str] = None


class ProductResponse(CamelModel):
    """Consumer-facing product, identical for both sources."""

    id: str
    shopify_id: Optional[str] = None
    handle: Optional[str] = None
    name: str
    description: str = ""
    price: float
    compare_at_price: Optional[float] = None
    images: list[str] = Field(default_factory=list)
    category: str
    brand: Optional[str] = None
    sku: Optional[str] = None
    inventory: int = 0
    is_active: bool = True
    tags: list[str] = Field(default_factory=list)
    variants: list[VariantResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class ReviewAuthor(CamelModel):
    name: Optional[str] = None


class ReviewResponse(CamelModel):
    id: int
    rating: int
    comment: Optional[str] = None
    created_at: datetime
    user: ReviewAuthor


class ProductDetailResponse(ProductResponse):
    reviews: list[ReviewResponse] = Field(default_factory=list)
    average_rating: float = 0.0
    review_count: int = 0


# ---------------------------------------------------------------------------
# Helpers shared by both sources
# ---------------------------------------------------------------------------


def parse_images(images: Optional[str]) -> list[str]:
    """Decode the JSON image list stored on a local product."""
    if not images:
        return []
    try:
        parsed = json.loads(images)
    except (json.JSONDecodeError, TypeError):
        return []
    return [str(url) for url in parsed] if isinstance(parsed, list) else []


def like_pattern(value: str) -> str:
    """Substring pattern for ``ilike`` with ``%`` and ``_`` matched literally."""
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def product_to_response(product: Product) -> ProductResponse:
    return ProductResponse(
        id=str(product.id),
        name=product.name,
        description=product.description or "",
        price=product.price,
        compare_at_price=product.compare_at_price,
        images=parse_images(product.images),
        category=product.category,
        brand=product.brand,
        sku=product.sku,
        inventory=product.inventory,
        is_active=product.is_active,
        created_at=product.created_at,
    )


def average_rating(reviews: list[Review]) -> float:
    """Mean rating rounded half-up to one decimal place; 0 with no reviews."""
    if not reviews:
        return 0.0
    mean = Decimal(sum(r.rating for r in reviews)) / Decimal(len(reviews))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def filter_by_price(
    products: list[ProductResponse],
    min_price: Optional[float],
    max_price: Optional[float],
) -> list[ProductResponse]:
    """Inclusive price-range filter, matching the local query predicates."""
    return [
        p for p in products
        if (min_price is None or p.price >= min_price)
        and (max_price is None or p.price <= max_price)
    ]


def sort_products(products: list[ProductResponse], sort_by: SortKey) -> list[ProductResponse]:
    """Stable in-memory sort; "newest" keeps the source order."""
    if sort_by == "price-low":
        return sorted(products, key=lambda p: p.price)
    if sort_by == "price-high":
        return sorted(products, key=lambda p: p.price, reverse=True)
    if sort_by == "name":
        return sorted(products, key=lambda p: p.name.casefold())
    return list(products)


def build_search_query(filters: ProductFilters) -> str:
    """Translate listing filters into the platform's product query syntax."""
    parts = []
    if filters.category:
        parts.append(f"product_type:{filters.category} OR tag:{filters.category}")
    if filters.search:
        parts.append(f"title:*{filters.search}* OR tag:*{filters.search}*")
    if filters.featured:
        parts.append("tag:featured")
    return " ".join(parts)


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class CatalogSource(Protocol):
    name: str

    async def list_products(self, filters: ProductFilters) -> list[ProductResponse]:
        ...

    async def get_product(self, product_id: str) -> ProductDetailResponse:
        ...


class LocalCatalog:
    """Catalog served from the local products table."""

    name = "local"

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def list_products(self, filters: ProductFilters) -> list[ProductResponse]:
        stmt = select(Product).where(Product.is_active.is_(True))
        if filters.category:
            stmt = stmt.where(Product.category.ilike(like_pattern(filters.category), escape="\\"))
        if filters.search:
            stmt = stmt.where(Product.name.ilike(like_pattern(filters.search), escape="\\"))
        if filters.min_price is not None:
            stmt = stmt.where(Product.price >= filters.min_price)
        if filters.max_price is not None:
            stmt = stmt.where(Product.price <= filters.max_price)
        if filters.featured:
            stmt = stmt.where(Product.inventory > 0)

        if filters.sort_by == "price-low":
            stmt = stmt.order_by(Product.price.asc(), Product.id.asc())
        elif filters.sort_by == "price-high":
            stmt = stmt.order_by(Product.price.desc(), Product.id.asc())
        elif filters.sort_by == "name":
            stmt = stmt.order_by(func.lower(Product.name).asc(), Product.id.asc())
        else:
            stmt = stmt.order_by(Product.created_at.desc(), Product.id.desc())

        result = await self.db.execute(stmt.limit(filters.limit))
        return [product_to_response(p) for p in result.scalars().all()]

    async def get_product(self, product_id: str) -> ProductDetailResponse:
        if not product_id.isdigit():
            raise NotFound("Product not found")
        stmt = (
            select(Product)
            .options(selectinload(Product.reviews).selectinload(Review.user))
            .where(Product.id == int(product_id))
        )
        result = await self.db.execute(stmt)
        product = result.scalar_one_or_none()
        if product is None:
            raise NotFound("Product not found")

        reviews = list(product.reviews)
        base = product_to_response(product)
        return ProductDetailResponse(
            **base.model_dump(),
            reviews=[
                ReviewResponse(
                    id=r.id,
                    rating=r.rating,
                    comment=r.comment,
                    created_at=r.created_at,
                    user=ReviewAuthor(name=r.user.name if r.user else None),
                )
                for r in reviews
            ],
            average_rating=average_rating(reviews),
            review_count=len(reviews),
        )


class CommerceCatalog:
    """Catalog served from the external commerce platform."""

    name = "shopify"

    def __init__(self, client: StorefrontClient) -> None:
        self.client = client

    async def list_products(self, filters: ProductFilters) -> list[ProductResponse]:
        variables: dict = {"first": min(filters.limit, MAX_PAGE_SIZE)}
        query = build_search_query(filters)
        if query:
            variables["query"] = query

        data = await self.client.request(GET_PRODUCTS_QUERY, variables)
        edges = (data.get("products") or {}).get("edges") or []
        products = [ProductResponse(**normalize_product(edge["node"])) for edge in edges]

        # The platform query language has no price-range filter.
        products = filter_by_price(products, filters.min_price, filters.max_price)
        return sort_products(products, filters.sort_by)

    async def get_product(self, product_id: str) -> ProductDetailResponse:
        data = await self.client.request(GET_PRODUCT_BY_HANDLE_QUERY, {"handle": product_id})
        node = data.get("product")
        if not node:
            raise NotFound("Product not found")
        return ProductDetailResponse(**normalize_product(node))


def resolve_catalog_source(settings: Settings, db: AsyncSession) -> CatalogSource:
    """Pick the catalog source for the configured backend."""
    if settings.commerce_enabled:
        return CommerceCatalog(get_storefront_client(settings))
    return LocalCatalog(db)


async def get_catalog_source(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> CatalogSource:
    """FastAPI dependency resolving the CatalogSource for a request."""
    return resolve_catalog_source(settings, db)
