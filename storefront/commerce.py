"""
Client for the external commerce platform (Shopify Storefront GraphQL API).

One client is shared by the whole process. It is created on first use and
reused across requests; the underlying httpx.AsyncClient keeps a connection
pool and is safe to share between concurrent requests.

Products come back in the platform's nested edge/node shape.
normalize_product() flattens one into the same shape the local catalog
produces.
"""

import logging
import re
import threading
from typing import Any, Optional

import httpx

from .config import Settings, get_settings
from .errors import CommerceNotConfigured, UpstreamFailure

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 250


# ---------------------------------------------------------------------------
# GraphQL documents
# ---------------------------------------------------------------------------

_PRODUCT_FIELDS = """
      id
      title
      description
      handle
      priceRange {
        minVariantPrice { amount currencyCode }
        maxVariantPrice { amount currencyCode }
      }
      compareAtPriceRange {
        minVariantPrice { amount currencyCode }
      }
      images(first: %(images)d) {
        edges { node { url altText } }
      }
      variants(first: %(variants)d) {
        edges {
          node {
            id
            title
            price { amount currencyCode }
            compareAtPrice { amount }
            availableForSale
            quantityAvailable
            sku
          }
        }
      }
      tags
      productType
      vendor
"""

GET_PRODUCTS_QUERY = """
query getProducts($first: Int!, $after: String, $query: String) {
  products(first: $first, after: $after, query: $query) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
%s
      }
    }
  }
}
""" % (_PRODUCT_FIELDS % {"images": 5, "variants": 10})

GET_PRODUCT_BY_HANDLE_QUERY = """
query getProduct($handle: String!) {
  product(handle: $handle) {
%s
  }
}
""" % (_PRODUCT_FIELDS % {"images": 10, "variants": 50})

CREATE_CHECKOUT_MUTATION = """
mutation checkoutCreate($input: CheckoutCreateInput!) {
  checkoutCreate(input: $input) {
    checkout {
      id
      webUrl
    }
    checkoutUserErrors {
      field
      message
    }
  }
}
"""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


def normalize_domain(domain: str) -> str:
    """Strip scheme and trailing slash; expand a bare shop name."""
    domain = re.sub(r"^https?://", "", domain.strip())
    domain = domain.rstrip("/")
    if "." not in domain and "myshopify" not in domain:
        domain = f"{domain}.myshopify.com"
    return domain


class StorefrontClient:
    """Thin async GraphQL client for the Storefront API."""

    def __init__(
        self,
        domain: str,
        access_token: str,
        api_version: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.endpoint = f"https://{normalize_domain(domain)}/api/{api_version}/graphql.json"
        self._http = httpx.AsyncClient(
            headers={
                "X-Shopify-Storefront-Access-Token": access_token,
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorefrontClient":
        if not settings.commerce_enabled:
            raise CommerceNotConfigured()
        return cls(
            domain=settings.shopify_store_domain,
            access_token=settings.shopify_storefront_token,
            api_version=settings.shopify_api_version,
        )

    async def request(self, query: str, variables: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Run a GraphQL document and return its ``data`` object.

        Raises:
            UpstreamFailure: on transport errors, non-2xx statuses, or a
                response carrying GraphQL errors.
        """
        try:
            response = await self._http.post(
                self.endpoint, json={"query": query, "variables": variables or {}}
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("Storefront API returned HTTP %d", e.response.status_code)
            raise UpstreamFailure(f"Commerce platform returned HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Storefront API request failed: %s", e)
            raise UpstreamFailure("Commerce platform request failed") from e

        errors = payload.get("errors")
        if errors:
            message = errors[0].get("message", "unknown error") if isinstance(errors, list) else str(errors)
            logger.error("Storefront API GraphQL error: %s", message)
            raise UpstreamFailure(f"Commerce platform error: {message}")
        return payload.get("data") or {}

    async def aclose(self) -> None:
        await self._http.aclose()


# Singleton instance
_client: Optional[StorefrontClient] = None
_client_lock = threading.Lock()


def get_storefront_client(settings: Optional[Settings] = None) -> StorefrontClient:
    """Get or create the process-wide StorefrontClient.

    Raises:
        CommerceNotConfigured: if either credential is missing.
    """
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = StorefrontClient.from_settings(settings or get_settings())
                logger.info("Storefront client initialised for %s", _client.endpoint)
    return _client


async def reset_storefront_client() -> None:
    """Close and forget the shared client (tests, shutdown)."""
    global _client
    with _client_lock:
        client, _client = _client, None
    if client is not None:
        await client.aclose()


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def local_id(global_id: str) -> str:
    """``gid://shopify/Product/123`` -> ``123``."""
    return global_id.rsplit("/", 1)[-1]


def _amount(money: Optional[dict]) -> Optional[float]:
    if not money or money.get("amount") in (None, ""):
        return None
    return float(money["amount"])


def _edges(connection: Optional[dict]) -> list[dict]:
    if not connection:
        return []
    return [edge["node"] for edge in connection.get("edges") or [] if edge.get("node")]


def normalize_variant(node: dict) -> dict[str, Any]:
    return {
        "id": local_id(node["id"]),
        "shopify_id": node["id"],
        "title": node.get("title") or "",
        "price": _amount(node.get("price")) or 0.0,
        "compare_at_price": _amount(node.get("compareAtPrice")),
        "available_for_sale": bool(node.get("availableForSale")),
        "quantity_available": node.get("quantityAvailable") or 0,
        "sku": node.get("sku") or "",
    }


def normalize_product(node: dict) -> dict[str, Any]:
    """Flatten a platform product node into the local product shape.

    Image order is preserved; the first image is the primary one.
    """
    variants = _edges(node.get("variants"))
    first_variant = variants[0] if variants else {}

    price = _amount(first_variant.get("price"))
    if price is None:
        price = _amount((node.get("priceRange") or {}).get("minVariantPrice")) or 0.0

    compare_at_price = _amount(first_variant.get("compareAtPrice"))
    if compare_at_price is None:
        compare_at_price = _amount((node.get("compareAtPriceRange") or {}).get("minVariantPrice"))

    tags = node.get("tags") or []
    category = node.get("productType") or (tags[0] if tags else None) or "Uncategorized"

    return {
        "id": local_id(node["id"]),
        "shopify_id": node["id"],
        "handle": node.get("handle"),
        "name": node.get("title") or "",
        "description": node.get("description") or "",
        "price": price,
        "compare_at_price": compare_at_price,
        "images": [image["url"] for image in _edges(node.get("images")) if image.get("url")],
        "category": category,
        "brand": node.get("vendor") or None,
        "sku": first_variant.get("sku") or "",
        "inventory": sum(v.get("quantityAvailable") or 0 for v in variants),
        "is_active": True,
        "tags": tags,
        "variants": [normalize_variant(v) for v in variants],
    }
