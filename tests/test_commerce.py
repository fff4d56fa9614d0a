"""
Tests for storefront/commerce.py -- Storefront API client and product normalization.

The HTTP layer is replaced with httpx.MockTransport; nothing leaves the process.
"""

import json

import httpx
import pytest

from storefront.commerce import (
    StorefrontClient,
    get_storefront_client,
    local_id,
    normalize_domain,
    normalize_product,
    reset_storefront_client,
)
from storefront.config import Settings
from storefront.errors import CommerceNotConfigured, UpstreamFailure


def product_node(**overrides):
    node = {
        "id": "gid://shopify/Product/42",
        "title": "Linen Shirt",
        "description": "Breathable linen.",
        "handle": "linen-shirt",
        "priceRange": {"minVariantPrice": {"amount": "30.0", "currencyCode": "GBP"}},
        "compareAtPriceRange": {"minVariantPrice": {"amount": "45.0", "currencyCode": "GBP"}},
        "images": {"edges": [
            {"node": {"url": "https://cdn.example/a.jpg", "altText": None}},
            {"node": {"url": "https://cdn.example/b.jpg", "altText": "back"}},
        ]},
        "variants": {"edges": [
            {"node": {
                "id": "gid://shopify/ProductVariant/1", "title": "S",
                "price": {"amount": "32.50", "currencyCode": "GBP"},
                "compareAtPrice": {"amount": "40.00"},
                "availableForSale": True, "quantityAvailable": 3, "sku": "LIN-S",
            }},
            {"node": {
                "id": "gid://shopify/ProductVariant/2", "title": "M",
                "price": {"amount": "34.00", "currencyCode": "GBP"},
                "compareAtPrice": None,
                "availableForSale": True, "quantityAvailable": 5, "sku": "LIN-M",
            }},
        ]},
        "tags": ["summer", "featured"],
        "productType": "Shirts",
        "vendor": "Global City",
    }
    node.update(overrides)
    return node


def mock_client(handler) -> StorefrontClient:
    return StorefrontClient(
        domain="demo-shop",
        access_token="tok",
        api_version="2024-10",
        transport=httpx.MockTransport(handler),
    )


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TestNormalizeProduct:
    def test_flattens_nested_shape(self):
        product = normalize_product(product_node())
        assert product["id"] == "42"
        assert product["shopify_id"] == "gid://shopify/Product/42"
        assert product["handle"] == "linen-shirt"
        assert product["name"] == "Linen Shirt"
        assert product["brand"] == "Global City"
        assert product["category"] == "Shirts"
        assert product["sku"] == "LIN-S"

    def test_price_from_first_variant(self):
        product = normalize_product(product_node())
        assert product["price"] == 32.5
        assert product["compare_at_price"] == 40.0

    def test_inventory_sums_variants(self):
        assert normalize_product(product_node())["inventory"] == 8

    def test_images_keep_order(self):
        product = normalize_product(product_node())
        assert product["images"] == ["https://cdn.example/a.jpg", "https://cdn.example/b.jpg"]

    def test_variants_normalized(self):
        variants = normalize_product(product_node())["variants"]
        assert [v["id"] for v in variants] == ["1", "2"]
        assert variants[1]["compare_at_price"] is None
        assert variants[1]["quantity_available"] == 5

    def test_price_range_fallback_without_variants(self):
        product = normalize_product(product_node(variants={"edges": []}))
        assert product["price"] == 30.0
        assert product["compare_at_price"] == 45.0
        assert product["inventory"] == 0
        assert product["sku"] == ""

    def test_category_falls_back_to_first_tag(self):
        assert normalize_product(product_node(productType=""))["category"] == "summer"

    def test_category_default(self):
        product = normalize_product(product_node(productType="", tags=[]))
        assert product["category"] == "Uncategorized"


def test_local_id():
    assert local_id("gid://shopify/ProductVariant/991") == "991"


class TestNormalizeDomain:
    def test_bare_shop_name(self):
        assert normalize_domain("demo-shop") == "demo-shop.myshopify.com"

    def test_strips_scheme_and_slash(self):
        assert normalize_domain("https://demo-shop.myshopify.com/") == "demo-shop.myshopify.com"

    def test_custom_domain_kept(self):
        assert normalize_domain("shop.example.com") == "shop.example.com"


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class TestStorefrontClient:
    @pytest.mark.asyncio
    async def test_request_returns_data(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["token"] = request.headers["X-Shopify-Storefront-Access-Token"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": {"product": None}})

        client = mock_client(handler)
        data = await client.request("query { shop { name } }", {"handle": "x"})
        await client.aclose()

        assert data == {"product": None}
        assert seen["url"] == "https://demo-shop.myshopify.com/api/2024-10/graphql.json"
        assert seen["token"] == "tok"
        assert seen["body"]["variables"] == {"handle": "x"}

    @pytest.mark.asyncio
    async def test_http_error_raises_upstream_failure(self):
        client = mock_client(lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(UpstreamFailure):
            await client.request("query { shop { name } }")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_graphql_errors_raise_upstream_failure(self):
        client = mock_client(
            lambda request: httpx.Response(200, json={"errors": [{"message": "Throttled"}]})
        )
        with pytest.raises(UpstreamFailure) as exc_info:
            await client.request("query { shop { name } }")
        await client.aclose()
        assert "Throttled" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_transport_error_raises_upstream_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        client = mock_client(handler)
        with pytest.raises(UpstreamFailure):
            await client.request("query { shop { name } }")
        await client.aclose()

    def test_from_settings_requires_credentials(self):
        with pytest.raises(CommerceNotConfigured):
            StorefrontClient.from_settings(Settings(shopify_store_domain="demo-shop"))


class TestSharedClient:
    @pytest.mark.asyncio
    async def test_singleton_reused_until_reset(self):
        settings = Settings(shopify_store_domain="demo-shop", shopify_storefront_token="tok")
        await reset_storefront_client()
        first = get_storefront_client(settings)
        assert get_storefront_client(settings) is first
        await reset_storefront_client()
        second = get_storefront_client(settings)
        assert second is not first
        await reset_storefront_client()
