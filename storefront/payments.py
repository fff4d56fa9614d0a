"""
Checkout backends.

A checkout backend turns a priced cart into a hosted payment page and hands
back its URL plus a reference to store on the order. Two backends exist: the
store's own Stripe account, and the external commerce platform's checkout.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import stripe
from fastapi import Depends

from .commerce import CREATE_CHECKOUT_MUTATION, StorefrontClient, get_storefront_client
from .config import Settings, get_settings
from .errors import UpstreamFailure, ValidationFailure
from .pricing import CartLine, PriceBreakdown, to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    url: str
    reference: str


class CheckoutBackend(Protocol):
    name: str

    async def create_session(
        self,
        order_number: str,
        lines: Sequence[CartLine],
        breakdown: PriceBreakdown,
        discount_code: Optional[str] = None,
    ) -> CheckoutSession:
        ...


def to_minor_units(amount) -> int:
    """Currency amount -> integer minor units (pence, cents)."""
    return int(to_money(amount) * 100)


class StripeCheckoutBackend:
    """Hosted Stripe Checkout for orders priced by this service."""

    name = "stripe"

    def __init__(self, api_key: str, site_url: str, currency: str = "gbp") -> None:
        self.api_key = api_key
        self.site_url = site_url.rstrip("/")
        self.currency = currency

    def build_line_items(self, lines: Sequence[CartLine], breakdown: PriceBreakdown) -> list[dict]:
        items = [
            {
                "price_data": {
                    "currency": self.currency,
                    "product_data": {
                        "name": line.name or f"Product {line.product_id}",
                        "images": [line.image] if line.image else [],
                    },
                    "unit_amount": to_minor_units(line.price),
                },
                "quantity": line.quantity,
            }
            for line in lines
        ]
        if breakdown.shipping > 0:
            items.append({
                "price_data": {
                    "currency": self.currency,
                    "product_data": {"name": "Shipping"},
                    "unit_amount": to_minor_units(breakdown.shipping),
                },
                "quantity": 1,
            })
        return items

    async def create_session(
        self,
        order_number: str,
        lines: Sequence[CartLine],
        breakdown: PriceBreakdown,
        discount_code: Optional[str] = None,
    ) -> CheckoutSession:
        params = {
            "payment_method_types": ["card"],
            "line_items": self.build_line_items(lines, breakdown),
            "mode": "payment",
            "success_url": f"{self.site_url}/orders/{order_number}?success=true",
            "cancel_url": f"{self.site_url}/checkout?canceled=true",
            "metadata": {"orderNumber": order_number},
        }
        if breakdown.discount > 0:
            # One-off coupon for the amount validated here.
            params["discounts"] = [{"coupon": await self._one_off_coupon(breakdown, discount_code)}]

        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create, api_key=self.api_key, **params
            )
        except stripe.StripeError as e:
            logger.error("Stripe checkout session failed for %s: %s", order_number, e)
            raise UpstreamFailure("Failed to create checkout session") from e

        if not session.url:
            raise UpstreamFailure("Failed to create checkout session")
        return CheckoutSession(url=session.url, reference=session.id)

    async def _one_off_coupon(self, breakdown: PriceBreakdown, discount_code: Optional[str]) -> str:
        try:
            coupon = await asyncio.to_thread(
                stripe.Coupon.create,
                api_key=self.api_key,
                amount_off=to_minor_units(breakdown.discount),
                currency=self.currency,
                duration="once",
                name=discount_code or "Discount",
            )
        except stripe.StripeError as e:
            logger.error("Stripe coupon creation failed: %s", e)
            raise UpstreamFailure("Failed to create checkout session") from e
        return coupon.id


class CommerceCheckoutBackend:
    """Checkout hosted by the external commerce platform."""

    name = "shopify"

    def __init__(self, client: StorefrontClient) -> None:
        self.client = client

    async def create_session(
        self,
        order_number: str,
        lines: Sequence[CartLine],
        breakdown: PriceBreakdown,
        discount_code: Optional[str] = None,
    ) -> CheckoutSession:
        line_items = [
            {"variantId": line.shopify_variant_id, "quantity": line.quantity}
            for line in lines
            if line.shopify_variant_id
        ]
        if not line_items:
            raise ValidationFailure(
                "No valid Shopify products in cart. Please ensure products are from Shopify."
            )

        checkout_input: dict = {"lineItems": line_items}
        if discount_code:
            checkout_input["discountCodes"] = [discount_code]

        data = await self.client.request(CREATE_CHECKOUT_MUTATION, {"input": checkout_input})
        result = data.get("checkoutCreate") or {}
        user_errors = result.get("checkoutUserErrors") or []
        if user_errors:
            raise ValidationFailure(user_errors[0].get("message") or "Checkout rejected")

        checkout = result.get("checkout")
        if not checkout or not checkout.get("webUrl"):
            logger.error("Commerce checkout for %s returned no checkout", order_number)
            raise UpstreamFailure("Failed to create checkout")
        return CheckoutSession(url=checkout["webUrl"], reference=checkout["id"])


def resolve_checkout_backend(settings: Settings) -> CheckoutBackend:
    """Pick the checkout backend for the configured commerce mode."""
    if settings.commerce_enabled:
        return CommerceCheckoutBackend(get_storefront_client(settings))
    return StripeCheckoutBackend(
        api_key=settings.stripe_secret_key,
        site_url=settings.site_url,
        currency=settings.currency,
    )


def get_checkout_backend(settings: Settings = Depends(get_settings)) -> CheckoutBackend:
    """FastAPI dependency resolving the checkout backend."""
    return resolve_checkout_backend(settings)
