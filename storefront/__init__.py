"""
Storefront API: catalog, discount codes, checkout and order history.

Products are served from the local database or, when Shopify credentials are
configured, from the Shopify Storefront API.
"""

__version__ = "1.0.0"
