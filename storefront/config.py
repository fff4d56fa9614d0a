"""
Runtime configuration for the storefront service.

All settings come from environment variables. Two of them, the Shopify store
domain and storefront access token, decide whether catalog reads and checkout
go to the external commerce platform; if either is missing the local database
serves everything.
"""

import os
import threading
from dataclasses import dataclass
from typing import Optional


DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./storefront.db"
DEFAULT_SHOPIFY_API_VERSION = "2024-10"


@dataclass(frozen=True)
class Settings:
    """Immutable snapshot of the process configuration."""

    database_url: str = DEFAULT_DATABASE_URL
    shopify_store_domain: str = ""
    shopify_storefront_token: str = ""
    shopify_api_version: str = DEFAULT_SHOPIFY_API_VERSION
    stripe_secret_key: str = ""
    site_url: str = "http://localhost:3000"
    currency: str = "gbp"
    cors_origins: tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    @property
    def commerce_enabled(self) -> bool:
        """True when both external commerce credentials are configured."""
        return bool(self.shopify_store_domain and self.shopify_storefront_token)


def load_settings() -> Settings:
    """Build a Settings object from the current environment."""
    origins = os.environ.get("CORS_ORIGINS", "*")
    return Settings(
        database_url=os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL),
        shopify_store_domain=os.environ.get("SHOPIFY_STORE_DOMAIN", "").strip(),
        shopify_storefront_token=os.environ.get("SHOPIFY_STOREFRONT_ACCESS_TOKEN", "").strip(),
        shopify_api_version=os.environ.get("SHOPIFY_API_VERSION", DEFAULT_SHOPIFY_API_VERSION),
        stripe_secret_key=os.environ.get("STRIPE_SECRET_KEY", ""),
        site_url=os.environ.get("SITE_URL", "http://localhost:3000").rstrip("/"),
        currency=os.environ.get("STORE_CURRENCY", "gbp").lower(),
        cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        log_level=os.environ.get("STOREFRONT_LOG_LEVEL", "INFO").upper(),
    )


_settings: Optional[Settings] = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get or create the process-wide Settings instance."""
    global _settings
    if _settings is None:
        with _settings_lock:
            if _settings is None:
                _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    with _settings_lock:
        _settings = None
