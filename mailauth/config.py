"""
Configuration module for mailauth.

Loads settings from environment variables with sensible defaults.
"""

import os


class Config:
    """Base configuration shared by all environments."""

    # Optional JSON document selecting the DoH backend, e.g.
    # {"resolver": "cloudflare", "timeout_seconds": 5}
    DNS_SETTINGS_PATH: str | None = os.environ.get("DNS_SETTINGS_PATH")

    # Directory of mail provider JSON documents; None = bundled catalog
    PROVIDER_CATALOG_PATH: str | None = os.environ.get("PROVIDER_CATALOG_PATH")

    # Domains checked simultaneously by batch runs
    CHECK_CONCURRENCY: int = int(os.environ.get("CHECK_CONCURRENCY", "5"))
