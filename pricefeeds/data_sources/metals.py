"""
Precious metals price domain

Expected record per metal:
    {"price": 2650.0, "change_24h": 0.3}

Several endpoints can be configured (comma separated METALS_API_ENDPOINTS);
they are tried in order and the first successful response is used.
"""

import os
from typing import Any, Dict, List, Optional

from ..cache.rate_limiter import DEFAULT_RATE_LIMITS, RateLimitConfig
from ..core.config import DEFAULT_METALS_SETTINGS, DomainSettings
from .base import FeedDomain, Record, is_number

# ==================== Configuration ====================

METALS_DOMAIN_KEY = "metals_prices"

DEFAULT_METALS_ENDPOINTS = ["https://api.metals.live/v1/spot"]

METALS = ["gold", "silver", "platinum", "palladium", "copper"]

# USD per troy ounce (copper per pound)
FALLBACK_METALS_PRICES: Dict[str, Record] = {
    "gold": {"price": 2650, "change_24h": 0.3},
    "silver": {"price": 31.50, "change_24h": -0.1},
    "platinum": {"price": 980, "change_24h": 0.8},
    "palladium": {"price": 925, "change_24h": -0.4},
    "copper": {"price": 4.25, "change_24h": 0.2},
}


def configured_endpoints() -> List[str]:
    """Endpoints from METALS_API_ENDPOINTS, or the defaults."""
    raw = os.getenv("METALS_API_ENDPOINTS", "")
    endpoints = [url.strip() for url in raw.split(",") if url.strip()]
    return endpoints or list(DEFAULT_METALS_ENDPOINTS)


def validate_metal_record(raw: Any) -> Optional[Record]:
    """Normalize one metal record, or None if it is malformed."""
    if not isinstance(raw, dict):
        return None
    price = raw.get("price")
    change = raw.get("change_24h")
    if not is_number(price) or not is_number(change):
        return None
    return {"price": float(price), "change_24h": float(change)}


def create_metals_domain(
    settings: DomainSettings = DEFAULT_METALS_SETTINGS,
    rate_limit: Optional[RateLimitConfig] = None,
    endpoints: Optional[List[str]] = None,
) -> FeedDomain:
    """Build the metals price domain."""
    return FeedDomain(
        name="metals",
        domain_key=METALS_DOMAIN_KEY,
        requested_keys=list(METALS),
        fallback=FALLBACK_METALS_PRICES,
        validate=validate_metal_record,
        endpoints=endpoints or configured_endpoints(),
        settings=settings,
        rate_limit=rate_limit or DEFAULT_RATE_LIMITS["metals"],
        description="Precious metal spot prices in USD",
    )
