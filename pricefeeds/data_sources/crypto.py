"""
Crypto price domain (CoinGecko simple price API)

Expected record per asset id:
    {"usd": 97500.0, "usd_24h_change": 2.4, "usd_market_cap": 1.9e12}

Optional 7d/30d change fields are kept when present and default to 0.0.
"""

import os
from typing import Any, Dict, Optional

from ..cache.rate_limiter import DEFAULT_RATE_LIMITS, RateLimitConfig
from ..core.config import DEFAULT_CRYPTO_SETTINGS, DomainSettings
from .base import FeedDomain, Record, is_number

# ==================== Configuration ====================

COINGECKO_API = os.getenv("COINGECKO_API_URL", "https://api.coingecko.com/api/v3")

CRYPTO_DOMAIN_KEY = "crypto_prices"

CRYPTO_ASSETS = [
    "bitcoin", "ethereum", "solana", "cardano", "ripple", "polkadot",
    "polygon", "chainlink", "avalanche-2", "uniswap", "the-graph", "cosmos",
]

REQUIRED_FIELDS = ("usd", "usd_24h_change", "usd_market_cap")
OPTIONAL_FIELDS = ("usd_7d_change", "usd_30d_change")

# Fallback prices used when an asset is missing from the response
FALLBACK_CRYPTO_PRICES: Dict[str, Record] = {
    "bitcoin": {"usd": 97500, "usd_24h_change": 2.4, "usd_market_cap": 1900000000000, "usd_7d_change": 5.2, "usd_30d_change": 12.8},
    "ethereum": {"usd": 3850, "usd_24h_change": 1.8, "usd_market_cap": 460000000000, "usd_7d_change": 3.1, "usd_30d_change": 8.9},
    "solana": {"usd": 245, "usd_24h_change": 3.2, "usd_market_cap": 115000000000, "usd_7d_change": 7.8, "usd_30d_change": 15.6},
    "cardano": {"usd": 1.25, "usd_24h_change": -0.8, "usd_market_cap": 45000000000, "usd_7d_change": 2.1, "usd_30d_change": 4.3},
    "ripple": {"usd": 2.35, "usd_24h_change": 1.5, "usd_market_cap": 140000000000, "usd_7d_change": 4.2, "usd_30d_change": 18.7},
    "polkadot": {"usd": 9.80, "usd_24h_change": 0.9, "usd_market_cap": 15000000000, "usd_7d_change": 1.8, "usd_30d_change": 6.2},
    "polygon": {"usd": 1.15, "usd_24h_change": 2.1, "usd_market_cap": 12000000000, "usd_7d_change": 5.4, "usd_30d_change": 11.2},
    "chainlink": {"usd": 28.50, "usd_24h_change": 1.7, "usd_market_cap": 18000000000, "usd_7d_change": 3.8, "usd_30d_change": 9.1},
    "avalanche-2": {"usd": 45.20, "usd_24h_change": 2.8, "usd_market_cap": 20000000000, "usd_7d_change": 6.1, "usd_30d_change": 13.4},
    "uniswap": {"usd": 12.80, "usd_24h_change": 1.2, "usd_market_cap": 9000000000, "usd_7d_change": 2.9, "usd_30d_change": 7.6},
    "the-graph": {"usd": 0.28, "usd_24h_change": 3.5, "usd_market_cap": 3000000000, "usd_7d_change": 8.2, "usd_30d_change": 19.3},
    "cosmos": {"usd": 8.90, "usd_24h_change": 1.9, "usd_market_cap": 4000000000, "usd_7d_change": 4.7, "usd_30d_change": 10.5},
}


def validate_crypto_record(raw: Any) -> Optional[Record]:
    """
    Normalize one asset record.

    Returns:
        Record with float fields, or None if the required fields are not all numbers
    """
    if not isinstance(raw, dict):
        return None
    if not all(is_number(raw.get(name)) for name in REQUIRED_FIELDS):
        return None

    record = {name: float(raw[name]) for name in REQUIRED_FIELDS}
    for name in OPTIONAL_FIELDS:
        value = raw.get(name)
        record[name] = float(value) if is_number(value) else 0.0
    return record


def create_crypto_domain(
    settings: DomainSettings = DEFAULT_CRYPTO_SETTINGS,
    rate_limit: Optional[RateLimitConfig] = None,
) -> FeedDomain:
    """Build the crypto price domain."""
    assets = list(CRYPTO_ASSETS)
    return FeedDomain(
        name="crypto",
        domain_key=CRYPTO_DOMAIN_KEY,
        requested_keys=assets,
        fallback=FALLBACK_CRYPTO_PRICES,
        validate=validate_crypto_record,
        endpoints=[f"{COINGECKO_API}/simple/price"],
        params={
            "ids": ",".join(assets),
            "vs_currencies": "usd",
            "include_24hr_change": "true",
            "include_7d_change": "true",
            "include_30d_change": "true",
            "include_market_cap": "true",
            "precision": "4",
        },
        settings=settings,
        rate_limit=rate_limit or DEFAULT_RATE_LIMITS["coingecko"],
        description="CoinGecko spot prices in USD",
    )
