"""
Data Sources for price feeds

- Crypto prices (CoinGecko)
- Precious metal prices
- Per-domain fetch orchestration
"""

from .base import FeedDomain, reconcile
from .crypto import CRYPTO_DOMAIN_KEY, create_crypto_domain
from .metals import METALS_DOMAIN_KEY, create_metals_domain
from .http import JsonHttpClient
from .orchestrator import FeedOrchestrator

__all__ = [
    "FeedDomain",
    "reconcile",
    "CRYPTO_DOMAIN_KEY",
    "create_crypto_domain",
    "METALS_DOMAIN_KEY",
    "create_metals_domain",
    "JsonHttpClient",
    "FeedOrchestrator",
]
