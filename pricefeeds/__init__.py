"""
pricefeeds - resilient access to rate-limited price APIs
"""

from .context import FeedContext
from .core.config import FeedsConfig, DomainSettings
from .core.data_structures import FeedSnapshot, HealthStatus
from .data_sources.crypto import CRYPTO_DOMAIN_KEY
from .data_sources.metals import METALS_DOMAIN_KEY

__version__ = "1.0.0"

__all__ = [
    "FeedContext",
    "FeedsConfig",
    "DomainSettings",
    "FeedSnapshot",
    "HealthStatus",
    "CRYPTO_DOMAIN_KEY",
    "METALS_DOMAIN_KEY",
]
