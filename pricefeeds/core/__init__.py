"""
Price feed core module

- Data structures for snapshots, health status and reconcile results
- Error taxonomy
- Retry executor with exponential backoff
- Logging setup

Configuration lives in pricefeeds.core.config.
"""

from .data_structures import (
    FeedSnapshot,
    HealthStatus,
    Ok,
    PartialOk,
    Err,
    ReconcileResult,
)
from .errors import (
    FeedError,
    NetworkError,
    RateLimitSignal,
    ValidationError,
    PersistenceError,
)
from .retry import RetryManager, RetryPolicy
from .observability import setup_logging

__all__ = [
    # Data structures
    "FeedSnapshot",
    "HealthStatus",
    "Ok",
    "PartialOk",
    "Err",
    "ReconcileResult",
    # Errors
    "FeedError",
    "NetworkError",
    "RateLimitSignal",
    "ValidationError",
    "PersistenceError",
    # Retry
    "RetryManager",
    "RetryPolicy",
    # Logging
    "setup_logging",
]
