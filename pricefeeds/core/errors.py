"""
Error taxonomy for price feed access.

NetworkError and RateLimitSignal are retried by the RetryManager and absorbed
by the FeedOrchestrator. ValidationError is resolved per sub-key through
fallback substitution. PersistenceError is logged and swallowed by the
persistence adapter.
"""

from typing import List, Optional


class FeedError(Exception):
    """Base exception for price feed errors"""

    def __init__(self, message: str, context: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if self.context:
            return f"[{self.context}] {self.message}"
        return self.message


class NetworkError(FeedError):
    """Connection failure, timeout, or non-2xx response"""

    def __init__(
        self,
        message: str,
        context: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, context)
        self.status_code = status_code


class RateLimitSignal(FeedError):
    """HTTP 429 from a provider or a local limiter rejection"""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        context: Optional[str] = None,
        identifier: Optional[str] = None,
        status_code: Optional[int] = 429,
    ):
        super().__init__(message, context)
        self.identifier = identifier
        self.status_code = status_code


class ValidationError(FeedError):
    """Response shape mismatch for one or more sub-keys"""

    def __init__(
        self,
        message: str,
        context: Optional[str] = None,
        missing_keys: Optional[List[str]] = None,
    ):
        super().__init__(message, context)
        self.missing_keys = list(missing_keys or [])


class PersistenceError(FeedError):
    """Snapshot storage or serialization failure"""
    pass


def tag_error(error: BaseException, context: str) -> FeedError:
    """
    Attach a context label to an error.

    FeedError instances are tagged in place. Anything else is wrapped in a
    FeedError; the caller should chain it with ``raise ... from error``.
    """
    if isinstance(error, FeedError):
        error.context = context
        return error
    return FeedError(f"{type(error).__name__}: {error}", context=context)
