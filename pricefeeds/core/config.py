"""
Configuration for the price feed layer.

Values come from keyword arguments or from PRICEFEEDS_* environment
variables (a local .env file is loaded first).

Example .env:
    PRICEFEEDS_REQUESTS_PER_MINUTE=30
    PRICEFEEDS_CACHE_CAPACITY=100
    PRICEFEEDS_CRYPTO_REFRESH_INTERVAL=120
    PRICEFEEDS_METALS_TTL=240
    PRICEFEEDS_STORAGE_DIR=./data/cache
"""

import os
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Optional, TypeVar

from dotenv import load_dotenv

from ..cache.cache_manager import DEFAULT_CAPACITY, CachePriority
from ..cache.persistence import DEFAULT_STORAGE_KEY, DEFAULT_VALIDITY_WINDOW
from ..cache.rate_limiter import RateLimitConfig
from .retry import RetryPolicy

ENV_PREFIX = "PRICEFEEDS_"

T = TypeVar("T")


@dataclass(frozen=True)
class DomainSettings:
    """Per-domain fetch settings (immutable)"""
    ttl_seconds: float
    priority: CachePriority
    refresh_interval: float     # Seconds between scheduled fetch cycles
    request_timeout: float      # Per-call HTTP timeout
    max_retries: int = 3        # Retries after the first attempt
    base_delay: float = 1.0
    max_delay: float = 8.0
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        if self.ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be > 0, got {self.ttl_seconds}")
        if self.refresh_interval <= 0:
            raise ValueError(f"refresh_interval must be > 0, got {self.refresh_interval}")
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be > 0, got {self.request_timeout}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy.from_max_retries(
            self.max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            backoff_multiplier=self.backoff_multiplier,
        )


# Crypto prices are volatile: short TTL, 2 minute refresh
DEFAULT_CRYPTO_SETTINGS = DomainSettings(
    ttl_seconds=90,
    priority=CachePriority.HIGH,
    refresh_interval=120,
    request_timeout=10,
    max_retries=3,
    base_delay=1.0,
    max_delay=8.0,
)

# Metals move slowly: longer TTL, 5 minute refresh
DEFAULT_METALS_SETTINGS = DomainSettings(
    ttl_seconds=240,
    priority=CachePriority.MEDIUM,
    refresh_interval=300,
    request_timeout=8,
    max_retries=2,
    base_delay=2.0,
    max_delay=10.0,
)


@dataclass(frozen=True)
class FeedsConfig:
    """Configuration for the whole feed layer (immutable)"""
    # Rate limiting
    requests_per_minute: float = 30.0
    max_requests_per_identifier: int = 50
    window_seconds: float = 60.0

    # Cache
    cache_capacity: int = DEFAULT_CAPACITY
    sweep_interval: float = 300.0

    # Persistence
    storage_dir: str = "./data/cache"
    storage_key: str = DEFAULT_STORAGE_KEY
    validity_window: float = DEFAULT_VALIDITY_WINDOW
    persist_on_write: bool = False

    # Domains
    crypto: DomainSettings = field(default_factory=lambda: DEFAULT_CRYPTO_SETTINGS)
    metals: DomainSettings = field(default_factory=lambda: DEFAULT_METALS_SETTINGS)

    # Logging settings
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    def __post_init__(self):
        if self.cache_capacity < 1:
            raise ValueError(f"cache_capacity must be >= 1, got {self.cache_capacity}")
        if self.sweep_interval <= 0:
            raise ValueError(f"sweep_interval must be > 0, got {self.sweep_interval}")
        if self.validity_window <= 0:
            raise ValueError(f"validity_window must be > 0, got {self.validity_window}")
        # Validates the rate limit values
        self.rate_limit_config()

    def rate_limit_config(self, name: str = "default", use_spacer: bool = True) -> RateLimitConfig:
        return RateLimitConfig(
            requests_per_minute=self.requests_per_minute,
            max_requests_per_identifier=self.max_requests_per_identifier,
            window_seconds=self.window_seconds,
            use_spacer=use_spacer,
            name=name,
        )

    @classmethod
    def from_env(cls, env: Optional[Dict[str, str]] = None) -> "FeedsConfig":
        """
        Build a config from PRICEFEEDS_* variables.

        Args:
            env: Mapping to read instead of os.environ (no .env loading then)

        Raises:
            ValueError: If a variable cannot be parsed
        """
        if env is None:
            load_dotenv()
            env = dict(os.environ)

        def read(name: str, parse: Callable[[str], T], default: T) -> T:
            raw = env.get(ENV_PREFIX + name)
            if raw is None or raw == "":
                return default
            try:
                return parse(raw)
            except ValueError as e:
                raise ValueError(f"Invalid {ENV_PREFIX}{name}={raw!r}: {e}") from e

        def read_domain(prefix: str, defaults: DomainSettings) -> DomainSettings:
            return replace(
                defaults,
                ttl_seconds=read(f"{prefix}_TTL", float, defaults.ttl_seconds),
                priority=read(f"{prefix}_PRIORITY", CachePriority, defaults.priority),
                refresh_interval=read(
                    f"{prefix}_REFRESH_INTERVAL", float, defaults.refresh_interval
                ),
                request_timeout=read(f"{prefix}_TIMEOUT", float, defaults.request_timeout),
                max_retries=read(f"{prefix}_MAX_RETRIES", int, defaults.max_retries),
                base_delay=read(f"{prefix}_BASE_DELAY", float, defaults.base_delay),
                max_delay=read(f"{prefix}_MAX_DELAY", float, defaults.max_delay),
                backoff_multiplier=read(
                    f"{prefix}_BACKOFF_MULTIPLIER", float, defaults.backoff_multiplier
                ),
            )

        defaults = cls()
        return cls(
            requests_per_minute=read("REQUESTS_PER_MINUTE", float, defaults.requests_per_minute),
            max_requests_per_identifier=read(
                "MAX_REQUESTS_PER_IDENTIFIER", int, defaults.max_requests_per_identifier
            ),
            window_seconds=read("WINDOW_SECONDS", float, defaults.window_seconds),
            cache_capacity=read("CACHE_CAPACITY", int, defaults.cache_capacity),
            sweep_interval=read("SWEEP_INTERVAL", float, defaults.sweep_interval),
            storage_dir=read("STORAGE_DIR", str, defaults.storage_dir),
            storage_key=read("STORAGE_KEY", str, defaults.storage_key),
            validity_window=read("VALIDITY_WINDOW", float, defaults.validity_window),
            persist_on_write=read("PERSIST_ON_WRITE", _parse_bool, defaults.persist_on_write),
            crypto=read_domain("CRYPTO", defaults.crypto),
            metals=read_domain("METALS", defaults.metals),
            log_level=read("LOG_LEVEL", str, defaults.log_level),
            log_dir=read("LOG_DIR", str, defaults.log_dir),
        )


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    raise ValueError("expected true/false")
