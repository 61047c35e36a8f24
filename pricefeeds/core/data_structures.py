"""
Shared data structures for the price feed layer.

- HealthStatus derivation from a fetch cycle's success ratio
- FeedSnapshot, the read model handed to presentation layers
- Tagged reconcile results (Ok / PartialOk / Err)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

# Success-ratio thresholds for health derivation
HEALTHY_THRESHOLD = 0.9
DEGRADED_THRESHOLD = 0.5


class HealthStatus(str, Enum):
    """Derived health of a data source for the latest fetch cycle"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    OFFLINE = "offline"

    @classmethod
    def from_ratio(cls, success_ratio: float) -> "HealthStatus":
        """Map valid_fields / requested_fields to a status."""
        if success_ratio >= HEALTHY_THRESHOLD:
            return cls.HEALTHY
        if success_ratio >= DEGRADED_THRESHOLD:
            return cls.DEGRADED
        return cls.OFFLINE


@dataclass
class FeedSnapshot:
    """Merged result of one fetch cycle for a data domain."""
    domain: str
    values: Dict[str, Dict[str, float]]
    last_updated: Optional[float] = None
    health_status: HealthStatus = HealthStatus.HEALTHY
    error: Optional[str] = None
    from_cache: bool = False
    rate_limited: bool = False
    valid_fields: int = 0
    requested_fields: int = 0
    missing_keys: List[str] = field(default_factory=list)

    @property
    def success_ratio(self) -> float:
        if self.requested_fields == 0:
            return 0.0
        return self.valid_fields / self.requested_fields

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serializable form, used as the cached value."""
        return {
            "domain": self.domain,
            "values": self.values,
            "last_updated": self.last_updated,
            "health_status": self.health_status.value,
            "error": self.error,
            "rate_limited": self.rate_limited,
            "valid_fields": self.valid_fields,
            "requested_fields": self.requested_fields,
            "missing_keys": list(self.missing_keys),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], from_cache: bool = False) -> "FeedSnapshot":
        return cls(
            domain=data["domain"],
            values=data["values"],
            last_updated=data.get("last_updated"),
            health_status=HealthStatus(data["health_status"]),
            error=data.get("error"),
            from_cache=from_cache,
            rate_limited=data.get("rate_limited", False),
            valid_fields=data.get("valid_fields", 0),
            requested_fields=data.get("requested_fields", 0),
            missing_keys=list(data.get("missing_keys", [])),
        )


# ==================== Reconcile Results ====================

@dataclass(frozen=True)
class Ok:
    """Every requested sub-key was present and well-typed."""
    values: Dict[str, Dict[str, float]]


@dataclass(frozen=True)
class PartialOk:
    """Some sub-keys were substituted with fallback constants."""
    values: Dict[str, Dict[str, float]]
    missing_keys: List[str]


@dataclass(frozen=True)
class Err:
    """Nothing usable in the payload; values is the full fallback table."""
    reason: str
    values: Dict[str, Dict[str, float]]


ReconcileResult = Union[Ok, PartialOk, Err]
