"""
Data domain definitions and payload reconciliation.

A FeedDomain describes one external data domain (crypto prices, metal
prices): which sub-keys to request, where to fetch them, how to validate a
single sub-key's record, and which fallback constant replaces a missing one.
"""

import copy
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..cache.rate_limiter import RateLimitConfig
from ..core.config import DomainSettings
from ..core.data_structures import Err, Ok, PartialOk, ReconcileResult

logger = logging.getLogger(__name__)

Record = Dict[str, float]


def is_number(value: Any) -> bool:
    """True for finite ints/floats that fit a float; bools are not prices."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # JSON integers beyond float range
        return False


@dataclass
class FeedDomain:
    """One external data domain and how to fetch and validate it."""
    name: str                                   # Used for logs and the rate window
    domain_key: str                             # Cache key for the merged result
    requested_keys: List[str]
    fallback: Dict[str, Record]
    validate: Callable[[Any], Optional[Record]]
    endpoints: List[str]
    settings: DomainSettings
    rate_limit: RateLimitConfig
    params: Optional[Dict[str, Any]] = None
    description: str = ""

    def __post_init__(self):
        missing = [key for key in self.requested_keys if key not in self.fallback]
        if missing:
            raise ValueError(f"{self.name}: no fallback constant for {missing}")

    def fallback_values(self) -> Dict[str, Record]:
        """Fresh copy of the fallback table for the requested keys."""
        return {key: copy.deepcopy(self.fallback[key]) for key in self.requested_keys}


def reconcile(domain: FeedDomain, payload: Any) -> ReconcileResult:
    """
    Merge a provider payload with the domain's fallback table.

    Each requested sub-key is validated on its own; a missing or malformed
    record is replaced by its fallback constant without affecting the others.

    Returns:
        Ok if every sub-key was valid, PartialOk if some were substituted,
        Err if nothing in the payload was usable
    """
    if not isinstance(payload, dict):
        return Err(
            reason=f"Unexpected {domain.name} payload type: {type(payload).__name__}",
            values=domain.fallback_values(),
        )

    values: Dict[str, Record] = {}
    missing: List[str] = []

    for key in domain.requested_keys:
        try:
            record = domain.validate(payload.get(key))
        except Exception as e:
            logger.warning(f"{domain.name}: invalid record for {key}: {type(e).__name__}: {e}")
            record = None

        if record is None:
            values[key] = copy.deepcopy(domain.fallback[key])
            missing.append(key)
        else:
            values[key] = record

    if not missing:
        return Ok(values=values)

    if len(missing) == len(domain.requested_keys):
        return Err(reason=f"No valid {domain.name} fields in response", values=values)

    return PartialOk(values=values, missing_keys=missing)
