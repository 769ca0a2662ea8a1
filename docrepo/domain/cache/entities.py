"""
Cache Domain Entities

Cache entry entity encapsulating the expiry invariant.
"""

from dataclasses import dataclass
from typing import Any


@dataclass
class CacheEntry:
    """
    Cached read result.

    ``timestamp`` and ``ttl`` are expressed on the owning cache's clock, in seconds.
    An entry is valid while ``now - timestamp <= ttl``.
    """

    data: Any
    timestamp: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        """Check if cache entry is expired at ``now``."""
        return now - self.timestamp > self.ttl

    def age(self, now: float) -> float:
        return now - self.timestamp
