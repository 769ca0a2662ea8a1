"""
Cache Value Objects

Immutable value objects for the repository read cache.
Provides type safety and validation for keys, TTLs and cache configuration.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from ...constants import CACHE_KEY_SEPARATOR


class EvictionPolicy(str, Enum):
    """Order in which entries leave a full cache."""

    FIFO = "fifo"
    LRU = "lru"


@dataclass(frozen=True)
class CacheKey:
    """
    Immutable cache key value object.

    Layout: ``<collection>:<operation>:<json-encoded params>``.
    """

    value: str

    def __post_init__(self) -> None:
        """Validate cache key format."""
        if not self.value:
            raise ValueError("Cache key cannot be empty")

    @classmethod
    def for_operation(
        cls,
        collection: str,
        operation: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> "CacheKey":
        """Create a key for a read operation on a collection."""
        if not collection:
            raise ValueError("Collection name cannot be empty")
        if not operation:
            raise ValueError("Operation name cannot be empty")

        encoded = ""
        if params:
            encoded = json.dumps(
                params, sort_keys=True, separators=(",", ":"), default=str
            )
        return cls(CACHE_KEY_SEPARATOR.join((collection, operation, encoded)))

    @staticmethod
    def namespace(collection: str) -> str:
        """Prefix shared by every key of a collection."""
        return f"{collection}{CACHE_KEY_SEPARATOR}"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TTL:
    """
    Time To Live value object for cache expiration.

    Stored in seconds; fractional values are allowed.
    """

    seconds: float

    def __post_init__(self) -> None:
        """Validate TTL value."""
        if self.seconds < 0:
            raise ValueError("TTL cannot be negative")
        if self.seconds > 86400 * 365:  # Max 1 year
            raise ValueError("TTL too large (max 1 year)")

    @classmethod
    def of_seconds(cls, seconds: float) -> "TTL":
        """Create TTL from seconds."""
        return cls(float(seconds))

    @classmethod
    def minutes(cls, minutes: float) -> "TTL":
        """Create TTL from minutes."""
        return cls(minutes * 60.0)

    @classmethod
    def default(cls) -> "TTL":
        """Default read cache TTL (5 minutes)."""
        return cls.minutes(5)

    def __str__(self) -> str:
        return f"{self.seconds:g}s"


@dataclass(frozen=True)
class CacheConfig:
    """Per-repository cache configuration."""

    enabled: bool = True
    ttl_seconds: float = 300.0
    max_size: int = 100
    sweep_interval_seconds: float = 60.0
    eviction_policy: EvictionPolicy = EvictionPolicy.FIFO

    def __post_init__(self) -> None:
        if self.max_size < 1:
            raise ValueError("Cache max_size must be at least 1")
        if self.sweep_interval_seconds <= 0:
            raise ValueError("Cache sweep interval must be positive")
        # Reuse TTL bounds checking
        TTL(self.ttl_seconds)


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time cache statistics."""

    namespace: str
    size: int
    max_size: int
    enabled: bool
    default_ttl_seconds: float
    eviction_policy: EvictionPolicy
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        """Fraction of lookups served from cache."""
        total = self.hits + self.misses
        return self.hits / total if total else 0.0
