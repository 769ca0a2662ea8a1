"""Cache domain model for the repository read cache."""

from .entities import CacheEntry
from .value_objects import CacheConfig, CacheKey, CacheStats, EvictionPolicy, TTL

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheKey",
    "CacheStats",
    "EvictionPolicy",
    "TTL",
]
