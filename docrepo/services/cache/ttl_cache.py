"""
TTL Cache

Bounded, insertion-ordered read cache owned by a single repository.
Expired entries are dropped lazily on read and by a periodic sweep task
whose lifetime is tied to the owning repository.
"""

import asyncio
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional

import structlog

from ...domain.cache.entities import CacheEntry
from ...domain.cache.value_objects import CacheKey, CacheStats, EvictionPolicy, TTL

logger = structlog.get_logger()


class TTLCache:
    """
    In-memory TTL cache with capacity eviction.

    With ``EvictionPolicy.FIFO`` reads never reorder entries, so a full cache
    evicts the earliest inserted entry. With ``EvictionPolicy.LRU`` every hit
    moves the entry to the back.

    Args:
        namespace: Collection whose keys this cache holds
        enabled: When False, ``get`` always misses and ``set`` does nothing
        default_ttl: TTL in seconds for entries stored without an explicit TTL
        max_size: Maximum number of entries
        eviction_policy: Eviction order when the cache is full
        clock: Monotonic time source in seconds
    """

    def __init__(
        self,
        namespace: str,
        *,
        enabled: bool = True,
        default_ttl: float = 300.0,
        max_size: int = 100,
        eviction_policy: EvictionPolicy = EvictionPolicy.FIFO,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.namespace = namespace
        self.enabled = enabled
        self.default_ttl = TTL(default_ttl).seconds
        self.max_size = max_size
        self.eviction_policy = eviction_policy
        self._clock = clock

        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._sweeper: Optional[asyncio.Task] = None

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if not self.enabled:
            return False
        with self._lock:
            entry = self._entries.get(str(key))
            return entry is not None and not entry.is_expired(self._clock())

    def key(self, operation: str, params: Optional[dict] = None) -> str:
        """Build a key in this cache's namespace."""
        return CacheKey.for_operation(self.namespace, operation, params).value

    def get(self, key: str) -> Optional[Any]:
        """
        Return cached data for ``key``.

        Returns None when the key was never set, has expired, or caching is disabled.
        """
        if not self.enabled:
            return None

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return None

            if self.eviction_policy is EvictionPolicy.LRU:
                self._entries.move_to_end(key)

            self._hits += 1
            return entry.data

    def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        """Store ``data`` under ``key``, evicting one entry if a new key would overflow."""
        if not self.enabled:
            return

        entry_ttl = self.default_ttl if ttl is None else TTL(ttl).seconds

        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                evicted_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug(
                    "Cache: entry evicted",
                    namespace=self.namespace,
                    key=evicted_key,
                    policy=self.eviction_policy.value,
                )

            self._entries[key] = CacheEntry(
                data=data, timestamp=self._clock(), ttl=entry_ttl
            )

    def invalidate(self, pattern: Optional[str] = None) -> int:
        """
        Remove entries.

        Args:
            pattern: Remove every key containing this substring; when omitted,
                remove every key in this cache's collection namespace

        Returns:
            Number of entries removed
        """
        with self._lock:
            if pattern is None:
                prefix = CacheKey.namespace(self.namespace)
                doomed = [k for k in self._entries if k.startswith(prefix)]
            else:
                doomed = [k for k in self._entries if pattern in k]

            for key in doomed:
                del self._entries[key]

        if doomed:
            logger.debug(
                "Cache: entries invalidated",
                namespace=self.namespace,
                pattern=pattern,
                count=len(doomed),
            )
        return len(doomed)

    def sweep(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._expirations += len(expired)

        if expired:
            logger.debug(
                "Cache: expired entries swept", namespace=self.namespace, count=len(expired)
            )
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                namespace=self.namespace,
                size=len(self._entries),
                max_size=self.max_size,
                enabled=self.enabled,
                default_ttl_seconds=self.default_ttl,
                eviction_policy=self.eviction_policy,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
            )

    # Sweeper lifecycle

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def start_sweeper(self, interval: float) -> None:
        """Start the periodic sweep task on the running event loop."""
        if interval <= 0:
            raise ValueError("Sweep interval must be positive")
        if self.sweeper_running:
            return

        self._sweeper = asyncio.get_running_loop().create_task(
            self._sweep_periodically(interval),
            name=f"docrepo-cache-sweeper:{self.namespace}",
        )
        logger.debug("Cache: sweeper started", namespace=self.namespace, interval=interval)

    async def stop_sweeper(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        task, self._sweeper = self._sweeper, None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Cache: sweeper stopped", namespace=self.namespace)

    async def _sweep_periodically(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()
