"""Cache interface and the TTL/capacity-bounded in-memory implementation."""

import asyncio
import contextlib
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")


@dataclass
class CacheEntry[V]:
    """Cache entry with value and metadata."""

    value: V
    created_at: float
    ttl_seconds: float

    def is_expired(self, now: float | None = None) -> bool:
        return (now if now is not None else time.monotonic()) > (
            self.created_at + self.ttl_seconds
        )


class BaseCache[K, V](ABC):
    """Base cache interface."""

    @abstractmethod
    async def get(self, key: K) -> V | None:
        """Cached value if present and not expired, None otherwise."""
        pass

    @abstractmethod
    async def set(self, key: K, value: V, ttl_seconds: float | None = None) -> None:
        """Store a value, overwriting any existing entry."""
        pass

    @abstractmethod
    async def delete(self, key: K) -> bool:
        """Remove a key. True if it existed."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Drop every entry."""
        pass


# Hey future me, this is the process-scoped replacement for a module-level cache singleton.
# TTL, capacity and the cleanup interval come in through the constructor, and the lifespan
# owns start()/stop(). When the cache is full the OLDEST inserted entry is evicted (insertion
# order, not LRU) - map responses are cheap to rebuild, we only need a hard memory bound.
class TTLCache(BaseCache[K, V]):
    """In-memory cache with per-entry TTL, a max size and periodic expiry sweeps."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 1000,
        cleanup_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._default_ttl = ttl_seconds
        self._max_entries = max_entries
        self._cleanup_interval = cleanup_interval_seconds
        self._clock = clock
        self._cache: OrderedDict[K, CacheEntry[V]] = OrderedDict()
        self._lock = asyncio.Lock()
        self._cleanup_task: asyncio.Task[None] | None = None
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "evictions": 0, "expired": 0}

    async def get(self, key: K) -> V | None:
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None
            if entry.is_expired(self._clock()):
                del self._cache[key]
                self._stats["expired"] += 1
                self._stats["misses"] += 1
                return None
            self._stats["hits"] += 1
            return entry.value

    async def set(self, key: K, value: V, ttl_seconds: float | None = None) -> None:
        async with self._lock:
            if key in self._cache:
                del self._cache[key]
            elif len(self._cache) >= self._max_entries:
                self._cache.popitem(last=False)
                self._stats["evictions"] += 1
            self._cache[key] = CacheEntry(
                value=value,
                created_at=self._clock(),
                ttl_seconds=ttl_seconds if ttl_seconds is not None else self._default_ttl,
            )
            self._stats["sets"] += 1

    async def delete(self, key: K) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()

    async def wrap(
        self,
        key: K,
        factory: Callable[[], Awaitable[V]],
        ttl_seconds: float | None = None,
    ) -> V:
        """Return the cached value or compute, store and return it."""
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await factory()
        await self.set(key, value, ttl_seconds)
        return value

    async def cleanup_expired(self) -> int:
        """Remove expired entries.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            now = self._clock()
            expired_keys = [k for k, e in self._cache.items() if e.is_expired(now)]
            for key in expired_keys:
                del self._cache[key]
            self._stats["expired"] += len(expired_keys)
            return len(expired_keys)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            try:
                removed = await self.cleanup_expired()
                if removed:
                    logger.debug("Cache cleanup removed %d expired entries", removed)
            except Exception as e:
                logger.exception(f"Cache cleanup failed: {e}")

    async def start(self) -> None:
        """Start the periodic expiry sweep."""
        if self._cleanup_task is not None:
            logger.warning("Cache cleanup already running")
            return
        self._cleanup_task = asyncio.create_task(
            self._cleanup_loop(), name="cache-cleanup"
        )
        logger.info(
            "Cache started (ttl=%ss, max_entries=%d)",
            self._default_ttl,
            self._max_entries,
        )

    async def stop(self) -> None:
        """Stop the sweep and drop all entries."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None
        await self.clear()
        logger.info("Cache stopped")

    def get_stats(self) -> dict[str, Any]:
        """Cache statistics (unlocked read, monitoring only)."""
        total = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "size": len(self._cache),
            "max_entries": self._max_entries,
            "hit_rate": round(self._stats["hits"] / total, 4) if total else 0.0,
            "running": self._cleanup_task is not None,
        }
