"""In-memory TTL caching for quotes and insights.

This module provides the shared cache used by the quote fetcher and the
insight cache.

Features:
- Per-entry TTLs with a configurable clock
- Lazy expiry: stale entries are dropped on lookup, never swept
- Optional retention of expired entries for stale fallbacks
- Cache metrics tracking (hits, misses, stale hits)
- asyncio.Lock around every read and write
"""

import asyncio
import hashlib
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

import structlog

from deepticker.config import Settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


class CacheType(Enum):
    """Types of cached data with different TTLs."""

    QUOTE_PRIMARY = "quote_primary"
    QUOTE_SECONDARY = "quote_secondary"
    INSIGHT = "insight"
    HISTORY = "history"


@dataclass
class CacheConfig:
    """Configuration for cache TTLs.

    Attributes:
        quote_primary_ttl: TTL for primary-source quotes in seconds (default: 5 min).
        quote_secondary_ttl: TTL for secondary-source quotes in seconds (default: 10 min).
        insight_ttl: TTL for AI insights in seconds (default: 5 min).
        history_ttl: TTL for daily price history in seconds (default: 1 hour).
        default_ttl: Default TTL for unspecified types (default: 5 min).
    """

    quote_primary_ttl: float = 300.0  # 5 minutes
    quote_secondary_ttl: float = 600.0  # 10 minutes
    insight_ttl: float = 300.0  # 5 minutes
    history_ttl: float = 3600.0  # 1 hour
    default_ttl: float = 300.0  # 5 minutes

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheConfig":
        """Build cache configuration from application settings."""
        return cls(
            quote_primary_ttl=settings.QUOTE_PRIMARY_TTL,
            quote_secondary_ttl=settings.QUOTE_SECONDARY_TTL,
            insight_ttl=settings.INSIGHT_TTL,
            history_ttl=settings.HISTORY_TTL,
        )

    def get_ttl(self, cache_type: CacheType) -> float:
        """Get TTL for a cache type."""
        ttl_map = {
            CacheType.QUOTE_PRIMARY: self.quote_primary_ttl,
            CacheType.QUOTE_SECONDARY: self.quote_secondary_ttl,
            CacheType.INSIGHT: self.insight_ttl,
            CacheType.HISTORY: self.history_ttl,
        }
        return ttl_map.get(cache_type, self.default_ttl)


# Default cache configuration
DEFAULT_CACHE_CONFIG = CacheConfig()


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value with its insertion time and lifetime.

    Attributes:
        value: The cached value.
        inserted_at: Clock reading when the value was stored.
        ttl: Lifetime in seconds.
    """

    value: T
    inserted_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        """An entry is fresh iff ``now - inserted_at < ttl``."""
        return now - self.inserted_at < self.ttl

    def age(self, now: float) -> float:
        """Seconds since the entry was stored."""
        return now - self.inserted_at


@dataclass
class CacheMetrics:
    """Metrics for cache performance.

    Attributes:
        hits: Number of fresh cache hits.
        misses: Number of cache misses.
        stale_hits: Number of expired entries served as stale.
        evictions: Number of expired entries dropped on lookup.
    """

    hits: int = 0
    misses: int = 0
    stale_hits: int = 0
    evictions: int = 0

    @property
    def total_requests(self) -> int:
        """Total number of cache requests."""
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Cache hit rate as a percentage."""
        if self.total_requests == 0:
            return 0.0
        return (self.hits / self.total_requests) * 100

    def to_dict(self) -> dict[str, Any]:
        """Convert metrics to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "stale_hits": self.stale_hits,
            "evictions": self.evictions,
            "total_requests": self.total_requests,
            "hit_rate": round(self.hit_rate, 2),
        }

    def reset(self) -> None:
        """Reset all metrics."""
        self.hits = 0
        self.misses = 0
        self.stale_hits = 0
        self.evictions = 0


class CacheKeyBuilder:
    """Builder for consistent cache key generation."""

    PREFIX = "deepticker"

    @classmethod
    def quote(cls, symbol: str) -> str:
        """Build cache key for a symbol's quote.

        Args:
            symbol: Stock symbol (e.g., "AAPL").

        Returns:
            Cache key string.
        """
        return f"{cls.PREFIX}:quote:{symbol.strip().upper()}"

    @classmethod
    def history(cls, symbol: str) -> str:
        """Build cache key for a symbol's daily price history."""
        return f"{cls.PREFIX}:history:{symbol.strip().upper()}"

    @classmethod
    def insight(cls, provider: str, fingerprint: str) -> str:
        """Build cache key for an AI insight.

        Args:
            provider: Provider identifier.
            fingerprint: Request fingerprint.

        Returns:
            Cache key string.
        """
        return f"{cls.PREFIX}:insight:{provider}:{fingerprint}"

    @staticmethod
    def hash_text(content: str) -> str:
        """Stable short hash of a string."""
        return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


class TTLCache(Generic[T]):
    """Async-safe in-memory cache with per-entry TTLs.

    Lookups past expiry drop the entry, unless the cache was built with
    ``retain_stale=True``; then the entry stays until overwritten so callers
    can still reach it through ``get_entry(key, allow_stale=True)``.

    Example:
        cache: TTLCache[Quote] = TTLCache(retain_stale=True)
        await cache.set("deepticker:quote:AAPL", quote, ttl=300)
        quote = await cache.get("deepticker:quote:AAPL")
    """

    def __init__(
        self,
        *,
        default_ttl: float = DEFAULT_CACHE_CONFIG.default_ttl,
        retain_stale: bool = False,
        clock: Clock = time.monotonic,
        name: str = "cache",
    ) -> None:
        """Initialize the cache.

        Args:
            default_ttl: TTL used when ``set`` is called without one.
            retain_stale: Keep expired entries reachable for stale fallbacks.
            clock: Monotonic clock returning seconds.
            name: Name used in log events.
        """
        self._entries: dict[str, CacheEntry[T]] = {}
        self._lock = asyncio.Lock()
        self._default_ttl = default_ttl
        self._retain_stale = retain_stale
        self._clock = clock
        self.metrics = CacheMetrics()
        self._logger = logger.bind(component=name)

    def now(self) -> float:
        """Current clock reading."""
        return self._clock()

    async def get(self, key: str) -> T | None:
        """Get a fresh value from cache.

        Args:
            key: Cache key.

        Returns:
            Cached value, or None when absent or expired.
        """
        entry = await self.get_entry(key)
        return entry.value if entry is not None else None

    async def get_entry(self, key: str, *, allow_stale: bool = False) -> CacheEntry[T] | None:
        """Get the entry for a key.

        Args:
            key: Cache key.
            allow_stale: Return an expired entry instead of None when one is
                retained.

        Returns:
            The entry, or None.
        """
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.metrics.misses += 1
                self._logger.debug("cache_miss", key=key)
                return None

            now = self._clock()
            if entry.is_fresh(now):
                self.metrics.hits += 1
                self._logger.debug("cache_hit", key=key, age=round(entry.age(now), 2))
                return entry

            if not self._retain_stale:
                del self._entries[key]
                self.metrics.evictions += 1
                self.metrics.misses += 1
                self._logger.debug("cache_expired", key=key)
                return None

            if allow_stale:
                self.metrics.stale_hits += 1
                self._logger.debug("cache_stale_hit", key=key, age=round(entry.age(now), 2))
                return entry

            self.metrics.misses += 1
            self._logger.debug("cache_miss", key=key, reason="expired")
            return None

    async def set(self, key: str, value: T, ttl: float | None = None) -> CacheEntry[T]:
        """Store a value, replacing any previous entry (last write wins).

        Args:
            key: Cache key.
            value: Value to cache.
            ttl: TTL in seconds; the cache default when omitted.

        Returns:
            The stored entry.
        """
        entry = CacheEntry(
            value=value,
            inserted_at=self._clock(),
            ttl=self._default_ttl if ttl is None else ttl,
        )
        async with self._lock:
            self._entries[key] = entry
        self._logger.debug("cache_set", key=key, ttl=entry.ttl)
        return entry

    async def delete(self, key: str) -> bool:
        """Delete a value from cache.

        Args:
            key: Cache key.

        Returns:
            True if key was deleted, False otherwise.
        """
        async with self._lock:
            removed = self._entries.pop(key, None) is not None
        self._logger.debug("cache_delete", key=key, deleted=removed)
        return removed

    async def clear(self) -> None:
        """Remove every entry."""
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def get_metrics(self) -> dict[str, Any]:
        """Get cache metrics.

        Returns:
            Dictionary of cache metrics.
        """
        return self.metrics.to_dict()
