"""In-memory caching layer for quotes and insights.

This module contains:
- TTLCache: async-safe cache with per-entry TTLs and optional stale retention
- InsightCache: content-fingerprinted cache for AI insights
- CacheKeyBuilder for consistent key generation
- TTL configurations for different data types
- Cache metrics tracking
"""

from deepticker.cache.insight_cache import InsightCache, insight_fingerprint
from deepticker.cache.manager import (
    DEFAULT_CACHE_CONFIG,
    CacheConfig,
    CacheEntry,
    CacheKeyBuilder,
    CacheMetrics,
    CacheType,
    TTLCache,
)

__all__ = [
    # Core classes
    "CacheConfig",
    "CacheEntry",
    "CacheKeyBuilder",
    "CacheMetrics",
    "CacheType",
    "InsightCache",
    "TTLCache",
    # Configuration
    "DEFAULT_CACHE_CONFIG",
    # Utilities
    "insight_fingerprint",
]
