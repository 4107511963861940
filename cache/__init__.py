"""Read caching for scoped filesystem access.

Provides a modification-time validated, single-flight cache for
whole-file reads, shared process-wide by default.
"""

from cache.cache import CacheEntry, CacheStats, ReadCache, WaiterGroup, default_cache

__all__ = ["ReadCache", "CacheEntry", "CacheStats", "WaiterGroup", "default_cache"]
