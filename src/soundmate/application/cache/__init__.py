"""Caching layer."""

from soundmate.application.cache.base_cache import BaseCache, CacheEntry, TTLCache

__all__ = ["BaseCache", "CacheEntry", "TTLCache"]
