"""Content-addressed result cache."""

from photoroute.cache.results import CacheEntry, CacheStats, ResultCache, fingerprint

__all__ = ["CacheEntry", "CacheStats", "ResultCache", "fingerprint"]
