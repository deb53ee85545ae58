"""Cache metrics exposition."""

from stockcache.observability.metrics import CacheMetrics

__all__ = ["CacheMetrics"]
