"""
stockcache exception hierarchy.

All custom exceptions inherit from StockCacheException so callers can
catch a single base type when they want a broad safety net.  Cache
infrastructure failures derive from :class:`CacheError`; errors raised
by data fetchers are never wrapped in this hierarchy.
"""


class StockCacheException(Exception):
    """Base exception for all stockcache errors."""


class ConfigurationError(StockCacheException, ValueError):
    """Raised when configuration is invalid or cannot be loaded."""


class CacheError(StockCacheException):
    """Raised when a cache store fails for infrastructure reasons."""


class CacheUnavailableError(CacheError):
    """Raised when the backing store cannot be reached."""


class CacheSerializationError(CacheError, ValueError):
    """Raised when a value cannot be encoded in or decoded from a store."""
