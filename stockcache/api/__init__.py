"""HTTP surface for cache statistics and administration."""

from stockcache.api.app import create_app

__all__ = ["create_app"]
