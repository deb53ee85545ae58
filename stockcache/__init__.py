"""stockcache -- tiered caching layer for the inventory API."""

__version__ = "2.0.0"
