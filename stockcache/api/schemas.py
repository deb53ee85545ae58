"""
Pydantic response models for the stockcache REST API.
"""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from stockcache.cache.base import StoreStats
from stockcache.cache.tiered import OverallStats as CacheOverallStats
from stockcache.cache.tiered import TieredStats


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TierStats(_CamelModel):
    """Statistics of one cache tier.

    Attributes:
        hits: Reads served by the tier.
        misses: Reads the tier could not serve.
        hit_rate: ``hits / (hits + misses)``, 0..1.
        size: Live entries currently held.
        evictions: Entries dropped to respect capacity.
    """

    hits: int
    misses: int
    hit_rate: float
    size: int
    evictions: int

    @classmethod
    def from_store(cls, stats: StoreStats) -> "TierStats":
        return cls(
            hits=stats.hits,
            misses=stats.misses,
            hit_rate=round(stats.hit_rate, 4),
            size=stats.size,
            evictions=stats.evictions,
        )


class OverallStats(_CamelModel):
    """Hit/miss counters for the cache as a whole."""

    hits: int
    misses: int
    hit_rate: float

    @classmethod
    def from_overall(cls, stats: CacheOverallStats) -> "OverallStats":
        return cls(hits=stats.hits, misses=stats.misses, hit_rate=round(stats.hit_rate, 4))


class CacheStatsResponse(_CamelModel):
    """Body of ``GET /api/cache/stats``."""

    l1: TierStats
    l2: TierStats
    overall: OverallStats

    @classmethod
    def from_tiers(cls, tiers: TieredStats) -> "CacheStatsResponse":
        return cls(
            l1=TierStats.from_store(tiers.l1),
            l2=TierStats.from_store(tiers.l2),
            overall=OverallStats.from_overall(tiers.overall),
        )


class MessageResponse(BaseModel):
    """Plain acknowledgement body."""

    message: str


class HealthResponse(BaseModel):
    """Health check response.

    Attributes:
        status: Service health status.
        version: API version string.
        uptime_seconds: Seconds since service start.
        components: Health status of sub-components.
    """

    status: str
    version: str
    uptime_seconds: float
    components: Dict[str, str] = {}


class ErrorResponse(BaseModel):
    """Standard error body.

    Attributes:
        error: Error type identifier.
        message: Human-readable error description.
        request_id: Request ID for correlation.
    """

    error: str
    message: str
    request_id: Optional[str] = None
