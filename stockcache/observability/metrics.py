"""
CacheMetrics -- operational counters for the cache façade.

Collects per-operation outcome counters and error counts, and renders
them together with per-tier gauges in Prometheus text exposition format
for the ``/metrics`` endpoint.
"""

import logging
import threading
from collections import defaultdict
from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:
    from stockcache.cache.tiered import TieredStats

logger = logging.getLogger(__name__)


class CacheMetrics:
    """Thread-safe labelled counters for cache operations.

    Args:
        enabled: When ``False`` every ``record_*`` call is a no-op.
    """

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled
        self._lock = threading.Lock()

        # Counters  (label_key -> count)
        self._operations_total: Dict[str, float] = defaultdict(float)
        self._errors_total: Dict[str, float] = defaultdict(float)

    # ------------------------------------------------------------------
    # Recording methods
    # ------------------------------------------------------------------

    def record_operation(self, operation: str, result: str) -> None:
        """Record the outcome of one façade call.

        Args:
            operation: Façade method (``get``, ``set``, ``del_pattern`` ...).
            result: Outcome label (``hit``, ``miss``, ``ok``, ``unavailable``,
                ``error``).
        """
        if not self._enabled:
            return
        key = f'operation="{operation}",result="{result}"'
        with self._lock:
            self._operations_total[key] += 1

    def record_error(self, operation: str, error_type: str) -> None:
        """Record an infrastructure error swallowed by the façade."""
        if not self._enabled:
            return
        key = f'operation="{operation}",error_type="{error_type}"'
        with self._lock:
            self._errors_total[key] += 1

        logger.debug(
            "Cache error recorded",
            extra={"operation": operation, "error_type": error_type},
        )

    def get_operation_count(self, operation: str, result: Optional[str] = None) -> int:
        """Sum recorded calls of *operation*, optionally for one *result*."""
        prefix = f'operation="{operation}",'
        with self._lock:
            return int(sum(
                val
                for labels, val in self._operations_total.items()
                if labels.startswith(prefix)
                and (result is None or labels.endswith(f'result="{result}"'))
            ))

    def get_error_count(self) -> int:
        with self._lock:
            return int(sum(self._errors_total.values()))

    def reset(self) -> None:
        with self._lock:
            self._operations_total.clear()
            self._errors_total.clear()

    # ------------------------------------------------------------------
    # Prometheus exposition
    # ------------------------------------------------------------------

    def get_prometheus_metrics(self, tiers: Optional["TieredStats"] = None) -> str:
        """Return all metrics in Prometheus text exposition format.

        Args:
            tiers: Current tier statistics, rendered as gauges when given.

        Returns:
            Multi-line string suitable for ``/metrics`` endpoint scraping.
        """
        lines: List[str] = []

        with self._lock:
            lines.append(
                "# HELP stockcache_cache_operations_total Cache façade calls by outcome"
            )
            lines.append("# TYPE stockcache_cache_operations_total counter")
            for labels, val in sorted(self._operations_total.items()):
                lines.append(f"stockcache_cache_operations_total{{{labels}}} {val}")

            lines.append("# HELP stockcache_cache_errors_total Swallowed cache errors")
            lines.append("# TYPE stockcache_cache_errors_total counter")
            for labels, val in sorted(self._errors_total.items()):
                lines.append(f"stockcache_cache_errors_total{{{labels}}} {val}")

        if tiers is not None:
            per_tier = {"l1": tiers.l1, "l2": tiers.l2}

            lines.append("# HELP stockcache_cache_hit_rate Hit rate per tier")
            lines.append("# TYPE stockcache_cache_hit_rate gauge")
            for tier, stats in per_tier.items():
                lines.append(f'stockcache_cache_hit_rate{{tier="{tier}"}} {stats.hit_rate:.4f}')
            lines.append(
                f'stockcache_cache_hit_rate{{tier="overall"}} {tiers.overall.hit_rate:.4f}'
            )

            lines.append("# HELP stockcache_cache_entries Entries held per tier")
            lines.append("# TYPE stockcache_cache_entries gauge")
            for tier, stats in per_tier.items():
                lines.append(f'stockcache_cache_entries{{tier="{tier}"}} {stats.size}')

            lines.append("# HELP stockcache_cache_evictions_total Capacity evictions per tier")
            lines.append("# TYPE stockcache_cache_evictions_total counter")
            for tier, stats in per_tier.items():
                lines.append(f'stockcache_cache_evictions_total{{tier="{tier}"}} {stats.evictions}')

        return "\n".join(lines) + "\n"
