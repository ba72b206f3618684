# foldervision/services/memory_guard.py
"""
Process memory guard.

Tracks the resident set size of the current process against a configured
ceiling. The cheap check reads a cached figure; the expensive check runs a
full garbage collection and re-measures, and is only used when the cheap
figure is within 10% of the ceiling. Reclamation is rate-limited and
escalates from a young-generation pass to a full collection.
"""

import gc
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import psutil

from foldervision.services.logger import get_logger

log = get_logger(__name__)

BYTES_PER_MB = 1024 * 1024
# Cheap figure older than this is re-sampled
SAMPLE_TTL_S = 0.5
# Expensive check kicks in once usage reaches this fraction of the ceiling
NEAR_LIMIT_RATIO = 0.9


@dataclass
class ReclaimStats:
    """Counters for reclamation passes."""
    light_passes: int = 0
    full_passes: int = 0
    skipped_rate_limited: int = 0
    last_reclaim_at: Optional[float] = None

    @property
    def total_passes(self) -> int:
        return self.light_passes + self.full_passes


def _process_rss_mb() -> float:
    return psutil.Process().memory_info().rss / BYTES_PER_MB


class MemoryGuard:
    """Guards a single scan against a memory ceiling."""

    def __init__(
        self,
        max_memory_mb: float,
        enabled: bool = True,
        min_reclaim_interval_s: float = 5.0,
        usage_reader: Optional[Callable[[], float]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            max_memory_mb: Ceiling in MB
            enabled: When False every check reports "within limits"
            min_reclaim_interval_s: Minimum time between two reclamation passes
            usage_reader: Returns current usage in MB (defaults to process RSS)
            clock: Monotonic clock, injectable for tests
        """
        self.max_memory_mb = float(max_memory_mb)
        self.enabled = enabled
        self.min_reclaim_interval_s = min_reclaim_interval_s
        self._read_usage = usage_reader or _process_rss_mb
        self._clock = clock

        self._lock = threading.RLock()
        self._cached_mb: Optional[float] = None
        self._cached_at = 0.0
        self.stats = ReclaimStats()

    @classmethod
    def from_settings(cls, settings) -> "MemoryGuard":
        return cls(
            max_memory_mb=settings.max_memory_mb,
            enabled=settings.enable_memory_optimization,
            min_reclaim_interval_s=settings.min_reclaim_interval_s,
        )

    # ------------------------------------------------------------------
    # Measurement
    # ------------------------------------------------------------------

    def current_usage_mb(self, fresh: bool = False) -> float:
        """Usage in MB; cached for SAMPLE_TTL_S unless fresh is requested."""
        with self._lock:
            now = self._clock()
            if fresh or self._cached_mb is None or now - self._cached_at > SAMPLE_TTL_S:
                self._cached_mb = float(self._read_usage())
                self._cached_at = now
            return self._cached_mb

    def usage_percent(self) -> float:
        if self.max_memory_mb <= 0:
            return 0.0
        return self.current_usage_mb() / self.max_memory_mb * 100.0

    def is_near_limit(self) -> bool:
        """Cheap check: cached usage within 10% of the ceiling (or above)."""
        if not self.enabled:
            return False
        return self.current_usage_mb() >= self.max_memory_mb * NEAR_LIMIT_RATIO

    def is_over_limit(self) -> bool:
        """
        Cheap check first; only when near the ceiling, collect and re-measure.
        """
        if not self.enabled:
            return False
        if not self.is_near_limit():
            return False
        gc.collect()
        return self.current_usage_mb(fresh=True) > self.max_memory_mb

    def should_check(self, processed_count: int, interval: int) -> bool:
        """True every `interval` processed directories."""
        return self.enabled and interval > 0 and processed_count > 0 and processed_count % interval == 0

    # ------------------------------------------------------------------
    # Reclamation
    # ------------------------------------------------------------------

    def reclaim_if_needed(self) -> bool:
        """
        Reclaim memory when over the ceiling, at most once per interval.

        Returns True if a reclamation pass ran.
        """
        if not self.enabled:
            return False
        with self._lock:
            if not self._over_limit_cheap():
                return False
            now = self._clock()
            last = self.stats.last_reclaim_at
            if last is not None and now - last < self.min_reclaim_interval_s:
                self.stats.skipped_rate_limited += 1
                return False
            self.stats.last_reclaim_at = now

            # Light pass first
            gc.collect(0)
            self.stats.light_passes += 1
            if self.current_usage_mb(fresh=True) <= self.max_memory_mb:
                log.debug("Light collection brought memory under the limit: %s", self.memory_info())
                return True

            # Still over: full forced pass
            gc.collect()
            self.stats.full_passes += 1
            log.debug("Full collection done: %s", self.memory_info())
            return True

    def _over_limit_cheap(self) -> bool:
        return self.current_usage_mb() > self.max_memory_mb

    def memory_info(self) -> str:
        current = self.current_usage_mb()
        return f"Memory: {current:.0f}/{self.max_memory_mb:.0f} MB ({self.usage_percent():.1f}%)"
