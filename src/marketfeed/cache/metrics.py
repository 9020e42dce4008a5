"""Cache hit/miss accounting."""

from src.marketfeed.model.status import CacheMetricsSnapshot


class CacheMetrics:
    """
    Counts cache hits and misses.

    Counters are plain integers updated without awaiting, so increments from
    concurrent coroutines on one loop are never lost.
    """

    def __init__(self) -> None:
        """Initialize with zeroed counters."""
        self.hits = 0
        self.misses = 0

    def record_hit(self) -> None:
        """Record a cache hit."""
        self.hits += 1

    def record_miss(self) -> None:
        """Record a cache miss."""
        self.misses += 1

    @property
    def total(self) -> int:
        """Total number of recorded reads."""
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Hits as a fraction of all reads, 0.0 before any read."""
        return self.hits / self.total if self.total else 0.0

    def snapshot(self) -> CacheMetricsSnapshot:
        """Freeze the counters into a model."""
        return CacheMetricsSnapshot(
            hits=self.hits, misses=self.misses, hit_rate=self.hit_rate
        )

    def get_statistics(self) -> str:
        """Formatted statistics line for logs."""
        return self.snapshot().to_summary()

    def reset(self) -> None:
        """Zero the counters."""
        self.hits = 0
        self.misses = 0
