"""
Cache Performance Monitoring

Mirrors the result cache's own metrics struct into Prometheus counters and
gauges: hits, misses, evictions by reason, invalidations, hit ratio, entry
count and estimated memory footprint.

The cache calls into this class while holding its lock, so every method here
is cheap and never calls back into the cache.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class CachePerformanceMetrics:
    """Prometheus view of one SanitizationCache instance."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self._registry = registry if registry is not None else CollectorRegistry()

        self.cache_hits_total = Counter(
            'sanitizer_cache_hits_total',
            'Total number of result cache hits',
            ['content_type'],
            registry=self._registry
        )

        self.cache_misses_total = Counter(
            'sanitizer_cache_misses_total',
            'Total number of result cache misses',
            ['content_type'],
            registry=self._registry
        )

        self.cache_evictions_total = Counter(
            'sanitizer_cache_evictions_total',
            'Total number of result cache evictions',
            ['eviction_reason'],  # lru, memory, ttl
            registry=self._registry
        )

        self.cache_invalidations_total = Counter(
            'sanitizer_cache_invalidations_total',
            'Entries removed by invalidation',
            ['scope'],  # content_type, policy_change, clear
            registry=self._registry
        )

        self.cache_hit_ratio = Gauge(
            'sanitizer_cache_hit_ratio',
            'Current result cache hit ratio (0-1)',
            registry=self._registry
        )

        self.cache_entries = Gauge(
            'sanitizer_cache_entries',
            'Number of entries in the result cache',
            registry=self._registry
        )

        self.cache_memory_bytes = Gauge(
            'sanitizer_cache_memory_bytes',
            'Estimated memory footprint of the result cache in bytes',
            registry=self._registry
        )

        self.cache_sweep_duration_seconds = Histogram(
            'sanitizer_cache_sweep_duration_seconds',
            'Duration of TTL sweeps in seconds',
            buckets=[0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1],
            registry=self._registry
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_hit(self, content_type: str) -> None:
        self.cache_hits_total.labels(content_type=content_type).inc()

    def record_miss(self, content_type: str) -> None:
        self.cache_misses_total.labels(content_type=content_type).inc()

    def record_eviction(self, reason: str, count: int = 1) -> None:
        if count:
            self.cache_evictions_total.labels(eviction_reason=reason).inc(count)

    def record_invalidation(self, scope: str, count: int) -> None:
        if count:
            self.cache_invalidations_total.labels(scope=scope).inc(count)

    def record_sweep(self, duration_seconds: float) -> None:
        self.cache_sweep_duration_seconds.observe(duration_seconds)

    def update_state(self, entries: int, memory_bytes: int, hit_rate: float) -> None:
        self.cache_entries.set(entries)
        self.cache_memory_bytes.set(memory_bytes)
        self.cache_hit_ratio.set(hit_rate)


__all__ = ['CachePerformanceMetrics']
