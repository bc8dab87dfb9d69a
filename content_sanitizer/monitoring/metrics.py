"""
Sanitization Pipeline Metrics using prometheus-client

Prometheus counters, histograms and gauges for the engine, the lazy/batch
scheduler and the streaming chunker.

Key Features:
- Sanitize calls by content type and outcome (sanitized, clean, cache_hit, failed)
- Violations by kind and severity
- Processing duration histogram per content type
- Scheduler queue depth, in-flight batches, batch sizes and cancellations
- Streaming chunk counts and aborted streams

Every instance registers into its own CollectorRegistry unless one is
injected, so several pipelines (and test fixtures) can coexist in a process.
"""

from threading import Lock
from typing import Any, Dict, Iterable, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from content_sanitizer.models import Violation


class SanitizationMetrics:
    """Prometheus metrics for the sanitization pipeline."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self._registry = registry if registry is not None else CollectorRegistry()
        self._lock = Lock()
        self._failures = 0

        # Engine Metrics
        self.sanitize_calls_total = Counter(
            'sanitizer_calls_total',
            'Total number of sanitize calls',
            ['content_type', 'outcome'],
            registry=self._registry
        )

        self.violations_total = Counter(
            'sanitizer_violations_total',
            'Total number of detected violations',
            ['kind', 'severity'],
            registry=self._registry
        )

        self.processing_duration_seconds = Histogram(
            'sanitizer_processing_duration_seconds',
            'Sanitize processing duration in seconds',
            ['content_type'],
            buckets=[0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 1.0],
            registry=self._registry
        )

        # Scheduler Metrics
        self.queue_depth = Gauge(
            'sanitizer_queue_depth',
            'Number of requests waiting in the lazy sanitization queue',
            registry=self._registry
        )

        self.batches_in_flight = Gauge(
            'sanitizer_batches_in_flight',
            'Number of batches currently draining',
            registry=self._registry
        )

        self.batch_size = Histogram(
            'sanitizer_batch_size',
            'Number of requests per drained batch',
            buckets=[1, 2, 5, 10, 20, 50],
            registry=self._registry
        )

        self.requests_cancelled_total = Counter(
            'sanitizer_requests_cancelled_total',
            'Queued requests rejected by clear_queue',
            registry=self._registry
        )

        # Streaming Metrics
        self.stream_chunks_total = Counter(
            'sanitizer_stream_chunks_total',
            'Chunks processed by the streaming sanitizer',
            ['content_type'],
            registry=self._registry
        )

        self.streams_aborted_total = Counter(
            'sanitizer_streams_aborted_total',
            'Streams aborted because a chunk failed',
            registry=self._registry
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_sanitize(self, content_type: str, outcome: str, duration_ms: float,
                        violations: Iterable[Violation] = ()) -> None:
        with self._lock:
            if outcome == 'failed':
                self._failures += 1
        self.sanitize_calls_total.labels(content_type=content_type, outcome=outcome).inc()
        self.processing_duration_seconds.labels(content_type=content_type).observe(duration_ms / 1000.0)
        for violation in violations:
            self.violations_total.labels(
                kind=violation.kind.value,
                severity=violation.severity.value,
            ).inc()

    def record_batch(self, size: int) -> None:
        self.batch_size.observe(size)

    def set_queue_state(self, depth: int, in_flight: int) -> None:
        self.queue_depth.set(depth)
        self.batches_in_flight.set(in_flight)

    def record_cancellations(self, count: int) -> None:
        if count:
            self.requests_cancelled_total.inc(count)

    def record_stream_chunk(self, content_type: str) -> None:
        self.stream_chunks_total.labels(content_type=content_type).inc()

    def record_stream_abort(self) -> None:
        self.streams_aborted_total.inc()

    def sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Current value of a sample, 0.0 when it has not been recorded yet."""
        value = self._registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            failures = self._failures
        return {
            'failures': failures,
            'queue_depth': self.sample('sanitizer_queue_depth'),
            'batches_in_flight': self.sample('sanitizer_batches_in_flight'),
            'cancelled': self.sample('sanitizer_requests_cancelled_total'),
            'streams_aborted': self.sample('sanitizer_streams_aborted_total'),
        }

    def export(self) -> bytes:
        """Prometheus text exposition of this registry."""
        return generate_latest(self._registry)


__all__ = ['SanitizationMetrics']
