"""
Global pytest Configuration and Fixtures

Every fixture builds isolated component instances: each policy store, cache,
engine and scheduler is private to the test that requested it, each metrics
object owns its own Prometheus registry, and caches and engine worker pools
are shut down on teardown so no thread outlives its test.

Markers:
- unit: fast isolated component tests
- security: attack corpus and XSS regression tests
- performance: benchmark and throughput tests
- slow: tests that wait on timers or threads
"""

from typing import Any, Dict, Iterator, List, Optional, Tuple

import pytest
import structlog

from content_sanitizer.cache.monitoring import CachePerformanceMetrics
from content_sanitizer.cache.result_cache import SanitizationCache
from content_sanitizer.cleaner import BleachCleaner
from content_sanitizer.config.settings import BatchSettings, CacheSettings, StreamingSettings, TestingConfig
from content_sanitizer.engine import SanitizationEngine
from content_sanitizer.models import SanitizePolicy, SecurityEventContext, Violation
from content_sanitizer.monitoring.metrics import SanitizationMetrics
from content_sanitizer.policies import PolicyStore
from content_sanitizer.scheduler import LazySanitizationScheduler
from content_sanitizer.service import SanitizationService
from content_sanitizer.streaming import StreamingSanitizer


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast isolated component tests")
    config.addinivalue_line("markers", "security: attack corpus and XSS regression tests")
    config.addinivalue_line("markers", "performance: benchmark and throughput tests")
    config.addinivalue_line("markers", "slow: tests that wait on timers or threads")


# ============================================================================
# TEST DOUBLES
# ============================================================================

class FakeClock:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingCleaner:
    """Cleaner double that raises for content containing a trigger string."""

    def __init__(self, trigger: str = 'BOOM', delegate: Optional[BleachCleaner] = None):
        self.trigger = trigger
        self.delegate = delegate or BleachCleaner()
        self.calls = 0

    def clean(self, markup: str, policy: SanitizePolicy) -> str:
        self.calls += 1
        if self.trigger in markup:
            raise RuntimeError(f"cleaner exploded on {self.trigger}")
        return self.delegate.clean(markup, policy)


class RecordingAuditSink:
    """Audit sink double collecting every call."""

    def __init__(self):
        self.security_events: List[Tuple[Tuple[Violation, ...], SecurityEventContext]] = []
        self.actions: List[Dict[str, Any]] = []

    def log_security_event(self, violations, context) -> None:
        self.security_events.append((tuple(violations), context))

    def log_sanitization_action(self, action, context, violations, processing_time_ms, risk_level) -> None:
        self.actions.append({
            'action': action,
            'context': context,
            'violations': tuple(violations),
            'processing_time_ms': processing_time_ms,
            'risk_level': risk_level,
        })


class ExplodingAuditSink:
    def log_security_event(self, violations, context) -> None:
        raise RuntimeError("audit backend unavailable")

    def log_sanitization_action(self, action, context, violations, processing_time_ms, risk_level) -> None:
        raise RuntimeError("audit backend unavailable")


# ============================================================================
# COMPONENT FIXTURES
# ============================================================================

@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy_store() -> PolicyStore:
    return PolicyStore()


@pytest.fixture
def sanitization_metrics() -> SanitizationMetrics:
    return SanitizationMetrics()


@pytest.fixture
def cache_settings() -> CacheSettings:
    return CacheSettings(max_entries=100, max_bytes=1024 * 1024, ttl_seconds=300.0,
                         cleanup_interval_seconds=60.0)


@pytest.fixture
def cache(policy_store, cache_settings, fake_clock) -> Iterator[SanitizationCache]:
    """Cache on a fake clock, subscribed to the policy store, without a sweeper."""
    result_cache = SanitizationCache(
        settings=cache_settings,
        version_provider=policy_store.version_of,
        metrics=CachePerformanceMetrics(),
        clock=fake_clock,
        auto_start=False,
    )
    unsubscribe = policy_store.subscribe(result_cache.invalidate_on_policy_change)
    yield result_cache
    unsubscribe()
    result_cache.destroy()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def engine(policy_store, cache, audit_sink, sanitization_metrics) -> Iterator[SanitizationEngine]:
    sanitization_engine = SanitizationEngine(
        policy_store,
        cache=cache,
        audit_sink=audit_sink,
        metrics=sanitization_metrics,
    )
    yield sanitization_engine
    sanitization_engine.shutdown()


@pytest.fixture
def uncached_engine(policy_store, sanitization_metrics) -> Iterator[SanitizationEngine]:
    sanitization_engine = SanitizationEngine(policy_store, metrics=sanitization_metrics)
    yield sanitization_engine
    sanitization_engine.shutdown()


@pytest.fixture
def batch_settings() -> BatchSettings:
    return BatchSettings(max_batch_size=10, debounce_ms=20.0, max_concurrent_batches=3,
                         priority_threshold=5)


@pytest.fixture
async def scheduler(engine, batch_settings):
    lazy = LazySanitizationScheduler(engine, batch_settings)
    yield lazy
    await lazy.destroy()


@pytest.fixture
def streaming(engine) -> StreamingSanitizer:
    return StreamingSanitizer(engine, StreamingSettings(chunk_size=100, max_chunks=50,
                                                       boundary_search_ratio=0.8))


@pytest.fixture
def event_context() -> SecurityEventContext:
    return SecurityEventContext(
        ip_address='203.0.113.7',
        user_agent='pytest',
        endpoint='/api/pets',
        user_id='user-1',
        request_id='req-1',
    )


@pytest.fixture
async def service():
    sanitization_service = SanitizationService(config=TestingConfig).start()
    yield sanitization_service
    await sanitization_service.destroy()


@pytest.fixture
def failing_cleaner() -> FailingCleaner:
    return FailingCleaner(trigger='BOOM')


@pytest.fixture
def exploding_audit_sink() -> ExplodingAuditSink:
    return ExplodingAuditSink()
