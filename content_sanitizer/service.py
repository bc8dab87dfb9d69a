"""
Sanitization Service

Public facade wiring the policy store, detector, cleaner, result cache,
engine, scheduler, streaming chunker, policy test harness and audit sink
into one object with an explicit lifecycle.

Key Features:
- Every collaborator is an injected instance; nothing is a process singleton
- Policy updates invalidate exactly the cache entries of the changed
  content type (the cache subscribes to the policy store)
- start() launches the cache sweeper; destroy() cancels queued work, waits
  for in-flight batches, shuts the engine worker pool down and stops the
  sweeper
- String-returning convenience calls (sanitize, sanitize_async) next to the
  detailed result-returning calls
"""

import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Type, Union

import structlog

from content_sanitizer.cache.result_cache import SanitizationCache
from content_sanitizer.cleaner import BleachCleaner, Cleaner
from content_sanitizer.config.settings import BaseConfig, get_config
from content_sanitizer.detector import ViolationDetector
from content_sanitizer.engine import SanitizationEngine
from content_sanitizer.harness.report import generate_security_report
from content_sanitizer.harness.tester import SecurityPolicyTester
from content_sanitizer.models import (
    ContentType,
    PolicyValidationResult,
    SanitizedResult,
    SanitizeOptions,
    SecurityEventContext,
    SecurityTestSuiteResult,
    ValidationResult,
)
from content_sanitizer.monitoring.logging import AuditSink, SecurityAuditLogger
from content_sanitizer.monitoring.metrics import SanitizationMetrics
from content_sanitizer.policies import PolicyPartial, PolicyStore
from content_sanitizer.profiles import ProfileSanitizer
from content_sanitizer.scheduler import LazySanitizationScheduler
from content_sanitizer.streaming import ProgressCallback, StreamingSanitizer

logger = structlog.get_logger(__name__)

ContentTypeArg = Optional[Union[ContentType, str]]


class SanitizationService:
    """
    Facade over the sanitization pipeline.

    Build one per application (or per test) with create_sanitization_service()
    or by passing collaborators explicitly.
    """

    def __init__(
        self,
        config: Optional[Type[BaseConfig]] = None,
        policy_store: Optional[PolicyStore] = None,
        detector: Optional[ViolationDetector] = None,
        cleaner: Optional[Cleaner] = None,
        cache: Optional[SanitizationCache] = None,
        audit_sink: Optional[AuditSink] = None,
        metrics: Optional[SanitizationMetrics] = None,
    ):
        self.config = config or get_config()
        self.policy_store = policy_store or PolicyStore()
        self.metrics = metrics or SanitizationMetrics()

        self.cache = cache or SanitizationCache(
            settings=self.config.cache_settings(),
            version_provider=self.policy_store.version_of,
            auto_start=False,
        )
        self._unsubscribe: Optional[Callable[[], None]] = self.policy_store.subscribe(
            self.cache.invalidate_on_policy_change
        )

        if audit_sink is None and self.config.AUDIT_ENABLED:
            audit_sink = SecurityAuditLogger()

        self.engine = SanitizationEngine(
            self.policy_store,
            detector=detector or ViolationDetector(),
            cleaner=cleaner or BleachCleaner(),
            cache=self.cache,
            audit_sink=audit_sink,
            metrics=self.metrics,
            settings=self.config.engine_settings(),
        )
        self.scheduler = LazySanitizationScheduler(self.engine, self.config.batch_settings(), self.metrics)
        self.streaming = StreamingSanitizer(self.engine, self.config.streaming_settings(), self.metrics)
        self.tester = SecurityPolicyTester(self.engine, self.policy_store)
        self.profiles = ProfileSanitizer(self.engine)
        self._started_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> 'SanitizationService':
        self.cache.start()
        self._started_at = time.monotonic()
        logger.info(
            "Sanitization service started",
            environment=self.config.ENVIRONMENT,
            cache_max_entries=self.cache.settings.max_entries,
            audit_enabled=self.engine.audit_sink is not None,
        )
        return self

    async def destroy(self) -> None:
        """Reject queued requests, wait for in-flight batches, stop workers and the sweeper."""
        await self.scheduler.destroy()
        self.engine.shutdown()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.cache.destroy()
        logger.info("Sanitization service destroyed")

    async def __aenter__(self) -> 'SanitizationService':
        return self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.destroy()

    # ------------------------------------------------------------------
    # Sanitization
    # ------------------------------------------------------------------

    def sanitize(self, content: Any, options: Optional[SanitizeOptions] = None,
                 content_type: ContentTypeArg = None,
                 context: Optional[SecurityEventContext] = None) -> str:
        return self.engine.sanitize(content, options, content_type, context).sanitized_content

    async def sanitize_async(self, content: Any, options: Optional[SanitizeOptions] = None,
                             content_type: ContentTypeArg = None,
                             context: Optional[SecurityEventContext] = None) -> str:
        result = await self.engine.sanitize_async(content, options, content_type, context)
        return result.sanitized_content

    def sanitize_detailed(self, content: Any, options: Optional[SanitizeOptions] = None,
                          content_type: ContentTypeArg = None,
                          context: Optional[SecurityEventContext] = None) -> SanitizedResult:
        return self.engine.sanitize(content, options, content_type, context)

    def validate(self, content: Any, content_type: ContentTypeArg = None,
                 options: Optional[SanitizeOptions] = None) -> ValidationResult:
        return self.engine.validate(content, content_type, options)

    async def lazy_sanitize(self, content: Any, options: Optional[SanitizeOptions] = None,
                            content_type: ContentTypeArg = None, priority: int = 1) -> SanitizedResult:
        return await self.scheduler.submit(content, options, content_type, priority)

    async def batch_sanitize(self, items: Iterable[Union[str, Mapping[str, Any]]]) -> List[SanitizedResult]:
        return await self.scheduler.batch_sanitize(items)

    async def stream_sanitize(self, content: Any, options: Optional[SanitizeOptions] = None,
                              content_type: ContentTypeArg = None,
                              on_progress: Optional[ProgressCallback] = None) -> SanitizedResult:
        return await self.streaming.stream_sanitize(content, options, content_type, on_progress)

    def clear_queue(self) -> int:
        return self.scheduler.clear_queue()

    # ------------------------------------------------------------------
    # Cache and statistics
    # ------------------------------------------------------------------

    def get_cache_metrics(self) -> Dict[str, Any]:
        return self.cache.get_metrics().to_dict()

    def get_cache_statistics(self) -> Dict[str, Any]:
        return self.cache.get_statistics()

    def clear_cache(self) -> int:
        return self.cache.clear(reason='manual')

    def get_performance_stats(self) -> Dict[str, Any]:
        uptime = time.monotonic() - self._started_at if self._started_at is not None else 0.0
        return {
            'cache': self.get_cache_metrics(),
            'queue': self.scheduler.get_queue_stats(),
            'worker': self.engine.get_worker_stats(),
            'sanitizer': self.metrics.summary(),
            'uptime_seconds': uptime,
        }

    # ------------------------------------------------------------------
    # Policies and harness
    # ------------------------------------------------------------------

    def update_policy(self, content_type: Union[ContentType, str],
                      partial: PolicyPartial) -> PolicyValidationResult:
        return self.policy_store.update(content_type, partial)

    def reset_policies(self) -> None:
        self.policy_store.reset_to_defaults()

    def run_security_test_suite(self, content_types: Optional[Sequence[ContentTypeArg]] = None,
                                **kwargs: Any) -> SecurityTestSuiteResult:
        return self.tester.run_security_test_suite(content_types, **kwargs)

    def generate_security_report(self, result: SecurityTestSuiteResult) -> str:
        return generate_security_report(result)


def create_sanitization_service(config: Optional[Union[str, Type[BaseConfig]]] = None,
                                **collaborators: Any) -> SanitizationService:
    """
    Create and start a sanitization service.

    Args:
        config: Configuration class or environment name (defaults to SANITIZER_ENV)
        **collaborators: Injected instances forwarded to SanitizationService

    Returns:
        Started SanitizationService
    """
    config_class = get_config(config) if config is None or isinstance(config, str) else config
    service = SanitizationService(config=config_class, **collaborators)
    service.start()
    logger.info("Sanitization service created", environment=config_class.ENVIRONMENT)
    return service


__all__ = ['SanitizationService', 'create_sanitization_service']
