"""
Sanitization Engine

Orchestrates the violation detector and the cleaning primitive behind a
cache, under the policy of the requested content type.

Key Features:
- sanitize(): blocking entry point, never suspends, never raises
- sanitize_async(): the same computation on a worker thread pool, with a
  per-call timeout and an inline fallback when the pool cannot run it
- sanitize_strict(): uncached variant that raises on failure (streaming)
- validate(): risk level and recommended action for a piece of content
- Fail-secure: any internal failure yields an empty result carrying one
  synthetic critical violation, never the unsanitized input
- Every completed call (hit or miss) is reported to the audit sink when the
  caller supplies a SecurityEventContext; sink failures are logged and ignored
"""

import asyncio
import functools
import itertools
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional, Union

import structlog

from content_sanitizer.cache.result_cache import SanitizationCache
from content_sanitizer.cleaner import BleachCleaner, Cleaner
from content_sanitizer.config.settings import EngineSettings
from content_sanitizer.detector import ViolationDetector
from content_sanitizer.models import (
    ContentType,
    RecommendedAction,
    RiskLevel,
    SanitizedResult,
    SanitizeOptions,
    SanitizePolicy,
    SecurityEventContext,
    Severity,
    ValidationResult,
    Violation,
    ViolationKind,
)
from content_sanitizer.monitoring.logging import AuditSink
from content_sanitizer.monitoring.metrics import SanitizationMetrics
from content_sanitizer.policies import NEVER_ALLOWED_TAGS, PolicyStore

logger = structlog.get_logger(__name__)

_RECOMMENDED_ACTIONS = {
    RiskLevel.CRITICAL: RecommendedAction.BLOCK,
    RiskLevel.HIGH: RecommendedAction.FLAG,
    RiskLevel.MEDIUM: RecommendedAction.SANITIZE,
    RiskLevel.LOW: RecommendedAction.ALLOW,
}


def recommended_action(risk_level: RiskLevel) -> RecommendedAction:
    return _RECOMMENDED_ACTIONS[risk_level]


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


class SanitizationEngine:
    """
    Sanitization orchestrator.

    All collaborators are injected; only the policy store is required. The
    cache and the audit sink are optional.
    """

    def __init__(
        self,
        policy_store: PolicyStore,
        detector: Optional[ViolationDetector] = None,
        cleaner: Optional[Cleaner] = None,
        cache: Optional[SanitizationCache] = None,
        audit_sink: Optional[AuditSink] = None,
        metrics: Optional[SanitizationMetrics] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.policy_store = policy_store
        self.detector = detector or ViolationDetector()
        self.cleaner = cleaner or BleachCleaner()
        self.cache = cache
        self.audit_sink = audit_sink
        self.metrics = metrics or SanitizationMetrics()
        self.settings = settings or EngineSettings()

        self._executor: Optional[ThreadPoolExecutor] = None
        self._worker_lock = threading.Lock()
        self._worker_shutdown = False
        self._worker_pending: Dict[int, float] = {}
        self._worker_ids = itertools.count(1)
        self._worker_counts = {'completed': 0, 'timeouts': 0, 'fallbacks': 0}

    # ------------------------------------------------------------------
    # Policy resolution
    # ------------------------------------------------------------------

    def resolve_policy(
        self,
        options: Optional[SanitizeOptions] = None,
        content_type: Optional[Union[ContentType, str]] = None,
    ) -> SanitizePolicy:
        """Content-type policy merged with call-level overrides (overrides win per field)."""
        policy = self.policy_store.get(content_type)
        overrides = options.overrides() if options is not None else {}
        allowed = overrides.get('allowed_tags', policy.allowed_tags)
        overrides['allowed_tags'] = tuple(tag for tag in allowed if tag not in NEVER_ALLOWED_TAGS)
        return policy.model_copy(update=overrides)

    # ------------------------------------------------------------------
    # Core pipeline
    # ------------------------------------------------------------------

    def _process(self, content: str, policy: SanitizePolicy) -> SanitizedResult:
        started = time.perf_counter()
        violations = self.detector.analyze(content)
        cleaned = self.cleaner.clean(content, policy)
        removed = self.detector.detect_removed(content, cleaned)
        return SanitizedResult(
            sanitized_content=cleaned,
            original_content=content,
            removed_element_names=removed,
            violations=tuple(violations),
            processing_time_ms=_elapsed_ms(started),
        )

    @staticmethod
    def _fail_secure(content: str, error: BaseException, started: float) -> SanitizedResult:
        return SanitizedResult(
            sanitized_content='',
            original_content=content,
            violations=(Violation(
                kind=ViolationKind.SUSPICIOUS_PATTERN,
                matched_text='',
                severity=Severity.CRITICAL,
                description=f'Sanitization failed: {type(error).__name__}: {error}',
            ),),
            processing_time_ms=_elapsed_ms(started),
        )

    def _oversized(self, content: str, started: float) -> SanitizedResult:
        return SanitizedResult(
            sanitized_content='',
            original_content=content,
            violations=(Violation(
                kind=ViolationKind.SUSPICIOUS_PATTERN,
                matched_text=content[:100],
                severity=Severity.HIGH,
                description=(
                    f'Content length {len(content)} exceeds maximum '
                    f'{self.settings.max_input_length}'
                ),
            ),),
            processing_time_ms=_elapsed_ms(started),
        )

    def _cache_get(self, content: str, options: Optional[SanitizeOptions],
                   content_type: ContentType) -> Optional[SanitizedResult]:
        if self.cache is None:
            return None
        try:
            return self.cache.get(content, options, content_type)
        except Exception as e:
            logger.warning(
                "Cache lookup failed, treating as miss",
                error=str(e),
                content_type=content_type.value,
            )
            return None

    def _cache_set(self, content: str, result: SanitizedResult,
                   options: Optional[SanitizeOptions], content_type: ContentType,
                   policy_version: Optional[int] = None) -> None:
        if self.cache is None:
            return
        try:
            self.cache.set(content, result, options, content_type, policy_version=policy_version)
        except Exception as e:
            logger.warning(
                "Cache store failed, result not cached",
                error=str(e),
                content_type=content_type.value,
            )

    def lookup_cached(
        self,
        content: Any,
        options: Optional[SanitizeOptions] = None,
        content_type: Optional[Union[ContentType, str]] = None,
    ) -> Optional[SanitizedResult]:
        """Cache-only lookup used by the scheduler and the streaming chunker."""
        if not isinstance(content, str):
            return None
        return self._cache_get(content, options, ContentType.normalize(content_type))

    def store_cached(
        self,
        content: str,
        result: SanitizedResult,
        options: Optional[SanitizeOptions] = None,
        content_type: Optional[Union[ContentType, str]] = None,
        policy_version: Optional[int] = None,
    ) -> None:
        """Store a result computed under ``policy_version`` (default: current)."""
        self._cache_set(content, result, options, ContentType.normalize(content_type), policy_version)

    def sanitize(
        self,
        content: Any,
        options: Optional[SanitizeOptions] = None,
        content_type: Optional[Union[ContentType, str]] = None,
        context: Optional[SecurityEventContext] = None,
        use_cache: bool = True,
    ) -> SanitizedResult:
        """
        Sanitize untrusted content.

        Args:
            content: Untrusted input; anything but a str yields an empty valid result
            options: Call-level policy overrides
            content_type: Selects the base policy (unknown values map to general)
            context: Observability context forwarded to the audit sink
            use_cache: Set False to bypass the result cache (benchmarks)

        Returns:
            SanitizedResult; never raises
        """
        started = time.perf_counter()
        if not isinstance(content, str):
            return SanitizedResult.empty()

        ct = ContentType.normalize(content_type)

        if len(content) > self.settings.max_input_length:
            result = self._oversized(content, started)
            logger.warning(
                "Oversized content rejected",
                content_type=ct.value,
                input_length=len(content),
                max_input_length=self.settings.max_input_length,
            )
            self._finish(result, ct, 'rejected', context, started)
            return result

        if use_cache:
            cached = self._cache_get(content, options, ct)
            if cached is not None:
                self._finish(cached, ct, 'cache_hit', context, started)
                return cached

        failed = False
        policy_version = None
        try:
            policy = self.resolve_policy(options, ct)
            # the key must carry the version the result was computed under
            policy_version = policy.version
            result = self._process(content, policy)
        except Exception as e:
            failed = True
            logger.error(
                "Sanitization failed, returning fail-secure result",
                error=str(e),
                error_type=type(e).__name__,
                content_type=ct.value,
                input_length=len(content),
            )
            result = self._fail_secure(content, e, started)

        if use_cache and not failed:
            self._cache_set(content, result, options, ct, policy_version)

        if failed:
            outcome = 'failed'
        else:
            outcome = 'sanitized' if result.violations else 'clean'
        self._finish(result, ct, outcome, context, started)
        return result

    def sanitize_strict(
        self,
        content: Any,
        options: Optional[SanitizeOptions] = None,
        content_type: Optional[Union[ContentType, str]] = None,
        policy: Optional[SanitizePolicy] = None,
    ) -> SanitizedResult:
        """
        Uncached sanitize that raises instead of failing secure.

        A pre-resolved ``policy`` is used as is, so every chunk of a stream
        runs under the same policy version.
        """
        if not isinstance(content, str):
            return SanitizedResult.empty()
        if policy is None:
            policy = self.resolve_policy(options, content_type)
        return self._process(content, policy)

    async def sanitize_async(
        self,
        content: Any,
        options: Optional[SanitizeOptions] = None,
        content_type: Optional[Union[ContentType, str]] = None,
        context: Optional[SecurityEventContext] = None,
        use_cache: bool = True,
    ) -> SanitizedResult:
        """
        Run sanitize() on the worker pool so a large cache miss does not
        block the event loop.

        The call runs inline when the pool is disabled (worker_threads=0),
        shut down, or fails to accept the task. A call still running after
        worker_timeout_seconds resolves to the fail-secure result.
        """
        call = functools.partial(self.sanitize, content, options, content_type, context, use_cache)
        pool = self._worker_pool()
        if pool is None:
            if self._worker_shutdown:
                self._count_worker('fallbacks')
            await asyncio.sleep(0)
            return call()

        request_id = next(self._worker_ids)
        started = time.perf_counter()
        with self._worker_lock:
            self._worker_pending[request_id] = time.monotonic()

        try:
            loop = asyncio.get_running_loop()
            result = await asyncio.wait_for(
                loop.run_in_executor(pool, call),
                timeout=self.settings.worker_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._count_worker('timeouts')
            logger.error(
                "Worker sanitization timed out",
                timeout_seconds=self.settings.worker_timeout_seconds,
                content_type=ContentType.normalize(content_type).value,
                input_length=len(content) if isinstance(content, str) else 0,
            )
            timeout = TimeoutError(
                f'Worker request timed out after {self.settings.worker_timeout_seconds}s'
            )
            return self._fail_secure(content if isinstance(content, str) else '', timeout, started)
        except Exception as e:
            self._count_worker('fallbacks')
            logger.warning(
                "Worker sanitization failed, running inline",
                error=str(e),
                error_type=type(e).__name__,
            )
            return call()
        finally:
            with self._worker_lock:
                self._worker_pending.pop(request_id, None)

        self._count_worker('completed')
        return result

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------

    def _worker_pool(self) -> Optional[ThreadPoolExecutor]:
        if self.settings.worker_threads <= 0:
            return None
        with self._worker_lock:
            if self._worker_shutdown:
                return None
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.settings.worker_threads,
                    thread_name_prefix='sanitizer-worker',
                )
            return self._executor

    def _count_worker(self, name: str) -> None:
        with self._worker_lock:
            self._worker_counts[name] += 1

    def is_worker_available(self) -> bool:
        return self.settings.worker_threads > 0 and not self._worker_shutdown

    def get_worker_stats(self) -> Dict[str, Any]:
        with self._worker_lock:
            oldest = min(self._worker_pending.values(), default=None)
            age_ms = (time.monotonic() - oldest) * 1000.0 if oldest is not None else 0.0
            return {
                'is_available': self.is_worker_available(),
                'max_workers': self.settings.worker_threads,
                'pending_requests': len(self._worker_pending),
                'oldest_pending_age_ms': age_ms,
                **self._worker_counts,
            }

    def shutdown(self, wait: bool = False) -> None:
        """Stop the worker pool; later sanitize_async calls run inline."""
        with self._worker_lock:
            self._worker_shutdown = True
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
            logger.info("Sanitization worker pool shut down", max_workers=self.settings.worker_threads)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(
        self,
        content: Any,
        content_type: Optional[Union[ContentType, str]] = None,
        options: Optional[SanitizeOptions] = None,
    ) -> ValidationResult:
        result = self.sanitize(content, options, content_type)
        risk_level = self.policy_store.calculate_risk_level(result.violations)
        violation_count = len(result.violations)
        confidence = 0.95 if result.is_valid else max(0.1, 1.0 - 0.2 * violation_count)
        return ValidationResult(
            is_valid=result.is_valid,
            risk_level=risk_level,
            recommended_action=recommended_action(risk_level),
            violations=result.violations,
            confidence=confidence,
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _finish(self, result: SanitizedResult, content_type: ContentType, outcome: str,
                context: Optional[SecurityEventContext], started: float) -> None:
        elapsed = _elapsed_ms(started)
        try:
            self.metrics.record_sanitize(
                content_type.value,
                outcome,
                elapsed,
                result.violations if outcome != 'cache_hit' else (),
            )

            if elapsed > self.settings.slow_call_threshold_ms:
                logger.warning(
                    "Slow sanitization call",
                    content_type=content_type.value,
                    processing_time_ms=round(elapsed, 3),
                    input_length=len(result.original_content),
                    outcome=outcome,
                )
        except Exception as e:
            logger.warning(
                "Sanitization metrics failed",
                error=str(e),
                content_type=content_type.value,
                outcome=outcome,
            )

        if context is not None:
            self.report(outcome, context, result, elapsed)

    def report(self, action: str, context: SecurityEventContext,
               result: SanitizedResult, processing_time_ms: float) -> None:
        """Forward a completed call to the audit sink; failures never propagate."""
        if self.audit_sink is None:
            return
        try:
            risk_level = self.policy_store.calculate_risk_level(result.violations)
            if result.violations:
                self.audit_sink.log_security_event(result.violations, context)
            self.audit_sink.log_sanitization_action(
                action,
                context,
                result.violations,
                processing_time_ms,
                risk_level.value,
            )
        except Exception as e:
            logger.warning(
                "Audit sink failed",
                error=str(e),
                action=action,
                endpoint=context.endpoint,
            )


__all__ = ['SanitizationEngine', 'recommended_action']
