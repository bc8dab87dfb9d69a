"""
Security Policy Tester

Runs the attack corpus through the real engine for each content type,
benchmarks sanitization cost, validates the active policy configuration and
turns the outcome into recommendations.

Pass/fail rules:
- expected_blocked cases pass only when at least one violation was recorded
  AND the sanitized output is free of dangerous patterns (the detector finds
  nothing when re-run on it). Detection alone never counts as blocked.
- benign cases pass when no violation was recorded and their visible text
  survived sanitization.
"""

import html
import re
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import structlog

from content_sanitizer.engine import SanitizationEngine
from content_sanitizer.harness.corpus import CORPUS_VERSION, generate_attack_corpus
from content_sanitizer.models import (
    ContentType,
    PerformanceBenchmark,
    PolicyValidationResult,
    SanitizedResult,
    SecurityIssueSummary,
    SecurityTestCase,
    SecurityTestResult,
    SecurityTestSuiteResult,
    Severity,
    Violation,
    ViolationKind,
)
from content_sanitizer.policies import PolicyStore

logger = structlog.get_logger(__name__)

DEFAULT_TEST_CONTENT_TYPES = (
    ContentType.USER_PROFILE,
    ContentType.PET_CARD_METADATA,
    ContentType.COMMENT,
    ContentType.SOCIAL_SHARING,
)

BENCHMARK_SIZES = (100, 1000, 5000, 10000)
BENCHMARK_ITERATIONS = 10
BENCHMARK_BASE_CONTENT = (
    '<p>This is test content with <strong>formatting</strong> and <em>emphasis</em>.</p>'
)

MIN_PASS_RATE = 0.95

_TAGS = re.compile(r'<[^>]*>')
_WHITESPACE = re.compile(r'\s+')
_EVENT_ATTRIBUTE = re.compile(r'\son\w+=')


def visible_text(markup: str) -> str:
    """Text a reader would see: tags removed, entities decoded, whitespace collapsed."""
    return _WHITESPACE.sub(' ', html.unescape(_TAGS.sub('', markup))).strip()


def expected_violation_kinds(payload: str) -> Tuple[ViolationKind, ...]:
    kinds: List[ViolationKind] = []
    lowered = payload.lower()
    if '<script' in lowered:
        kinds.append(ViolationKind.SCRIPT_TAG)
    if 'javascript:' in lowered or 'vbscript:' in lowered:
        kinds.append(ViolationKind.MALICIOUS_URL)
    if _EVENT_ATTRIBUTE.search(lowered):
        kinds.append(ViolationKind.DANGEROUS_ATTRIBUTE)
    return tuple(kinds)


def generate_test_content(size: int) -> str:
    repetitions = -(-size // len(BENCHMARK_BASE_CONTENT))
    return (BENCHMARK_BASE_CONTENT * repetitions)[:size]


class SecurityPolicyTester:
    """Attack-corpus runner, benchmark and recommendation generator."""

    def __init__(
        self,
        engine: SanitizationEngine,
        policy_store: Optional[PolicyStore] = None,
        corpus: Optional[Sequence[SecurityTestCase]] = None,
        corpus_version: str = CORPUS_VERSION,
    ):
        self.engine = engine
        self.policy_store = policy_store or engine.policy_store
        self.corpus: Tuple[SecurityTestCase, ...] = tuple(corpus) if corpus is not None else generate_attack_corpus()
        self.corpus_version = corpus_version

    # ------------------------------------------------------------------
    # Single test
    # ------------------------------------------------------------------

    def is_blocked(self, result: SanitizedResult) -> bool:
        residual = self.engine.detector.analyze(result.sanitized_content)
        return bool(result.violations) and not residual

    @staticmethod
    def survived(test_case: SecurityTestCase, result: SanitizedResult) -> bool:
        return (
            not result.violations
            and visible_text(result.sanitized_content) == visible_text(test_case.payload)
        )

    def run_test(self, test_case: SecurityTestCase,
                 content_type: Union[ContentType, str] = ContentType.GENERAL) -> SecurityTestResult:
        """
        Run one corpus case through the engine without the cache.

        Args:
            test_case: Corpus case
            content_type: Policy under test

        Returns:
            SecurityTestResult with pass/fail and the sanitized result
        """
        ct = ContentType.normalize(content_type)
        started = time.perf_counter()
        try:
            result = self.engine.sanitize(test_case.payload, content_type=ct, use_cache=False)
            if test_case.expected_blocked:
                passed = self.is_blocked(result)
            else:
                passed = self.survived(test_case, result)
        except Exception as e:
            logger.error("Security test errored", test=test_case.name, error=str(e))
            result = SanitizedResult(
                sanitized_content='',
                original_content=test_case.payload,
                violations=(Violation(
                    kind=ViolationKind.SUSPICIOUS_PATTERN,
                    matched_text='',
                    severity=Severity.CRITICAL,
                    description=f'Test failed with error: {e}',
                ),),
            )
            passed = False

        elapsed = (time.perf_counter() - started) * 1000.0
        if not passed:
            logger.warning(
                "Security test failed",
                test=test_case.name,
                content_type=ct.value,
                severity=test_case.severity.value,
                expected_blocked=test_case.expected_blocked,
            )

        return SecurityTestResult(
            test_case=test_case,
            content_type=ct,
            passed=passed,
            sanitized_result=result,
            expected_violations=expected_violation_kinds(test_case.payload),
            actual_violations=tuple(v.kind for v in result.violations),
            processing_time_ms=elapsed,
        )

    # ------------------------------------------------------------------
    # Benchmarks
    # ------------------------------------------------------------------

    def run_performance_benchmark(
        self,
        content_type: Union[ContentType, str] = ContentType.GENERAL,
        sizes: Sequence[int] = BENCHMARK_SIZES,
        iterations: int = BENCHMARK_ITERATIONS,
    ) -> PerformanceBenchmark:
        ct = ContentType.normalize(content_type)
        total_ms = 0.0
        total_violations = 0
        operations = 0

        for size in sizes:
            content = generate_test_content(size)
            for _ in range(iterations):
                started = time.perf_counter()
                result = self.engine.sanitize(content, content_type=ct, use_cache=False)
                total_ms += (time.perf_counter() - started) * 1000.0
                total_violations += len(result.violations)
                operations += 1

        average = total_ms / operations if operations else 0.0
        throughput = 1000.0 / average if average > 0 else float(operations)

        benchmark = PerformanceBenchmark(
            content_type=ct,
            content_sizes=tuple(sizes),
            iterations=iterations,
            average_time_ms=average,
            throughput_ops=throughput,
            violations_detected=round(total_violations / operations) if operations else 0,
        )
        logger.info(
            "Performance benchmark completed",
            content_type=ct.value,
            average_time_ms=round(average, 3),
            throughput_ops=round(throughput, 2),
        )
        return benchmark

    # ------------------------------------------------------------------
    # Suite
    # ------------------------------------------------------------------

    def run_security_test_suite(
        self,
        content_types: Optional[Iterable[Union[ContentType, str]]] = None,
        benchmark_sizes: Sequence[int] = BENCHMARK_SIZES,
        benchmark_iterations: int = BENCHMARK_ITERATIONS,
    ) -> SecurityTestSuiteResult:
        types = [ContentType.normalize(ct) for ct in (content_types or DEFAULT_TEST_CONTENT_TYPES)]
        results: List[SecurityTestResult] = []
        benchmarks: List[PerformanceBenchmark] = []

        for ct in types:
            for test_case in self.corpus:
                results.append(self.run_test(test_case, ct))
            benchmarks.append(self.run_performance_benchmark(ct, benchmark_sizes, benchmark_iterations))

        policy_validation = self.policy_store.validate_configuration()
        passed = sum(1 for r in results if r.passed)

        suite = SecurityTestSuiteResult(
            corpus_version=self.corpus_version,
            total_tests=len(results),
            passed_tests=passed,
            failed_tests=len(results) - passed,
            test_results=tuple(results),
            performance_benchmarks=tuple(benchmarks),
            policy_validation=policy_validation,
            recommendations=tuple(self.generate_recommendations(results, benchmarks)),
            summary=self.calculate_summary(results),
        )
        logger.info(
            "Security test suite completed",
            corpus_version=self.corpus_version,
            content_types=[ct.value for ct in types],
            total_tests=suite.total_tests,
            failed_tests=suite.failed_tests,
        )
        return suite

    def generate_recommendations(self, results: Sequence[SecurityTestResult],
                                 benchmarks: Sequence[PerformanceBenchmark]) -> List[str]:
        thresholds = self.policy_store.performance_thresholds
        recommendations: List[str] = []

        if any(not r.passed and r.test_case.severity is Severity.CRITICAL for r in results):
            recommendations.append(
                'CRITICAL: Some critical attacks were not blocked. '
                'Review and strengthen security policies.'
            )

        if any(b.average_time_ms > thresholds.max_processing_time_ms for b in benchmarks):
            recommendations.append(
                'Performance: Some content types have slow sanitization times. '
                'Consider optimizing policies.'
            )

        if any(b.throughput_ops < thresholds.min_throughput_ops for b in benchmarks):
            recommendations.append(
                'Performance: Low throughput detected. Consider caching or policy optimization.'
            )

        if results:
            pass_rate = sum(1 for r in results if r.passed) / len(results)
            if pass_rate < MIN_PASS_RATE:
                recommendations.append(
                    'Security: Test pass rate is below 95%. Review failed tests and adjust policies.'
                )

        if not recommendations:
            recommendations.append(
                'All security tests passed successfully. Security policies are working effectively.'
            )
        return recommendations

    @staticmethod
    def calculate_summary(results: Sequence[SecurityTestResult]) -> SecurityIssueSummary:
        failed = [r for r in results if not r.passed]

        def count(severity: Severity) -> int:
            return sum(1 for r in failed if r.test_case.severity is severity)

        return SecurityIssueSummary(
            critical_issues=count(Severity.CRITICAL),
            high_issues=count(Severity.HIGH),
            medium_issues=count(Severity.MEDIUM),
            low_issues=count(Severity.LOW),
        )

    # ------------------------------------------------------------------
    # Configuration experiments
    # ------------------------------------------------------------------

    def test_policy_configuration(
        self,
        partial: Optional[Mapping[str, Any]] = None,
        content_type: Optional[Union[ContentType, str]] = None,
        risk_thresholds: Optional[Mapping[str, float]] = None,
        performance_thresholds: Optional[Mapping[str, Any]] = None,
    ) -> PolicyValidationResult:
        """Validate a proposed configuration change without applying it."""
        policy_result = self.policy_store.validate(partial or {}, content_type)
        threshold_result = self.policy_store.validate_thresholds(
            risk_thresholds, performance_thresholds, self.policy_store.risk_thresholds
        )
        return PolicyValidationResult.from_lists(
            list(policy_result.errors) + list(threshold_result.errors),
            list(policy_result.warnings) + list(threshold_result.warnings),
            list(policy_result.recommendations),
        )

    def benchmark_policy_configurations(
        self,
        configurations: Sequence[Mapping[str, Any]],
        content_type: Union[ContentType, str] = ContentType.GENERAL,
    ) -> List[Dict[str, Any]]:
        """
        Benchmark named policy variants, restoring the defaults afterwards.

        Each configuration is a mapping with ``name`` and ``policy`` (a partial
        policy for ``content_type``). Invalid variants are reported with their
        validation result and no benchmark.
        """
        ct = ContentType.normalize(content_type)
        outcomes: List[Dict[str, Any]] = []
        try:
            for configuration in configurations:
                name = configuration.get('name', 'unnamed')
                validation = self.policy_store.update(ct, configuration.get('policy', {}))
                benchmark = self.run_performance_benchmark(ct) if validation.is_valid else None
                outcomes.append({'name': name, 'validation': validation, 'benchmark': benchmark})
        finally:
            self.policy_store.reset_to_defaults()
        return outcomes


__all__ = [
    'SecurityPolicyTester',
    'DEFAULT_TEST_CONTENT_TYPES',
    'expected_violation_kinds',
    'generate_test_content',
    'visible_text',
]
