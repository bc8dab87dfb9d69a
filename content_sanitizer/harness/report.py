"""Markdown rendering of security test suite results."""

from datetime import datetime, timezone
from typing import List, Optional

from content_sanitizer.models import SecurityTestSuiteResult


def _percent(part: int, total: int) -> int:
    return round(part * 100 / total) if total else 0


def generate_security_report(result: SecurityTestSuiteResult,
                             generated_at: Optional[datetime] = None) -> str:
    """
    Render a suite result as a markdown report.

    Sections: Executive Summary, Policy Validation, Performance Benchmarks,
    Failed Tests (only when some failed) and Recommendations.
    """
    when = generated_at or datetime.now(timezone.utc)
    report: List[str] = []

    report.append('# Security Policy Test Report')
    report.append(f'Generated: {when.isoformat()}')
    report.append(f'Corpus Version: {result.corpus_version}')
    report.append('')

    report.append('## Executive Summary')
    report.append(f'- Total Tests: {result.total_tests}')
    report.append(f'- Passed: {result.passed_tests} ({_percent(result.passed_tests, result.total_tests)}%)')
    report.append(f'- Failed: {result.failed_tests} ({_percent(result.failed_tests, result.total_tests)}%)')
    report.append(f'- Critical Issues: {result.summary.critical_issues}')
    report.append(f'- High Issues: {result.summary.high_issues}')
    report.append(f'- Medium Issues: {result.summary.medium_issues}')
    report.append(f'- Low Issues: {result.summary.low_issues}')
    report.append('')

    validation = result.policy_validation
    report.append('## Policy Validation')
    report.append(f"- Valid: {'Yes' if validation.is_valid else 'No'}")
    if validation.errors:
        report.append('### Errors:')
        report.extend(f'- {error}' for error in validation.errors)
    if validation.warnings:
        report.append('### Warnings:')
        report.extend(f'- {warning}' for warning in validation.warnings)
    if validation.recommendations:
        report.append('### Recommendations:')
        report.extend(f'- {item}' for item in validation.recommendations)
    report.append('')

    report.append('## Performance Benchmarks')
    for benchmark in result.performance_benchmarks:
        report.append(f'### {benchmark.content_type.value}')
        report.append(f'- Average Processing Time: {benchmark.average_time_ms:.2f}ms')
        report.append(f'- Throughput: {benchmark.throughput_ops:.2f} ops/sec')
        report.append(f'- Violations Detected: {benchmark.violations_detected}')
    report.append('')

    failed = [r for r in result.test_results if not r.passed]
    if failed:
        report.append('## Failed Tests')
        for test in failed:
            report.append(f'### {test.test_case.name} ({test.content_type.value})')
            report.append(f'- Severity: {test.test_case.severity.value}')
            report.append(f'- Category: {test.test_case.category.value}')
            report.append(f'- Description: {test.test_case.description}')
            report.append(f'- Expected Blocked: {test.test_case.expected_blocked}')
            report.append(f'- Processing Time: {test.processing_time_ms:.2f}ms')
            report.append('')

    if result.recommendations:
        report.append('## Recommendations')
        report.extend(f'- {rec}' for rec in result.recommendations)
        report.append('')

    return '\n'.join(report)


__all__ = ['generate_security_report']
