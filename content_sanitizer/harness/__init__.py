"""Policy test harness: attack corpus, runner, benchmarks and reporting."""

from content_sanitizer.harness.corpus import CORPUS_VERSION, generate_attack_corpus
from content_sanitizer.harness.report import generate_security_report
from content_sanitizer.harness.tester import (
    DEFAULT_TEST_CONTENT_TYPES,
    SecurityPolicyTester,
    expected_violation_kinds,
    visible_text,
)

__all__ = [
    'CORPUS_VERSION',
    'DEFAULT_TEST_CONTENT_TYPES',
    'SecurityPolicyTester',
    'expected_violation_kinds',
    'generate_attack_corpus',
    'generate_security_report',
    'visible_text',
]
