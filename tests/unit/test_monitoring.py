"""
Monitoring Unit Tests

Security audit sink log levels and payloads (captured with structlog's test
helpers) and the Prometheus sanitizer metrics.
"""

import pytest
import structlog
from structlog.testing import capture_logs

from content_sanitizer.engine import SanitizationEngine
from content_sanitizer.models import Severity, Violation, ViolationKind
from content_sanitizer.monitoring import (
    AuditSink,
    SanitizationMetrics,
    SecurityAuditLogger,
    get_logger,
    setup_structured_logging,
)

pytestmark = pytest.mark.unit


def _violation(severity: Severity, kind: ViolationKind = ViolationKind.SCRIPT_TAG) -> Violation:
    return Violation(kind=kind, matched_text='<script>', severity=severity, description='test')


@pytest.fixture
def audit_logger() -> SecurityAuditLogger:
    return SecurityAuditLogger(enabled=True)


class TestSecurityAuditLogger:

    def test_is_an_audit_sink(self, audit_logger):
        assert isinstance(audit_logger, AuditSink)

    @pytest.mark.parametrize('severity, level', [
        (Severity.CRITICAL, 'critical'),
        (Severity.HIGH, 'error'),
        (Severity.MEDIUM, 'warning'),
        (Severity.LOW, 'info'),
    ])
    def test_level_follows_highest_severity(self, audit_logger, event_context, severity, level):
        with capture_logs() as logs:
            audit_logger.log_security_event([_violation(Severity.LOW), _violation(severity)], event_context)

        assert len(logs) == 1
        assert logs[0]['log_level'] == level
        assert logs[0]['severity'] == severity.value

    def test_security_event_payload(self, audit_logger, event_context):
        with capture_logs() as logs:
            audit_logger.log_security_event([_violation(Severity.CRITICAL)], event_context)

        event = logs[0]
        assert event['event'] == 'Content security violation on /api/pets'
        assert event['event_category'] == 'content_security_violation'
        assert event['violation_count'] == 1
        assert event['violations'][0]['kind'] == 'script_tag'
        assert event['requires_investigation'] is True
        assert event['user_id'] == 'user-1'
        assert event['ip_address'] == '203.0.113.7'
        assert event['request_id'] == 'req-1'

    def test_no_violations_no_event(self, audit_logger, event_context):
        with capture_logs() as logs:
            audit_logger.log_security_event([], event_context)
        assert logs == []

    def test_clean_action_is_info(self, audit_logger, event_context):
        with capture_logs() as logs:
            audit_logger.log_sanitization_action('clean', event_context, [], 1.23456, 'low')

        assert len(logs) == 1
        assert logs[0]['log_level'] == 'info'
        assert logs[0]['event'] == 'Sanitization clean'
        assert logs[0]['processing_time_ms'] == 1.235
        assert logs[0]['risk_level'] == 'low'

    def test_disabled_logger_is_silent(self, event_context):
        quiet = SecurityAuditLogger(enabled=False)
        with capture_logs() as logs:
            quiet.log_security_event([_violation(Severity.CRITICAL)], event_context)
            quiet.log_sanitization_action('sanitized', event_context, [], 1.0, 'critical')
        assert logs == []

    def test_engine_reports_through_audit_logger(self, policy_store, audit_logger, event_context):
        engine = SanitizationEngine(policy_store, audit_sink=audit_logger)

        with capture_logs() as logs:
            engine.sanitize('Fluffy<script>alert(1)</script>', context=event_context)

        assert not [entry for entry in logs if entry['event'] == 'Audit sink failed']
        audit = [entry for entry in logs if entry.get('security_audit')]
        assert [entry['event_category'] for entry in audit] == [
            'content_security_violation',
            'sanitization_action',
        ]
        assert audit[1]['action'] == 'sanitized'
        assert audit[0]['severity'] == 'critical'
        assert audit[0]['log_level'] == 'critical'


class TestStructuredLogging:

    def test_setup_returns_bound_logger(self):
        logger = setup_structured_logging(log_level='warning', log_format='console')
        assert hasattr(logger, 'info')
        assert structlog.is_configured()

    def test_get_logger(self):
        assert hasattr(get_logger('content_sanitizer.test'), 'warning')


class TestSanitizationMetrics:

    def test_registries_are_isolated(self):
        first, second = SanitizationMetrics(), SanitizationMetrics()
        first.record_sanitize('comment', 'clean', 1.0)

        assert first.sample('sanitizer_calls_total', {'content_type': 'comment', 'outcome': 'clean'}) == 1.0
        assert second.sample('sanitizer_calls_total', {'content_type': 'comment', 'outcome': 'clean'}) == 0.0

    def test_violations_and_durations(self, sanitization_metrics):
        sanitization_metrics.record_sanitize(
            'general', 'sanitized', 250.0, [_violation(Severity.CRITICAL), _violation(Severity.HIGH)],
        )

        assert sanitization_metrics.sample(
            'sanitizer_violations_total', {'kind': 'script_tag', 'severity': 'critical'}) == 1.0
        assert sanitization_metrics.sample(
            'sanitizer_processing_duration_seconds_sum', {'content_type': 'general'}) == pytest.approx(0.25)

    def test_summary(self, sanitization_metrics):
        sanitization_metrics.record_sanitize('general', 'failed', 1.0)
        sanitization_metrics.set_queue_state(depth=4, in_flight=2)
        sanitization_metrics.record_cancellations(3)
        sanitization_metrics.record_stream_abort()

        assert sanitization_metrics.summary() == {
            'failures': 1,
            'queue_depth': 4.0,
            'batches_in_flight': 2.0,
            'cancelled': 3.0,
            'streams_aborted': 1.0,
        }

    def test_export(self, sanitization_metrics):
        sanitization_metrics.record_batch(5)
        sanitization_metrics.record_stream_chunk('comment')

        exported = sanitization_metrics.export()

        assert b'sanitizer_batch_size_count 1.0' in exported
        assert b'sanitizer_stream_chunks_total{content_type="comment"} 1.0' in exported
