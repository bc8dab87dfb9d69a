"""Logging, audit and metrics for the sanitization pipeline."""

from content_sanitizer.monitoring.logging import (
    AuditSink,
    SecurityAuditLogger,
    get_logger,
    setup_structured_logging,
)
from content_sanitizer.monitoring.metrics import SanitizationMetrics

__all__ = [
    'AuditSink',
    'SecurityAuditLogger',
    'SanitizationMetrics',
    'get_logger',
    'setup_structured_logging',
]
