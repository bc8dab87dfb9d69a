"""
Structured Logging and Security Audit Sink using structlog

This module configures structlog for the sanitizer and provides the default
implementation of the audit sink the engine reports to after every completed
sanitize call.

Key Features:
- setup_structured_logging(): JSON or console rendering selected by LOG_FORMAT
- get_logger(): structlog logger factory used across the package
- AuditSink: protocol for the external audit/event collaborator
- SecurityAuditLogger: default sink writing structured security events

Audit delivery is fire-and-forget. The engine wraps every sink call and logs
sink failures; a failing sink never changes a sanitize result.
"""

import logging
import os
import sys
from typing import Any, Dict, Optional, Protocol, Sequence, runtime_checkable

import structlog

from content_sanitizer.models import SecurityEventContext, Severity, Violation


class LoggingConfig:
    """Environment-driven logging settings."""

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')  # json, console
    COLORED_CONSOLE_OUTPUT = os.getenv('COLORED_CONSOLE_OUTPUT', 'false').lower() == 'true'
    APPLICATION_NAME = os.getenv('SANITIZER_APP_NAME', 'content-sanitizer')
    SECURITY_AUDIT_ENABLED = os.getenv('SANITIZER_AUDIT_ENABLED', 'true').lower() == 'true'


def setup_structured_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
) -> structlog.stdlib.BoundLogger:
    """
    Configure structlog and the standard library root logger.

    Args:
        log_level: Overrides LOG_LEVEL
        log_format: Overrides LOG_FORMAT ('json' or 'console')

    Returns:
        Configured structured logger instance
    """
    level = (log_level or LoggingConfig.LOG_LEVEL).upper()
    fmt = (log_format or LoggingConfig.LOG_FORMAT).lower()

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if fmt == 'console':
        processors.append(structlog.dev.ConsoleRenderer(colors=LoggingConfig.COLORED_CONSOLE_OUTPUT))
    else:
        # Default to JSON for log aggregation
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level, logging.INFO),
        force=True,
    )

    logger = structlog.get_logger(LoggingConfig.APPLICATION_NAME)
    logger.info(
        "Structured logging initialized",
        log_level=level,
        log_format=fmt,
        security_audit=LoggingConfig.SECURITY_AUDIT_ENABLED,
    )
    return logger


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name or LoggingConfig.APPLICATION_NAME)


@runtime_checkable
class AuditSink(Protocol):
    """External audit/event collaborator consumed by the engine."""

    def log_security_event(
        self,
        violations: Sequence[Violation],
        context: SecurityEventContext,
    ) -> None:
        ...

    def log_sanitization_action(
        self,
        action: str,
        context: SecurityEventContext,
        violations: Sequence[Violation],
        processing_time_ms: float,
        risk_level: str,
    ) -> None:
        ...


class SecurityAuditLogger:
    """
    Default audit sink emitting structured security events.

    Events carry the caller context (user, ip, endpoint, request ids) and a
    summary of the violations. Log level follows the highest violation
    severity: critical -> critical, high -> error, medium -> warning, else info.
    """

    def __init__(self, logger: Optional[structlog.stdlib.BoundLogger] = None,
                 enabled: Optional[bool] = None):
        self.logger = logger or get_logger("content_sanitizer.audit")
        self.enabled = LoggingConfig.SECURITY_AUDIT_ENABLED if enabled is None else enabled

    @staticmethod
    def _context_fields(context: SecurityEventContext) -> Dict[str, Any]:
        return {
            'user_id': context.user_id,
            'ip_address': context.ip_address,
            'user_agent': context.user_agent,
            'endpoint': context.endpoint,
            'content_type': context.content_type.value,
            'session_id': context.session_id,
            'request_id': context.request_id,
            **context.metadata,
        }

    @staticmethod
    def _highest(violations: Sequence[Violation]) -> Optional[Severity]:
        if not violations:
            return None
        return max((v.severity for v in violations), key=lambda s: s.rank)

    def _emit(self, level: Optional[Severity], message: str, **event: Any) -> None:
        # event payloads carry their own "severity" key
        if level is Severity.CRITICAL:
            self.logger.critical(message, **event)
        elif level is Severity.HIGH:
            self.logger.error(message, **event)
        elif level is Severity.MEDIUM:
            self.logger.warning(message, **event)
        else:
            self.logger.info(message, **event)

    def log_security_event(
        self,
        violations: Sequence[Violation],
        context: SecurityEventContext,
    ) -> None:
        """
        Log detected violations with the caller's security context.

        Args:
            violations: Violations detected in the submitted content
            context: Caller-supplied observability context
        """
        if not self.enabled or not violations:
            return

        severity = self._highest(violations)
        security_event = {
            'event_category': 'content_security_violation',
            'severity': severity.value if severity else 'info',
            'violation_count': len(violations),
            'violations': [
                {
                    'kind': v.kind.value,
                    'severity': v.severity.value,
                    'description': v.description,
                    'matched_text': v.matched_text[:100],
                }
                for v in violations
            ],
            'requires_investigation': severity in (Severity.HIGH, Severity.CRITICAL),
            'security_audit': True,
            **self._context_fields(context),
        }
        self._emit(severity, f"Content security violation on {context.endpoint}", **security_event)

    def log_sanitization_action(
        self,
        action: str,
        context: SecurityEventContext,
        violations: Sequence[Violation],
        processing_time_ms: float,
        risk_level: str,
    ) -> None:
        """
        Log a completed sanitization action (sanitized, cache hit, failed).

        Args:
            action: Short action name
            context: Caller-supplied observability context
            violations: Violations attached to the result
            processing_time_ms: Time spent producing the result
            risk_level: Risk level derived from the violations
        """
        if not self.enabled:
            return

        self._emit(
            self._highest(violations),
            f"Sanitization {action}",
            event_category='sanitization_action',
            action=action,
            risk_level=risk_level,
            violation_count=len(violations),
            processing_time_ms=round(processing_time_ms, 3),
            security_audit=True,
            **self._context_fields(context),
        )


__all__ = [
    'LoggingConfig',
    'setup_structured_logging',
    'get_logger',
    'AuditSink',
    'SecurityAuditLogger',
]
