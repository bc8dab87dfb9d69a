"""
Sanitization exception hierarchy.

Only two of these ever propagate out of the public sanitize surface:
SanitizationCancelledError (a queued request was rejected by clear_queue) and
StreamAbortedError (a chunk of a streamed document failed). Everything else is
raised internally and converted to fail-secure results at the engine boundary,
or raised by configuration-time APIs (policy updates, settings, field
sanitizers) where the caller is expected to handle it.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels for monitoring and alerting classification."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SanitizationError(Exception):
    """
    Base exception class for all sanitization errors.

    Attributes:
        message: Human-readable error description
        error_code: Standardized error code for monitoring and alerting
        severity: Error severity used for log level selection
        details: Additional error context for debugging
        timestamp: Error occurrence timestamp for correlation with logs
    """

    default_code = "SANITIZATION_ERROR"
    default_severity = ErrorSeverity.MEDIUM

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: Optional[ErrorSeverity] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.severity = severity or self.default_severity
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        log_method = logger.error if self.severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL) else logger.warning
        log_method(
            "Sanitization error raised",
            error_code=self.error_code,
            message=message,
            severity=self.severity.value,
            details=self.details,
            cause=repr(cause) if cause else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a JSON-serializable dictionary for error responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class CleaningError(SanitizationError):
    """The markup-cleaning primitive failed on a piece of content."""

    default_code = "CLEANING_FAILED"
    default_severity = ErrorSeverity.CRITICAL


class PolicyValidationError(SanitizationError):
    """A policy update was rejected by validation."""

    default_code = "POLICY_VALIDATION_FAILED"
    default_severity = ErrorSeverity.HIGH

    def __init__(self, message: str, errors: Optional[list] = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        details["errors"] = list(errors or [])
        super().__init__(message, details=details, **kwargs)
        self.errors = list(errors or [])


class SanitizationCancelledError(SanitizationError):
    """
    A queued request was explicitly rejected before it was dispatched.

    Distinct from sanitize failures so callers can tell cancellation from a
    fail-secure result.
    """

    default_code = "SANITIZATION_CANCELLED"
    default_severity = ErrorSeverity.LOW


class StreamAbortedError(SanitizationError):
    """A chunk failed during streaming sanitization; no partial output exists."""

    default_code = "STREAM_ABORTED"
    default_severity = ErrorSeverity.HIGH

    def __init__(self, message: str, chunk_index: int, total_chunks: int = 0, **kwargs):
        details = kwargs.pop("details", None) or {}
        details.update({"chunk_index": chunk_index, "total_chunks": total_chunks})
        super().__init__(message, details=details, **kwargs)
        self.chunk_index = chunk_index
        self.total_chunks = total_chunks


class ConfigurationError(SanitizationError):
    default_code = "CONFIGURATION_ERROR"
    default_severity = ErrorSeverity.HIGH


class InputValidationError(SanitizationError):
    """Field-level input rejected before sanitization (empty, too long)."""

    default_code = "INPUT_VALIDATION_FAILED"
    default_severity = ErrorSeverity.LOW

    def __init__(self, message: str, field: str, **kwargs):
        details = kwargs.pop("details", None) or {}
        details["field"] = field
        super().__init__(message, details=details, **kwargs)
        self.field = field


__all__ = [
    "ErrorSeverity",
    "SanitizationError",
    "CleaningError",
    "PolicyValidationError",
    "SanitizationCancelledError",
    "StreamAbortedError",
    "ConfigurationError",
    "InputValidationError",
]
