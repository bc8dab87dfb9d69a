"""
Cache-specific exception classes for the sanitization result cache.

The engine treats every cache error as a miss: a failing cache can slow
sanitization down but never block it or change its output.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class CacheError(Exception):
    """
    Base exception class for all cache-related errors.

    Attributes:
        message: Human-readable error description
        error_code: Standardized error code for monitoring and alerting
        details: Additional error context for debugging and observability
        timestamp: Error occurrence timestamp for correlation with logs
    """

    def __init__(
        self,
        message: str,
        error_code: str = "CACHE_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)

        logger.error(
            "Cache error occurred",
            error_code=self.error_code,
            message=message,
            details=self.details,
            timestamp=self.timestamp.isoformat(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class CacheKeyError(CacheError):
    """Raised when a cache key cannot be derived from the request."""

    def __init__(self, message: str, key_part: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        error_details = dict(details or {})
        if key_part:
            error_details["key_part"] = key_part
        super().__init__(message, error_code="CACHE_KEY_ERROR", details=error_details)
        self.key_part = key_part


class CacheLifecycleError(CacheError):
    """Raised when the cache is used after destroy()."""

    def __init__(self, message: str = "Cache has been destroyed"):
        super().__init__(message, error_code="CACHE_DESTROYED")


__all__ = ['CacheError', 'CacheKeyError', 'CacheLifecycleError']
