"""
Result cache package.

- result_cache.py: SanitizationCache with TTL sweep, LRU eviction and
  policy-version invalidation
- exceptions.py: cache error hierarchy
- monitoring.py: Prometheus mirror of the cache metrics
"""

from content_sanitizer.cache.exceptions import CacheError, CacheKeyError, CacheLifecycleError
from content_sanitizer.cache.monitoring import CachePerformanceMetrics
from content_sanitizer.cache.result_cache import (
    CacheEntry,
    CacheMetrics,
    SanitizationCache,
    estimate_result_size,
)

__all__ = [
    'CacheEntry',
    'CacheError',
    'CacheKeyError',
    'CacheLifecycleError',
    'CacheMetrics',
    'CachePerformanceMetrics',
    'SanitizationCache',
    'estimate_result_size',
]
