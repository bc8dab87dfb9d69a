"""
Sanitization Result Cache

In-process, content-addressed cache of SanitizedResult objects with TTL
expiry, LRU eviction and policy-version invalidation.

Key Features:
- Cache key: SHA-256 over (content type, content, normalized options, policy
  version), so an entry can never outlive the policy that produced it
- Hard caps on entry count and estimated byte footprint; the least recently
  accessed entry is evicted first
- Background TTL sweep on a daemon thread at a fixed interval, stopped
  deterministically by destroy()
- Invalidation by content type, on policy change, or wholesale
- Metrics struct (hits, misses, evictions, hit rate, entries, memory)
  mirrored into Prometheus via CachePerformanceMetrics

Concurrency: every read and mutation of the store and of the metrics struct
happens under one RLock, so no observer can see a half-inserted or
half-evicted entry.
"""

import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

import structlog

from content_sanitizer.cache.exceptions import CacheKeyError, CacheLifecycleError
from content_sanitizer.cache.monitoring import CachePerformanceMetrics
from content_sanitizer.config.settings import CacheSettings
from content_sanitizer.models import ContentType, SanitizedResult, SanitizeOptions

logger = structlog.get_logger(__name__)

VersionProvider = Callable[[ContentType], int]

# Fixed per-entry overhead added to the character-based size estimate.
ENTRY_OVERHEAD_BYTES = 200


@dataclass
class CacheEntry:
    result: SanitizedResult
    created_at: float
    last_accessed_at: float
    content_type: ContentType
    policy_version_at_creation: int
    size_bytes: int
    access_count: int = 1
    created_at_wallclock: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class CacheMetrics:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    invalidations: int = 0
    total_requests: int = 0
    hit_rate: float = 0.0
    cache_size: int = 0
    memory_usage_bytes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def estimate_result_size(key: str, result: SanitizedResult) -> int:
    """Rough byte estimate: two bytes per character plus fixed overhead."""
    chars = len(key) + len(result.original_content) + len(result.sanitized_content)
    for violation in result.violations:
        chars += len(violation.matched_text) + len(violation.description) + 32
    chars += sum(len(name) for name in result.removed_element_names)
    return chars * 2 + ENTRY_OVERHEAD_BYTES


class SanitizationCache:
    """Thread-safe TTL + LRU cache of sanitization results."""

    def __init__(
        self,
        settings: Optional[CacheSettings] = None,
        version_provider: Optional[VersionProvider] = None,
        metrics: Optional[CachePerformanceMetrics] = None,
        clock: Callable[[], float] = time.monotonic,
        auto_start: bool = True,
    ):
        self._settings = settings or CacheSettings()
        self._version_provider = version_provider or (lambda content_type: 1)
        self._prometheus = metrics or CachePerformanceMetrics()
        self._clock = clock

        self._lock = threading.RLock()
        self._store: 'OrderedDict[str, CacheEntry]' = OrderedDict()
        self._bytes = 0
        self._metrics = CacheMetrics()

        self._sweeper: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._destroyed = False

        if auto_start:
            self.start()

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def generate_key(
        self,
        content: str,
        options: Optional[SanitizeOptions] = None,
        content_type: Optional[Union[ContentType, str]] = None,
        policy_version: Optional[int] = None,
    ) -> str:
        """Deterministic key for a request under the current policy version."""
        ct = ContentType.normalize(content_type)
        version = self._version_provider(ct) if policy_version is None else policy_version
        try:
            material = json.dumps(
                {
                    'content_type': ct.value,
                    'content': content,
                    'options': options.normalized() if options is not None else None,
                    'policy_version': version,
                },
                sort_keys=True,
                ensure_ascii=False,
                separators=(',', ':'),
            )
        except (TypeError, ValueError) as e:
            raise CacheKeyError(f"Cannot derive cache key: {e}", key_part='options') from e
        return hashlib.sha256(material.encode('utf-8', 'surrogatepass')).hexdigest()

    # ------------------------------------------------------------------
    # Store operations
    # ------------------------------------------------------------------

    def get(
        self,
        content: str,
        options: Optional[SanitizeOptions] = None,
        content_type: Optional[Union[ContentType, str]] = None,
    ) -> Optional[SanitizedResult]:
        """Return a cached result, or None on miss, expiry or stale policy version."""
        ct = ContentType.normalize(content_type)
        version = self._version_provider(ct)
        key = self.generate_key(content, options, ct, policy_version=version)

        with self._lock:
            self._ensure_alive()
            self._metrics.total_requests += 1
            entry = self._store.get(key)
            now = self._clock()

            if entry is not None and now - entry.created_at > self._settings.ttl_seconds:
                self._remove(key)
                self._metrics.evictions += 1
                self._prometheus.record_eviction('ttl')
                entry = None
            elif entry is not None and entry.policy_version_at_creation != version:
                self._remove(key)
                self._metrics.invalidations += 1
                self._prometheus.record_invalidation('policy_change', 1)
                entry = None

            if entry is None:
                self._metrics.misses += 1
                self._prometheus.record_miss(ct.value)
                self._refresh_metrics()
                return None

            entry.access_count += 1
            entry.last_accessed_at = now
            self._store.move_to_end(key)
            self._metrics.hits += 1
            self._prometheus.record_hit(ct.value)
            self._refresh_metrics()
            return entry.result

    def set(
        self,
        content: str,
        result: SanitizedResult,
        options: Optional[SanitizeOptions] = None,
        content_type: Optional[Union[ContentType, str]] = None,
        policy_version: Optional[int] = None,
    ) -> bool:
        """
        Store a result under the request's key.

        Args:
            policy_version: Version of the policy the result was computed
                under; defaults to the current version

        Returns:
            False when the entry alone exceeds the byte cap and was not stored
        """
        ct = ContentType.normalize(content_type)
        version = self._version_provider(ct) if policy_version is None else policy_version
        key = self.generate_key(content, options, ct, policy_version=version)
        size = estimate_result_size(key, result)

        with self._lock:
            self._ensure_alive()
            if size > self._settings.max_bytes:
                logger.debug(
                    "Result too large to cache",
                    content_type=ct.value,
                    size_bytes=size,
                    max_bytes=self._settings.max_bytes,
                )
                return False

            if key in self._store:
                self._remove(key)

            now = self._clock()
            self._store[key] = CacheEntry(
                result=result,
                created_at=now,
                last_accessed_at=now,
                content_type=ct,
                policy_version_at_creation=version,
                size_bytes=size,
            )
            self._bytes += size
            self._enforce_limits()
            self._refresh_metrics()
            return True

    def _remove(self, key: str) -> Optional[CacheEntry]:
        entry = self._store.pop(key, None)
        if entry is not None:
            self._bytes -= entry.size_bytes
        return entry

    def _enforce_limits(self) -> int:
        """Evict least recently accessed entries until both caps hold."""
        evicted = 0
        while self._store and len(self._store) > self._settings.max_entries:
            _, entry = self._store.popitem(last=False)
            self._bytes -= entry.size_bytes
            evicted += 1
            self._prometheus.record_eviction('lru')
        while self._store and self._bytes > self._settings.max_bytes:
            _, entry = self._store.popitem(last=False)
            self._bytes -= entry.size_bytes
            evicted += 1
            self._prometheus.record_eviction('memory')
        if evicted:
            self._metrics.evictions += evicted
        return evicted

    def _refresh_metrics(self) -> None:
        m = self._metrics
        m.cache_size = len(self._store)
        m.memory_usage_bytes = self._bytes
        m.hit_rate = m.hits / m.total_requests if m.total_requests else 0.0
        self._prometheus.update_state(m.cache_size, m.memory_usage_bytes, m.hit_rate)

    def _ensure_alive(self) -> None:
        if self._destroyed:
            raise CacheLifecycleError()

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate_by_content_type(self, content_type: Union[ContentType, str],
                                   reason: str = 'manual') -> int:
        ct = ContentType.normalize(content_type)
        with self._lock:
            keys = [key for key, entry in self._store.items() if entry.content_type is ct]
            for key in keys:
                self._remove(key)
            self._metrics.invalidations += len(keys)
            self._prometheus.record_invalidation('content_type', len(keys))
            self._refresh_metrics()

        logger.info(
            "Cache entries invalidated",
            content_type=ct.value,
            invalidated=len(keys),
            reason=reason,
        )
        return len(keys)

    def invalidate_on_policy_change(self, content_type: Optional[ContentType] = None) -> int:
        """Policy store subscriber: drop one type's entries, or all when None."""
        if content_type is None:
            return self.clear(reason='policy_change')
        return self.invalidate_by_content_type(content_type, reason='policy_change')

    def clear(self, reason: str = 'manual') -> int:
        with self._lock:
            count = len(self._store)
            self._store.clear()
            self._bytes = 0
            self._metrics.invalidations += count
            self._prometheus.record_invalidation('clear', count)
            self._refresh_metrics()

        logger.info("Cache cleared", reason=reason, invalidated=count)
        return count

    def cleanup_expired(self) -> int:
        """Remove every entry older than the TTL."""
        started = time.perf_counter()
        with self._lock:
            now = self._clock()
            expired = [
                key for key, entry in self._store.items()
                if now - entry.created_at > self._settings.ttl_seconds
            ]
            for key in expired:
                self._remove(key)
            if expired:
                self._metrics.evictions += len(expired)
                self._prometheus.record_eviction('ttl', len(expired))
            self._refresh_metrics()
        self._prometheus.record_sweep(time.perf_counter() - started)

        if expired:
            logger.debug("Expired cache entries removed", removed=len(expired))
        return len(expired)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the TTL sweeper thread (idempotent)."""
        with self._lock:
            self._ensure_alive()
            if self._sweeper is not None and self._sweeper.is_alive():
                return
            self._stop_event = threading.Event()
            self._sweeper = threading.Thread(
                target=self._sweep_loop,
                args=(self._stop_event,),
                name='sanitization-cache-sweeper',
                daemon=True,
            )
            self._sweeper.start()

    def _sweep_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._settings.cleanup_interval_seconds):
            try:
                self.cleanup_expired()
            except CacheLifecycleError:
                return
            except Exception:
                logger.exception("Cache sweep failed")

    def _stop_sweeper(self) -> None:
        sweeper = self._sweeper
        self._stop_event.set()
        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join(timeout=5.0)
        self._sweeper = None

    @property
    def is_running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def destroy(self) -> None:
        """Stop the sweeper and drop every entry. The cache is unusable afterwards."""
        self._stop_sweeper()
        with self._lock:
            self._store.clear()
            self._bytes = 0
            self._refresh_metrics()
            self._destroyed = True
        logger.debug("Cache destroyed")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def settings(self) -> CacheSettings:
        return self._settings

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def get_metrics(self) -> CacheMetrics:
        with self._lock:
            self._refresh_metrics()
            return replace(self._metrics)

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            counts: Dict[str, int] = {}
            total_age = 0.0
            for entry in self._store.values():
                counts[entry.content_type.value] = counts.get(entry.content_type.value, 0) + 1
                total_age += now - entry.created_at
            size = len(self._store)
            top = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:5]
            return {
                'metrics': self.get_metrics().to_dict(),
                'settings': self._settings.to_dict(),
                'top_content_types': [{'type': t, 'count': c} for t, c in top],
                'average_entry_age_seconds': total_age / size if size else 0.0,
            }

    def get_debug_info(self) -> List[Dict[str, Any]]:
        with self._lock:
            now = self._clock()
            entries = [
                {
                    'key': key[:16] + '...',
                    'content_type': entry.content_type.value,
                    'age_seconds': now - entry.created_at,
                    'access_count': entry.access_count,
                    'content_length': len(entry.result.original_content),
                    'sanitized_length': len(entry.result.sanitized_content),
                    'violations_count': len(entry.result.violations),
                    'policy_version': entry.policy_version_at_creation,
                }
                for key, entry in self._store.items()
            ]
        return sorted(entries, key=lambda e: e['access_count'], reverse=True)

    def update_settings(self, **changes: Any) -> CacheSettings:
        """
        Apply new settings.

        Shrinking caps evicts immediately, a shorter TTL sweeps immediately,
        and a new sweep interval restarts the sweeper thread.
        """
        restart = False
        with self._lock:
            old = self._settings
            self._settings = old.with_changes(**changes)
            self._enforce_limits()
            self._refresh_metrics()
            restart = (
                self._settings.cleanup_interval_seconds != old.cleanup_interval_seconds
                and self.is_running
            )
            new_settings = self._settings

        if new_settings.ttl_seconds < old.ttl_seconds:
            self.cleanup_expired()
        if restart:
            self._stop_sweeper()
            self.start()

        logger.info("Cache settings updated", changes=changes)
        return new_settings


__all__ = ['SanitizationCache', 'CacheEntry', 'CacheMetrics', 'estimate_result_size']
