"""
Lazy/Batch Sanitization Scheduler

Priority-aware asyncio scheduler in front of the sanitization engine.

Key Features:
- Requests at or above the priority threshold take an immediate path
  (still cache-checked first)
- Lower-priority requests wait in a queue; a fixed debounce window, opened by
  the first request, accumulates work up to the maximum batch size
- Batches drain sorted by (priority desc, enqueue time asc) so older
  low-priority work keeps moving forward
- At most N batches drain at once; excess work stays queued
- Each request is re-checked against the cache at drain time
- clear_queue() rejects every pending request with SanitizationCancelledError;
  nothing is ever dropped silently
"""

import asyncio
import functools
import itertools
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

import structlog

from content_sanitizer.config.settings import BatchSettings
from content_sanitizer.engine import SanitizationEngine
from content_sanitizer.exceptions import SanitizationCancelledError
from content_sanitizer.models import ContentType, SanitizedResult, SanitizeOptions
from content_sanitizer.monitoring.metrics import SanitizationMetrics

logger = structlog.get_logger(__name__)


@dataclass
class ScheduledRequest:
    content: str
    options: Optional[SanitizeOptions]
    content_type: ContentType
    priority: int
    enqueued_at: float
    sequence: int
    future: 'asyncio.Future[SanitizedResult]'

    def sort_key(self) -> Tuple[int, float, int]:
        return (-self.priority, self.enqueued_at, self.sequence)


class LazySanitizationScheduler:
    """Debounced, priority-ordered batching of sanitize calls."""

    def __init__(
        self,
        engine: SanitizationEngine,
        settings: Optional[BatchSettings] = None,
        metrics: Optional[SanitizationMetrics] = None,
    ):
        self.engine = engine
        self._settings = settings or BatchSettings()
        self.metrics = metrics or engine.metrics
        self._queue: List[ScheduledRequest] = []
        self._batches: Set['asyncio.Task[None]'] = set()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._sequence = itertools.count()
        self._destroyed = False

    @property
    def settings(self) -> BatchSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        content: Any,
        options: Optional[SanitizeOptions] = None,
        content_type: Optional[Union[ContentType, str]] = None,
        priority: int = 1,
    ) -> SanitizedResult:
        """
        Sanitize content through the queue.

        Args:
            content: Untrusted input
            options: Call-level policy overrides
            content_type: Selects the base policy
            priority: Requests at or above the priority threshold skip the queue

        Returns:
            The SanitizedResult once the request has been dispatched

        Raises:
            SanitizationCancelledError: The request was rejected by clear_queue()
        """
        if self._destroyed:
            raise SanitizationCancelledError(
                "Scheduler has been destroyed",
                details={"content_type": ContentType.normalize(content_type).value},
            )

        ct = ContentType.normalize(content_type)
        if not isinstance(content, str):
            return SanitizedResult.empty()

        cached = self.engine.lookup_cached(content, options, ct)
        if cached is not None:
            return cached

        if priority >= self._settings.priority_threshold:
            logger.debug("Immediate sanitization", priority=priority, content_type=ct.value)
            return await self.engine.sanitize_async(content, options, ct)

        loop = asyncio.get_running_loop()
        request = ScheduledRequest(
            content=content,
            options=options,
            content_type=ct,
            priority=priority,
            enqueued_at=time.monotonic(),
            sequence=next(self._sequence),
            future=loop.create_future(),
        )
        self._queue.append(request)
        self._publish_state()

        if len(self._queue) >= self._settings.max_batch_size:
            self._cancel_timer()
            self._drain()
        elif self._timer is None:
            self._timer = loop.call_later(self._settings.debounce_ms / 1000.0, self._on_window_closed)

        return await request.future

    async def lazy_sanitize(self, content: Any, options: Optional[SanitizeOptions] = None,
                            content_type: Optional[Union[ContentType, str]] = None,
                            priority: int = 1) -> SanitizedResult:
        return await self.submit(content, options, content_type, priority)

    async def batch_sanitize(self, items: Iterable[Union[str, Mapping[str, Any]]]) -> List[SanitizedResult]:
        """
        Submit many requests at once and wait for all of them.

        Each item is either a string or a mapping with ``content`` and optional
        ``options``, ``content_type`` and ``priority`` keys. Results keep the
        order of the items.
        """
        submissions = []
        for item in items:
            if isinstance(item, str):
                submissions.append(self.submit(item))
            else:
                submissions.append(self.submit(
                    item.get('content'),
                    item.get('options'),
                    item.get('content_type'),
                    item.get('priority', 1),
                ))
        return list(await asyncio.gather(*submissions))

    # ------------------------------------------------------------------
    # Draining
    # ------------------------------------------------------------------

    def _on_window_closed(self) -> None:
        self._timer = None
        self._drain()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _drain(self) -> None:
        """Start batches while work is queued and the concurrency cap allows."""
        while self._queue and len(self._batches) < self._settings.max_concurrent_batches:
            self._queue.sort(key=ScheduledRequest.sort_key)
            batch = self._queue[:self._settings.max_batch_size]
            del self._queue[:self._settings.max_batch_size]

            task = asyncio.get_running_loop().create_task(self._run_batch(batch))
            self._batches.add(task)
            task.add_done_callback(functools.partial(self._on_batch_done, batch))
            self.metrics.record_batch(len(batch))
        self._publish_state()

    def _on_batch_done(self, batch: List[ScheduledRequest], task: 'asyncio.Task[None]') -> None:
        self._batches.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Batch task failed", error=str(task.exception()))
        # A batch that died early must still settle every request it took.
        for request in batch:
            if not request.future.done():
                request.future.set_exception(SanitizationCancelledError(
                    "Batch ended before the request was dispatched",
                    details={"content_type": request.content_type.value},
                ))
        if self._queue and not self._destroyed:
            self._drain()
        else:
            self._publish_state()

    async def _run_batch(self, batch: List[ScheduledRequest]) -> None:
        logger.debug("Draining batch", batch_size=len(batch))
        for request in batch:
            if request.future.done():
                continue
            try:
                result = self.engine.lookup_cached(request.content, request.options, request.content_type)
                if result is None:
                    result = await self.engine.sanitize_async(
                        request.content, request.options, request.content_type
                    )
            except Exception as e:
                if not request.future.done():
                    request.future.set_exception(e)
                continue
            if not request.future.done():
                request.future.set_result(result)

    # ------------------------------------------------------------------
    # Cancellation and lifecycle
    # ------------------------------------------------------------------

    def clear_queue(self) -> int:
        """Reject every pending request with SanitizationCancelledError."""
        self._cancel_timer()
        pending, self._queue = self._queue, []
        rejected = 0
        for request in pending:
            if not request.future.done():
                request.future.set_exception(SanitizationCancelledError(
                    "Sanitization request cancelled",
                    details={
                        "content_type": request.content_type.value,
                        "priority": request.priority,
                    },
                ))
                rejected += 1
        self.metrics.record_cancellations(rejected)
        self._publish_state()
        if rejected:
            logger.info("Sanitization queue cleared", rejected=rejected)
        return rejected

    async def destroy(self) -> None:
        """Reject queued work and wait for in-flight batches to finish."""
        self._destroyed = True
        self.clear_queue()
        if self._batches:
            await asyncio.gather(*list(self._batches), return_exceptions=True)
        self._publish_state()

    def update_settings(self, **changes: Any) -> BatchSettings:
        self._settings = self._settings.with_changes(**changes)
        logger.info("Scheduler settings updated", changes=changes)
        return self._settings

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def _publish_state(self) -> None:
        self.metrics.set_queue_state(len(self._queue), len(self._batches))

    def get_queue_stats(self) -> Dict[str, Any]:
        now = time.monotonic()
        pending = len(self._queue)
        return {
            'pending': pending,
            'in_flight_batches': len(self._batches),
            'average_priority': (
                sum(r.priority for r in self._queue) / pending if pending else 0.0
            ),
            'oldest_pending_age_ms': (
                max((now - r.enqueued_at) * 1000.0 for r in self._queue) if pending else 0.0
            ),
            'window_open': self._timer is not None,
            'settings': self._settings.to_dict(),
        }


__all__ = ['LazySanitizationScheduler', 'ScheduledRequest']
