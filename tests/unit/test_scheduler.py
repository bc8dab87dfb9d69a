"""
Lazy/Batch Scheduler Unit Tests

Priority ordering, the immediate path, debounce and size-triggered drains,
explicit cancellation and lifecycle.
"""

import asyncio

import pytest

from content_sanitizer.config.settings import BatchSettings
from content_sanitizer.exceptions import SanitizationCancelledError
from content_sanitizer.models import ContentType
from content_sanitizer.scheduler import LazySanitizationScheduler, ScheduledRequest

pytestmark = pytest.mark.unit


@pytest.fixture
def dispatch_log(engine, monkeypatch):
    """Record the order in which the engine is asked to sanitize."""
    log = []
    original = engine.sanitize_async

    async def recording(content, *args, **kwargs):
        log.append(content)
        return await original(content, *args, **kwargs)

    monkeypatch.setattr(engine, 'sanitize_async', recording)
    return log


class TestQueueOrdering:

    def test_sort_key_orders_by_priority_then_arrival(self):
        def request(priority, enqueued_at, sequence):
            return ScheduledRequest(
                content='x', options=None, content_type=ContentType.GENERAL,
                priority=priority, enqueued_at=enqueued_at, sequence=sequence, future=None,
            )

        late_high = request(3, 2.0, 2)
        early_low = request(1, 1.0, 0)
        early_high = request(3, 1.0, 1)

        ordered = sorted([early_low, late_high, early_high], key=ScheduledRequest.sort_key)

        assert ordered == [early_high, late_high, early_low]
        assert early_high.sort_key() == (-3, 1.0, 1)

    async def test_higher_priority_drains_first(self, scheduler, dispatch_log):
        results = await asyncio.gather(
            scheduler.submit('low', priority=1),
            scheduler.submit('high', priority=3),
            scheduler.submit('mid', priority=2),
        )

        assert [r.sanitized_content for r in results] == ['low', 'high', 'mid']
        assert dispatch_log == ['high', 'mid', 'low']

    async def test_equal_priority_keeps_submission_order(self, scheduler, dispatch_log):
        await asyncio.gather(*(scheduler.submit(f'item-{i}', priority=2) for i in range(4)))
        assert dispatch_log == ['item-0', 'item-1', 'item-2', 'item-3']

    async def test_batch_results_keep_item_order(self, scheduler):
        results = await scheduler.batch_sanitize([
            'first',
            {'content': 'sec<script>x</script>ond', 'content_type': ContentType.GENERAL, 'priority': 4},
            'third',
        ])

        assert [r.sanitized_content for r in results] == ['first', 'second', 'third']
        assert len(results[1].violations) == 1


class TestDispatchPaths:

    async def test_high_priority_skips_the_queue(self, scheduler, dispatch_log):
        result = await scheduler.submit('<div onclick="x">urgent</div>', priority=5)

        assert result.sanitized_content == 'urgent'
        assert dispatch_log == ['<div onclick="x">urgent</div>']
        assert scheduler.get_queue_stats()['window_open'] is False

    async def test_cached_content_returns_without_dispatch(self, scheduler, engine, dispatch_log):
        engine.sanitize('already seen')

        result = await scheduler.submit('already seen')

        assert result.sanitized_content == 'already seen'
        assert dispatch_log == []

    async def test_full_batch_drains_before_window_closes(self, engine):
        lazy = LazySanitizationScheduler(engine, BatchSettings(max_batch_size=3, debounce_ms=60_000.0))
        try:
            results = await asyncio.wait_for(
                asyncio.gather(*(lazy.submit(f'n{i}') for i in range(3))),
                timeout=2.0,
            )
            assert [r.sanitized_content for r in results] == ['n0', 'n1', 'n2']
        finally:
            await lazy.destroy()

    async def test_non_string_input(self, scheduler):
        result = await scheduler.submit(None)
        assert result.sanitized_content == ''
        assert result.is_valid


class TestCancellation:

    async def test_clear_queue_rejects_pending_requests(self, scheduler, sanitization_metrics):
        pending = [asyncio.ensure_future(scheduler.submit(f'queued-{i}')) for i in range(2)]
        await asyncio.sleep(0)

        assert scheduler.clear_queue() == 2

        for future in pending:
            with pytest.raises(SanitizationCancelledError) as exc_info:
                await future
            assert exc_info.value.error_code == 'SANITIZATION_CANCELLED'
        assert sanitization_metrics.summary()['cancelled'] == 2.0

    async def test_clear_empty_queue(self, scheduler):
        assert scheduler.clear_queue() == 0

    async def test_submit_after_destroy_raises(self, engine):
        lazy = LazySanitizationScheduler(engine)
        await lazy.destroy()

        with pytest.raises(SanitizationCancelledError):
            await lazy.submit('late')


class TestQueueStats:

    async def test_stats_reflect_pending_work(self, scheduler):
        pending = asyncio.ensure_future(scheduler.submit('waiting', priority=2))
        await asyncio.sleep(0)

        stats = scheduler.get_queue_stats()

        assert stats['pending'] == 1
        assert stats['average_priority'] == 2.0
        assert stats['window_open'] is True
        assert stats['settings']['max_batch_size'] == 10

        scheduler.clear_queue()
        with pytest.raises(SanitizationCancelledError):
            await pending

    async def test_idle_stats(self, scheduler):
        stats = scheduler.get_queue_stats()
        assert stats['pending'] == 0
        assert stats['oldest_pending_age_ms'] == 0.0

    async def test_update_settings(self, scheduler):
        scheduler.update_settings(priority_threshold=2)

        result = await scheduler.submit('now', priority=2)

        assert result.sanitized_content == 'now'
        assert scheduler.get_queue_stats()['pending'] == 0
