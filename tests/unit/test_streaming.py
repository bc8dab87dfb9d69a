"""Streaming sanitizer unit tests."""

import pytest

from content_sanitizer.config.settings import StreamingSettings
from content_sanitizer.engine import SanitizationEngine
from content_sanitizer.exceptions import StreamAbortedError
from content_sanitizer.models import ContentType, ViolationKind
from content_sanitizer.streaming import StreamingSanitizer

pytestmark = pytest.mark.unit

PARAGRAPH = '<p>hello <b>world</b> and all the pets in it</p> '


def _long_markup(blocks: int = 6) -> str:
    return ''.join(PARAGRAPH * 4 + '<script>alert(1)</script> ' for _ in range(blocks))


class TestChunking:

    def test_chunks_concatenate_to_input(self, streaming):
        content = _long_markup()
        chunks = streaming.split_into_chunks(content)

        assert len(chunks) > 1
        assert ''.join(chunks) == content

    def test_chunks_respect_size_and_tag_boundaries(self, streaming):
        chunks = streaming.split_into_chunks(PARAGRAPH * 30)

        for chunk in chunks[:-1]:
            assert 80 <= len(chunk) <= 100
            assert chunk.rfind('<') <= chunk.rfind('>')

    def test_chunk_count_is_capped(self, streaming):
        content = 'word ' * 2000

        chunks = streaming.split_into_chunks(content)

        assert len(chunks) == 50
        assert ''.join(chunks) == content

    def test_unbroken_text_is_cut_at_chunk_size(self, streaming):
        chunks = streaming.split_into_chunks('x' * 250)
        assert [len(c) for c in chunks] == [100, 100, 50]

    def test_script_block_crossing_chunk_size_stays_whole(self, streaming):
        content = (
            'word ' * 18 + '<script> var x = 1; ' + 'y ' * 10
            + "location = 'javascript:alert(document.cookie)'; </script> tail"
        )

        chunks = streaming.split_into_chunks(content)

        assert ''.join(chunks) == content
        assert chunks[0] == 'word ' * 18
        assert chunks[1].startswith('<script>')
        assert chunks[1].rstrip().endswith('</script>')

    def test_script_longer_than_a_chunk_gets_its_own_chunk(self, streaming):
        script = '<script>' + 'x = 1; ' * 30 + '</script>'
        content = 'intro ' + script + ' outro text'

        assert streaming.split_into_chunks(content) == ['intro ', script, ' outro text']


class TestStreamSanitize:

    async def test_short_content_matches_sanitize(self, streaming, engine):
        payload = 'Fluffy<script>alert(1)</script>'
        result = await streaming.stream_sanitize(payload, content_type=ContentType.GENERAL)
        assert result == engine.sanitize(payload, content_type=ContentType.GENERAL)

    async def test_no_dangerous_pattern_survives(self, streaming, engine):
        content = _long_markup()

        result = await streaming.stream_sanitize(content, content_type=ContentType.COMMENT)

        assert '<script' not in result.sanitized_content
        assert engine.detector.analyze(result.sanitized_content) == []
        assert [v.kind for v in result.violations] == [ViolationKind.SCRIPT_TAG] * 6
        assert result.original_content == content

    async def test_progress_is_reported_per_chunk(self, streaming):
        content = _long_markup()
        events = []

        result = await streaming.stream_sanitize(
            content,
            on_progress=lambda percent, chunk: events.append((percent, chunk)),
        )

        percents = [p for p, _ in events]
        assert percents == sorted(percents)
        assert percents[-1] == 100.0
        assert len(events) == len(streaming.split_into_chunks(content))
        assert ''.join(chunk for _, chunk in events) == result.sanitized_content

    async def test_failing_progress_callback_is_ignored(self, streaming):
        def broken(percent, chunk):
            raise RuntimeError("ui gone")

        result = await streaming.stream_sanitize(_long_markup(2), on_progress=broken)
        assert result.sanitized_content

    async def test_aggregate_is_cached(self, streaming, engine):
        content = _long_markup()

        result = await streaming.stream_sanitize(content, content_type=ContentType.GENERAL)

        assert engine.lookup_cached(content, None, ContentType.GENERAL) == result
        again = await streaming.stream_sanitize(content, content_type=ContentType.GENERAL)
        assert again is engine.lookup_cached(content, None, ContentType.GENERAL)

    async def test_failed_chunk_aborts_stream(self, policy_store, failing_cleaner, sanitization_metrics):
        fragile = SanitizationEngine(policy_store, cleaner=failing_cleaner, metrics=sanitization_metrics)
        chunker = StreamingSanitizer(fragile, StreamingSettings(chunk_size=100))
        content = 'safe text ' * 30 + 'BOOM ' + 'more text ' * 10

        with pytest.raises(StreamAbortedError) as exc_info:
            await chunker.stream_sanitize(content)

        error = exc_info.value
        assert error.chunk_index >= 2
        assert error.total_chunks == len(chunker.split_into_chunks(content))
        assert isinstance(error.cause, RuntimeError)
        assert sanitization_metrics.summary()['streams_aborted'] == 1.0
        assert fragile.lookup_cached(content) is None

    async def test_script_split_across_chunks_leaves_no_residue(self, streaming, engine):
        content = (
            'word ' * 18 + '<script> var x = 1; ' + 'y ' * 10
            + "location = 'javascript:alert(document.cookie)'; </script> tail"
        )

        result = await streaming.stream_sanitize(content, content_type=ContentType.COMMENT)

        assert 'javascript' not in result.sanitized_content
        assert engine.detector.analyze(result.sanitized_content) == []
        assert result.sanitized_content == engine.sanitize(
            content, content_type=ContentType.COMMENT, use_cache=False).sanitized_content

    async def test_policy_update_mid_stream_is_not_cached(self, streaming, engine, policy_store):
        content = '<b>bold</b> ' + 'word ' * 80

        def tighten(percent, chunk):
            if policy_store.version_of(ContentType.COMMENT) == 1:
                policy_store.update(ContentType.COMMENT, {'allowed_tags': ['i']})

        result = await streaming.stream_sanitize(content, content_type=ContentType.COMMENT, on_progress=tighten)

        # every chunk ran under the policy the stream started with
        assert result.sanitized_content == content
        assert policy_store.version_of(ContentType.COMMENT) == 2
        assert engine.lookup_cached(content, None, ContentType.COMMENT) is None
        assert '<b>' not in engine.sanitize(content, content_type=ContentType.COMMENT).sanitized_content
