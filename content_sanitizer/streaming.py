"""
Streaming sanitization for oversized content.

Content at or below the chunk size goes straight to the engine. Larger
content is cut into ordered chunks at whitespace near the target size,
avoiding cuts inside a tag or a script/style element. Each chunk is
sanitized strictly in order with a cooperative yield between chunks. A
failing chunk aborts the whole stream; partial output is never returned.
"""

import asyncio
import time
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

import structlog

from content_sanitizer.cleaner import body_block_pattern
from content_sanitizer.config.settings import StreamingSettings
from content_sanitizer.engine import SanitizationEngine
from content_sanitizer.exceptions import StreamAbortedError
from content_sanitizer.models import (
    ContentType,
    SanitizedResult,
    SanitizeOptions,
    SanitizePolicy,
    Violation,
)
from content_sanitizer.monitoring.metrics import SanitizationMetrics

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[float, str], None]

DEFAULT_BODY_TAGS = SanitizePolicy.model_fields['strip_body_tags'].default


def _inside_tag(segment: str) -> bool:
    return segment.rfind('<') > segment.rfind('>')


class StreamingSanitizer:

    def __init__(
        self,
        engine: SanitizationEngine,
        settings: Optional[StreamingSettings] = None,
        metrics: Optional[SanitizationMetrics] = None,
    ):
        self.engine = engine
        self._settings = settings or StreamingSettings()
        self.metrics = metrics or engine.metrics

    @property
    def settings(self) -> StreamingSettings:
        return self._settings

    def update_settings(self, **changes: Any) -> StreamingSettings:
        self._settings = self._settings.with_changes(**changes)
        return self._settings

    def _block_spans(self, content: str, start: int, end: int,
                     body_tags: Sequence[str]) -> List[Tuple[int, int]]:
        """Spans of strip-body elements (script, style) opening before ``end``."""
        if not body_tags:
            return []
        spans: List[Tuple[int, int]] = []
        for match in body_block_pattern(frozenset(body_tags)).finditer(content, start):
            if match.start() >= end:
                break
            spans.append(match.span())
        return spans

    def _boundary(self, content: str, start: int, body_tags: Sequence[str]) -> int:
        """Cut position for the chunk starting at ``start``."""
        size = self._settings.chunk_size
        end = start + size
        floor = start + max(1, int(size * self._settings.boundary_search_ratio))
        spans = self._block_spans(content, start, end, body_tags)

        def inside_block(cut: int) -> bool:
            return any(span_start < cut < span_end for span_start, span_end in spans)

        for cut in range(end, floor - 1, -1):
            if (content[cut - 1].isspace() and not _inside_tag(content[start:cut])
                    and not inside_block(cut)):
                return cut

        # A script or style element crosses the target size: cut in front of
        # it, or let the chunk run to its closing tag.
        for span_start, span_end in spans:
            if span_start < end < span_end:
                return span_start if span_start > start else span_end

        # No usable whitespace: at least avoid splitting an open tag.
        segment = content[start:end]
        if _inside_tag(segment):
            open_at = start + segment.rfind('<')
            if open_at > start:
                return open_at
        return end

    def split_into_chunks(self, content: str,
                          body_tags: Sequence[str] = DEFAULT_BODY_TAGS) -> List[str]:
        """
        Ordered chunks whose concatenation is exactly ``content``.

        No chunk boundary falls inside an element listed in ``body_tags``,
        so each script or style block is sanitized whole.
        """
        size = self._settings.chunk_size
        chunks: List[str] = []
        start = 0
        while start < len(content):
            if len(chunks) == self._settings.max_chunks - 1 or len(content) - start <= size:
                chunks.append(content[start:])
                break
            cut = self._boundary(content, start, body_tags)
            chunks.append(content[start:cut])
            start = cut
        return chunks

    async def stream_sanitize(
        self,
        content: Any,
        options: Optional[SanitizeOptions] = None,
        content_type: Optional[Union[ContentType, str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SanitizedResult:
        """
        Sanitize content chunk by chunk.

        Args:
            content: Untrusted input
            options: Call-level policy overrides
            content_type: Selects the base policy
            on_progress: Called as on_progress(percent, sanitized_chunk) after each chunk

        Returns:
            Aggregate SanitizedResult, cached under the whole-content key

        Raises:
            StreamAbortedError: A chunk failed; carries the failing chunk index
        """
        ct = ContentType.normalize(content_type)
        if not isinstance(content, str) or len(content) <= self._settings.chunk_size:
            return self.engine.sanitize(content, options, ct)

        cached = self.engine.lookup_cached(content, options, ct)
        if cached is not None:
            return cached

        started = time.perf_counter()
        # one policy version for every chunk and for the cache key
        policy = self.engine.resolve_policy(options, ct)
        chunks = self.split_into_chunks(content, policy.strip_body_tags)
        sanitized_parts: List[str] = []
        removed: List[str] = []
        violations: List[Violation] = []
        processing_ms = 0.0

        logger.debug(
            "Streaming sanitization started",
            content_type=ct.value,
            input_length=len(content),
            chunk_count=len(chunks),
        )

        for index, chunk in enumerate(chunks):
            try:
                result = self.engine.sanitize_strict(chunk, options, ct, policy=policy)
            except Exception as e:
                self.metrics.record_stream_abort()
                logger.error(
                    "Streaming sanitization aborted",
                    chunk_index=index,
                    total_chunks=len(chunks),
                    error=str(e),
                    content_type=ct.value,
                )
                raise StreamAbortedError(
                    f"Chunk {index} of {len(chunks)} failed: {e}",
                    chunk_index=index,
                    total_chunks=len(chunks),
                    cause=e,
                ) from e

            sanitized_parts.append(result.sanitized_content)
            for name in result.removed_element_names:
                if name not in removed:
                    removed.append(name)
            violations.extend(result.violations)
            processing_ms += result.processing_time_ms
            self.metrics.record_stream_chunk(ct.value)

            if on_progress is not None:
                percent = (index + 1) * 100.0 / len(chunks)
                try:
                    on_progress(percent, result.sanitized_content)
                except Exception as e:
                    logger.warning("Progress callback failed", chunk_index=index, error=str(e))

            await asyncio.sleep(0)

        aggregate = SanitizedResult(
            sanitized_content=''.join(sanitized_parts),
            original_content=content,
            removed_element_names=tuple(removed),
            violations=tuple(violations),
            processing_time_ms=processing_ms,
        )
        current_version = self.engine.policy_store.version_of(ct)
        if current_version == policy.version:
            self.engine.store_cached(content, aggregate, options, ct, policy_version=policy.version)
        else:
            logger.info(
                "Policy changed during stream, aggregate not cached",
                content_type=ct.value,
                stream_policy_version=policy.version,
                current_policy_version=current_version,
            )

        logger.debug(
            "Streaming sanitization completed",
            content_type=ct.value,
            chunk_count=len(chunks),
            violations=len(violations),
            elapsed_ms=round((time.perf_counter() - started) * 1000.0, 3),
        )
        return aggregate


__all__ = ['StreamingSanitizer']
