"""
Violation detection for untrusted markup.

The detector is a heuristic signal layer: it reports what looked dangerous in
the raw input so it can be logged, scored and tested. The allow-list cleaner
is what actually makes output safe. Detection is pure; identical input always
yields identical violations in document order.
"""

import re
from collections import Counter
from typing import List, Tuple

import structlog

from content_sanitizer.models import Severity, Violation, ViolationKind

logger = structlog.get_logger(__name__)

# An unterminated script block runs to the end of the input.
SCRIPT_BLOCK = re.compile(r'<script\b[^>]*>.*?(?:</script\s*>|\Z)', re.IGNORECASE | re.DOTALL)

TAG = re.compile(r'<[a-zA-Z][^>]*>', re.DOTALL)
TAG_NAME = re.compile(r'</?([a-zA-Z][a-zA-Z0-9:-]*)')

EVENT_HANDLER_ATTRIBUTE = re.compile(r'[\s/"\'](on[a-zA-Z]+)\s*=', re.IGNORECASE)
SCRIPT_CAPABLE_ATTRIBUTE = re.compile(r'[\s/"\'](srcdoc|formaction)\s*=', re.IGNORECASE)

SCRIPT_URL = re.compile(r'\b(?:javascript|vbscript)\s*:', re.IGNORECASE)
HTML_DATA_URL = re.compile(r'\bdata\s*:\s*text/html', re.IGNORECASE)

SUSPICIOUS_PATTERNS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r'<iframe\b', re.IGNORECASE), 'Embedded frame element'),
    (re.compile(r'<object\b', re.IGNORECASE), 'Embedded object element'),
    (re.compile(r'<embed\b', re.IGNORECASE), 'Embedded plugin element'),
    (re.compile(r'<style\b', re.IGNORECASE), 'Inline stylesheet block'),
    (re.compile(r'expression\s*\(', re.IGNORECASE), 'CSS expression'),
)

CLOBBERING_ATTRIBUTE = re.compile(
    r'[\s/"\'](?:id|name)\s*=\s*["\']?(constructor|prototype|__proto__|attributes|children|'
    r'submit|action|location|document|window|cookie|domain|body|forms|images|links|'
    r'defaultview|innerhtml|nodetype)\b',
    re.IGNORECASE,
)

PROTOTYPE_POLLUTION = re.compile(
    r'__proto__|constructor\s*(?:\.\s*|\[\s*["\'])prototype',
    re.IGNORECASE,
)


def _violation(kind: ViolationKind, matched: str, severity: Severity, description: str) -> Violation:
    return Violation(kind=kind, matched_text=matched, severity=severity, description=description)


class ViolationDetector:
    """Pattern-based analysis of raw content before cleaning."""

    def analyze(self, content: str) -> List[Violation]:
        """
        Scan raw content for dangerous patterns.

        Args:
            content: Untrusted input, before any cleaning

        Returns:
            Violations in document order (by match position)
        """
        if not content:
            return []

        found: List[Tuple[int, int, Violation]] = []

        def add(position: int, order: int, violation: Violation) -> None:
            found.append((position, order, violation))

        for match in SCRIPT_BLOCK.finditer(content):
            add(match.start(), 0, _violation(
                ViolationKind.SCRIPT_TAG,
                match.group(0),
                Severity.CRITICAL,
                'Script block detected',
            ))

        for tag in TAG.finditer(content):
            markup = tag.group(0)
            for match in EVENT_HANDLER_ATTRIBUTE.finditer(markup):
                add(tag.start() + match.start(1), 1, _violation(
                    ViolationKind.DANGEROUS_ATTRIBUTE,
                    match.group(1),
                    Severity.HIGH,
                    f'Inline event handler attribute: {match.group(1).lower()}',
                ))
            for match in SCRIPT_CAPABLE_ATTRIBUTE.finditer(markup):
                add(tag.start() + match.start(1), 1, _violation(
                    ViolationKind.DANGEROUS_ATTRIBUTE,
                    match.group(1),
                    Severity.HIGH,
                    f'Script-capable attribute: {match.group(1).lower()}',
                ))
            for match in CLOBBERING_ATTRIBUTE.finditer(markup):
                add(tag.start() + match.start(), 4, _violation(
                    ViolationKind.DOM_CLOBBERING,
                    match.group(0).strip(' /"\''),
                    Severity.LOW,
                    f'Element id/name shadows a DOM property: {match.group(1)}',
                ))

        for match in SCRIPT_URL.finditer(content):
            add(match.start(), 2, _violation(
                ViolationKind.MALICIOUS_URL,
                match.group(0),
                Severity.HIGH,
                'Script URL scheme',
            ))

        for match in HTML_DATA_URL.finditer(content):
            add(match.start(), 2, _violation(
                ViolationKind.MALICIOUS_URL,
                match.group(0),
                Severity.CRITICAL,
                'HTML data URL',
            ))

        for pattern, description in SUSPICIOUS_PATTERNS:
            for match in pattern.finditer(content):
                add(match.start(), 3, _violation(
                    ViolationKind.SUSPICIOUS_PATTERN,
                    match.group(0),
                    Severity.MEDIUM,
                    f'Detected suspicious pattern: {description}',
                ))

        for match in PROTOTYPE_POLLUTION.finditer(content):
            add(match.start(), 5, _violation(
                ViolationKind.PROTOTYPE_POLLUTION,
                match.group(0),
                Severity.MEDIUM,
                'Prototype pollution token',
            ))

        found.sort(key=lambda item: (item[0], item[1]))
        violations = [item[2] for item in found]

        if violations:
            logger.debug(
                "Violations detected",
                violation_count=len(violations),
                kinds=sorted({v.kind.value for v in violations}),
            )
        return violations

    @staticmethod
    def tag_names(markup: str) -> List[str]:
        return [name.lower() for name in TAG_NAME.findall(markup)]

    def detect_removed(self, original: str, cleaned: str) -> Tuple[str, ...]:
        """
        Tag names whose occurrences dropped between original and cleaned markup.

        Returns:
            Unique tag names in order of first appearance in the original
        """
        original_names = self.tag_names(original or '')
        remaining = Counter(self.tag_names(cleaned or ''))
        counts = Counter(original_names)

        removed: List[str] = []
        for name in original_names:
            if counts[name] > remaining.get(name, 0) and name not in removed:
                removed.append(name)
        return tuple(removed)


__all__ = ['ViolationDetector', 'SCRIPT_BLOCK']
