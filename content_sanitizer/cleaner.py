"""
Markup cleaning primitive.

The engine depends on the Cleaner protocol only, so the bleach-backed
implementation can be swapped for a test double. Cleaning must be
deterministic: the same markup and policy always produce the same output.
"""

import re
from functools import lru_cache
from typing import Dict, FrozenSet, List, Protocol, runtime_checkable

import bleach
import structlog

from content_sanitizer.exceptions import CleaningError
from content_sanitizer.models import SanitizePolicy
from content_sanitizer.policies import DANGEROUS_SCHEMES, NEVER_ALLOWED_ATTRIBUTES

logger = structlog.get_logger(__name__)

PAIRED_ELEMENT = re.compile(r'<([a-zA-Z][a-zA-Z0-9-]*)\b[^>]*>.*?</\1\s*>', re.IGNORECASE | re.DOTALL)

# Bounded so adversarial nesting cannot loop forever.
MAX_BODY_STRIP_PASSES = 16


@runtime_checkable
class Cleaner(Protocol):
    def clean(self, markup: str, policy: SanitizePolicy) -> str:
        ...


@lru_cache(maxsize=32)
def body_block_pattern(tag_names: FrozenSet[str]) -> re.Pattern:
    """Matches a whole strip-body element, from its opening tag to its closing tag."""
    names = '|'.join(sorted(re.escape(name) for name in tag_names))
    # An unterminated block swallows the rest of the input.
    return re.compile(
        rf'<({names})\b[^>]*>.*?(?:</\1\s*>|\Z)',
        re.IGNORECASE | re.DOTALL,
    )


class BleachCleaner:
    """
    Allow-list cleaner built on bleach.

    Steps:
    1. Drop the bodies of strip_body_tags (script, style) entirely, repeating
       until nothing changes so split tags such as ``<scr<script>ipt>`` collapse.
    2. When keep_text_of_stripped_tags is off, drop the bodies of every paired
       element that is not allowed.
    3. Run bleach.clean with the allowed tags, per-tag attributes and URI
       schemes of the policy. Comments are always stripped.
    """

    def _strip_bodies(self, markup: str, tag_names: FrozenSet[str]) -> str:
        if not tag_names:
            return markup
        pattern = body_block_pattern(tag_names)
        for _ in range(MAX_BODY_STRIP_PASSES):
            stripped = pattern.sub('', markup)
            if stripped == markup:
                return stripped
            markup = stripped
        # Still changing after the bounded passes: treat the input as hostile.
        return ''

    @staticmethod
    def _drop_disallowed_bodies(markup: str, allowed: FrozenSet[str]) -> str:
        def replace(match: 're.Match[str]') -> str:
            return match.group(0) if match.group(1).lower() in allowed else ''

        for _ in range(MAX_BODY_STRIP_PASSES):
            stripped = PAIRED_ELEMENT.sub(replace, markup)
            if stripped == markup:
                break
            markup = stripped
        return markup

    @staticmethod
    def allowed_attributes(policy: SanitizePolicy, allowed_tags: FrozenSet[str]) -> Dict[str, List[str]]:
        forbidden = set(policy.forbidden_attributes) | NEVER_ALLOWED_ATTRIBUTES
        attributes: Dict[str, List[str]] = {}
        for tag, names in policy.allowed_attributes_by_tag.items():
            if tag not in allowed_tags:
                continue
            kept = [n for n in names if n not in forbidden and not n.startswith('on')]
            if kept:
                attributes[tag] = kept
        return attributes

    def clean(self, markup: str, policy: SanitizePolicy) -> str:
        allowed_tags = frozenset(policy.allowed_tags) - frozenset(policy.forbidden_tags)
        protocols = frozenset(policy.allowed_uri_schemes) - DANGEROUS_SCHEMES

        try:
            text = self._strip_bodies(markup, frozenset(policy.strip_body_tags))
            if not policy.keep_text_of_stripped_tags:
                text = self._drop_disallowed_bodies(text, allowed_tags)

            return bleach.clean(
                text,
                tags=allowed_tags,
                attributes=self.allowed_attributes(policy, allowed_tags),
                protocols=protocols,
                strip=policy.strip_unknown_tags,
                strip_comments=True,
            )
        except Exception as e:
            logger.error(
                "Markup cleaning failed",
                error=str(e),
                content_type=policy.content_type.value,
                input_length=len(markup),
            )
            raise CleaningError(f"Markup cleaning failed: {str(e)}", cause=e) from e


__all__ = ['Cleaner', 'BleachCleaner', 'body_block_pattern']
