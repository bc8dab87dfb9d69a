"""
Field sanitizers for user profiles and pet-card metadata.

Display names get a stricter treatment than other profile text: a hard
length cap, only b/i/em/strong formatting, and extra checks on the visible
name for administrative terms, literal angle brackets and script-capable
URL schemes. Bios and pet-card fields run under their content type policy.

Each call returns the sanitized record together with per-field results and
a summary (violation count, fields that changed, overall risk, recommended
action).
"""

import html
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

import structlog
from pydantic import Field

from content_sanitizer.engine import SanitizationEngine, recommended_action
from content_sanitizer.exceptions import InputValidationError
from content_sanitizer.models import (
    ContentType,
    RecommendedAction,
    RiskLevel,
    SanitizedResult,
    SanitizeOptions,
    SanitizerModel,
    SecurityEventContext,
    Severity,
    Violation,
    ViolationKind,
)

logger = structlog.get_logger(__name__)

PROFILE_VERSION = "1.0.0"
MAX_DISPLAY_NAME_LENGTH = 50
MAX_BIO_LENGTH = 500

DISPLAY_NAME_OPTIONS = SanitizeOptions(
    allowed_tags=('b', 'i', 'em', 'strong'),
    allowed_attributes_by_tag={},
    strip_unknown_tags=True,
    keep_text_of_stripped_tags=True,
)

_DISPLAY_NAME_CHECKS: Tuple[Tuple[re.Pattern, Severity, str], ...] = (
    (re.compile(r'\b(?:administrator|admin|moderator|mod)\b', re.I), Severity.MEDIUM,
     'contains administrative terms'),
    (re.compile(r'[<>]'), Severity.HIGH, 'contains HTML brackets'),
    (re.compile(r'(?:javascript|vbscript|data):', re.I), Severity.CRITICAL,
     'contains dangerous URL schemes'),
)

_TAGS = re.compile(r'<[^>]*>')
_WHITESPACE = re.compile(r'\s+')

PET_CARD_TEXT_FIELDS = ('pet_name', 'breed', 'description')


class SanitizationSummary(SanitizerModel):
    violations_count: int = 0
    sanitized_fields: Tuple[str, ...] = ()
    risk_level: RiskLevel = RiskLevel.LOW
    recommended_action: RecommendedAction = RecommendedAction.ALLOW
    profile_version: str = PROFILE_VERSION
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SanitizedRecord(SanitizerModel):
    """A sanitized record plus the per-field results it was built from."""

    record: Dict[str, Any]
    field_results: Dict[str, Tuple[SanitizedResult, ...]]
    summary: SanitizationSummary

    @property
    def has_violations(self) -> bool:
        return self.summary.violations_count > 0


def _visible_name(markup: str) -> str:
    return html.unescape(_TAGS.sub('', markup))


def display_name_violations(sanitized_name: str) -> List[Violation]:
    """Extra checks on the visible text of an already sanitized display name."""
    visible = _visible_name(sanitized_name)
    violations: List[Violation] = []
    for pattern, severity, description in _DISPLAY_NAME_CHECKS:
        for match in pattern.finditer(visible):
            violations.append(Violation(
                kind=ViolationKind.SUSPICIOUS_PATTERN,
                matched_text=match.group(0),
                severity=severity,
                description=f'Display name {description}: {match.group(0)}',
            ))
    return violations


class ProfileSanitizer:
    """Record-level sanitization on top of the engine."""

    def __init__(self, engine: SanitizationEngine):
        self.engine = engine

    def sanitize_display_name(self, display_name: Any,
                              context: Optional[SecurityEventContext] = None) -> SanitizedResult:
        """
        Sanitize a display name.

        Raises:
            InputValidationError: Missing, empty or longer than 50 characters
        """
        if not isinstance(display_name, str):
            raise InputValidationError('Display name is required and must be a string',
                                       field='display_name')
        trimmed = display_name.strip()
        if not trimmed:
            raise InputValidationError('Display name cannot be empty', field='display_name')
        if len(trimmed) > MAX_DISPLAY_NAME_LENGTH:
            raise InputValidationError(
                f'Display name cannot exceed {MAX_DISPLAY_NAME_LENGTH} characters',
                field='display_name',
                details={'length': len(trimmed)},
            )

        result = self.engine.sanitize(trimmed, DISPLAY_NAME_OPTIONS, ContentType.USER_PROFILE, context)
        # stripped block tags leave line breaks behind; a name is one line
        collapsed = _WHITESPACE.sub(' ', result.sanitized_content).strip()
        if collapsed != result.sanitized_content:
            result = result.model_copy(update={'sanitized_content': collapsed})

        extra = display_name_violations(result.sanitized_content)
        if not extra:
            return result
        return result.model_copy(update={'violations': result.violations + tuple(extra)})

    def sanitize_bio(self, bio: Any, context: Optional[SecurityEventContext] = None) -> SanitizedResult:
        if not isinstance(bio, str) or not bio:
            return SanitizedResult.empty(bio if isinstance(bio, str) else '')
        trimmed = bio.strip()
        if len(trimmed) > MAX_BIO_LENGTH:
            raise InputValidationError(
                f'Bio cannot exceed {MAX_BIO_LENGTH} characters',
                field='bio',
                details={'length': len(trimmed)},
            )
        return self.engine.sanitize(trimmed, content_type=ContentType.USER_PROFILE, context=context)

    def sanitize_user_profile(self, profile: Mapping[str, Any],
                              context: Optional[SecurityEventContext] = None) -> SanitizedRecord:
        """
        Sanitize ``display_name`` (required) and ``bio`` (optional) of a profile.

        Other keys are copied through untouched.
        """
        results: Dict[str, Tuple[SanitizedResult, ...]] = {
            'display_name': (self.sanitize_display_name(profile.get('display_name'), context),),
        }
        if profile.get('bio'):
            results['bio'] = (self.sanitize_bio(profile['bio'], context),)

        record = dict(profile)
        for field, field_results in results.items():
            record[field] = field_results[0].sanitized_content
        return self._build(record, results, changed=self._changed(results))

    def sanitize_pet_card_metadata(self, metadata: Mapping[str, Any],
                                   context: Optional[SecurityEventContext] = None) -> SanitizedRecord:
        """Sanitize pet name, breed, description and every custom tag."""
        results: Dict[str, Tuple[SanitizedResult, ...]] = {}
        record = dict(metadata)

        for field in PET_CARD_TEXT_FIELDS:
            value = metadata.get(field)
            if isinstance(value, str) and value:
                result = self.engine.sanitize(value, content_type=ContentType.PET_CARD_METADATA, context=context)
                results[field] = (result,)
                record[field] = result.sanitized_content

        tags = metadata.get('custom_tags')
        if isinstance(tags, (list, tuple)):
            tag_results = tuple(
                self.engine.sanitize(tag, content_type=ContentType.PET_CARD_METADATA, context=context)
                for tag in tags
            )
            results['custom_tags'] = tag_results
            record['custom_tags'] = [r.sanitized_content for r in tag_results]

        return self._build(record, results, changed=self._changed(results))

    @staticmethod
    def _changed(results: Mapping[str, Tuple[SanitizedResult, ...]]) -> Tuple[str, ...]:
        return tuple(
            field for field, field_results in results.items()
            if any(r.sanitized_content != r.original_content.strip() or r.violations for r in field_results)
        )

    def _build(self, record: Dict[str, Any], results: Dict[str, Tuple[SanitizedResult, ...]],
               changed: Tuple[str, ...]) -> SanitizedRecord:
        violations = [v for field_results in results.values() for r in field_results for v in r.violations]
        risk = self.engine.policy_store.calculate_risk_level(violations)
        summary = SanitizationSummary(
            violations_count=len(violations),
            sanitized_fields=changed,
            risk_level=risk,
            recommended_action=recommended_action(risk),
        )
        if violations:
            logger.info(
                "Record sanitized with violations",
                fields=list(changed),
                violations=len(violations),
                risk_level=risk.value,
            )
        return SanitizedRecord(record=record, field_results=results, summary=summary)


__all__ = [
    'MAX_BIO_LENGTH',
    'MAX_DISPLAY_NAME_LENGTH',
    'ProfileSanitizer',
    'SanitizationSummary',
    'SanitizedRecord',
    'display_name_violations',
]
