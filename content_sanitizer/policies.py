"""
Security Policy Store

Holds one SanitizePolicy per content type together with the risk and
performance thresholds, validates proposed changes, and publishes an
invalidation signal to subscribers (the result cache) whenever a policy
changes.

Key Features:
- Safe default policies for every content type
- Side-effect free validation returning errors, warnings and recommendations
- Per-content-type version counter bumped on every successful update
- Subscriber callbacks notified with the affected content type, or None when
  every policy was replaced at once (reset_to_defaults)
- Risk level calculation from a list of violations
"""

import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

import structlog
from pydantic import ValidationError

from content_sanitizer.models import (
    ContentType,
    PerformanceThresholds,
    PolicyValidationResult,
    RiskLevel,
    RiskThresholds,
    SanitizeOptions,
    SanitizePolicy,
    Severity,
    Violation,
)

logger = structlog.get_logger(__name__)

PolicySubscriber = Callable[[Optional[ContentType]], None]
PolicyPartial = Union[Mapping[str, Any], SanitizeOptions]

# Tags that can execute script or change how the document loads resources.
NEVER_ALLOWED_TAGS = frozenset({
    'script', 'iframe', 'frame', 'frameset', 'object', 'embed', 'applet',
    'base', 'meta', 'link', 'style', 'svg', 'math', 'template',
})

NEVER_ALLOWED_ATTRIBUTES = frozenset({'srcdoc', 'formaction'})

DANGEROUS_SCHEMES = frozenset({'javascript', 'vbscript', 'data'})

RECOMMENDED_FORBIDDEN_EVENTS = ('onclick', 'onload', 'onerror', 'onmouseover')

MAX_RECOMMENDED_TAGS = 20

_POLICY_FIELDS = frozenset(SanitizePolicy.model_fields) - {'content_type', 'version'}

_BASE_FORBIDDEN_TAGS = (
    'script', 'object', 'embed', 'link', 'style', 'img', 'video', 'audio',
    'iframe', 'frame', 'frameset', 'applet', 'base', 'meta', 'title',
)

_BASE_FORBIDDEN_ATTRIBUTES = (
    'onclick', 'onload', 'onerror', 'onmouseover', 'onmouseout', 'onfocus',
    'onblur', 'onchange', 'onsubmit', 'onreset', 'onselect', 'onkeydown',
    'onkeypress', 'onkeyup', 'style', 'background', 'src', 'href',
)


def default_policies() -> Dict[ContentType, SanitizePolicy]:
    """Build the default policy set, one entry per content type."""
    return {
        ContentType.USER_PROFILE: SanitizePolicy(
            content_type=ContentType.USER_PROFILE,
            allowed_tags=('b', 'i', 'em', 'strong', 'u', 's', 'br', 'p', 'span'),
            allowed_attributes_by_tag={'span': ('class',), 'p': ('class',)},
            allowed_uri_schemes=('http', 'https'),
            forbidden_tags=_BASE_FORBIDDEN_TAGS,
            forbidden_attributes=_BASE_FORBIDDEN_ATTRIBUTES,
        ),
        ContentType.PET_CARD_METADATA: SanitizePolicy(
            content_type=ContentType.PET_CARD_METADATA,
            allowed_tags=('b', 'i', 'em', 'strong', 'u', 'br', 'span'),
            allowed_attributes_by_tag={'span': ('class',)},
            allowed_uri_schemes=(),
            forbidden_tags=_BASE_FORBIDDEN_TAGS + ('p', 'div'),
            forbidden_attributes=_BASE_FORBIDDEN_ATTRIBUTES + ('id',),
        ),
        ContentType.COMMENT: SanitizePolicy(
            content_type=ContentType.COMMENT,
            allowed_tags=('b', 'i', 'em', 'strong', 'u', 's', 'br', 'p', 'span', 'blockquote'),
            allowed_attributes_by_tag={
                'span': ('class',),
                'p': ('class',),
                'blockquote': ('class',),
            },
            allowed_uri_schemes=('http', 'https'),
            forbidden_tags=_BASE_FORBIDDEN_TAGS,
            forbidden_attributes=_BASE_FORBIDDEN_ATTRIBUTES,
        ),
        ContentType.SOCIAL_SHARING: SanitizePolicy(
            content_type=ContentType.SOCIAL_SHARING,
            allowed_tags=(),
            allowed_attributes_by_tag={},
            allowed_uri_schemes=(),
            forbidden_tags=_BASE_FORBIDDEN_TAGS + (
                'b', 'i', 'em', 'strong', 'u', 's', 'br', 'p', 'span', 'div',
            ),
            forbidden_attributes=_BASE_FORBIDDEN_ATTRIBUTES + ('class', 'id'),
        ),
        ContentType.GENERAL: SanitizePolicy(
            content_type=ContentType.GENERAL,
            allowed_tags=('b', 'i', 'em', 'strong', 'u', 'br'),
            allowed_attributes_by_tag={},
            allowed_uri_schemes=(),
            forbidden_tags=_BASE_FORBIDDEN_TAGS,
            forbidden_attributes=_BASE_FORBIDDEN_ATTRIBUTES + ('class', 'id'),
        ),
    }


def _partial_to_dict(partial: Optional[PolicyPartial]) -> Dict[str, Any]:
    if partial is None:
        return {}
    if isinstance(partial, SanitizeOptions):
        return partial.overrides()
    return dict(partial)


class PolicyStore:
    """
    Per-content-type policy registry with versioning and change notification.

    Reads return immutable SanitizePolicy instances, so callers can hold on to
    them without copying. All mutation happens under a single lock.
    """

    def __init__(
        self,
        policies: Optional[Mapping[ContentType, SanitizePolicy]] = None,
        risk_thresholds: Optional[RiskThresholds] = None,
        performance_thresholds: Optional[PerformanceThresholds] = None,
    ):
        self._lock = threading.RLock()
        self._policies: Dict[ContentType, SanitizePolicy] = dict(policies or default_policies())
        self._risk_thresholds = risk_thresholds or RiskThresholds()
        self._performance_thresholds = performance_thresholds or PerformanceThresholds()
        self._subscribers: List[PolicySubscriber] = []
        self.last_updated = datetime.now(timezone.utc)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, content_type: Optional[Union[ContentType, str]] = None) -> SanitizePolicy:
        """Return the policy for a content type, falling back to the general policy."""
        ct = ContentType.normalize(content_type)
        with self._lock:
            policy = self._policies.get(ct)
            if policy is None:
                policy = self._policies.get(ContentType.GENERAL) or default_policies()[ContentType.GENERAL]
            return policy

    def version_of(self, content_type: Optional[Union[ContentType, str]] = None) -> int:
        return self.get(content_type).version

    def get_sanitize_options(self, content_type: Optional[Union[ContentType, str]] = None) -> SanitizeOptions:
        policy = self.get(content_type)
        return SanitizeOptions(
            allowed_tags=policy.allowed_tags,
            allowed_attributes_by_tag=policy.allowed_attributes_by_tag,
            allowed_uri_schemes=policy.allowed_uri_schemes,
            forbidden_tags=policy.forbidden_tags,
            forbidden_attributes=policy.forbidden_attributes,
            strip_unknown_tags=policy.strip_unknown_tags,
            keep_text_of_stripped_tags=policy.keep_text_of_stripped_tags,
            strip_body_tags=policy.strip_body_tags,
        )

    @property
    def risk_thresholds(self) -> RiskThresholds:
        return self._risk_thresholds

    @property
    def performance_thresholds(self) -> PerformanceThresholds:
        return self._performance_thresholds

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view of the active configuration."""
        with self._lock:
            return {
                'last_updated': self.last_updated.isoformat(),
                'policies': {ct.value: p.model_dump(mode='json') for ct, p in self._policies.items()},
                'risk_thresholds': self._risk_thresholds.model_dump(),
                'performance_thresholds': self._performance_thresholds.model_dump(),
            }

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(
        self,
        partial: Optional[PolicyPartial],
        content_type: Optional[Union[ContentType, str]] = None,
    ) -> PolicyValidationResult:
        """
        Validate a partial policy without applying it.

        Args:
            partial: Policy fields to change
            content_type: When given, warnings are computed against the policy
                that would result from merging the partial into this type

        Returns:
            PolicyValidationResult with errors, warnings and recommendations
        """
        fields = _partial_to_dict(partial)
        context = ContentType.normalize(content_type).value if content_type is not None else 'policy'

        errors: List[str] = []
        warnings: List[str] = []
        recommendations: List[str] = []

        unknown = sorted(set(fields) - _POLICY_FIELDS)
        for name in unknown:
            errors.append(f"{context}: unknown policy field '{name}'")

        candidate: Optional[SanitizePolicy] = None
        if not unknown:
            base = self.get(content_type) if content_type is not None else SanitizePolicy()
            try:
                candidate = base.model_copy(update={}) if not fields else SanitizePolicy(
                    **{**base.model_dump(), **fields}
                )
            except ValidationError as exc:
                for err in exc.errors():
                    location = '.'.join(str(part) for part in err['loc'])
                    errors.append(f"{context}: invalid value for '{location}': {err['msg']}")

        if candidate is not None:
            self._check_policy(candidate, fields, context, errors, warnings, recommendations)

        return PolicyValidationResult.from_lists(errors, warnings, recommendations)

    @staticmethod
    def _check_policy(
        policy: SanitizePolicy,
        changed: Mapping[str, Any],
        context: str,
        errors: List[str],
        warnings: List[str],
        recommendations: List[str],
    ) -> None:
        if 'allowed_tags' in changed:
            for tag in policy.allowed_tags:
                if tag in NEVER_ALLOWED_TAGS:
                    errors.append(f"{context}: '{tag}' tag should never be allowed")

        if 'allowed_attributes_by_tag' in changed:
            for tag, attributes in policy.allowed_attributes_by_tag.items():
                for attribute in attributes:
                    if attribute.startswith('on') or attribute in NEVER_ALLOWED_ATTRIBUTES:
                        errors.append(
                            f"{context}: script-capable attribute '{attribute}' allowed on '{tag}'"
                        )

        if 'allowed_uri_schemes' in changed:
            for scheme in policy.allowed_uri_schemes:
                if scheme.rstrip(':') in DANGEROUS_SCHEMES:
                    errors.append(f"{context}: URI scheme '{scheme}' should never be allowed")

        missing_events = [
            event for event in RECOMMENDED_FORBIDDEN_EVENTS
            if event not in policy.forbidden_attributes
        ]
        if missing_events:
            warnings.append(
                f"{context}: Consider forbidding event attributes: {', '.join(missing_events)}"
            )

        if len(policy.allowed_tags) > MAX_RECOMMENDED_TAGS:
            recommendations.append(
                f"{context}: Large number of allowed tags may impact performance"
            )

    @staticmethod
    def validate_thresholds(
        risk: Optional[Mapping[str, float]] = None,
        performance: Optional[Mapping[str, Any]] = None,
        base_risk: Optional[RiskThresholds] = None,
    ) -> PolicyValidationResult:
        errors: List[str] = []
        warnings: List[str] = []

        if risk:
            merged = {**(base_risk or RiskThresholds()).model_dump(), **dict(risk)}
            for lower, higher in (('low', 'medium'), ('medium', 'high'), ('high', 'critical')):
                if merged[lower] >= merged[higher]:
                    errors.append(f"Risk threshold: {lower} must be less than {higher}")

        if performance:
            perf = dict(performance)
            if perf.get('max_processing_time_ms') is not None and perf['max_processing_time_ms'] < 10:
                warnings.append('Performance: max_processing_time_ms is very low, may cause timeouts')
            if perf.get('max_content_length') is not None and perf['max_content_length'] < 100:
                warnings.append('Performance: max_content_length is very low, may reject valid content')
            if perf.get('max_concurrent_requests') is not None and perf['max_concurrent_requests'] < 1:
                errors.append('Performance: max_concurrent_requests must be at least 1')

        return PolicyValidationResult.from_lists(errors, warnings, [])

    def validate_configuration(self) -> PolicyValidationResult:
        """Validate every active policy and threshold set."""
        errors: List[str] = []
        warnings: List[str] = []
        recommendations: List[str] = []

        with self._lock:
            policies = dict(self._policies)
            risk = self._risk_thresholds
            performance = self._performance_thresholds

        everything = set(_POLICY_FIELDS)
        for ct, policy in policies.items():
            self._check_policy(policy, dict.fromkeys(everything), ct.value, errors, warnings, recommendations)

        thresholds = self.validate_thresholds(risk.model_dump(), performance.model_dump())
        errors.extend(thresholds.errors)
        warnings.extend(thresholds.warnings)

        return PolicyValidationResult.from_lists(errors, warnings, recommendations)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def update(
        self,
        content_type: Union[ContentType, str],
        partial: PolicyPartial,
    ) -> PolicyValidationResult:
        """
        Merge a partial policy into the policy for a content type.

        A valid update bumps the policy version and notifies subscribers with
        the content type. An invalid update changes nothing.
        """
        ct = ContentType.normalize(content_type)
        fields = _partial_to_dict(partial)

        with self._lock:
            result = self.validate(fields, ct)
            if not result.is_valid:
                logger.warning(
                    "Policy update rejected",
                    content_type=ct.value,
                    errors=list(result.errors),
                )
                return result

            current = self.get(ct)
            updated = SanitizePolicy(**{
                **current.model_dump(),
                **fields,
                'content_type': ct,
                'version': current.version + 1,
            })
            self._policies[ct] = updated
            self.last_updated = datetime.now(timezone.utc)

        logger.info(
            "Policy updated",
            content_type=ct.value,
            version=updated.version,
            changed_fields=sorted(fields),
        )
        self._publish(ct)
        return result

    def update_thresholds(
        self,
        risk: Optional[Mapping[str, float]] = None,
        performance: Optional[Mapping[str, Any]] = None,
    ) -> PolicyValidationResult:
        with self._lock:
            result = self.validate_thresholds(risk, performance, self._risk_thresholds)
            if not result.is_valid:
                return result
            if risk:
                self._risk_thresholds = RiskThresholds(**{**self._risk_thresholds.model_dump(), **dict(risk)})
            if performance:
                self._performance_thresholds = PerformanceThresholds(
                    **{**self._performance_thresholds.model_dump(), **dict(performance)}
                )
            self.last_updated = datetime.now(timezone.utc)

        logger.info(
            "Thresholds updated",
            risk_changed=bool(risk),
            performance_changed=bool(performance),
        )
        return result

    def reset_to_defaults(self) -> None:
        """Restore the default policies; versions keep increasing."""
        with self._lock:
            defaults = default_policies()
            for ct, policy in defaults.items():
                previous = self._policies.get(ct)
                next_version = (previous.version + 1) if previous else policy.version
                self._policies[ct] = policy.model_copy(update={'version': next_version})
            self._risk_thresholds = RiskThresholds()
            self._performance_thresholds = PerformanceThresholds()
            self.last_updated = datetime.now(timezone.utc)

        logger.info("Policies reset to defaults")
        self._publish(None)

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, callback: PolicySubscriber) -> Callable[[], None]:
        """Register a change callback and return a function that removes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, content_type: Optional[ContentType]) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(content_type)
            except Exception:
                logger.exception(
                    "Policy subscriber failed",
                    content_type=content_type.value if content_type else None,
                )

    # ------------------------------------------------------------------
    # Risk
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_risk_level(violations: Sequence[Violation]) -> RiskLevel:
        if not violations:
            return RiskLevel.LOW
        highest = max((v.severity for v in violations), key=lambda s: s.rank)
        return {
            Severity.CRITICAL: RiskLevel.CRITICAL,
            Severity.HIGH: RiskLevel.HIGH,
            Severity.MEDIUM: RiskLevel.MEDIUM,
            Severity.LOW: RiskLevel.LOW,
        }[highest]


__all__ = [
    'PolicyStore',
    'PolicySubscriber',
    'default_policies',
    'NEVER_ALLOWED_TAGS',
    'NEVER_ALLOWED_ATTRIBUTES',
    'DANGEROUS_SCHEMES',
]
