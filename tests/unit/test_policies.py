"""
Policy Store Unit Tests

Covers default policies, side-effect free validation, versioned updates,
subscriber notification, threshold management and risk calculation.
"""

import pytest

from content_sanitizer.models import (
    ContentType,
    RiskLevel,
    SanitizeOptions,
    Severity,
    Violation,
    ViolationKind,
)
from content_sanitizer.policies import NEVER_ALLOWED_TAGS, PolicyStore, default_policies

pytestmark = pytest.mark.unit


def _violation(severity: Severity) -> Violation:
    return Violation(kind=ViolationKind.SUSPICIOUS_PATTERN, matched_text='x', severity=severity)


class TestDefaultPolicies:
    """Default policy set shipped for every content type."""

    def test_every_content_type_has_a_policy(self):
        policies = default_policies()
        assert set(policies) == set(ContentType)
        for content_type, policy in policies.items():
            assert policy.content_type is content_type
            assert policy.version == 1

    def test_defaults_never_allow_script_capable_tags(self):
        for policy in default_policies().values():
            assert not set(policy.allowed_tags) & NEVER_ALLOWED_TAGS
            assert 'script' in policy.forbidden_tags
            assert 'onclick' in policy.forbidden_attributes

    def test_social_sharing_allows_no_markup(self):
        assert default_policies()[ContentType.SOCIAL_SHARING].allowed_tags == ()

    def test_unknown_content_type_falls_back_to_general(self, policy_store):
        assert policy_store.get('not-a-type') == policy_store.get(ContentType.GENERAL)
        assert policy_store.get(None).content_type is ContentType.GENERAL

    def test_sanitize_options_mirror_policy(self, policy_store):
        options = policy_store.get_sanitize_options(ContentType.COMMENT)
        assert options.allowed_tags == policy_store.get(ContentType.COMMENT).allowed_tags
        assert 'blockquote' in options.allowed_tags

    def test_default_configuration_is_valid(self, policy_store):
        result = policy_store.validate_configuration()
        assert result.is_valid
        assert result.errors == ()


class TestPolicyValidation:
    """validate() reports problems without changing anything."""

    def test_never_allowed_tag_is_an_error(self, policy_store):
        result = policy_store.validate({'allowed_tags': ['b', 'script']}, ContentType.COMMENT)

        assert not result.is_valid
        assert any("'script' tag should never be allowed" in e for e in result.errors)
        assert policy_store.version_of(ContentType.COMMENT) == 1

    def test_event_handler_attribute_is_an_error(self, policy_store):
        result = policy_store.validate({'allowed_attributes_by_tag': {'span': ['onclick']}})
        assert not result.is_valid
        assert any("'onclick'" in e for e in result.errors)

    @pytest.mark.parametrize('scheme', ['javascript', 'vbscript', 'data'])
    def test_dangerous_scheme_is_an_error(self, policy_store, scheme):
        result = policy_store.validate({'allowed_uri_schemes': ['https', scheme]})
        assert not result.is_valid

    def test_unknown_field_is_an_error(self, policy_store):
        result = policy_store.validate({'allow_everything': True})
        assert not result.is_valid
        assert "unknown policy field 'allow_everything'" in result.errors[0]

    def test_missing_event_attributes_is_a_warning(self, policy_store):
        result = policy_store.validate({'forbidden_attributes': ['style']}, ContentType.GENERAL)

        assert result.is_valid
        assert any('onclick' in w for w in result.warnings)

    def test_many_tags_gives_recommendation(self, policy_store):
        tags = [f'x{i}' for i in range(25)]
        result = policy_store.validate({'allowed_tags': tags}, ContentType.COMMENT)

        assert result.is_valid
        assert any('Large number of allowed tags' in r for r in result.recommendations)

    def test_accepts_sanitize_options(self, policy_store):
        result = policy_store.validate(SanitizeOptions(allowed_tags=('b', 'iframe')))
        assert not result.is_valid


class TestPolicyUpdates:
    """Versioned updates and change notification."""

    def test_valid_update_bumps_version_and_merges(self, policy_store):
        result = policy_store.update(ContentType.COMMENT, {'allowed_tags': ['b', 'i']})

        assert result.is_valid
        policy = policy_store.get(ContentType.COMMENT)
        assert policy.version == 2
        assert policy.allowed_tags == ('b', 'i')
        assert policy.forbidden_tags == default_policies()[ContentType.COMMENT].forbidden_tags

    def test_invalid_update_changes_nothing(self, policy_store):
        before = policy_store.get(ContentType.COMMENT)
        result = policy_store.update(ContentType.COMMENT, {'allowed_tags': ['svg']})

        assert not result.is_valid
        assert policy_store.get(ContentType.COMMENT) == before

    def test_update_notifies_subscribers_with_content_type(self, policy_store):
        received = []
        policy_store.subscribe(received.append)

        policy_store.update(ContentType.PET_CARD_METADATA, {'allowed_tags': ['b']})

        assert received == [ContentType.PET_CARD_METADATA]

    def test_reset_notifies_none_and_keeps_versions_increasing(self, policy_store):
        received = []
        policy_store.update(ContentType.COMMENT, {'allowed_tags': ['b']})
        policy_store.subscribe(received.append)

        policy_store.reset_to_defaults()

        assert received == [None]
        assert policy_store.version_of(ContentType.COMMENT) == 3
        assert policy_store.get(ContentType.COMMENT).allowed_tags == \
            default_policies()[ContentType.COMMENT].allowed_tags

    def test_unsubscribe_stops_notifications(self, policy_store):
        received = []
        unsubscribe = policy_store.subscribe(received.append)
        unsubscribe()

        policy_store.update(ContentType.COMMENT, {'allowed_tags': ['b']})

        assert received == []

    def test_failing_subscriber_does_not_block_others(self, policy_store):
        received = []

        def broken(content_type):
            raise RuntimeError("subscriber failure")

        policy_store.subscribe(broken)
        policy_store.subscribe(received.append)

        result = policy_store.update(ContentType.COMMENT, {'allowed_tags': ['b']})

        assert result.is_valid
        assert received == [ContentType.COMMENT]

    def test_snapshot_is_serializable(self, policy_store):
        snapshot = policy_store.snapshot()
        assert snapshot['policies']['general']['content_type'] == 'general'
        assert snapshot['risk_thresholds']['low'] == 0.2


class TestThresholds:

    def test_out_of_order_risk_thresholds_rejected(self, policy_store):
        result = policy_store.update_thresholds(risk={'low': 0.6})

        assert not result.is_valid
        assert 'low must be less than medium' in result.errors[0]
        assert policy_store.risk_thresholds.low == 0.2

    def test_valid_threshold_update_applies(self, policy_store):
        result = policy_store.update_thresholds(
            risk={'critical': 0.99},
            performance={'max_processing_time_ms': 50.0},
        )

        assert result.is_valid
        assert policy_store.risk_thresholds.critical == 0.99
        assert policy_store.performance_thresholds.max_processing_time_ms == 50.0

    def test_low_performance_limits_warn(self):
        result = PolicyStore.validate_thresholds(performance={'max_processing_time_ms': 5})
        assert result.is_valid
        assert result.warnings

    def test_zero_concurrency_is_an_error(self):
        result = PolicyStore.validate_thresholds(performance={'max_concurrent_requests': 0})
        assert not result.is_valid


class TestRiskCalculation:

    def test_no_violations_is_low(self):
        assert PolicyStore.calculate_risk_level([]) is RiskLevel.LOW

    @pytest.mark.parametrize('severities, expected', [
        ([Severity.LOW], RiskLevel.LOW),
        ([Severity.LOW, Severity.MEDIUM], RiskLevel.MEDIUM),
        ([Severity.HIGH, Severity.MEDIUM], RiskLevel.HIGH),
        ([Severity.LOW, Severity.CRITICAL, Severity.HIGH], RiskLevel.CRITICAL),
    ])
    def test_highest_severity_drives_risk(self, severities, expected):
        violations = [_violation(s) for s in severities]
        assert PolicyStore.calculate_risk_level(violations) is expected
