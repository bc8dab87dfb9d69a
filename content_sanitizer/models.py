"""
Content Sanitization Data Models

Pydantic 2.x models shared by every layer of the sanitization pipeline: the
per-content-type policies, the violation records produced by the detector, the
immutable results handed out by the engine and the cache, and the records used
by the policy test harness.

Key Models:
- SanitizePolicy: allow/forbid configuration for one content type
- SanitizeOptions: call-level overrides merged on top of a policy
- Violation: one detected dangerous pattern with kind and severity
- SanitizedResult: read-only outcome of a sanitize call
- SecurityEventContext: caller-supplied context forwarded to the audit sink
- ValidationResult / PolicyValidationResult: validation outcomes
- SecurityTestCase and friends: attack corpus and harness reports

Results and violations are frozen: the cache hands out shared references, so
no consumer may mutate them after creation.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator


class ContentType(str, Enum):
    """Classification of free-form text selecting which policy applies."""
    USER_PROFILE = "user_profile"
    PET_CARD_METADATA = "pet_card_metadata"
    COMMENT = "comment"
    SOCIAL_SHARING = "social_sharing"
    GENERAL = "general"

    @classmethod
    def normalize(cls, value: Optional[Union["ContentType", str]]) -> "ContentType":
        """Map None and unknown strings to GENERAL."""
        if isinstance(value, ContentType):
            return value
        if value is None:
            return cls.GENERAL
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.GENERAL


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class ViolationKind(str, Enum):
    SCRIPT_TAG = "script_tag"
    DANGEROUS_ATTRIBUTE = "dangerous_attribute"
    SUSPICIOUS_PATTERN = "suspicious_pattern"
    MALICIOUS_URL = "malicious_url"
    DOM_CLOBBERING = "dom_clobbering"
    PROTOTYPE_POLLUTION = "prototype_pollution"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecommendedAction(str, Enum):
    ALLOW = "allow"
    SANITIZE = "sanitize"
    FLAG = "flag"
    BLOCK = "block"


class TestCategory(str, Enum):
    SCRIPT_INJECTION = "script_injection"
    ATTRIBUTE_INJECTION = "attribute_injection"
    URL_INJECTION = "url_injection"
    DOM_CLOBBERING = "dom_clobbering"

    # keep pytest from collecting this enum as a test class
    __test__ = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SanitizerModel(BaseModel):
    """
    Base class for all sanitization models.

    Frozen, strict about unknown fields, and serializes enums by value so that
    results can be logged and compared without custom encoders.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        use_enum_values=False,
        hide_input_in_errors=True,
    )


class SanitizePolicy(SanitizerModel):
    """
    Allow/forbid configuration for one content type.

    The version counter increments on every successful update through the
    policy store and is part of every cache key derived from this policy.
    """

    content_type: ContentType = ContentType.GENERAL
    allowed_tags: Tuple[str, ...] = ()
    allowed_attributes_by_tag: Dict[str, Tuple[str, ...]] = Field(default_factory=dict)
    allowed_uri_schemes: Tuple[str, ...] = ()
    forbidden_tags: Tuple[str, ...] = ()
    forbidden_attributes: Tuple[str, ...] = ()
    strip_unknown_tags: bool = True
    keep_text_of_stripped_tags: bool = True
    strip_body_tags: Tuple[str, ...] = ("script", "style")
    version: int = 1

    @field_validator("allowed_tags", "forbidden_tags", "forbidden_attributes",
                     "allowed_uri_schemes", "strip_body_tags", mode="before")
    @classmethod
    def _lowercase_names(cls, value: Any) -> Any:
        if value is None:
            return ()
        return tuple(str(item).strip().lower() for item in value)

    @field_validator("allowed_attributes_by_tag", mode="before")
    @classmethod
    def _lowercase_attribute_map(cls, value: Any) -> Any:
        if value is None:
            return {}
        return {
            str(tag).lower(): tuple(str(attr).lower() for attr in attrs)
            for tag, attrs in dict(value).items()
        }


class SanitizeOptions(SanitizerModel):
    """Call-level overrides; a field left as None inherits the policy value."""

    allowed_tags: Optional[Tuple[str, ...]] = None
    allowed_attributes_by_tag: Optional[Dict[str, Tuple[str, ...]]] = None
    allowed_uri_schemes: Optional[Tuple[str, ...]] = None
    forbidden_tags: Optional[Tuple[str, ...]] = None
    forbidden_attributes: Optional[Tuple[str, ...]] = None
    strip_unknown_tags: Optional[bool] = None
    keep_text_of_stripped_tags: Optional[bool] = None
    strip_body_tags: Optional[Tuple[str, ...]] = None

    @field_validator("allowed_tags", "forbidden_tags", "forbidden_attributes",
                     "allowed_uri_schemes", "strip_body_tags", mode="before")
    @classmethod
    def _lowercase_names(cls, value: Any) -> Any:
        if value is None:
            return None
        return tuple(str(item).strip().lower() for item in value)

    @field_validator("allowed_attributes_by_tag", mode="before")
    @classmethod
    def _lowercase_attribute_map(cls, value: Any) -> Any:
        if value is None:
            return None
        return {
            str(tag).lower(): tuple(str(attr).lower() for attr in attrs)
            for tag, attrs in dict(value).items()
        }

    def overrides(self) -> Dict[str, Any]:
        """Fields explicitly set by the caller."""
        return {key: value for key, value in self if value is not None}

    def normalized(self) -> Dict[str, Any]:
        """Deterministic, order-insensitive form used for cache keys."""
        normalized: Dict[str, Any] = {}
        for key, value in self.overrides().items():
            if isinstance(value, tuple):
                normalized[key] = sorted(set(value))
            elif isinstance(value, dict):
                normalized[key] = {tag: sorted(set(attrs)) for tag, attrs in sorted(value.items())}
            else:
                normalized[key] = value
        return normalized


class Violation(SanitizerModel):
    kind: ViolationKind
    matched_text: str
    severity: Severity
    description: str = ""
    detected_at: datetime = Field(default_factory=_utcnow)

    def signature(self) -> Tuple[str, str, str]:
        """Identity of a violation ignoring its detection timestamp."""
        return (self.kind.value, self.matched_text, self.severity.value)


class SanitizedResult(SanitizerModel):
    sanitized_content: str
    original_content: str
    removed_element_names: Tuple[str, ...] = ()
    violations: Tuple[Violation, ...] = ()
    processing_time_ms: float = 0.0

    @computed_field  # type: ignore[misc]
    @property
    def is_valid(self) -> bool:
        return len(self.violations) == 0

    @property
    def highest_severity(self) -> Optional[Severity]:
        if not self.violations:
            return None
        return max((v.severity for v in self.violations), key=lambda s: s.rank)

    @classmethod
    def empty(cls, original: str = "") -> "SanitizedResult":
        return cls(sanitized_content="", original_content=original)


class SecurityEventContext(SanitizerModel):
    """Observability context supplied by the caller for audit events."""

    ip_address: str
    user_agent: str
    endpoint: str
    content_type: ContentType = ContentType.GENERAL
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    request_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ValidationResult(SanitizerModel):
    is_valid: bool
    risk_level: RiskLevel
    recommended_action: RecommendedAction
    violations: Tuple[Violation, ...] = ()
    confidence: float


class PolicyValidationResult(SanitizerModel):
    is_valid: bool
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()

    @classmethod
    def from_lists(cls, errors: List[str], warnings: List[str],
                   recommendations: List[str]) -> "PolicyValidationResult":
        return cls(
            is_valid=not errors,
            errors=tuple(errors),
            warnings=tuple(warnings),
            recommendations=tuple(recommendations),
        )


class RiskThresholds(SanitizerModel):
    low: float = 0.2
    medium: float = 0.5
    high: float = 0.8
    critical: float = 0.95


class PerformanceThresholds(SanitizerModel):
    max_processing_time_ms: float = 100.0
    max_content_length: int = 10000
    max_concurrent_requests: int = 50
    min_throughput_ops: float = 10.0


# =============================================================================
# Policy test harness records
# =============================================================================

class SecurityTestCase(SanitizerModel):
    name: str
    payload: str
    expected_blocked: bool
    severity: Severity
    category: TestCategory
    description: str = ""

    __test__ = False


class SecurityTestResult(SanitizerModel):
    test_case: SecurityTestCase
    content_type: ContentType
    passed: bool
    sanitized_result: SanitizedResult
    expected_violations: Tuple[ViolationKind, ...] = ()
    actual_violations: Tuple[ViolationKind, ...] = ()
    processing_time_ms: float = 0.0

    __test__ = False


class PerformanceBenchmark(SanitizerModel):
    content_type: ContentType
    content_sizes: Tuple[int, ...]
    iterations: int
    average_time_ms: float
    throughput_ops: float
    violations_detected: int


class SecurityIssueSummary(SanitizerModel):
    critical_issues: int = 0
    high_issues: int = 0
    medium_issues: int = 0
    low_issues: int = 0


class SecurityTestSuiteResult(SanitizerModel):
    corpus_version: str
    total_tests: int
    passed_tests: int
    failed_tests: int
    test_results: Tuple[SecurityTestResult, ...] = ()
    performance_benchmarks: Tuple[PerformanceBenchmark, ...] = ()
    policy_validation: PolicyValidationResult
    recommendations: Tuple[str, ...] = ()
    summary: SecurityIssueSummary = Field(default_factory=SecurityIssueSummary)
    generated_at: datetime = Field(default_factory=_utcnow)

    __test__ = False

    @model_validator(mode="after")
    def _check_totals(self) -> "SecurityTestSuiteResult":
        if self.passed_tests + self.failed_tests != self.total_tests:
            raise ValueError("passed_tests + failed_tests must equal total_tests")
        return self


__all__ = [
    "ContentType",
    "Severity",
    "ViolationKind",
    "RiskLevel",
    "RecommendedAction",
    "TestCategory",
    "SanitizerModel",
    "SanitizePolicy",
    "SanitizeOptions",
    "Violation",
    "SanitizedResult",
    "SecurityEventContext",
    "ValidationResult",
    "PolicyValidationResult",
    "RiskThresholds",
    "PerformanceThresholds",
    "SecurityTestCase",
    "SecurityTestResult",
    "PerformanceBenchmark",
    "SecurityIssueSummary",
    "SecurityTestSuiteResult",
]
