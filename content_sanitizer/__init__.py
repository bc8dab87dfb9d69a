"""
Content Sanitizer

Policy-driven HTML sanitization for user-generated content: per-content-type
allow lists, violation detection, a versioned result cache, a lazy/batch
scheduler, streaming for oversized documents and an attack-corpus harness.

The Flask integration lives in content_sanitizer.middleware and is imported
explicitly by applications that use it.
"""

from content_sanitizer.cache import SanitizationCache
from content_sanitizer.cleaner import BleachCleaner, Cleaner
from content_sanitizer.config import get_config
from content_sanitizer.detector import ViolationDetector
from content_sanitizer.engine import SanitizationEngine
from content_sanitizer.exceptions import (
    CleaningError,
    ConfigurationError,
    InputValidationError,
    PolicyValidationError,
    SanitizationCancelledError,
    SanitizationError,
    StreamAbortedError,
)
from content_sanitizer.harness import SecurityPolicyTester, generate_attack_corpus, generate_security_report
from content_sanitizer.models import (
    ContentType,
    RecommendedAction,
    RiskLevel,
    SanitizedResult,
    SanitizeOptions,
    SanitizePolicy,
    SecurityEventContext,
    Severity,
    ValidationResult,
    Violation,
    ViolationKind,
)
from content_sanitizer.policies import PolicyStore, default_policies
from content_sanitizer.profiles import ProfileSanitizer
from content_sanitizer.scheduler import LazySanitizationScheduler
from content_sanitizer.service import SanitizationService, create_sanitization_service
from content_sanitizer.streaming import StreamingSanitizer

__version__ = "1.0.0"

__all__ = [
    'BleachCleaner',
    'Cleaner',
    'CleaningError',
    'ConfigurationError',
    'ContentType',
    'InputValidationError',
    'LazySanitizationScheduler',
    'PolicyStore',
    'PolicyValidationError',
    'ProfileSanitizer',
    'RecommendedAction',
    'RiskLevel',
    'SanitizationCache',
    'SanitizationCancelledError',
    'SanitizationEngine',
    'SanitizationError',
    'SanitizationService',
    'SanitizedResult',
    'SanitizeOptions',
    'SanitizePolicy',
    'SecurityEventContext',
    'SecurityPolicyTester',
    'Severity',
    'StreamAbortedError',
    'StreamingSanitizer',
    'ValidationResult',
    'Violation',
    'ViolationDetector',
    'ViolationKind',
    'create_sanitization_service',
    'default_policies',
    'generate_attack_corpus',
    'generate_security_report',
    'get_config',
]
