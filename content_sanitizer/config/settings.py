"""
Sanitizer Configuration Classes

Environment-specific settings (Development, Testing, Production) for the
content sanitization pipeline, with environment variable loading via
python-dotenv. Components never read the environment themselves: they receive
the small settings dataclasses built here, so tests can construct isolated
instances with explicit values.

Key Components:
- BaseConfig / DevelopmentConfig / TestingConfig / ProductionConfig classes
- CacheSettings: entry/byte caps, TTL and sweep interval for the result cache
- BatchSettings: debounce window, batch size, concurrency cap, priority threshold
- StreamingSettings: chunk size, chunk count cap, boundary search ratio
- EngineSettings: input length cap, slow-call logging threshold, worker pool
- get_config(): configuration class lookup keyed on SANITIZER_ENV
- validate_configuration(): sanity checks returning a list of issues
"""

import os
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, List, Optional, Type

import structlog
from dotenv import load_dotenv

from content_sanitizer.exceptions import ConfigurationError

# Load environment variables early
load_dotenv()

logger = structlog.get_logger(__name__)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


class _SettingsMixin:
    """Shared helpers for the settings dataclasses."""

    def with_changes(self, **changes: Any):
        """Return a copy with the given fields replaced; unknown fields raise."""
        known = {f.name for f in fields(self)}  # type: ignore[arg-type]
        unknown = set(changes) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown settings: {', '.join(sorted(unknown))}",
                details={"settings_class": type(self).__name__},
            )
        return replace(self, **changes)  # type: ignore[type-var]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]


@dataclass(frozen=True)
class CacheSettings(_SettingsMixin):
    max_entries: int = 1000
    max_bytes: int = 10 * 1024 * 1024
    ttl_seconds: float = 300.0
    cleanup_interval_seconds: float = 60.0


@dataclass(frozen=True)
class BatchSettings(_SettingsMixin):
    max_batch_size: int = 10
    debounce_ms: float = 100.0
    max_concurrent_batches: int = 3
    priority_threshold: int = 5


@dataclass(frozen=True)
class StreamingSettings(_SettingsMixin):
    chunk_size: int = 1000
    max_chunks: int = 100
    boundary_search_ratio: float = 0.8


@dataclass(frozen=True)
class EngineSettings(_SettingsMixin):
    max_input_length: int = 1_000_000
    slow_call_threshold_ms: float = 100.0
    # 0 disables the worker pool; sanitize_async then runs inline
    worker_threads: int = 2
    worker_timeout_seconds: float = 30.0


class BaseConfig:
    """
    Base configuration shared by all environments.

    Every value can be overridden through a SANITIZER_* environment variable
    (or a .env file picked up by python-dotenv).
    """

    APP_NAME = os.getenv('SANITIZER_APP_NAME', 'content-sanitizer')
    ENVIRONMENT = 'base'
    DEBUG = False
    TESTING = False

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')

    # Result cache
    CACHE_MAX_ENTRIES = _env_int('SANITIZER_CACHE_MAX_ENTRIES', 1000)
    CACHE_MAX_BYTES = _env_int('SANITIZER_CACHE_MAX_BYTES', 10 * 1024 * 1024)
    CACHE_TTL_SECONDS = _env_float('SANITIZER_CACHE_TTL_SECONDS', 300.0)
    CACHE_CLEANUP_INTERVAL_SECONDS = _env_float('SANITIZER_CACHE_CLEANUP_INTERVAL_SECONDS', 60.0)

    # Lazy/batch scheduler
    BATCH_MAX_SIZE = _env_int('SANITIZER_BATCH_MAX_SIZE', 10)
    BATCH_DEBOUNCE_MS = _env_float('SANITIZER_BATCH_DEBOUNCE_MS', 100.0)
    BATCH_MAX_CONCURRENT = _env_int('SANITIZER_BATCH_MAX_CONCURRENT', 3)
    BATCH_PRIORITY_THRESHOLD = _env_int('SANITIZER_BATCH_PRIORITY_THRESHOLD', 5)

    # Streaming chunker
    STREAM_CHUNK_SIZE = _env_int('SANITIZER_STREAM_CHUNK_SIZE', 1000)
    STREAM_MAX_CHUNKS = _env_int('SANITIZER_STREAM_MAX_CHUNKS', 100)
    STREAM_BOUNDARY_RATIO = _env_float('SANITIZER_STREAM_BOUNDARY_RATIO', 0.8)

    # Engine
    MAX_INPUT_LENGTH = _env_int('SANITIZER_MAX_INPUT_LENGTH', 1_000_000)
    SLOW_CALL_THRESHOLD_MS = _env_float('SANITIZER_SLOW_CALL_THRESHOLD_MS', 100.0)
    WORKER_THREADS = _env_int('SANITIZER_WORKER_THREADS', 2)
    WORKER_TIMEOUT_SECONDS = _env_float('SANITIZER_WORKER_TIMEOUT_SECONDS', 30.0)

    # Audit logging of every completed sanitize call
    AUDIT_ENABLED = os.getenv('SANITIZER_AUDIT_ENABLED', 'true').lower() == 'true'

    @classmethod
    def cache_settings(cls) -> CacheSettings:
        return CacheSettings(
            max_entries=cls.CACHE_MAX_ENTRIES,
            max_bytes=cls.CACHE_MAX_BYTES,
            ttl_seconds=cls.CACHE_TTL_SECONDS,
            cleanup_interval_seconds=cls.CACHE_CLEANUP_INTERVAL_SECONDS,
        )

    @classmethod
    def batch_settings(cls) -> BatchSettings:
        return BatchSettings(
            max_batch_size=cls.BATCH_MAX_SIZE,
            debounce_ms=cls.BATCH_DEBOUNCE_MS,
            max_concurrent_batches=cls.BATCH_MAX_CONCURRENT,
            priority_threshold=cls.BATCH_PRIORITY_THRESHOLD,
        )

    @classmethod
    def streaming_settings(cls) -> StreamingSettings:
        return StreamingSettings(
            chunk_size=cls.STREAM_CHUNK_SIZE,
            max_chunks=cls.STREAM_MAX_CHUNKS,
            boundary_search_ratio=cls.STREAM_BOUNDARY_RATIO,
        )

    @classmethod
    def engine_settings(cls) -> EngineSettings:
        return EngineSettings(
            max_input_length=cls.MAX_INPUT_LENGTH,
            slow_call_threshold_ms=cls.SLOW_CALL_THRESHOLD_MS,
            worker_threads=cls.WORKER_THREADS,
            worker_timeout_seconds=cls.WORKER_TIMEOUT_SECONDS,
        )


class DevelopmentConfig(BaseConfig):
    """Local development: console logs, debug level."""

    ENVIRONMENT = 'development'
    DEBUG = True
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG').upper()
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'console')


class TestingConfig(BaseConfig):
    """
    Testing configuration.

    Short debounce and sweep intervals keep asynchronous tests fast; the audit
    sink stays enabled so the logging path is exercised.
    """

    # keep pytest from collecting this class from test modules that import it
    __test__ = False

    ENVIRONMENT = 'testing'
    DEBUG = True
    TESTING = True
    LOG_LEVEL = 'WARNING'
    LOG_FORMAT = 'console'

    CACHE_MAX_ENTRIES = 100
    CACHE_CLEANUP_INTERVAL_SECONDS = 0.05
    BATCH_DEBOUNCE_MS = 10.0


class ProductionConfig(BaseConfig):
    ENVIRONMENT = 'production'
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')


config_map: Dict[str, Type[BaseConfig]] = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,

    # Aliases for convenience
    'dev': DevelopmentConfig,
    'test': TestingConfig,
    'prod': ProductionConfig,
}


def get_config(environment: Optional[str] = None) -> Type[BaseConfig]:
    """
    Get configuration class for the specified environment.

    Args:
        environment: Target environment name (defaults to SANITIZER_ENV)

    Returns:
        Configuration class for the specified environment

    Raises:
        ConfigurationError: If environment is not supported
    """
    if environment is None:
        environment = os.getenv('SANITIZER_ENV', 'development')

    environment = environment.lower()

    if environment not in config_map:
        raise ConfigurationError(
            f"Unsupported environment '{environment}'. "
            f"Supported environments: {list(config_map.keys())}",
            details={"environment": environment},
        )

    config_class = config_map[environment]
    logger.debug(
        "Configuration class selected",
        environment=environment,
        config_class=config_class.__name__,
    )
    return config_class


def validate_configuration(config: Any) -> List[str]:
    """
    Validate configuration settings and return list of issues.

    Args:
        config: Configuration class or instance to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    issues = []

    cache = config.cache_settings()
    if cache.max_entries <= 0:
        issues.append("CACHE_MAX_ENTRIES must be positive")
    if cache.max_bytes <= 0:
        issues.append("CACHE_MAX_BYTES must be positive")
    if cache.ttl_seconds <= 0:
        issues.append("CACHE_TTL_SECONDS must be positive")
    if cache.cleanup_interval_seconds <= 0:
        issues.append("CACHE_CLEANUP_INTERVAL_SECONDS must be positive")

    batch = config.batch_settings()
    if batch.max_batch_size <= 0:
        issues.append("BATCH_MAX_SIZE must be positive")
    if batch.debounce_ms < 0:
        issues.append("BATCH_DEBOUNCE_MS must not be negative")
    if batch.max_concurrent_batches <= 0:
        issues.append("BATCH_MAX_CONCURRENT must be positive")
    if batch.priority_threshold < 1:
        issues.append("BATCH_PRIORITY_THRESHOLD must be at least 1")

    streaming = config.streaming_settings()
    if streaming.chunk_size <= 0:
        issues.append("STREAM_CHUNK_SIZE must be positive")
    if streaming.max_chunks <= 0:
        issues.append("STREAM_MAX_CHUNKS must be positive")
    if not 0 < streaming.boundary_search_ratio <= 1:
        issues.append("STREAM_BOUNDARY_RATIO must be in (0, 1]")

    engine = config.engine_settings()
    if engine.max_input_length <= 0:
        issues.append("MAX_INPUT_LENGTH must be positive")
    if engine.worker_threads < 0:
        issues.append("WORKER_THREADS must not be negative")
    if engine.worker_timeout_seconds <= 0:
        issues.append("WORKER_TIMEOUT_SECONDS must be positive")

    logger.info(
        "Configuration validation completed",
        config_class=getattr(config, '__name__', type(config).__name__),
        issues_found=len(issues),
        issues=issues,
    )
    return issues


__all__ = [
    'BaseConfig',
    'DevelopmentConfig',
    'TestingConfig',
    'ProductionConfig',
    'CacheSettings',
    'BatchSettings',
    'StreamingSettings',
    'EngineSettings',
    'config_map',
    'get_config',
    'validate_configuration',
]
