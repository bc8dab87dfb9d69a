"""Configuration package for the content sanitizer."""

from content_sanitizer.config.settings import (
    BaseConfig,
    BatchSettings,
    CacheSettings,
    DevelopmentConfig,
    EngineSettings,
    ProductionConfig,
    StreamingSettings,
    TestingConfig,
    get_config,
    validate_configuration,
)

__all__ = [
    'BaseConfig',
    'BatchSettings',
    'CacheSettings',
    'DevelopmentConfig',
    'EngineSettings',
    'ProductionConfig',
    'StreamingSettings',
    'TestingConfig',
    'get_config',
    'validate_configuration',
]
