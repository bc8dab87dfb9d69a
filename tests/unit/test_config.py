"""
Configuration Unit Tests

Environment class lookup, settings dataclasses built from the configuration
classes, runtime setting changes and configuration validation.
"""

import pytest

from content_sanitizer.config import (
    CacheSettings,
    DevelopmentConfig,
    ProductionConfig,
    StreamingSettings,
    TestingConfig,
    get_config,
    validate_configuration,
)
from content_sanitizer.exceptions import ConfigurationError

pytestmark = pytest.mark.unit


class TestGetConfig:

    @pytest.mark.parametrize('name, expected', [
        ('development', DevelopmentConfig),
        ('dev', DevelopmentConfig),
        ('testing', TestingConfig),
        ('TEST', TestingConfig),
        ('production', ProductionConfig),
        ('prod', ProductionConfig),
    ])
    def test_names_and_aliases(self, name, expected):
        assert get_config(name) is expected

    def test_environment_variable_is_used(self, monkeypatch):
        monkeypatch.setenv('SANITIZER_ENV', 'production')
        assert get_config() is ProductionConfig

    def test_unknown_environment_raises(self):
        with pytest.raises(ConfigurationError) as exc_info:
            get_config('staging')

        assert exc_info.value.error_code == 'CONFIGURATION_ERROR'
        assert exc_info.value.details['environment'] == 'staging'


class TestSettings:

    def test_testing_config_builds_settings(self):
        cache = TestingConfig.cache_settings()

        assert cache.max_entries == 100
        assert cache.cleanup_interval_seconds == 0.05
        assert TestingConfig.batch_settings().debounce_ms == 10.0
        assert TestingConfig.streaming_settings() == StreamingSettings()

    def test_with_changes_returns_copy(self):
        original = CacheSettings()
        changed = original.with_changes(max_entries=5)

        assert changed.max_entries == 5
        assert original.max_entries == 1000

    def test_with_changes_rejects_unknown_fields(self):
        with pytest.raises(ConfigurationError) as exc_info:
            CacheSettings().with_changes(max_size=5, ttl=1)

        assert 'max_size' in exc_info.value.message
        assert exc_info.value.details['settings_class'] == 'CacheSettings'

    def test_to_dict(self):
        assert StreamingSettings().to_dict() == {
            'chunk_size': 1000,
            'max_chunks': 100,
            'boundary_search_ratio': 0.8,
        }


class TestValidateConfiguration:

    @pytest.mark.parametrize('config', [DevelopmentConfig, TestingConfig, ProductionConfig])
    def test_shipped_configurations_are_valid(self, config):
        assert validate_configuration(config) == []

    def test_bad_values_are_reported(self):
        class BrokenConfig(TestingConfig):
            CACHE_MAX_ENTRIES = 0
            BATCH_DEBOUNCE_MS = -1.0
            STREAM_BOUNDARY_RATIO = 1.5
            MAX_INPUT_LENGTH = 0

        issues = validate_configuration(BrokenConfig)

        assert issues == [
            'CACHE_MAX_ENTRIES must be positive',
            'BATCH_DEBOUNCE_MS must not be negative',
            'STREAM_BOUNDARY_RATIO must be in (0, 1]',
            'MAX_INPUT_LENGTH must be positive',
        ]

    def test_worker_settings_are_validated(self):
        class BrokenWorkers(TestingConfig):
            WORKER_THREADS = -1
            WORKER_TIMEOUT_SECONDS = 0.0

        assert validate_configuration(BrokenWorkers) == [
            'WORKER_THREADS must not be negative',
            'WORKER_TIMEOUT_SECONDS must be positive',
        ]
