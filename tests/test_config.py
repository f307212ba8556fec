"""Tests for configuration management."""

import os
from unittest.mock import patch

import pytest

from dealsearch.config import (
    AnalyticsConfig,
    ApplicationConfig,
    CacheConfig,
    ConfigManager,
    MonitoringConfig,
    RankingConfig,
    SearchConfig,
    _parse_bool,
    get_config_manager,
    reset_config,
)
from dealsearch.errors import ConfigurationError


class TestConfigurationDataclasses:
    """Test configuration dataclasses."""

    def test_cache_config_defaults(self):
        """Test cache configuration defaults."""
        config = CacheConfig()

        assert config.default_ttl_seconds == 300.0
        assert config.max_entries == 1000
        assert config.cleanup_interval_seconds == 60.0
        assert config.compression_threshold_bytes == 1024

    def test_ranking_config_defaults(self):
        """Test ranking weights add up and boosts exceed one."""
        config = RankingConfig()

        total = (
            config.text_relevance_weight
            + config.popularity_weight
            + config.recency_weight
            + config.engagement_weight
        )
        assert total == pytest.approx(1.0)
        assert config.exact_match_boost > config.title_match_boost > 1.0
        assert config.old_content_penalty < 1.0

    def test_analytics_config_defaults(self):
        config = AnalyticsConfig()

        assert config.flush_interval_seconds == 30.0
        assert config.real_time_window_seconds == 300.0
        assert config.high_load_threshold == 100
        assert config.medium_load_threshold == 50

    def test_application_config_composition(self):
        """Test application configuration composition."""
        config = ApplicationConfig()

        assert isinstance(config.cache, CacheConfig)
        assert isinstance(config.ranking, RankingConfig)
        assert isinstance(config.analytics, AnalyticsConfig)
        assert isinstance(config.search, SearchConfig)
        assert isinstance(config.monitoring, MonitoringConfig)


class TestConfigurationValidation:
    """Test configuration validation."""

    def test_valid_configuration(self):
        """Test that default configuration is valid."""
        config = ApplicationConfig()
        config.validate()  # Should not raise

    @pytest.mark.parametrize(
        "field_path,invalid_value,expected_error",
        [
            ("cache.default_ttl_seconds", 0, "Cache TTL must be positive"),
            ("cache.max_entries", -5, "Cache max entries must be positive"),
            ("cache.eviction_fraction", 1.5, "Eviction fraction"),
            ("ranking.popularity_weight", -0.1, "Ranking weights cannot be negative"),
            ("analytics.batch_size", 0, "batch size must be positive"),
            ("search.max_query_length", 0, "Max query length must be positive"),
            ("monitoring.log_level", "INVALID", "Log level must be one of"),
        ],
    )
    def test_invalid_configuration_values(self, field_path, invalid_value, expected_error):
        """Test validation of invalid configuration values."""
        config = ApplicationConfig()

        obj = config
        field_parts = field_path.split(".")
        for part in field_parts[:-1]:
            obj = getattr(obj, part)
        setattr(obj, field_parts[-1], invalid_value)

        with pytest.raises(ConfigurationError, match=expected_error):
            config.validate()

    def test_invalid_search_limits(self):
        """Test validation of default limit above max results."""
        config = ApplicationConfig()
        config.search.default_limit = 200
        config.search.max_results = 100

        with pytest.raises(ConfigurationError, match="default limit cannot exceed max results"):
            config.validate()

    def test_invalid_load_thresholds(self):
        config = ApplicationConfig()
        config.analytics.medium_load_threshold = 200

        with pytest.raises(ConfigurationError, match="Medium load threshold"):
            config.validate()


class TestEnvironmentVariableLoading:
    """Test loading configuration from environment variables."""

    @patch.dict(
        os.environ,
        {
            "DEALSEARCH_CACHE_TTL": "120",
            "DEALSEARCH_CACHE_MAX_ENTRIES": "50",
            "DEALSEARCH_ANALYTICS_FLUSH_INTERVAL": "5.5",
            "DEALSEARCH_LOG_LEVEL": "debug",
            "DEALSEARCH_SUGGESTIONS": "off",
        },
    )
    def test_environment_variable_loading(self):
        """Test loading configuration from environment variables."""
        config = ApplicationConfig.from_environment()

        assert config.cache.default_ttl_seconds == 120.0
        assert config.cache.max_entries == 50
        assert config.analytics.flush_interval_seconds == 5.5
        assert config.monitoring.log_level == "DEBUG"
        assert config.search.enable_suggestions is False

    @patch.dict(os.environ, {"DEALSEARCH_CACHE_TTL": "invalid_float"})
    def test_invalid_environment_variable(self):
        """Test handling of invalid environment variable values."""
        with pytest.raises(ValueError):
            ApplicationConfig.from_environment()

    @patch.dict(os.environ, {"DEALSEARCH_CACHE_MAX_ENTRIES": "0"})
    def test_environment_values_are_validated(self):
        with pytest.raises(ConfigurationError):
            ApplicationConfig.from_environment()


class TestBooleanParsing:
    """Test boolean parsing functionality."""

    def test_parse_bool_true_values(self):
        """Test parsing of true boolean values."""
        for value in ["true", "True", "TRUE", "1", "yes", "on", "enabled"]:
            assert _parse_bool(value) is True

    def test_parse_bool_false_values(self):
        """Test parsing of false boolean values."""
        for value in ["false", "False", "FALSE", "0", "no", "off", "disabled", "random"]:
            assert _parse_bool(value) is False


class TestConfigurationSerialization:
    """Test configuration serialization."""

    def test_to_dict(self):
        """Test configuration serialization to dictionary."""
        config_dict = ApplicationConfig().to_dict()

        assert isinstance(config_dict, dict)
        assert "cache" in config_dict
        assert "ranking" in config_dict
        assert config_dict["cache"]["max_entries"] == 1000
        assert config_dict["ranking"]["exact_match_boost"] == 2.0


class TestConfigManager:
    """Test configuration manager."""

    def teardown_method(self):
        reset_config()

    def test_config_manager_is_shared(self):
        """Test that the default config manager is shared."""
        assert get_config_manager() is get_config_manager()

    def test_reset_config_creates_new_manager(self):
        manager = get_config_manager()
        reset_config()

        assert get_config_manager() is not manager

    def test_config_caching(self):
        """Test that configuration is cached."""
        manager = ConfigManager()

        assert manager.get_config() is manager.get_config()

    def test_config_reload(self):
        """Test configuration reload."""
        manager = ConfigManager()

        config1 = manager.get_config()
        config2 = manager.reload_config()

        assert config1 is not config2

    def test_set_config_for_testing(self):
        """Test setting configuration for testing."""
        manager = ConfigManager()
        test_config = ApplicationConfig()
        test_config.cache.max_entries = 7

        manager.set_config(test_config)

        assert manager.get_cache_config().max_entries == 7

    def test_config_section_accessors(self):
        """Test configuration section accessor methods."""
        manager = ConfigManager()

        assert isinstance(manager.get_cache_config(), CacheConfig)
        assert isinstance(manager.get_ranking_config(), RankingConfig)
        assert isinstance(manager.get_analytics_config(), AnalyticsConfig)
        assert isinstance(manager.get_search_config(), SearchConfig)
        assert isinstance(manager.get_monitoring_config(), MonitoringConfig)

    def test_invalid_config_set(self):
        """Test setting invalid configuration raises error."""
        manager = ConfigManager()
        invalid_config = ApplicationConfig()
        invalid_config.cache.default_ttl_seconds = -1

        with pytest.raises(ConfigurationError):
            manager.set_config(invalid_config)
