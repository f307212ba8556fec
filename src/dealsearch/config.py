"""
Configuration management for the search subsystem with validation,
environment variable support and sensible defaults.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import ConfigurationError, ErrorSeverity

logger = logging.getLogger(__name__)


@dataclass
class CacheConfig:
    """Result cache configuration."""

    enabled: bool = True
    default_ttl_seconds: float = 300.0  # 5 minutes
    max_entries: int = 1000
    cleanup_interval_seconds: float = 60.0
    compression_threshold_bytes: int = 1024
    eviction_fraction: float = 0.1


@dataclass
class RankingConfig:
    """Relevance scoring weights, boosts and penalties."""

    # Base scoring weights
    text_relevance_weight: float = 0.4
    popularity_weight: float = 0.3
    recency_weight: float = 0.2
    engagement_weight: float = 0.1

    # Boost factors
    exact_match_boost: float = 2.0
    title_match_boost: float = 1.5
    featured_boost: float = 1.3
    verified_boost: float = 1.2
    fresh_content_boost: float = 1.1
    exclusive_boost: float = 1.1
    staff_boost: float = 1.3
    high_karma_boost: float = 1.1

    # Penalty factors
    old_content_penalty: float = 0.8
    low_engagement_penalty: float = 0.9
    expiring_soon_penalty: float = 0.95

    # Time decay
    time_decay_factor: float = 0.1
    max_age_months: float = 12.0
    fresh_content_days: float = 7.0
    expiring_soon_days: float = 7.0


@dataclass
class AnalyticsConfig:
    """Search analytics configuration."""

    enabled: bool = True
    batch_size: int = 100
    flush_interval_seconds: float = 30.0
    retention_days: int = 30
    real_time_window_seconds: float = 300.0  # 5 minutes
    enable_real_time_tracking: bool = True
    high_load_threshold: int = 100
    medium_load_threshold: int = 50
    popular_queries_limit: int = 20


@dataclass
class SearchConfig:
    """Search request configuration."""

    max_results: int = 100
    default_limit: int = 20
    max_query_length: int = 200
    enable_suggestions: bool = True
    min_suggestion_length: int = 2
    max_suggestions: int = 10


@dataclass
class MonitoringConfig:
    """Monitoring and observability configuration."""

    log_level: str = "INFO"
    error_reporting: bool = True


@dataclass
class ApplicationConfig:
    """Main application configuration."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    ranking: RankingConfig = field(default_factory=RankingConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def from_environment(cls) -> "ApplicationConfig":
        """Create configuration from environment variables."""
        config = cls()

        # Cache configuration
        config.cache.enabled = _parse_bool(
            os.getenv("DEALSEARCH_CACHE_ENABLED", str(config.cache.enabled))
        )
        config.cache.default_ttl_seconds = float(
            os.getenv("DEALSEARCH_CACHE_TTL", config.cache.default_ttl_seconds)
        )
        config.cache.max_entries = int(
            os.getenv("DEALSEARCH_CACHE_MAX_ENTRIES", config.cache.max_entries)
        )
        config.cache.cleanup_interval_seconds = float(
            os.getenv("DEALSEARCH_CACHE_CLEANUP_INTERVAL", config.cache.cleanup_interval_seconds)
        )
        config.cache.compression_threshold_bytes = int(
            os.getenv(
                "DEALSEARCH_CACHE_COMPRESSION_THRESHOLD", config.cache.compression_threshold_bytes
            )
        )

        # Ranking configuration
        config.ranking.time_decay_factor = float(
            os.getenv("DEALSEARCH_RANKING_DECAY", config.ranking.time_decay_factor)
        )
        config.ranking.max_age_months = float(
            os.getenv("DEALSEARCH_RANKING_MAX_AGE_MONTHS", config.ranking.max_age_months)
        )

        # Analytics configuration
        config.analytics.enabled = _parse_bool(
            os.getenv("DEALSEARCH_ANALYTICS_ENABLED", str(config.analytics.enabled))
        )
        config.analytics.batch_size = int(
            os.getenv("DEALSEARCH_ANALYTICS_BATCH_SIZE", config.analytics.batch_size)
        )
        config.analytics.flush_interval_seconds = float(
            os.getenv(
                "DEALSEARCH_ANALYTICS_FLUSH_INTERVAL", config.analytics.flush_interval_seconds
            )
        )
        config.analytics.retention_days = int(
            os.getenv("DEALSEARCH_ANALYTICS_RETENTION_DAYS", config.analytics.retention_days)
        )
        config.analytics.enable_real_time_tracking = _parse_bool(
            os.getenv(
                "DEALSEARCH_REAL_TIME_TRACKING", str(config.analytics.enable_real_time_tracking)
            )
        )

        # Search configuration
        config.search.max_results = int(
            os.getenv("DEALSEARCH_MAX_RESULTS", config.search.max_results)
        )
        config.search.default_limit = int(
            os.getenv("DEALSEARCH_DEFAULT_LIMIT", config.search.default_limit)
        )
        config.search.max_query_length = int(
            os.getenv("DEALSEARCH_MAX_QUERY_LENGTH", config.search.max_query_length)
        )
        config.search.enable_suggestions = _parse_bool(
            os.getenv("DEALSEARCH_SUGGESTIONS", str(config.search.enable_suggestions))
        )

        # Monitoring configuration
        config.monitoring.log_level = os.getenv(
            "DEALSEARCH_LOG_LEVEL", config.monitoring.log_level
        ).upper()
        config.monitoring.error_reporting = _parse_bool(
            os.getenv("DEALSEARCH_ERROR_REPORTING", str(config.monitoring.error_reporting))
        )

        config.validate()

        return config

    def validate(self) -> None:
        """Validate configuration settings."""
        errors = []

        # Cache
        if self.cache.default_ttl_seconds <= 0:
            errors.append("Cache TTL must be positive")

        if self.cache.max_entries <= 0:
            errors.append("Cache max entries must be positive")

        if self.cache.cleanup_interval_seconds <= 0:
            errors.append("Cache cleanup interval must be positive")

        if self.cache.compression_threshold_bytes < 0:
            errors.append("Compression threshold cannot be negative")

        if not (0.0 < self.cache.eviction_fraction <= 1.0):
            errors.append("Eviction fraction must be between 0.0 and 1.0")

        # Ranking
        weights = (
            self.ranking.text_relevance_weight,
            self.ranking.popularity_weight,
            self.ranking.recency_weight,
            self.ranking.engagement_weight,
        )
        if any(weight < 0 for weight in weights):
            errors.append("Ranking weights cannot be negative")

        if self.ranking.time_decay_factor < 0:
            errors.append("Time decay factor cannot be negative")

        # Analytics
        if self.analytics.batch_size <= 0:
            errors.append("Analytics batch size must be positive")

        if self.analytics.flush_interval_seconds <= 0:
            errors.append("Analytics flush interval must be positive")

        if self.analytics.retention_days <= 0:
            errors.append("Analytics retention days must be positive")

        if self.analytics.medium_load_threshold > self.analytics.high_load_threshold:
            errors.append("Medium load threshold cannot exceed high load threshold")

        # Search
        if self.search.max_results <= 0:
            errors.append("Search max results must be positive")

        if self.search.default_limit <= 0:
            errors.append("Search default limit must be positive")

        if self.search.default_limit > self.search.max_results:
            errors.append("Search default limit cannot exceed max results")

        if self.search.max_query_length <= 0:
            errors.append("Max query length must be positive")

        # Monitoring
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.monitoring.log_level not in valid_log_levels:
            errors.append(f"Log level must be one of: {', '.join(valid_log_levels)}")

        if errors:
            error_message = "Configuration validation failed:\n" + "\n".join(
                f"- {error}" for error in errors
            )
            raise ConfigurationError(error_message, severity=ErrorSeverity.CRITICAL)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""

        def _dataclass_to_dict(obj):
            if hasattr(obj, "__dataclass_fields__"):
                return {k: _dataclass_to_dict(v) for k, v in obj.__dict__.items()}
            elif isinstance(obj, list):
                return [_dataclass_to_dict(item) for item in obj]
            else:
                return obj

        return _dataclass_to_dict(self)


def _parse_bool(value: str) -> bool:
    """Parse boolean value from string."""
    return value.lower() in ("true", "1", "yes", "on", "enabled")


class ConfigManager:
    """Configuration manager with caching and validation."""

    def __init__(self):
        self._config: Optional[ApplicationConfig] = None

    def get_config(self) -> ApplicationConfig:
        """Get the current configuration."""
        if self._config is None:
            self._config = ApplicationConfig.from_environment()
            logger.info("Configuration loaded from environment variables")

        return self._config

    def reload_config(self) -> ApplicationConfig:
        """Reload configuration from environment."""
        self._config = None
        return self.get_config()

    def set_config(self, config: ApplicationConfig) -> None:
        """Set configuration (for testing)."""
        config.validate()
        self._config = config

    def get_cache_config(self) -> CacheConfig:
        return self.get_config().cache

    def get_ranking_config(self) -> RankingConfig:
        return self.get_config().ranking

    def get_analytics_config(self) -> AnalyticsConfig:
        return self.get_config().analytics

    def get_search_config(self) -> SearchConfig:
        return self.get_config().search

    def get_monitoring_config(self) -> MonitoringConfig:
        return self.get_config().monitoring


_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get the shared configuration manager."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def get_config() -> ApplicationConfig:
    """Get the current application configuration."""
    return get_config_manager().get_config()


def reset_config() -> None:
    """Reset configuration (for testing)."""
    global _config_manager
    _config_manager = None
