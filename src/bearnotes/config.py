"""
Configuration management with validation and environment variable support.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigurationError, ErrorSeverity

logger = logging.getLogger(__name__)

DEFAULT_BEAR_DB_PATH = str(
    Path.home()
    / "Library"
    / "Group Containers"
    / "9K33E3U3T4.net.shinyfrog.bear"
    / "Application Data"
    / "database.sqlite"
)


@dataclass
class DatabaseConfig:
    """Bear database settings."""

    bear_db_path: str = DEFAULT_BEAR_DB_PATH
    connection_timeout: float = 30.0


@dataclass
class CacheConfig:
    """Query cache settings."""

    enabled: bool = True
    max_size: int = 1000
    default_ttl_seconds: float = 300.0  # 5 minutes
    query_ttl_seconds: float = 300.0

    @property
    def effective_max_size(self) -> int:
        """Max size actually handed to the cache store; 0 disables caching."""
        return self.max_size if self.enabled else 0


@dataclass
class PerformanceConfig:
    """Performance monitor settings."""

    slow_query_threshold_ms: float = 1000.0
    history_size: int = 10000
    memory_budget_mb: int = 512
    report_window_hours: int = 24


@dataclass
class SearchConfig:
    """Search and ranking settings."""

    default_limit: int = 20
    max_limit: int = 100
    min_similarity: float = 0.1
    suggestion_limit: int = 10
    related_limit: int = 5


@dataclass
class MonitoringConfig:
    """Logging configuration."""

    log_level: str = "INFO"


@dataclass
class ServerConfig:
    """MCP server configuration."""

    name: str = "bear-notes-mcp"
    version: str = "1.0.0"
    url_open_delay: float = 1.0


@dataclass
class ApplicationConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_environment(cls) -> "ApplicationConfig":
        """Create configuration from environment variables."""
        config = cls()

        # Database configuration
        config.database.bear_db_path = os.getenv(
            "BEAR_MCP_DB_PATH", config.database.bear_db_path
        )
        config.database.connection_timeout = float(
            os.getenv("BEAR_MCP_DB_TIMEOUT", config.database.connection_timeout)
        )

        # Cache configuration
        config.cache.enabled = _parse_bool(
            os.getenv("BEAR_MCP_CACHE_ENABLED", str(config.cache.enabled))
        )
        config.cache.max_size = int(os.getenv("BEAR_MCP_CACHE_MAX_SIZE", config.cache.max_size))
        config.cache.default_ttl_seconds = float(
            os.getenv("BEAR_MCP_CACHE_TTL", config.cache.default_ttl_seconds)
        )
        config.cache.query_ttl_seconds = float(
            os.getenv("BEAR_MCP_QUERY_TTL", config.cache.query_ttl_seconds)
        )

        # Performance configuration
        config.performance.slow_query_threshold_ms = float(
            os.getenv("BEAR_MCP_SLOW_QUERY_MS", config.performance.slow_query_threshold_ms)
        )
        config.performance.history_size = int(
            os.getenv("BEAR_MCP_HISTORY_SIZE", config.performance.history_size)
        )
        config.performance.memory_budget_mb = int(
            os.getenv("BEAR_MCP_MEMORY_BUDGET_MB", config.performance.memory_budget_mb)
        )

        # Search configuration
        config.search.default_limit = int(
            os.getenv("BEAR_MCP_SEARCH_DEFAULT_LIMIT", config.search.default_limit)
        )
        config.search.max_limit = int(
            os.getenv("BEAR_MCP_SEARCH_MAX_LIMIT", config.search.max_limit)
        )
        config.search.min_similarity = float(
            os.getenv("BEAR_MCP_MIN_SIMILARITY", config.search.min_similarity)
        )

        # Monitoring configuration
        config.monitoring.log_level = os.getenv(
            "BEAR_MCP_LOG_LEVEL", config.monitoring.log_level
        ).upper()

        # Server configuration
        config.server.name = os.getenv("BEAR_MCP_SERVER_NAME", config.server.name)
        config.server.url_open_delay = float(
            os.getenv("BEAR_MCP_URL_OPEN_DELAY", config.server.url_open_delay)
        )

        config.validate()

        return config

    def validate(self) -> None:
        """Validate configuration settings."""
        errors = []

        if not self.database.bear_db_path:
            errors.append("Bear database path must be set")

        if self.database.connection_timeout <= 0:
            errors.append("Database connection timeout must be positive")

        if self.cache.max_size < 0:
            errors.append("Cache max size cannot be negative")

        if self.cache.default_ttl_seconds < 0:
            errors.append("Cache TTL cannot be negative")

        if self.cache.query_ttl_seconds < 0:
            errors.append("Query cache TTL cannot be negative")

        if self.performance.slow_query_threshold_ms <= 0:
            errors.append("Slow query threshold must be positive")

        if self.performance.history_size <= 0:
            errors.append("Performance history size must be positive")

        if self.performance.memory_budget_mb <= 0:
            errors.append("Memory budget must be positive")

        if self.performance.report_window_hours <= 0:
            errors.append("Report window must be positive")

        if self.search.default_limit <= 0:
            errors.append("Search default limit must be positive")

        if self.search.max_limit <= 0:
            errors.append("Search max limit must be positive")

        if self.search.default_limit > self.search.max_limit:
            errors.append("Search default limit cannot exceed max limit")

        if not (0.0 <= self.search.min_similarity <= 1.0):
            errors.append("Minimum similarity must be between 0.0 and 1.0")

        if self.search.suggestion_limit <= 0:
            errors.append("Suggestion limit must be positive")

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.monitoring.log_level not in valid_log_levels:
            errors.append(f"Log level must be one of: {', '.join(valid_log_levels)}")

        if self.server.url_open_delay < 0:
            errors.append("URL open delay cannot be negative")

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

    def get_sensitive_fields(self) -> set:
        """Get set of field names that contain sensitive information."""
        return {
            "database.bear_db_path",  # Contains the user's home directory
        }

    def to_safe_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary with sensitive fields masked."""
        config_dict = self.to_dict()
        sensitive_fields = self.get_sensitive_fields()

        def _mask_sensitive(obj, path=""):
            if isinstance(obj, dict):
                return {k: _mask_sensitive(v, f"{path}.{k}" if path else k) for k, v in obj.items()}
            elif path in sensitive_fields:
                return "***MASKED***"
            else:
                return obj

        return _mask_sensitive(config_dict)


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

    def set_config(self, config: ApplicationConfig) -> None:
        """Install an explicit configuration after validating it."""
        config.validate()
        self._config = config


# Global configuration manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get the global configuration manager."""
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
