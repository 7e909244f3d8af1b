"""
Gear Popularity Engine
Centralized Configuration Management

Pydantic settings with environment variable support for the database,
cache, popularity scoring, and serving layers.
"""

from functools import lru_cache
from typing import Dict, List, Optional
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL Database Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="gear_popularity", alias="database", description="Database name")
    user: str = Field(default="gear", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    pool_size: int = Field(default=20, description="Connection pool size")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, alias="DATABASE_URL", description="Database URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """Async database URL for asyncpg"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis Cache Configuration"""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=100, description="Max connections")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    decode_responses: bool = Field(default=True, description="Decode responses to strings")
    url: Optional[str] = Field(default=None, alias="REDIS_URL", description="Redis URL (overrides host/port)")

    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class PopularitySettings(BaseSettings):
    """Popularity scoring, windows and trending configuration"""

    model_config = SettingsConfigDict(env_prefix="POPULARITY_")

    # Declared weight table; bump the version whenever a weight changes
    weights_version: str = Field(default="v1", description="Version tag stored with daily scores")
    weights: Dict[str, float] = Field(
        default={
            "view": 1.0,
            "wishlist_add": 3.0,
            "owner_add": 4.0,
            "compare_add": 2.0,
            "review_submit": 5.0,
        },
        description="Weight per event type",
    )

    # Trending
    default_timeframe: str = Field(default="7d", description="Default trending timeframe")
    default_per_page: int = Field(default=20, description="Default trending page size")
    max_per_page: int = Field(default=100, description="Maximum trending page size")

    # Rollup
    correction_lag_days: int = Field(default=2, description="Days back for the late-arrival correction pass")
    anomaly_lookback_days: int = Field(default=30, description="Days of daily totals checked for view spikes")

    # Cache TTLs (seconds)
    trending_cache_ttl: int = Field(default=60, description="Trending page cache TTL")
    item_stats_cache_ttl: int = Field(default=300, description="Item stats cache TTL")

    # Traffic filtering
    bot_user_agent_patterns: List[str] = Field(
        default=[
            "Googlebot",
            "Bingbot",
            "Slurp",
            "DuckDuckBot",
            "Baiduspider",
            "YandexBot",
            "Sogou",
            "Exabot",
            "facebot",
            "ia_archiver",
            "Discordbot",
            "Slackbot",
            "Twitterbot",
            "bingpreview",
            "crawler",
            "spider",
            "bot",
        ],
        description="Case-insensitive user agent patterns treated as crawlers",
    )


class SecuritySettings(BaseSettings):
    """Rate limiting and CORS Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    # Rate limiting (write path only)
    rate_limit_requests: int = Field(default=120, alias="RATE_LIMIT_REQUESTS", description="Rate limit requests")
    rate_limit_window_seconds: int = Field(default=60, alias="RATE_LIMIT_WINDOW_SECONDS", description="Rate limit window")

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )


class MonitoringSettings(BaseSettings):
    """Monitoring and Observability Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")

    # Anomaly detection
    anomaly_detection_enabled: bool = Field(
        default=True,
        alias="ANOMALY_DETECTION_ENABLED",
        description="Enable view spike detection during rollups"
    )
    anomaly_alert_threshold: float = Field(
        default=3.0,
        alias="ANOMALY_ALERT_THRESHOLD",
        description="Z-score threshold for anomaly detection"
    )


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="gear-popularity", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    popularity: PopularitySettings = Field(default_factory=PopularitySettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()


# Convenience function for accessing settings
settings = get_settings()
