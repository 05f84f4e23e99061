"""
Core Configuration Management
Strategy Engine

Environment-based settings for persistence, execution and logging.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional, Literal
from functools import lru_cache


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[str] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")

    # Connection pool
    max_connections: int = Field(default=50, description="Max connections")
    socket_timeout: float = Field(default=5.0, description="Socket timeout")

    @property
    def url(self) -> str:
        """Redis URL."""
        if self.password:
            return f"redis://:{self.password}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class StoreSettings(BaseSettings):
    """Strategy store settings."""

    model_config = SettingsConfigDict(env_prefix="STORE_")

    key_prefix: str = Field(default="strategy-engine", description="Key prefix for all records")
    max_events_per_strategy: int = Field(default=1000, description="Event log cap per strategy")
    event_retention_days: int = Field(default=90, description="Event body retention")
    max_write_retries: int = Field(default=3, description="Retries on concurrent modification")


class ExecutionSettings(BaseSettings):
    """Execution agent settings."""

    model_config = SettingsConfigDict(env_prefix="EXECUTION_")

    aggregator_url: str = Field(
        default="https://quote-api.jup.ag/v6",
        description="Swap aggregator base URL"
    )
    default_slippage_bps: int = Field(default=50, description="Slippage when a strategy sets none")
    max_slippage_bps: int = Field(default=500, description="Hard slippage ceiling")
    request_timeout_seconds: float = Field(default=30.0, description="Quote/swap timeout")
    price_impact_warning_pct: float = Field(default=1.0, description="Warn above this price impact %")

    # Swap transaction options
    use_versioned_transactions: bool = Field(default=True, description="Request versioned transactions")
    priority_fee_lamports: int = Field(default=10000, description="Priority fee")

    # Privacy-preserving path
    encrypted_execution_enabled: bool = Field(default=False, description="Enable encrypted execution path")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        description="Log format"
    )

    # File logging
    file_enabled: bool = Field(default=False, description="Enable file logging")
    file_path: str = Field(default="logs/strategy_engine.json", description="Log file path")
    error_file_path: str = Field(default="logs/error.log", description="Error log file path")
    file_rotation: str = Field(default="10 MB", description="Log rotation size")
    file_retention: str = Field(default="30 days", description="Log retention period")


class Settings(BaseSettings):
    """
    Main application settings.

    Aggregates all sub-settings and provides environment-based configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    ENVIRONMENT: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        description="Environment"
    )

    @property
    def redis(self) -> RedisSettings:
        """Get Redis settings."""
        return RedisSettings()

    @property
    def store(self) -> StoreSettings:
        """Get strategy store settings."""
        return StoreSettings()

    @property
    def execution(self) -> ExecutionSettings:
        """Get execution settings."""
        return ExecutionSettings()

    @property
    def logging(self) -> LoggingSettings:
        """Get logging settings."""
        return LoggingSettings()

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload settings.
    """
    return Settings()


def reload_settings() -> Settings:
    """Reload settings from environment."""
    get_settings.cache_clear()
    return get_settings()
