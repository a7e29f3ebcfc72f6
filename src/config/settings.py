"""Application settings using Pydantic Settings for environment-based configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the queue-retry application.

    All settings can be overridden via environment variables.
    Prefix is not used to allow standard env var names (e.g., REDIS_URL).
    Retry and backoff tuning lives in src.queues.config.RetryConfig.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Redis
    redis_url: RedisDsn = Field(default="redis://localhost:6379/0")
    queue_key_prefix: str = "queue_retry"

    # Queue depth monitoring
    monitored_queues: str = Field(
        default="",
        description="Comma-separated queue names sampled by the depth reporter",
    )
    monitor_interval_seconds: float = Field(default=60.0, gt=0.0)

    # Observability
    metrics_port: int = 8000
    tracing_enabled: bool = False
    otel_exporter_otlp_endpoint: str | None = None
    otel_service_name: str = "queue-retry"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def monitored_queue_names(self) -> list[str]:
        """Monitored queue names parsed from the comma-separated setting."""
        return [
            name.strip()
            for name in self.monitored_queues.split(",")
            if name.strip()
        ]


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    Clear cache with get_settings.cache_clear() if needed.
    """
    return Settings()
