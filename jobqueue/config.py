"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from jobqueue.errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database (broker + key-value store). Required at startup.
    database_url: str | None = None
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Worker Configuration
    worker_id: str | None = None
    worker_lease_duration_seconds: int = 30
    worker_poll_interval_seconds: float = 1.0
    worker_heartbeat_interval_seconds: float = 10.0

    # Side effect reservations older than this may be reclaimed (0 disables)
    side_effect_reservation_ttl_seconds: int = 600

    # Background loops
    reaper_interval_seconds: int = 10
    metrics_interval_seconds: float = 5.0
    scheduler_interval_seconds: int = 60

    # Observability
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "jobqueue"
    prometheus_port: int = 9090
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    def require_database_url(self) -> str:
        """
        Return the database URL or fail startup.

        Raises:
            ConfigurationError: If DATABASE_URL is not configured.
        """
        if not self.database_url:
            raise ConfigurationError("DATABASE_URL is not defined")
        return self.database_url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
