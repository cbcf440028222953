from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration read from environment variables."""

    model_config = SettingsConfigDict(env_prefix="SUPPORTDESK_", env_file=".env", case_sensitive=False)

    app_name: str = Field(default="SupportDesk API")
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="%(asctime)s %(levelname)s %(name)s %(message)s")

    # Persistence; the store stays in memory when no DSN is configured
    postgres_dsn: str | None = Field(default=None)

    # Billing and feeds
    rate_per_hour: float = Field(default=150.0, gt=0)
    activity_feed_limit: int = Field(default=50, gt=0)

    # Session verification
    api_tokens: dict[str, str] = Field(default_factory=dict)
    bootstrap_admin_email: str = Field(default="admin@supportdesk.local")
    bootstrap_admin_name: str = Field(default="System Admin")
    bootstrap_admin_token: str | None = Field(default=None)

    # Observability configuration
    otel_enabled: bool = Field(default=False)
    otel_service_name: str = Field(default="supportdesk-api")
    otel_exporter_otlp_endpoint: str | None = Field(default=None)
    otel_exporter_otlp_headers: str | None = Field(default=None)
    otel_sample_ratio: float = Field(default=1.0, ge=0.0, le=1.0)


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the application settings."""

    return Settings()
