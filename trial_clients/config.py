"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # Redis (notification push events)
    redis_url: str = "redis://localhost:6379/0"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "tRIAL-cLIENTS API"
    api_version: str = "0.1.0"
    api_description: str = "Quota, credits, referrals, social rewards and notifications"
    public_base_url: str = "http://localhost:8080"

    # User session tokens (HS256, issued by the auth provider)
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"

    # Brief generation
    brief_webhook_url: str = ""
    brief_webhook_timeout_seconds: float = 30.0
    brief_callback_secret: str = ""  # Shared secret expected in X-Callback-Secret
    generation_max_attempts: int = 5
    generation_backoff_base_seconds: int = 30
    generation_backoff_max_seconds: int = 1800
    generation_callback_timeout_minutes: int = 30
    generation_poll_interval_seconds: float = 5.0
    generation_batch_size: int = 10
    # A claimed job stays invisible to other workers this long while its POST runs
    generation_claim_lease_seconds: int = 120

    # Social rewards
    social_reward_cooldown_days: int = 7
    social_reward_default_credits: int = 3

    # Referrals
    referral_reward_credits: int = 2
    referral_daily_cap: int = 1

    # Notifications
    notification_undo_seconds: float = 5.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "trial-clients-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.generation_max_attempts < 1:
            errors.append("GENERATION_MAX_ATTEMPTS must be at least 1")

        if self.generation_claim_lease_seconds <= self.brief_webhook_timeout_seconds:
            errors.append(
                "GENERATION_CLAIM_LEASE_SECONDS must exceed BRIEF_WEBHOOK_TIMEOUT_SECONDS"
            )

        if self.referral_reward_credits < 0:
            errors.append("REFERRAL_REWARD_CREDITS cannot be negative")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
