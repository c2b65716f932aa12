"""Application configuration settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = ".env"
ENV_FILE_ENCODING = "utf-8"


class Settings(BaseSettings):
    """Application configuration values loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=ENV_FILE, env_file_encoding=ENV_FILE_ENCODING, extra="ignore"
    )

    database_url: str = Field(
        default="sqlite:///./notifyhub.db",
        description="Database connection URL used by SQLAlchemy to connect to the DB",
        min_length=1,
    )
    app_timezone: str = Field(
        default="UTC",
        description="IANA timezone (or UTC+HH:MM offset) used for stored timestamps",
    )
    log_level: str = Field(default="INFO", description="Root logging level")
    sendgrid_api_key: str | None = Field(
        default=None,
        description="SendGrid API key used for sending transactional emails via the REST API",
    )
    sendgrid_sender: str | None = Field(
        default=None,
        description="Email address that will appear as the sender of notification emails",
        min_length=3,
    )
    webhook_secrets: dict[str, str] = Field(
        default_factory=dict,
        description="Signing secret per webhook gateway, e.g. {\"stripe\": \"whsec_...\"}",
    )
    stripe_signature_tolerance_seconds: int = Field(
        default=300,
        description="Maximum age accepted for the timestamp of a Stripe signature (0 disables)",
        ge=0,
    )
    dispatch_workers: int = Field(
        default=4, description="Size of the delivery worker pool", gt=0
    )
    send_timeout_seconds: float = Field(
        default=10.0,
        description="Seconds a channel send may take before it is treated as retryable",
        gt=0,
    )
    max_attempts: int = Field(
        default=5, description="Send attempts per delivery before it is exhausted", gt=0
    )
    retry_base_seconds: int = Field(
        default=30, description="Backoff delay after the first failed attempt", gt=0
    )
    retry_max_seconds: int = Field(
        default=1800, description="Upper bound for the retry backoff delay", gt=0
    )
    max_pending_depth: int = Field(
        default=1000,
        description="Pending deliveries above which only critical notifications are released",
        gt=0,
    )
    scheduler_interval_seconds: int = Field(
        default=60, description="Seconds between scheduler ticks", gt=0
    )
    monitor_interval_seconds: int = Field(
        default=300, description="Seconds between monitoring sweeps", gt=0
    )
    success_rate_threshold: float = Field(
        default=95.0,
        description="Webhook success rate (percent) below which an alert is raised",
        ge=0,
        le=100,
    )
    stuck_pending_minutes: int = Field(
        default=5,
        description="Minutes after which a pending webhook event is considered stuck",
        gt=0,
    )
    alert_channels: list[str] = Field(
        default_factory=lambda: ["in_app", "email"],
        description="Channels used to notify administrators about alerts",
    )
    admin_role: str = Field(
        default="admin", description="Role of the users that receive operator alerts"
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:4200"],
        description="Origins allowed to call the API from a browser",
    )
    run_embedded_scheduler: bool = Field(
        default=False,
        description="Start the scheduler loop inside the API process",
    )

    @model_validator(mode="after")
    def _validate_sendgrid_pair(self) -> "Settings":
        if bool(self.sendgrid_api_key) ^ bool(self.sendgrid_sender):
            raise ValueError(
                "SENDGRID_API_KEY and SENDGRID_SENDER must both be provided to enable email"
            )
        if self.sendgrid_sender and "@" not in self.sendgrid_sender:
            raise ValueError("SENDGRID_SENDER must be a valid email address")
        if self.retry_max_seconds < self.retry_base_seconds:
            raise ValueError("RETRY_MAX_SECONDS must not be lower than RETRY_BASE_SECONDS")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the settings cache to force reloading from the environment."""

    get_settings.cache_clear()


__all__ = ["Settings", "get_settings", "reset_settings_cache"]
