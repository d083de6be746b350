"""
Relay Settings

Environment-driven configuration shared by the webhook app, the worker
and the CLI. Values are read from the process environment and, when
present, a local .env file.
"""

import functools

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0")

    # Chatwoot
    chatwoot_url: str = Field(default="http://localhost:3000", description="Chatwoot base URL")
    chatwoot_api_key: str = Field(default="", description="Agent/bot api_access_token")
    chatwoot_account_id: int = Field(default=1)
    chatwoot_inbox_id: int = Field(default=1)
    chatwoot_timeout: float = Field(default=10.0)
    chatwoot_max_attempts: int = Field(default=3)
    chatwoot_backoff_seconds: float = Field(default=1.0)
    chatwoot_rate_limit_cooldown: float = Field(default=5.0)

    # Identity cache
    cache_namespace: str = Field(default="wauac:mapping")
    cache_ttl_days: int = Field(default=7)

    # Delivery queue
    queue_name: str = Field(default="z-api-messages")
    queue_max_attempts: int = Field(default=3)
    queue_backoff_seconds: float = Field(default=2.0)
    queue_keep_completed: int = Field(default=20)
    queue_keep_failed: int = Field(default=50)
    status_job_delay_ms: int = Field(default=1000)

    # Worker
    message_concurrency: int = Field(default=5)
    status_concurrency: int = Field(default=3)
    worker_poll_interval: float = Field(default=0.5)
    worker_shutdown_grace_seconds: float = Field(default=30.0)
    worker_reclaim_interval: int = Field(default=60)
    worker_reclaim_idle_ms: int = Field(default=300000)

    # Per-participant lock
    lock_lease_ms: int = Field(default=30000)
    lock_wait_seconds: float = Field(default=10.0)

    # Dedupe of delivered provider message ids
    dedupe_ttl_seconds: int = Field(default=7 * 24 * 3600)

    # Z-API webhook
    zapi_webhook_token: str = Field(default="", description="Optional shared secret for webhooks")
    webhook_rate_limit: int = Field(default=30, description="Requests per client per window, 0 disables")
    webhook_rate_window_seconds: int = Field(default=60)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or text")

    @field_validator("chatwoot_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return v

    @property
    def cache_ttl_seconds(self) -> int:
        return self.cache_ttl_days * 24 * 3600


@functools.lru_cache()
def get_settings() -> Settings:
    """Get settings (cached)."""
    return Settings()
