"""Configuration management for Worklin webhooks."""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Webhook subsystem configuration.

    Every field can be set through the environment with the
    ``WORKLIN_WEBHOOKS_`` prefix, e.g. ``WORKLIN_WEBHOOKS_WEBHOOK_MAX_ATTEMPTS=3``.
    """

    # Storage
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant server URL",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        description="Qdrant API key (optional for local instances)",
    )
    collection_prefix: str = Field(
        default="worklin",
        min_length=1,
        description="Prefix applied to every collection name",
    )
    storage_max_scroll_limit: int = Field(
        default=10000,
        ge=100,
        le=100000,
        description=(
            "Maximum records to fetch in a single scroll operation. "
            "Bounds memory usage when reading long delivery histories."
        ),
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log format: json for production, text for development",
    )

    # Delivery
    webhook_request_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Hard timeout for a single outbound POST",
    )
    webhook_max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Attempts per delivery lineage before it is marked failed",
    )
    max_concurrent_deliveries: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Maximum outbound requests in flight per dispatcher",
    )
    response_body_max_chars: int = Field(
        default=1000,
        ge=0,
        le=100000,
        description="Response body characters kept on a delivery log record",
    )

    # Retry / backoff
    retry_base_delay_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="Delay before the first retry; doubles on each attempt",
    )
    retry_max_delay_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Upper bound for any single retry delay",
    )
    retry_jitter_ratio: float = Field(
        default=0.1,
        ge=0.0,
        le=0.3,
        description=(
            "Random spread applied to each delay (0.1 = +/-10%). Kept at or below "
            "0.3 so delays stay non-decreasing until the cap is reached."
        ),
    )
    retry_poll_interval_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=3600.0,
        description="How often the retry worker scans for due retries",
    )
    retry_batch_size: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum due retries picked up in one polling cycle",
    )

    # CORS Configuration
    cors_enabled: bool = Field(
        default=True,
        description="Enable CORS middleware",
    )
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="List of allowed CORS origins",
    )
    cors_allow_methods: list[str] = Field(
        default_factory=lambda: ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        description="Allowed HTTP methods for CORS requests",
    )
    cors_allow_headers: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed headers for CORS requests",
    )

    model_config = {
        "env_prefix": "WORKLIN_WEBHOOKS_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def validate_retry_delays(self) -> "Settings":
        """Reject a delay cap below the base delay."""
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            raise ValueError(
                f"retry_max_delay_seconds ({self.retry_max_delay_seconds}) must be >= "
                f"retry_base_delay_seconds ({self.retry_base_delay_seconds})"
            )
        return self


# Global settings instance
settings = Settings()
