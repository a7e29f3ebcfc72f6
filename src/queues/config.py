"""
Retry configuration for queue failure handling.

The backoff bounds are the only tunables of the delay policy: the maximum
number of retries is derived from them so that the last retry delay always
stays within ``max_backoff_ms``. Keep ``max_backoff_ms`` below the queue's
own message time-to-live, otherwise the message expires before its last
scheduled redelivery.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.queues.backoff import DEFAULT_MAX_BACKOFF_MS, DEFAULT_MIN_BACKOFF_MS, derive_max_retries


class RetryConfig(BaseSettings):
    """
    Configuration for transient-error backoff and redelivery.

    All settings can be overridden via environment variables prefixed with RETRY_.

    Example:
        RETRY_MIN_BACKOFF_MS=500
        RETRY_MAX_BACKOFF_MS=86400000
        RETRY_MAX_ESCALATIONS=1
    """

    model_config = SettingsConfigDict(
        env_prefix="RETRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Backoff bounds
    min_backoff_ms: int = Field(
        default=DEFAULT_MIN_BACKOFF_MS,
        gt=0,
        description="Smallest unit of delay; attempt n waits min_backoff_ms * 2^n",
    )
    max_backoff_ms: int = Field(
        default=DEFAULT_MAX_BACKOFF_MS,
        gt=0,
        description="Ceiling on the last retry delay (7 days, under typical queue TTL maxima)",
    )

    # Permanent -> transient escalation bound per failure
    max_escalations: int = Field(
        default=3,
        ge=0,
        description="Failed permanent-error cleanups tolerated before forcing the transient path",
    )

    # Worker settings
    visibility_timeout_seconds: int = Field(
        default=30,
        ge=1,
        description="Lease granted to a received message before it becomes visible again",
    )
    max_dequeue_count: int | None = Field(
        default=None,
        ge=1,
        description="Poison threshold. Defaults to max_retries + 1",
    )
    receive_batch_size: int = Field(default=16, ge=1, le=32)
    poll_interval_seconds: float = Field(default=1.0, gt=0.0)
    message_ttl_seconds: int = Field(
        default=7 * 24 * 3600,
        ge=1,
        description="Absolute lifetime of an enqueued message",
    )

    # Supervised worker loop (connection failures, not message failures)
    worker_backoff_base_delay: float = Field(default=1.0, gt=0.0)
    worker_backoff_max_delay: float = Field(default=60.0, gt=0.0)
    worker_max_consecutive_failures: int = Field(default=10, ge=1)

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> "RetryConfig":
        if self.max_backoff_ms < self.min_backoff_ms:
            raise ValueError("max_backoff_ms must be >= min_backoff_ms")
        return self

    @property
    def max_retries(self) -> int:
        """Number of deliveries that still get a backoff delay."""
        return derive_max_retries(self.min_backoff_ms, self.max_backoff_ms)

    @property
    def poison_threshold(self) -> int:
        """Dequeue count above which the worker parks a message instead of handling it."""
        if self.max_dequeue_count is not None:
            return self.max_dequeue_count
        return self.max_retries + 1
