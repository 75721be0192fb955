"""Delivery attempt records.

Every outbound POST produces exactly one DeliveryAttemptLog. Records are
append-only: a retry writes a new record with the next attempt number
rather than updating the previous one.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .base import generate_id, utc_now
from .events import EventType


class DeliveryStatus(str, Enum):
    """Outcome of a single delivery attempt."""

    SUCCESS = "success"  # 2xx received, lineage ends
    RETRYING = "retrying"  # failed, another attempt is scheduled
    FAILED = "failed"  # failed on the last allowed attempt, lineage ends

    @property
    def is_terminal(self) -> bool:
        return self is not DeliveryStatus.RETRYING


class DeliveryAttemptLog(BaseModel):
    """Record of one webhook delivery attempt.

    Attributes:
        id: Unique identifier for this record.
        delivery_id: Lineage ID shared by all attempts of one event to one webhook.
        event_id: ID of the triggering event (shared across webhooks).
        webhook_id: ID of the webhook subscription.
        workspace_id: Workspace that owns the webhook.
        event_type: Event that was delivered.
        status: success, retrying or failed.
        attempt: Attempt number within the lineage (1-indexed).
        response_status: HTTP status code; None on network error or timeout.
        response_body: Response body, truncated, for debugging.
        duration_ms: Wall time of the attempt.
        error_message: Why the attempt failed; None on success.
        timestamp: When the attempt was made.
        next_retry_at: When the next attempt is due; only set while retrying.
        payload: Exact JSON body that was signed and sent.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: generate_id("log"))
    delivery_id: str = Field(description="Delivery lineage ID")
    event_id: str = Field(description="Triggering event ID")
    webhook_id: str = Field(description="Webhook subscription ID")
    workspace_id: str = Field(description="Owning workspace")
    event_type: EventType = Field(description="Event type delivered")
    status: DeliveryStatus = Field(description="Attempt outcome")
    attempt: int = Field(ge=1, description="Attempt number within the lineage")
    response_status: int | None = Field(default=None, description="HTTP response status")
    response_body: str | None = Field(default=None, description="Truncated response body")
    duration_ms: int = Field(default=0, ge=0, description="Attempt duration in milliseconds")
    error_message: str | None = Field(default=None, description="Failure reason")
    timestamp: datetime = Field(default_factory=utc_now, description="When the attempt ran")
    next_retry_at: datetime | None = Field(default=None, description="When the next attempt is due")
    payload: str = Field(description="JSON body that was sent")

    @model_validator(mode="after")
    def _check_status_fields(self) -> "DeliveryAttemptLog":
        if self.status is DeliveryStatus.RETRYING and self.next_retry_at is None:
            raise ValueError("next_retry_at is required while retrying")
        if self.status is not DeliveryStatus.RETRYING and self.next_retry_at is not None:
            raise ValueError("next_retry_at is only allowed while retrying")
        if self.status is DeliveryStatus.SUCCESS and self.error_message is not None:
            raise ValueError("error_message must be empty on success")
        return self

    def is_due(self, now: datetime) -> bool:
        """Whether this record schedules a retry at or before now."""
        return (
            self.status is DeliveryStatus.RETRYING
            and self.next_retry_at is not None
            and self.next_retry_at <= now
        )


__all__ = [
    "DeliveryAttemptLog",
    "DeliveryStatus",
]
