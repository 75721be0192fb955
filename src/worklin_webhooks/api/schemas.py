"""Pydantic schemas for API request/response models.

Request bodies are deliberately loose (plain strings and lists) so that
URL and event-type checks run in the registry and surface as 400
validation errors rather than framework 422s.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Health check response."""

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "unhealthy"]
    version: str
    storage_connected: bool
    retry_worker_running: bool = False


class WebhookCreateRequest(BaseModel):
    """Request body for registering a webhook.

    Attributes:
        name: Display name.
        url: Absolute http(s) endpoint.
        events: Event types to subscribe to.
        secret: Optional shared secret; generated when omitted.
        enabled: Whether deliveries are sent.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(description="Display name")
    url: str = Field(description="Endpoint URL")
    events: list[str] = Field(description="Subscribed event types")
    secret: str | None = Field(default=None, description="Shared secret (generated if omitted)")
    enabled: bool = Field(default=True, description="Whether webhook is active")


class WebhookUpdateRequest(BaseModel):
    """Request body for a partial webhook update. Omitted fields are unchanged."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    url: str | None = None
    events: list[str] | None = None
    secret: str | None = None
    enabled: bool | None = None


class RotateSecretRequest(BaseModel):
    """Request body for rotating a webhook secret."""

    model_config = ConfigDict(extra="forbid")

    secret: str | None = Field(default=None, description="New secret (generated if omitted)")


class WebhookResponse(BaseModel):
    """A webhook subscription without its secret."""

    model_config = ConfigDict(extra="ignore")

    id: str
    workspace_id: str
    name: str
    url: str
    events: list[str]
    enabled: bool
    created_at: datetime
    updated_at: datetime


class WebhookSecretResponse(WebhookResponse):
    """A webhook subscription including its secret.

    Returned only when the secret is created or rotated.
    """

    secret: str


class WebhookListResponse(BaseModel):
    """Response for listing webhooks."""

    model_config = ConfigDict(extra="forbid")

    webhooks: list[WebhookResponse]
    count: int


class DeliveryLogResponse(BaseModel):
    """One delivery attempt."""

    model_config = ConfigDict(extra="forbid")

    id: str
    delivery_id: str
    event_id: str
    webhook_id: str
    workspace_id: str
    event_type: str
    status: Literal["success", "retrying", "failed"]
    attempt: int
    response_status: int | None = None
    response_body: str | None = None
    duration_ms: int
    error_message: str | None = None
    timestamp: datetime
    next_retry_at: datetime | None = None
    payload: str


class DeliveryLogListResponse(BaseModel):
    """Response for delivery log queries."""

    model_config = ConfigDict(extra="forbid")

    logs: list[DeliveryLogResponse]
    count: int


class TriggerEventRequest(BaseModel):
    """Request body for triggering an event.

    Attributes:
        event: Event type, e.g. "page.created".
        data: Event payload, e.g. {"pageId": "pg_1", "title": "Roadmap"}.
    """

    model_config = ConfigDict(extra="forbid")

    event: str = Field(description="Event type")
    data: dict[str, Any] = Field(default_factory=dict, description="Event payload")


class TriggerEventResponse(BaseModel):
    """Acknowledgement for a fire-and-forget trigger."""

    model_config = ConfigDict(extra="forbid")

    accepted: bool
    event: str
    workspace_id: str


class SecretResponse(BaseModel):
    """A freshly generated secret."""

    model_config = ConfigDict(extra="forbid")

    secret: str


class RetryWorkerResponse(BaseModel):
    """Retry worker state."""

    model_config = ConfigDict(extra="forbid")

    running: bool
    workspace_id: str | None = None
