"""Webhook subscription models.

A subscription is a workspace-scoped record describing where to POST
notifications and for which event types.
"""

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, HttpUrl, TypeAdapter

from .base import generate_id, utc_now
from .events import WorkspaceEventType

_http_url = TypeAdapter(HttpUrl)


def _validate_url(value: str) -> str:
    """Accept only absolute http(s) URLs; keep the caller's spelling."""
    value = value.strip()
    _http_url.validate_python(value)
    return value


def _dedupe_events(events: list[WorkspaceEventType]) -> list[WorkspaceEventType]:
    """Drop repeated event types, keeping first-seen order."""
    return list(dict.fromkeys(events))


WebhookUrl = Annotated[str, AfterValidator(_validate_url)]
EventList = Annotated[
    list[WorkspaceEventType], Field(min_length=1), AfterValidator(_dedupe_events)
]
WebhookName = Annotated[str, Field(min_length=1, max_length=200)]
Secret = Annotated[str, Field(min_length=1)]


class WebhookSubscription(BaseModel):
    """A registered webhook endpoint.

    Attributes:
        id: Unique identifier for this webhook.
        workspace_id: Workspace that owns this webhook.
        name: Display name.
        url: Absolute http(s) endpoint that receives events.
        events: Event types this webhook subscribes to (never empty).
        secret: Shared secret for HMAC-SHA256 signatures.
        enabled: Whether deliveries are sent.
        created_at: When the webhook was registered.
        updated_at: When the webhook was last modified.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    id: str = Field(default_factory=lambda: generate_id("whk"))
    workspace_id: str = Field(min_length=1, description="Workspace that owns this webhook")
    name: WebhookName = Field(description="Display name")
    url: WebhookUrl = Field(description="Absolute http(s) endpoint to receive events")
    events: EventList = Field(description="Subscribed event types")
    secret: Secret = Field(description="Shared secret for HMAC-SHA256 signatures")
    enabled: bool = Field(default=True, description="Whether webhook is active")
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the webhook was registered",
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        description="When the webhook was last modified",
    )

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this webhook is enabled and subscribed to the event type."""
        return self.enabled and event_type in self.events


class WebhookCreate(BaseModel):
    """Input for registering a webhook. A secret is generated when omitted."""

    model_config = ConfigDict(extra="forbid")

    name: WebhookName
    url: WebhookUrl
    events: EventList
    secret: Secret | None = None
    enabled: bool = True


class WebhookUpdate(BaseModel):
    """Partial update. Only fields that are set are applied.

    Setting ``secret`` rotates the signing secret.
    """

    model_config = ConfigDict(extra="forbid")

    name: WebhookName | None = None
    url: WebhookUrl | None = None
    events: EventList | None = None
    secret: Secret | None = None
    enabled: bool | None = None


__all__ = [
    "WebhookCreate",
    "WebhookSubscription",
    "WebhookUpdate",
]
