"""Workspace event types and the delivery envelope sent to subscribers.

The envelope is a tagged union keyed by ``event``: page events carry
page data, block events carry block data, and the test event carries
the identity of the webhook being tested. The wire format is::

    {"data": {...}, "event": "page.created", "timestamp": 1700000000000,
     "workspaceId": "ws_1"}

serialized with sorted keys and compact separators so that the same
envelope always yields the same bytes, which is what the signature covers.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from worklin_webhooks.exceptions import ValidationError

from .base import to_epoch_ms, utc_now

PageEventType = Literal["page.created", "page.updated", "page.deleted"]
BlockEventType = Literal["block.created", "block.updated", "block.deleted"]
TestEventType = Literal["webhook.test"]

# Event types producers can trigger and webhooks can subscribe to
WorkspaceEventType = Literal[
    "page.created",
    "page.updated",
    "page.deleted",
    "block.created",
    "block.updated",
    "block.deleted",
]

# Every event type that can appear in a delivery; webhook.test is only
# sent to a single webhook on request
EventType = Literal[
    "page.created",
    "page.updated",
    "page.deleted",
    "block.created",
    "block.updated",
    "block.deleted",
    "webhook.test",
]

# All available event types for subscription
WORKSPACE_EVENT_TYPES: list[WorkspaceEventType] = list(get_args(WorkspaceEventType))

ALL_EVENT_TYPES: list[EventType] = list(get_args(EventType))

TEST_EVENT: TestEventType = "webhook.test"


class _EventData(BaseModel):
    """Common configuration for event payloads.

    Unknown keys are kept so producers can attach the full page or block
    document; declared keys use camelCase on the wire.
    """

    model_config = ConfigDict(
        extra="allow",
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class PageEventData(_EventData):
    """Payload for page.created / page.updated / page.deleted."""

    page_id: str = Field(min_length=1, description="ID of the affected page")
    title: str | None = Field(default=None, description="Page title")
    icon: str | None = Field(default=None, description="Page icon")


class BlockEventData(_EventData):
    """Payload for block.created / block.updated / block.deleted."""

    page_id: str = Field(min_length=1, description="Page containing the block")
    block_id: str = Field(min_length=1, description="ID of the affected block")
    type: str | None = Field(default=None, description="Block type, e.g. paragraph")
    content: str | None = Field(default=None, description="Block text content")


class TestEventData(_EventData):
    """Payload for webhook.test deliveries."""

    __test__ = False  # keep pytest from collecting this class

    webhook_id: str = Field(min_length=1, description="Webhook being tested")
    webhook_name: str | None = Field(default=None, description="Webhook display name")
    message: str = Field(
        default="This is a test webhook from WorkLin",
        description="Human-readable test message",
    )


class _EnvelopeBase(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    workspace_id: str = Field(min_length=1, description="Workspace that emitted the event")
    timestamp: int = Field(
        default_factory=lambda: to_epoch_ms(utc_now()),
        ge=0,
        description="Event time in epoch milliseconds",
    )

    def body(self) -> bytes:
        """Canonical JSON bytes for this envelope."""
        return envelope_body(self)


class PageEnvelope(_EnvelopeBase):
    """Envelope for page events."""

    event: PageEventType
    data: PageEventData


class BlockEnvelope(_EnvelopeBase):
    """Envelope for block events."""

    event: BlockEventType
    data: BlockEventData


class TestEnvelope(_EnvelopeBase):
    """Envelope for the webhook.test event."""

    __test__ = False

    event: TestEventType
    data: TestEventData


DeliveryEnvelope = Annotated[
    PageEnvelope | BlockEnvelope | TestEnvelope,
    Field(discriminator="event"),
]

_envelope_adapter: TypeAdapter[PageEnvelope | BlockEnvelope | TestEnvelope] = TypeAdapter(
    DeliveryEnvelope
)


def to_validation_error(exc: PydanticValidationError) -> ValidationError:
    """Report the first pydantic error as a package ValidationError."""
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or "event"
    return ValidationError(field, first["msg"])


def build_envelope(
    workspace_id: str,
    event_type: str,
    data: BaseModel | dict[str, Any] | None = None,
    timestamp: int | None = None,
) -> PageEnvelope | BlockEnvelope | TestEnvelope:
    """Build a typed envelope for an event.

    Args:
        workspace_id: Workspace that emitted the event.
        event_type: One of ALL_EVENT_TYPES.
        data: Event payload as a dict or an event data model.
        timestamp: Epoch milliseconds; defaults to now.

    Returns:
        The envelope variant matching event_type.

    Raises:
        ValidationError: Unknown event type or malformed payload.
    """
    if event_type not in ALL_EVENT_TYPES:
        raise ValidationError("event", f"unknown event type '{event_type}'")

    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True, exclude_none=True)

    raw: dict[str, Any] = {
        "event": event_type,
        "workspaceId": workspace_id,
        "data": data if data is not None else {},
    }
    if timestamp is not None:
        raw["timestamp"] = timestamp

    try:
        return _envelope_adapter.validate_python(raw)
    except PydanticValidationError as exc:
        raise to_validation_error(exc) from exc


def envelope_body(envelope: BaseModel) -> bytes:
    """Serialize an envelope to canonical JSON bytes.

    Keys are sorted at every level and separators are compact, so
    re-serializing a parsed envelope reproduces the original bytes.
    """
    payload = envelope.model_dump(mode="json", by_alias=True, exclude_none=True)
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def parse_envelope(body: str | bytes) -> PageEnvelope | BlockEnvelope | TestEnvelope:
    """Parse a serialized envelope back into its typed variant.

    Raises:
        ValidationError: The body is not a valid envelope.
    """
    try:
        return _envelope_adapter.validate_json(body)
    except PydanticValidationError as exc:
        raise to_validation_error(exc) from exc


__all__ = [
    "ALL_EVENT_TYPES",
    "BlockEnvelope",
    "BlockEventData",
    "DeliveryEnvelope",
    "EventType",
    "PageEnvelope",
    "PageEventData",
    "TEST_EVENT",
    "TestEnvelope",
    "TestEventData",
    "WORKSPACE_EVENT_TYPES",
    "WorkspaceEventType",
    "build_envelope",
    "envelope_body",
    "parse_envelope",
    "to_validation_error",
]
