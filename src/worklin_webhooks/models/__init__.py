"""Data models for the webhook subsystem.

Records:
    - WebhookSubscription: Where and for which events to send notifications
    - DeliveryAttemptLog: One record per delivery attempt (append-only)

Wire payloads:
    - PageEnvelope, BlockEnvelope, TestEnvelope: Tagged union keyed by event type
"""

from .base import generate_id, to_epoch_ms, utc_now
from .delivery import DeliveryAttemptLog, DeliveryStatus
from .events import (
    ALL_EVENT_TYPES,
    TEST_EVENT,
    WORKSPACE_EVENT_TYPES,
    BlockEnvelope,
    BlockEventData,
    DeliveryEnvelope,
    EventType,
    PageEnvelope,
    PageEventData,
    TestEnvelope,
    TestEventData,
    WorkspaceEventType,
    build_envelope,
    envelope_body,
    parse_envelope,
    to_validation_error,
)
from .webhook import WebhookCreate, WebhookSubscription, WebhookUpdate

__all__ = [
    # Helpers
    "generate_id",
    "to_epoch_ms",
    "utc_now",
    # Subscriptions
    "WebhookCreate",
    "WebhookSubscription",
    "WebhookUpdate",
    # Delivery log
    "DeliveryAttemptLog",
    "DeliveryStatus",
    # Events
    "ALL_EVENT_TYPES",
    "TEST_EVENT",
    "BlockEnvelope",
    "BlockEventData",
    "DeliveryEnvelope",
    "EventType",
    "PageEnvelope",
    "PageEventData",
    "TestEnvelope",
    "TestEventData",
    "WORKSPACE_EVENT_TYPES",
    "WorkspaceEventType",
    "build_envelope",
    "envelope_body",
    "parse_envelope",
    "to_validation_error",
]
