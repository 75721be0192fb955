"""Worklin webhooks: signed outbound notifications for workspace events.

Notifies external HTTP endpoints when pages and blocks are created,
updated or deleted. Every request is signed with HMAC-SHA256, failed
deliveries are retried with exponential backoff, and every attempt is
recorded in an append-only delivery log.

Quick Start:
    from worklin_webhooks import WebhookService

    async with WebhookService.create() as webhooks:
        hook = await webhooks.create_webhook(
            "ws_123",
            {"name": "CI", "url": "https://ci.example.com/hook", "events": ["page.created"]},
        )
        await webhooks.trigger_webhooks("ws_123", "page.created", {"pageId": "pg_1"})
        await webhooks.start_retry_worker("ws_123")

Subscribers verify requests with:
    from worklin_webhooks import verify

    verify(secret, request_body, request.headers["X-Worklin-Signature"])
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import (
    ConfigurationError,
    ConfigurationGone,
    NotFoundError,
    StorageError,
    TransientDeliveryError,
    ValidationError,
    WebhookError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)

# Models
from .models import (
    ALL_EVENT_TYPES,
    WORKSPACE_EVENT_TYPES,
    BlockEventData,
    DeliveryAttemptLog,
    DeliveryStatus,
    EventType,
    PageEventData,
    WebhookCreate,
    WebhookSubscription,
    WebhookUpdate,
    WorkspaceEventType,
)

# Storage
from .storage import WebhookStorage

# Delivery
from .webhooks import (
    RetryScheduler,
    WebhookDispatcher,
    WebhookRegistry,
    WebhookService,
    compute_backoff,
    generate_secret,
    sign,
    verify,
)

__all__ = [
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Exceptions
    "ConfigurationError",
    "ConfigurationGone",
    "NotFoundError",
    "StorageError",
    "TransientDeliveryError",
    "ValidationError",
    "WebhookError",
    # Logging
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
    # Models
    "ALL_EVENT_TYPES",
    "BlockEventData",
    "DeliveryAttemptLog",
    "DeliveryStatus",
    "EventType",
    "PageEventData",
    "WebhookCreate",
    "WebhookSubscription",
    "WebhookUpdate",
    "WORKSPACE_EVENT_TYPES",
    "WorkspaceEventType",
    # Storage
    "WebhookStorage",
    # Delivery
    "RetryScheduler",
    "WebhookDispatcher",
    "WebhookRegistry",
    "WebhookService",
    "compute_backoff",
    "generate_secret",
    "sign",
    "verify",
]
