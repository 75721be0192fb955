"""Webhook delivery system for Worklin.

Provides subscription management, HMAC-signed delivery with exponential
backoff retry, and a background retry worker.

Example:
    ```python
    from worklin_webhooks.webhooks import WebhookDispatcher, WebhookRegistry

    registry = WebhookRegistry(storage)
    dispatcher = WebhookDispatcher(storage, registry=registry)

    # Fire and forget
    dispatcher.trigger("ws_123", "block.updated", {"pageId": "pg_1", "blockId": "blk_9"})
    ```
"""

from .delivery import WebhookDispatcher, compute_backoff
from .registry import WebhookRegistry
from .scheduler import RetryScheduler
from .service import WebhookService
from .signing import generate_secret, sign, verify

__all__ = [
    "RetryScheduler",
    "WebhookDispatcher",
    "WebhookRegistry",
    "WebhookService",
    "compute_backoff",
    "generate_secret",
    "sign",
    "verify",
]
