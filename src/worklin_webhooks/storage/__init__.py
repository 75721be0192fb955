"""Storage backend for Worklin webhooks.

Persists webhook subscriptions and the append-only delivery log to the
Qdrant document store, scoped per workspace.

Example:
    ```python
    from worklin_webhooks.storage import WebhookStorage

    async with WebhookStorage() as storage:
        webhooks = await storage.list_webhooks("ws_123")
    ```
"""

from .base import COLLECTION_NAMES
from .client import WebhookStorage
from .retry import STORAGE_ERRORS, qdrant_retry, storage_operation

__all__ = [
    "COLLECTION_NAMES",
    "STORAGE_ERRORS",
    "WebhookStorage",
    "qdrant_retry",
    "storage_operation",
]
