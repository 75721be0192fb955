"""Qdrant storage client for webhook subscriptions and delivery logs.

This module provides the WebhookStorage class that combines all storage
operations through mixins.

Example:
    ```python
    from worklin_webhooks.storage import WebhookStorage

    async with WebhookStorage() as storage:
        await storage.store_webhook(webhook)
        logs = await storage.get_delivery_logs("ws_123", limit=50)
    ```
"""

from __future__ import annotations

from typing import Any

from .base import StorageBase
from .delivery import DeliveryLogMixin
from .webhook import WebhookMixin


class WebhookStorage(WebhookMixin, DeliveryLogMixin, StorageBase):
    """Async Qdrant storage client for the webhook subsystem.

    This class combines functionality from multiple mixins:
    - WebhookMixin: store_webhook, get_webhook, list_webhooks, delete_webhook
    - DeliveryLogMixin: append_delivery_log, get_delivery_logs, get_lineage,
      get_latest_attempt, get_due_retries, remove_pending_retry

    Example:
        ```python
        storage = WebhookStorage(url=":memory:")
        await storage.initialize()

        await storage.store_webhook(webhook)
        due = await storage.get_due_retries("ws_123", now=utc_now())
        ```
    """

    async def __aenter__(self) -> WebhookStorage:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
