"""Webhook service facade.

This module provides the WebhookService that the host application calls:
subscription management, event triggering, delivery history and the
retry worker lifecycle.

Example:
    ```python
    from worklin_webhooks.webhooks import WebhookService

    async with WebhookService.create() as webhooks:
        hook = await webhooks.create_webhook(
            "ws_123",
            {"name": "CI", "url": "https://ci.example.com/hook", "events": ["page.created"]},
        )
        await webhooks.trigger_webhooks("ws_123", "page.created", {"pageId": "pg_1"})
        await webhooks.start_retry_worker("ws_123")
    ```
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from worklin_webhooks.config import Settings
from worklin_webhooks.exceptions import ConfigurationError, NotFoundError
from worklin_webhooks.models import (
    DeliveryAttemptLog,
    WebhookCreate,
    WebhookSubscription,
    WebhookUpdate,
)
from worklin_webhooks.storage import WebhookStorage

from .delivery import WebhookDispatcher
from .registry import WebhookRegistry
from .scheduler import RetryScheduler
from .signing import generate_secret


@dataclass
class WebhookService:
    """High-level webhook service.

    Owns one storage client, registry, dispatcher and retry scheduler.
    Components not passed in are built from settings and storage.

    Attributes:
        storage: Storage backend (Qdrant).
        settings: Configuration settings.
        registry: Subscription registry.
        dispatcher: Event dispatcher.
        scheduler: Retry worker.
    """

    storage: WebhookStorage
    settings: Settings
    registry: WebhookRegistry = field(default=None)  # type: ignore[assignment]
    dispatcher: WebhookDispatcher = field(default=None)  # type: ignore[assignment]
    scheduler: RetryScheduler = field(default=None)  # type: ignore[assignment]

    def __post_init__(self) -> None:
        """Build default components after dataclass construction."""
        if self.registry is None:
            self.registry = WebhookRegistry(self.storage)
        if self.dispatcher is None:
            self.dispatcher = WebhookDispatcher(
                self.storage,
                registry=self.registry,
                settings=self.settings,
            )
        if self.scheduler is None:
            self.scheduler = RetryScheduler(self.dispatcher, self.storage, self.settings)

    @classmethod
    def create(cls, settings: Settings | None = None) -> WebhookService:
        """Create a WebhookService with default dependencies.

        Args:
            settings: Optional settings. Uses defaults if None.

        Returns:
            Configured WebhookService instance.

        Raises:
            ConfigurationError: Settings from the environment are invalid.
        """
        if settings is None:
            try:
                settings = Settings()
            except PydanticValidationError as e:
                raise ConfigurationError(f"Invalid webhook settings: {e}") from e

        return cls(
            storage=WebhookStorage(
                url=settings.qdrant_url,
                api_key=settings.qdrant_api_key,
                prefix=settings.collection_prefix,
                max_scroll_limit=settings.storage_max_scroll_limit,
            ),
            settings=settings,
        )

    async def initialize(self) -> None:
        """Initialize the service (storage collections)."""
        await self.storage.initialize()

    async def close(self) -> None:
        """Stop the retry worker, finish background deliveries and close storage."""
        await self.stop_retry_worker()
        await self.dispatcher.drain()
        await self.storage.close()

    async def __aenter__(self) -> WebhookService:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    # Subscriptions

    async def create_webhook(
        self,
        workspace_id: str,
        spec: WebhookCreate | dict[str, Any],
    ) -> WebhookSubscription:
        return await self.registry.create(workspace_id, spec)

    async def list_webhooks(self, workspace_id: str) -> list[WebhookSubscription]:
        return await self.registry.list(workspace_id)

    async def get_webhook(self, workspace_id: str, webhook_id: str) -> WebhookSubscription:
        return await self.registry.get(workspace_id, webhook_id)

    async def update_webhook(
        self,
        workspace_id: str,
        webhook_id: str,
        partial: WebhookUpdate | dict[str, Any],
    ) -> WebhookSubscription:
        return await self.registry.update(workspace_id, webhook_id, partial)

    async def delete_webhook(self, workspace_id: str, webhook_id: str) -> None:
        await self.registry.delete(workspace_id, webhook_id)

    async def rotate_webhook_secret(
        self,
        workspace_id: str,
        webhook_id: str,
        secret: str | None = None,
    ) -> WebhookSubscription:
        """Replace a webhook's secret; pending retries sign with the new one."""
        return await self.registry.rotate_secret(workspace_id, webhook_id, secret)

    def generate_webhook_secret(self) -> str:
        """Generate a secret suitable for a new webhook."""
        return generate_secret()

    # Events

    async def trigger_webhooks(
        self,
        workspace_id: str,
        event_type: str,
        data: BaseModel | dict[str, Any] | None = None,
    ) -> None:
        """Fire and forget: validate the event and deliver it in the background.

        Raises:
            ValidationError: Unknown event type, webhook.test, or malformed payload.
        """
        self.dispatcher.trigger(workspace_id, event_type, data)

    async def send_test_webhook(self, workspace_id: str, webhook_id: str) -> DeliveryAttemptLog:
        """Deliver a webhook.test event to one webhook and return the attempt record."""
        return await self.dispatcher.send_test(workspace_id, webhook_id)

    # Delivery history

    async def get_delivery_logs(
        self,
        workspace_id: str,
        limit: int = 100,
    ) -> list[DeliveryAttemptLog]:
        """Most recent delivery attempts in a workspace, newest first."""
        return await self.storage.get_delivery_logs(workspace_id, limit=limit)

    async def get_webhook_logs(
        self,
        workspace_id: str,
        webhook_id: str,
        limit: int = 100,
    ) -> list[DeliveryAttemptLog]:
        """Most recent delivery attempts for one webhook, newest first."""
        await self.registry.get(workspace_id, webhook_id)
        return await self.storage.get_delivery_logs(
            workspace_id,
            limit=limit,
            webhook_id=webhook_id,
        )

    async def get_delivery_lineage(
        self,
        workspace_id: str,
        delivery_id: str,
    ) -> list[DeliveryAttemptLog]:
        """Every attempt of one delivery, in attempt order.

        Raises:
            NotFoundError: No attempts recorded for that delivery in the workspace.
        """
        lineage = await self.storage.get_lineage(delivery_id, workspace_id=workspace_id)
        if not lineage:
            raise NotFoundError("delivery", delivery_id)
        return lineage

    # Retry worker

    async def start_retry_worker(self, workspace_id: str) -> None:
        await self.scheduler.start(workspace_id)

    async def stop_retry_worker(self) -> None:
        self.scheduler.stop()
        await self.scheduler.wait_closed()


__all__ = ["WebhookService"]
