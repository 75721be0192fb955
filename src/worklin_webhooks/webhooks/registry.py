"""Webhook subscription registry.

Validates subscription definitions and persists them through the storage
layer. Nothing here caches subscriptions: every caller reads the stored
record, so updates, rotations and deletions are visible to the next
delivery attempt.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from worklin_webhooks.exceptions import NotFoundError
from worklin_webhooks.models import (
    WebhookCreate,
    WebhookSubscription,
    WebhookUpdate,
    to_validation_error,
    utc_now,
)

from .signing import generate_secret

if TYPE_CHECKING:
    from worklin_webhooks.storage import WebhookStorage

logger = logging.getLogger(__name__)


class WebhookRegistry:
    """CRUD for webhook subscriptions, scoped per workspace.

    Example:
        ```python
        registry = WebhookRegistry(storage)
        webhook = await registry.create(
            "ws_123",
            {"name": "CI", "url": "https://ci.example.com/hook", "events": ["page.created"]},
        )
        await registry.update("ws_123", webhook.id, {"enabled": False})
        ```
    """

    def __init__(self, storage: WebhookStorage) -> None:
        self._storage = storage

    async def create(
        self,
        workspace_id: str,
        spec: WebhookCreate | dict[str, Any],
    ) -> WebhookSubscription:
        """Register a new webhook.

        Args:
            workspace_id: Workspace that owns the webhook.
            spec: Name, URL, events and optional secret/enabled flag.

        Returns:
            The stored subscription, including its (possibly generated) secret.

        Raises:
            ValidationError: Invalid URL, empty or unknown events, empty name.
        """
        try:
            if not isinstance(spec, WebhookCreate):
                spec = WebhookCreate.model_validate(spec)
            webhook = WebhookSubscription(
                workspace_id=workspace_id,
                name=spec.name,
                url=spec.url,
                events=spec.events,
                secret=spec.secret or generate_secret(),
                enabled=spec.enabled,
            )
        except PydanticValidationError as e:
            raise to_validation_error(e) from e

        await self._storage.store_webhook(webhook)
        logger.info(
            "Registered webhook %s for workspace %s (events: %s)",
            webhook.id,
            workspace_id,
            ",".join(webhook.events),
        )
        return webhook

    async def list(self, workspace_id: str) -> list[WebhookSubscription]:
        """List a workspace's webhooks, newest first."""
        return await self._storage.list_webhooks(workspace_id)

    async def get(self, workspace_id: str, webhook_id: str) -> WebhookSubscription:
        """Get one webhook.

        Raises:
            NotFoundError: No webhook with that ID in the workspace.
        """
        webhook = await self._storage.get_webhook(workspace_id, webhook_id)
        if webhook is None:
            raise NotFoundError("webhook", webhook_id)
        return webhook

    async def find(self, workspace_id: str, webhook_id: str) -> WebhookSubscription | None:
        """Get one webhook, or None if it does not exist."""
        return await self._storage.get_webhook(workspace_id, webhook_id)

    async def update(
        self,
        workspace_id: str,
        webhook_id: str,
        partial: WebhookUpdate | dict[str, Any],
    ) -> WebhookSubscription:
        """Apply a partial update to a webhook.

        Only supplied fields change. Supplying ``secret`` rotates it.

        Args:
            workspace_id: Workspace that owns the webhook.
            webhook_id: Webhook to update.
            partial: Fields to change.

        Returns:
            The updated subscription.

        Raises:
            NotFoundError: Unknown webhook.
            ValidationError: A supplied field is invalid.
        """
        try:
            if not isinstance(partial, WebhookUpdate):
                partial = WebhookUpdate.model_validate(partial)
        except PydanticValidationError as e:
            raise to_validation_error(e) from e

        existing = await self.get(workspace_id, webhook_id)

        changes = {
            key: value
            for key, value in partial.model_dump(exclude_unset=True).items()
            if value is not None
        }
        data = existing.model_dump()
        data.update(changes)
        data["updated_at"] = utc_now()

        try:
            webhook = WebhookSubscription.model_validate(data)
        except PydanticValidationError as e:
            raise to_validation_error(e) from e

        await self._storage.store_webhook(webhook)
        logger.info(
            "Updated webhook %s (fields: %s)",
            webhook_id,
            ",".join(sorted(changes)) or "none",
        )
        return webhook

    async def delete(self, workspace_id: str, webhook_id: str) -> None:
        """Delete a webhook. Pending retries for it stop at their next attempt.

        Raises:
            NotFoundError: Unknown webhook.
        """
        await self.get(workspace_id, webhook_id)
        await self._storage.delete_webhook(workspace_id, webhook_id)
        logger.info("Deleted webhook %s from workspace %s", webhook_id, workspace_id)

    async def rotate_secret(
        self,
        workspace_id: str,
        webhook_id: str,
        secret: str | None = None,
    ) -> WebhookSubscription:
        """Replace a webhook's signing secret.

        Args:
            workspace_id: Workspace that owns the webhook.
            webhook_id: Webhook to rotate.
            secret: New secret; generated when omitted.

        Returns:
            The updated subscription carrying the new secret.
        """
        return await self.update(
            workspace_id,
            webhook_id,
            WebhookUpdate(secret=secret or generate_secret()),
        )
