"""Webhook subscription storage operations.

Provides methods to store, retrieve, and delete webhook subscriptions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from qdrant_client import models

from .base import to_epoch_us

from .retry import storage_operation

if TYPE_CHECKING:
    from worklin_webhooks.models import WebhookSubscription


class WebhookMixin:
    """Mixin providing subscription operations for WebhookStorage.

    This mixin expects the following attributes/methods from the base class:
    - _collection_name(record_type) -> str
    - _build_key(record_id, workspace_id) -> str
    - _key_to_point_id(key) -> str
    - _upsert(collection_name, key, payload)
    - _scroll_ordered(collection_name, scroll_filter, order_key, ...) -> list[dict]
    - _delete_key(collection_name, key)
    - _payload_to_model(payload, model_class)
    - client: AsyncQdrantClient
    """

    _collection_name: Any
    _build_key: Any
    _key_to_point_id: Any
    _upsert: Any
    _scroll_ordered: Any
    _delete_key: Any
    _payload_to_model: Any
    client: Any

    @storage_operation
    async def store_webhook(self, webhook: WebhookSubscription) -> str:
        """Insert or replace a webhook subscription.

        Args:
            webhook: WebhookSubscription to store.

        Returns:
            The webhook ID.
        """
        payload = webhook.model_dump(mode="json")
        payload["created_at_us"] = to_epoch_us(webhook.created_at)

        await self._upsert(
            self._collection_name("webhooks"),
            self._build_key(webhook.id, webhook.workspace_id),
            payload,
        )
        return webhook.id

    @storage_operation
    async def get_webhook(
        self,
        workspace_id: str,
        webhook_id: str,
    ) -> WebhookSubscription | None:
        """Get a webhook by ID.

        Args:
            workspace_id: Workspace that owns the webhook.
            webhook_id: ID of the webhook.

        Returns:
            WebhookSubscription or None if not found.
        """
        from worklin_webhooks.models import WebhookSubscription

        key = self._build_key(webhook_id, workspace_id)
        results = await self.client.retrieve(
            collection_name=self._collection_name("webhooks"),
            ids=[self._key_to_point_id(key)],
            with_payload=True,
        )

        if not results or results[0].payload is None:
            return None

        webhook: WebhookSubscription = self._payload_to_model(
            results[0].payload, WebhookSubscription
        )
        return webhook

    @storage_operation
    async def list_webhooks(
        self,
        workspace_id: str,
        enabled_only: bool = False,
    ) -> list[WebhookSubscription]:
        """List webhooks for a workspace, newest first.

        Args:
            workspace_id: Workspace to list webhooks for.
            enabled_only: If True, only return enabled webhooks.

        Returns:
            List of WebhookSubscription.
        """
        from worklin_webhooks.models import WebhookSubscription

        filters: list[models.FieldCondition] = [
            models.FieldCondition(
                key="workspace_id",
                match=models.MatchValue(value=workspace_id),
            )
        ]

        if enabled_only:
            filters.append(
                models.FieldCondition(
                    key="enabled",
                    match=models.MatchValue(value=True),
                )
            )

        payloads = await self._scroll_ordered(
            self._collection_name("webhooks"),
            models.Filter(must=filters),
            "created_at_us",
            descending=True,
        )

        return [self._payload_to_model(p, WebhookSubscription) for p in payloads]

    @storage_operation
    async def delete_webhook(self, workspace_id: str, webhook_id: str) -> None:
        """Delete a webhook subscription.

        Args:
            workspace_id: Workspace that owns the webhook.
            webhook_id: ID of the webhook to delete.
        """
        await self._delete_key(
            self._collection_name("webhooks"),
            self._build_key(webhook_id, workspace_id),
        )
