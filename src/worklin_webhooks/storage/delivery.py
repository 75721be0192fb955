"""Delivery log storage operations.

The delivery log is append-only: each attempt is written once and never
updated. Queries cover the UI (recent logs per workspace or webhook, one
lineage's history) and the retry worker.

Alongside the log, the retry queue holds one point per lineage that still
has an attempt pending: the latest retrying record, keyed by delivery_id.
Appending a retrying record replaces the lineage's entry; appending a
success or failure removes it. The retry worker reads only the queue, so
earlier attempts of finished lineages never compete for its batch.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from qdrant_client import models

from worklin_webhooks.models.base import to_epoch_ms
from worklin_webhooks.models.delivery import DeliveryStatus

from .base import to_epoch_us
from .retry import storage_operation

if TYPE_CHECKING:
    from worklin_webhooks.models import DeliveryAttemptLog


def _newest_first(log: DeliveryAttemptLog) -> tuple[datetime, int]:
    return (log.timestamp, log.attempt)


class DeliveryLogMixin:
    """Mixin providing delivery log operations for WebhookStorage.

    Expects the same base helpers as WebhookMixin.
    """

    _collection_name: Any
    _key_to_point_id: Any
    _build_key: Any
    _upsert: Any
    _delete_key: Any
    _scroll_all: Any
    _scroll_ordered: Any
    _payload_to_model: Any
    client: Any

    def _to_logs(self, payloads: list[dict[str, Any]]) -> list[DeliveryAttemptLog]:
        from worklin_webhooks.models import DeliveryAttemptLog

        return [self._payload_to_model(p, DeliveryAttemptLog) for p in payloads]

    @storage_operation
    async def append_delivery_log(self, log: DeliveryAttemptLog) -> str:
        """Append one delivery attempt record and update the retry queue.

        Appends within a lineage must be made in attempt order; the queue
        entry always reflects the last record written.

        Args:
            log: DeliveryAttemptLog to store.

        Returns:
            The log record ID.
        """
        payload = log.model_dump(mode="json")
        payload["timestamp_us"] = to_epoch_us(log.timestamp)
        if log.next_retry_at is not None:
            payload["next_retry_at_ms"] = to_epoch_ms(log.next_retry_at)

        await self._upsert(self._collection_name("deliveries"), log.id, payload)

        queue_key = self._build_key(log.delivery_id, log.workspace_id)
        if log.status is DeliveryStatus.RETRYING:
            await self._upsert(self._collection_name("retry_queue"), queue_key, payload)
        else:
            await self._delete_key(self._collection_name("retry_queue"), queue_key)
        return log.id

    @storage_operation
    async def get_delivery_logs(
        self,
        workspace_id: str,
        limit: int = 100,
        webhook_id: str | None = None,
    ) -> list[DeliveryAttemptLog]:
        """Get the most recent delivery records for a workspace.

        Args:
            workspace_id: Workspace to read logs for.
            limit: Maximum records to return.
            webhook_id: Optional filter for a single webhook.

        Returns:
            Records sorted newest first.
        """
        filters: list[models.FieldCondition] = [
            models.FieldCondition(
                key="workspace_id",
                match=models.MatchValue(value=workspace_id),
            )
        ]

        if webhook_id is not None:
            filters.append(
                models.FieldCondition(
                    key="webhook_id",
                    match=models.MatchValue(value=webhook_id),
                )
            )

        payloads = await self._scroll_ordered(
            self._collection_name("deliveries"),
            models.Filter(must=filters),
            "timestamp_us",
            descending=True,
            limit=limit,
        )

        logs = self._to_logs(payloads)
        logs.sort(key=_newest_first, reverse=True)
        return logs

    @storage_operation
    async def get_lineage(
        self,
        delivery_id: str,
        workspace_id: str | None = None,
    ) -> list[DeliveryAttemptLog]:
        """Get every attempt of one delivery lineage, ordered by attempt.

        Args:
            delivery_id: Lineage ID.
            workspace_id: Optional workspace the lineage must belong to.

        Returns:
            Records sorted by attempt number ascending.
        """
        filters: list[models.FieldCondition] = [
            models.FieldCondition(
                key="delivery_id",
                match=models.MatchValue(value=delivery_id),
            )
        ]

        if workspace_id is not None:
            filters.append(
                models.FieldCondition(
                    key="workspace_id",
                    match=models.MatchValue(value=workspace_id),
                )
            )

        payloads = await self._scroll_all(
            self._collection_name("deliveries"),
            models.Filter(must=filters),
        )

        logs = self._to_logs(payloads)
        logs.sort(key=lambda log: log.attempt)
        return logs

    async def get_latest_attempt(self, delivery_id: str) -> DeliveryAttemptLog | None:
        """Get the highest-numbered attempt of a lineage, if any."""
        lineage = await self.get_lineage(delivery_id)
        return lineage[-1] if lineage else None

    @storage_operation
    async def get_due_retries(
        self,
        workspace_id: str,
        now: datetime,
        limit: int = 100,
    ) -> list[DeliveryAttemptLog]:
        """Get the pending attempt of every lineage whose retry is due.

        Each result is the latest record of its lineage, so the next
        attempt number is ``attempt + 1``.

        Args:
            workspace_id: Workspace to scan.
            now: Cut-off time.
            limit: Maximum records to return.

        Returns:
            Due records sorted by next_retry_at ascending.
        """
        payloads = await self._scroll_ordered(
            self._collection_name("retry_queue"),
            models.Filter(
                must=[
                    models.FieldCondition(
                        key="workspace_id",
                        match=models.MatchValue(value=workspace_id),
                    ),
                    models.FieldCondition(
                        key="next_retry_at_ms",
                        range=models.Range(lte=to_epoch_ms(now)),
                    ),
                ]
            ),
            "next_retry_at_ms",
            limit=limit,
        )
        return self._to_logs(payloads)

    @storage_operation
    async def remove_pending_retry(self, workspace_id: str, delivery_id: str) -> None:
        """Drop a lineage from the retry queue without writing a log record.

        Used when a lineage ends without another attempt, e.g. because its
        webhook was deleted or disabled.
        """
        await self._delete_key(
            self._collection_name("retry_queue"),
            self._build_key(delivery_id, workspace_id),
        )
