"""Background retry worker for failed webhook deliveries.

Polls the retry queue for lineages whose pending attempt is due, re-reads
each subscription and makes the next attempt. A lineage whose webhook was
deleted or disabled, or whose logged payload cannot be parsed, is removed
from the queue without a new record.

Usage::

    scheduler = RetryScheduler(dispatcher, storage)
    await scheduler.start("ws_123")
    ...
    scheduler.stop()
    await scheduler.wait_closed()
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from worklin_webhooks.config import Settings
from worklin_webhooks.config import settings as default_settings
from worklin_webhooks.exceptions import ConfigurationGone, ValidationError, WebhookError
from worklin_webhooks.models import DeliveryAttemptLog, parse_envelope, utc_now

if TYPE_CHECKING:
    from worklin_webhooks.models import WebhookSubscription
    from worklin_webhooks.storage import WebhookStorage

    from .delivery import WebhookDispatcher

logger = structlog.get_logger(__name__)


class RetryScheduler:
    """Periodic retry loop for one workspace at a time.

    Each cycle runs every ``retry_poll_interval_seconds``; due retries
    within a cycle are attempted concurrently. Attempts within a lineage
    stay strictly ordered because the next one is only found after the
    previous record is written.
    """

    def __init__(
        self,
        dispatcher: WebhookDispatcher,
        storage: WebhookStorage,
        settings: Settings | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._storage = storage
        self._settings = settings or default_settings
        self._workspace_id: str | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._in_flight: set[str] = set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def workspace_id(self) -> str | None:
        """Workspace the loop is polling, if running."""
        return self._workspace_id if self.is_running else None

    async def start(self, workspace_id: str) -> None:
        """Start polling a workspace.

        Starting again for the same workspace is a no-op. Starting for a
        different workspace stops the current loop first.
        """
        if self.is_running:
            if self._workspace_id == workspace_id:
                return
            self.stop()
            await self.wait_closed()

        self._workspace_id = workspace_id
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(workspace_id, self._stop_event))

    def stop(self) -> None:
        """Ask the loop to exit. A cycle already running finishes first."""
        self._stop_event.set()

    async def wait_closed(self) -> None:
        """Wait for the loop to exit after stop()."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _loop(self, workspace_id: str, stop_event: asyncio.Event) -> None:
        interval = self._settings.retry_poll_interval_seconds
        logger.info(
            "retry_worker started",
            workspace_id=workspace_id,
            interval_seconds=interval,
        )

        while not stop_event.is_set():
            try:
                attempted = await self.run_once(workspace_id)
                if attempted:
                    logger.info(
                        "retry_cycle completed",
                        workspace_id=workspace_id,
                        attempted=attempted,
                    )
            except Exception:
                logger.exception("retry_cycle failed", workspace_id=workspace_id)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except TimeoutError:
                pass

        logger.info("retry_worker stopped", workspace_id=workspace_id)

    async def run_once(self, workspace_id: str, now: datetime | None = None) -> int:
        """Run one retry cycle.

        Args:
            workspace_id: Workspace to scan.
            now: Cut-off for due retries; defaults to the current time.

        Returns:
            Number of delivery attempts made.
        """
        now = now or utc_now()
        pending = await self._storage.get_due_retries(
            workspace_id,
            now,
            limit=self._settings.retry_batch_size,
        )

        due = [record for record in pending if record.delivery_id not in self._in_flight]
        if not due:
            return 0

        results = await asyncio.gather(*(self._retry(record) for record in due))
        return sum(results)

    async def _retry(self, record: DeliveryAttemptLog) -> int:
        self._in_flight.add(record.delivery_id)
        try:
            webhook = await self._load_webhook(record)
            envelope = parse_envelope(record.payload)
            await self._dispatcher.attempt_delivery(
                webhook,
                envelope,
                record.attempt + 1,
                delivery_id=record.delivery_id,
                event_id=record.event_id,
            )
            return 1
        except ConfigurationGone as e:
            await self._drop(record)
            logger.info(
                "retry_lineage terminated",
                delivery_id=record.delivery_id,
                webhook_id=e.webhook_id,
                reason=e.reason,
            )
            return 0
        except ValidationError as e:
            await self._drop(record)
            logger.error(
                "retry_lineage dropped",
                delivery_id=record.delivery_id,
                reason="unreadable payload",
                error=e.message,
            )
            return 0
        except WebhookError as e:
            logger.error(
                "retry_attempt failed",
                delivery_id=record.delivery_id,
                attempt=record.attempt + 1,
                error=e.message,
            )
            return 0
        finally:
            self._in_flight.discard(record.delivery_id)

    async def _drop(self, record: DeliveryAttemptLog) -> None:
        try:
            await self._storage.remove_pending_retry(record.workspace_id, record.delivery_id)
        except WebhookError as e:
            # Still queued; the next cycle tries again
            logger.error(
                "retry_lineage drop failed",
                delivery_id=record.delivery_id,
                error=e.message,
            )

    async def _load_webhook(self, record: DeliveryAttemptLog) -> WebhookSubscription:
        webhook = await self._dispatcher.registry.find(record.workspace_id, record.webhook_id)
        if webhook is None:
            raise ConfigurationGone(record.webhook_id, "deleted")
        if not webhook.enabled:
            raise ConfigurationGone(record.webhook_id, "disabled")
        return webhook
