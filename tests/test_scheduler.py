"""Tests for the background retry scheduler."""

from __future__ import annotations

import asyncio
import random
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest
from conftest import TIMEOUT, SubscriberNetwork

from worklin_webhooks.config import Settings
from worklin_webhooks.exceptions import StorageError
from worklin_webhooks.models import DeliveryStatus, utc_now
from worklin_webhooks.storage import WebhookStorage
from worklin_webhooks.webhooks import (
    RetryScheduler,
    WebhookDispatcher,
    WebhookRegistry,
    sign,
    verify,
)

URL = "https://hooks.example.com/in"
PAGE_DATA = {"pageId": "pg_1"}


@pytest.fixture
def scheduler(
    dispatcher: WebhookDispatcher,
    storage: WebhookStorage,
    test_settings: Settings,
) -> RetryScheduler:
    return RetryScheduler(dispatcher, storage, test_settings)


def later():
    """A cut-off far enough ahead that every scheduled retry is due."""
    return utc_now() + timedelta(hours=1)


async def make_webhook(registry: WebhookRegistry, **overrides):
    spec = {"name": "hook", "url": URL, "events": ["page.created"], **overrides}
    return await registry.create("ws_1", spec)


async def wait_for_status(
    storage: WebhookStorage,
    delivery_id: str,
    status: DeliveryStatus,
    timeout: float = 5.0,
) -> None:
    async def poll() -> None:
        while True:
            latest = await storage.get_latest_attempt(delivery_id)
            if latest is not None and latest.status is status:
                return
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


class TestRunOnce:
    """Tests for a single retry cycle."""

    async def test_retries_until_success(
        self,
        scheduler: RetryScheduler,
        dispatcher: WebhookDispatcher,
        registry: WebhookRegistry,
        storage: WebhookStorage,
        network: SubscriberNetwork,
    ) -> None:
        """500 three times then 200 should log retrying x3 then success."""
        await make_webhook(registry)
        subscriber = network.add(URL, [500, 500, 500, 200])

        (delivery_id,) = await dispatcher.dispatch("ws_1", "page.created", PAGE_DATA)
        for _ in range(3):
            assert await scheduler.run_once("ws_1", now=later()) == 1
        assert await scheduler.run_once("ws_1", now=later()) == 0

        lineage = await storage.get_lineage(delivery_id)
        assert [log.attempt for log in lineage] == [1, 2, 3, 4]
        assert [log.status for log in lineage] == [DeliveryStatus.RETRYING] * 3 + [
            DeliveryStatus.SUCCESS
        ]
        assert {log.event_id for log in lineage} == {lineage[0].event_id}
        assert [r.headers["X-Worklin-Attempt"] for r in subscriber.requests] == [
            "1",
            "2",
            "3",
            "4",
        ]

    async def test_gives_up_after_max_attempts(
        self,
        scheduler: RetryScheduler,
        dispatcher: WebhookDispatcher,
        registry: WebhookRegistry,
        storage: WebhookStorage,
        network: SubscriberNetwork,
    ) -> None:
        """A permanently timing-out endpoint should end in failed after 5 attempts."""
        await make_webhook(registry)
        subscriber = network.add(URL, [TIMEOUT] * 10)

        (delivery_id,) = await dispatcher.dispatch("ws_1", "page.created", PAGE_DATA)
        for _ in range(4):
            assert await scheduler.run_once("ws_1", now=later()) == 1
        assert await scheduler.run_once("ws_1", now=later()) == 0

        lineage = await storage.get_lineage(delivery_id)
        assert [log.status for log in lineage] == [DeliveryStatus.RETRYING] * 4 + [
            DeliveryStatus.FAILED
        ]
        assert all(log.response_status is None for log in lineage)
        assert lineage[-1].next_retry_at is None
        assert len(subscriber.requests) == 5

    async def test_backoff_increases_across_attempts(
        self,
        scheduler: RetryScheduler,
        dispatcher: WebhookDispatcher,
        registry: WebhookRegistry,
        storage: WebhookStorage,
        network: SubscriberNetwork,
    ) -> None:
        """Each retrying record should wait longer than the one before."""
        await make_webhook(registry)
        network.add(URL, default=500)

        (delivery_id,) = await dispatcher.dispatch("ws_1", "page.created", PAGE_DATA)
        for _ in range(3):
            await scheduler.run_once("ws_1", now=later())

        lineage = await storage.get_lineage(delivery_id)
        delays = [log.next_retry_at - log.timestamp for log in lineage]
        assert delays == [timedelta(seconds=s) for s in (1, 2, 4, 8)]

    async def test_not_due_yet(
        self,
        scheduler: RetryScheduler,
        dispatcher: WebhookDispatcher,
        registry: WebhookRegistry,
        network: SubscriberNetwork,
    ) -> None:
        """Retries should wait for next_retry_at."""
        await make_webhook(registry)
        subscriber = network.add(URL, [500])

        await dispatcher.dispatch("ws_1", "page.created", PAGE_DATA)

        assert await scheduler.run_once("ws_1", now=utc_now()) == 0
        assert len(subscriber.requests) == 1

    async def test_other_workspace_untouched(
        self,
        scheduler: RetryScheduler,
        dispatcher: WebhookDispatcher,
        registry: WebhookRegistry,
        network: SubscriberNetwork,
    ) -> None:
        """A cycle should only retry its own workspace's deliveries."""
        await make_webhook(registry)
        network.add(URL, [500])

        await dispatcher.dispatch("ws_1", "page.created", PAGE_DATA)

        assert await scheduler.run_once("ws_2", now=later()) == 0

    async def test_deleted_webhook_halts_retries(
        self,
        scheduler: RetryScheduler,
        dispatcher: WebhookDispatcher,
        registry: WebhookRegistry,
        storage: WebhookStorage,
        network: SubscriberNetwork,
    ) -> None:
        """Deleting a webhook should stop its lineage without a new record."""
        webhook = await make_webhook(registry)
        subscriber = network.add(URL, [500])

        (delivery_id,) = await dispatcher.dispatch("ws_1", "page.created", PAGE_DATA)
        await registry.delete("ws_1", webhook.id)

        assert await scheduler.run_once("ws_1", now=later()) == 0
        assert await scheduler.run_once("ws_1", now=later()) == 0

        assert len(await storage.get_lineage(delivery_id)) == 1
        assert len(subscriber.requests) == 1
        assert await storage.get_due_retries("ws_1", later()) == []

    async def test_disabled_webhook_halts_retries(
        self,
        scheduler: RetryScheduler,
        dispatcher: WebhookDispatcher,
        registry: WebhookRegistry,
        storage: WebhookStorage,
        network: SubscriberNetwork,
    ) -> None:
        """Disabling a webhook should stop its pending retries."""
        webhook = await make_webhook(registry)
        subscriber = network.add(URL, [500])

        (delivery_id,) = await dispatcher.dispatch("ws_1", "page.created", PAGE_DATA)
        await registry.update("ws_1", webhook.id, {"enabled": False})

        assert await scheduler.run_once("ws_1", now=later()) == 0
        assert len(await storage.get_lineage(delivery_id)) == 1
        assert len(subscriber.requests) == 1
        assert await storage.get_due_retries("ws_1", later()) == []

        # Re-enabling does not resurrect a dropped lineage
        await registry.update("ws_1", webhook.id, {"enabled": True})
        assert await scheduler.run_once("ws_1", now=later()) == 0

    async def test_retry_uses_rotated_secret(
        self,
        scheduler: RetryScheduler,
        dispatcher: WebhookDispatcher,
        registry: WebhookRegistry,
        network: SubscriberNetwork,
    ) -> None:
        """A retry after rotation should be signed with the new secret."""
        webhook = await make_webhook(registry, secret="old-secret")
        subscriber = network.add(URL, [500, 200])

        await dispatcher.dispatch("ws_1", "page.created", PAGE_DATA)
        await registry.rotate_secret("ws_1", webhook.id, "new-secret")
        await scheduler.run_once("ws_1", now=later())

        first, second = subscriber.requests
        assert first.content == second.content
        assert first.headers["X-Worklin-Signature"] == sign("old-secret", first.content)
        assert verify("new-secret", second.content, second.headers["X-Worklin-Signature"])
        assert not verify("old-secret", second.content, second.headers["X-Worklin-Signature"])

    async def test_due_lineages_retried_together(
        self,
        scheduler: RetryScheduler,
        dispatcher: WebhookDispatcher,
        registry: WebhookRegistry,
        network: SubscriberNetwork,
    ) -> None:
        """Every due lineage should be attempted in one cycle."""
        await make_webhook(registry)
        network.add(URL, [500, 500, 500])

        await dispatcher.dispatch("ws_1", "page.created", PAGE_DATA)
        await dispatcher.dispatch("ws_1", "page.created", {"pageId": "pg_2"})

        assert await scheduler.run_once("ws_1", now=later()) == 2

    async def test_unreadable_payload_is_skipped(
        self,
        scheduler: RetryScheduler,
        dispatcher: WebhookDispatcher,
        registry: WebhookRegistry,
        storage: WebhookStorage,
        network: SubscriberNetwork,
    ) -> None:
        """A record whose payload cannot be parsed should be dropped, not retried."""
        await make_webhook(registry)
        network.add(URL, [500])
        (delivery_id,) = await dispatcher.dispatch("ws_1", "page.created", PAGE_DATA)
        (record,) = await storage.get_lineage(delivery_id)
        await storage.append_delivery_log(
            record.model_copy(update={"id": "log_broken", "attempt": 2, "payload": "{}"})
        )

        assert await scheduler.run_once("ws_1", now=later()) == 0
        assert len(await storage.get_lineage(delivery_id)) == 2
        assert await storage.get_due_retries("ws_1", later()) == []
        assert await scheduler.run_once("ws_1", now=later()) == 0

    async def test_finished_lineages_do_not_starve_new_ones(
        self,
        dispatcher: WebhookDispatcher,
        registry: WebhookRegistry,
        storage: WebhookStorage,
        network: SubscriberNetwork,
        test_settings: Settings,
    ) -> None:
        """Old retrying records of finished lineages should not fill the batch."""
        scheduler = RetryScheduler(
            dispatcher, storage, test_settings.model_copy(update={"retry_batch_size": 2})
        )
        await make_webhook(registry)
        network.add(URL, [500, 500, 200, 200, 500])

        await dispatcher.dispatch("ws_1", "page.created", PAGE_DATA)
        await dispatcher.dispatch("ws_1", "page.created", {"pageId": "pg_2"})
        assert await scheduler.run_once("ws_1", now=later()) == 2

        (delivery_id,) = await dispatcher.dispatch("ws_1", "page.created", {"pageId": "pg_3"})
        assert await scheduler.run_once("ws_1", now=later()) == 1

        lineage = await storage.get_lineage(delivery_id)
        assert [log.status for log in lineage] == [DeliveryStatus.RETRYING, DeliveryStatus.SUCCESS]

    async def test_batch_size_limits_cycle(
        self,
        dispatcher: WebhookDispatcher,
        registry: WebhookRegistry,
        storage: WebhookStorage,
        network: SubscriberNetwork,
        test_settings: Settings,
    ) -> None:
        """Lineages beyond retry_batch_size should wait for the next cycle."""
        scheduler = RetryScheduler(
            dispatcher, storage, test_settings.model_copy(update={"retry_batch_size": 2})
        )
        await make_webhook(registry)
        network.add(URL, [500, 500, 500])

        for page in ("pg_1", "pg_2", "pg_3"):
            await dispatcher.dispatch("ws_1", "page.created", {"pageId": page})

        assert await scheduler.run_once("ws_1", now=later()) == 2
        assert await scheduler.run_once("ws_1", now=later()) == 1
        assert await scheduler.run_once("ws_1", now=later()) == 0


class TestLifecycle:
    """Tests for start/stop of the polling loop."""

    @pytest.fixture
    def fast_settings(self) -> Settings:
        return Settings(
            retry_base_delay_seconds=0.01,
            retry_max_delay_seconds=0.05,
            retry_jitter_ratio=0.0,
            retry_poll_interval_seconds=0.01,
        )

    @pytest.fixture
    def fast_dispatcher(
        self,
        storage: WebhookStorage,
        registry: WebhookRegistry,
        fast_settings: Settings,
        http_client: httpx.AsyncClient,
    ) -> WebhookDispatcher:
        return WebhookDispatcher(
            storage,
            registry=registry,
            settings=fast_settings,
            http_client=http_client,
            rng=random.Random(3),
        )

    async def test_loop_delivers_retries(
        self,
        fast_dispatcher: WebhookDispatcher,
        registry: WebhookRegistry,
        storage: WebhookStorage,
        network: SubscriberNetwork,
        fast_settings: Settings,
    ) -> None:
        """A running worker should pick up due retries on its own."""
        await make_webhook(registry)
        network.add(URL, [500, 502])
        scheduler = RetryScheduler(fast_dispatcher, storage, fast_settings)

        (delivery_id,) = await fast_dispatcher.dispatch("ws_1", "page.created", PAGE_DATA)
        await scheduler.start("ws_1")
        try:
            await wait_for_status(storage, delivery_id, DeliveryStatus.SUCCESS)
        finally:
            scheduler.stop()
            await scheduler.wait_closed()

        lineage = await storage.get_lineage(delivery_id)
        assert [log.attempt for log in lineage] == [1, 2, 3]
        assert not scheduler.is_running

    async def test_start_is_idempotent(self, scheduler: RetryScheduler) -> None:
        """Starting twice for the same workspace should keep one loop."""
        await scheduler.start("ws_1")
        task = scheduler._task

        await scheduler.start("ws_1")

        assert scheduler._task is task
        assert scheduler.workspace_id == "ws_1"
        scheduler.stop()
        await scheduler.wait_closed()

    async def test_start_other_workspace_replaces_loop(self, scheduler: RetryScheduler) -> None:
        """Starting for another workspace should stop the current loop first."""
        await scheduler.start("ws_1")
        first = scheduler._task

        await scheduler.start("ws_2")

        assert first is not None and first.done()
        assert scheduler.is_running
        assert scheduler.workspace_id == "ws_2"
        scheduler.stop()
        await scheduler.wait_closed()

    async def test_stop_without_start(self, scheduler: RetryScheduler) -> None:
        """stop and wait_closed should be safe when nothing is running."""
        scheduler.stop()
        await scheduler.wait_closed()

        assert not scheduler.is_running
        assert scheduler.workspace_id is None

    async def test_restart_after_stop(self, scheduler: RetryScheduler) -> None:
        """A stopped scheduler can be started again."""
        await scheduler.start("ws_1")
        scheduler.stop()
        await scheduler.wait_closed()

        await scheduler.start("ws_1")

        assert scheduler.is_running
        scheduler.stop()
        await scheduler.wait_closed()

    async def test_loop_survives_cycle_errors(
        self,
        scheduler: RetryScheduler,
        storage: WebhookStorage,
    ) -> None:
        """A failing cycle should be logged and the loop should keep polling."""
        storage.get_due_retries = AsyncMock(side_effect=StorageError("down"))

        await scheduler.start("ws_1")
        await asyncio.sleep(0.05)

        assert scheduler.is_running
        assert storage.get_due_retries.await_count >= 2
        scheduler.stop()
        await scheduler.wait_closed()
        assert not scheduler.is_running
