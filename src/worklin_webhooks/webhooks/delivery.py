"""Webhook delivery with HMAC signatures and exponential backoff.

Every delivery attempt signs the canonical envelope body, POSTs it to the
subscriber and appends exactly one record to the delivery log:
- 2xx: success, the lineage ends
- anything else: retrying with a backoff delay, or failed once the
  attempt budget is spent

Retries are picked up later by the RetryScheduler, which calls
attempt_delivery with the next attempt number.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel

from worklin_webhooks.config import Settings
from worklin_webhooks.config import settings as default_settings
from worklin_webhooks.exceptions import TransientDeliveryError, ValidationError, WebhookError
from worklin_webhooks.models import (
    TEST_EVENT,
    DeliveryAttemptLog,
    DeliveryStatus,
    TestEventData,
    build_envelope,
    envelope_body,
    generate_id,
    utc_now,
)

from .registry import WebhookRegistry
from .signing import sign

if TYPE_CHECKING:
    from worklin_webhooks.models import WebhookSubscription
    from worklin_webhooks.models.events import BlockEnvelope, PageEnvelope, TestEnvelope
    from worklin_webhooks.storage import WebhookStorage

    Envelope = PageEnvelope | BlockEnvelope | TestEnvelope

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Worklin-Signature"
EVENT_HEADER = "X-Worklin-Event"
TIMESTAMP_HEADER = "X-Worklin-Timestamp"
WEBHOOK_ID_HEADER = "X-Worklin-Webhook-Id"
DELIVERY_ID_HEADER = "X-Worklin-Delivery-Id"
ATTEMPT_HEADER = "X-Worklin-Attempt"


def compute_backoff(
    attempt: int,
    base: float = 1.0,
    cap: float = 300.0,
    jitter_ratio: float = 0.1,
    rng: random.Random | None = None,
) -> float:
    """Delay in seconds before the attempt after ``attempt``.

    Doubles per attempt (1s, 2s, 4s, ...) with multiplicative jitter and
    a hard cap. With jitter_ratio <= 0.3 consecutive delays never shrink
    below the cap.

    Args:
        attempt: Number of the attempt that just failed (1-indexed).
        base: Delay after the first attempt, before jitter.
        cap: Upper bound on any delay.
        jitter_ratio: Maximum relative jitter, applied as 1 +/- ratio.
        rng: Random source; defaults to the module-level generator.

    Returns:
        Delay in seconds, never above cap.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")

    jitter = (rng or random).uniform(-jitter_ratio, jitter_ratio) if jitter_ratio else 0.0
    delay: float = min(cap, base * 2 ** (attempt - 1) * (1 + jitter))
    return delay


class WebhookDispatcher:
    """Dispatches workspace events to subscribed webhooks.

    Handles:
    - Finding enabled webhooks subscribed to an event type
    - Signing payloads with HMAC-SHA256
    - Concurrent delivery bounded by a semaphore
    - Logging every attempt and scheduling retries

    Example:
        ```python
        dispatcher = WebhookDispatcher(storage)

        # Fire and forget
        dispatcher.trigger("ws_123", "page.created", {"pageId": "pg_1"})

        # Or wait for the first attempt of every lineage
        delivery_ids = await dispatcher.dispatch("ws_123", "page.created", {"pageId": "pg_1"})
        ```
    """

    def __init__(
        self,
        storage: WebhookStorage,
        registry: WebhookRegistry | None = None,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the webhook dispatcher.

        Args:
            storage: WebhookStorage for delivery logs.
            registry: Subscription registry; built over storage when omitted.
            settings: Delivery settings; defaults to the global settings.
            http_client: Shared HTTP client. A short-lived client is opened
                per attempt when omitted.
            rng: Random source for backoff jitter.
        """
        self._storage = storage
        self._registry = registry or WebhookRegistry(storage)
        self._settings = settings or default_settings
        self._http_client = http_client
        self._rng = rng or random.Random()
        self._semaphore = asyncio.Semaphore(self._settings.max_concurrent_deliveries)
        self._tasks: set[asyncio.Task[list[str]]] = set()

    @property
    def registry(self) -> WebhookRegistry:
        return self._registry

    @property
    def max_attempts(self) -> int:
        return self._settings.webhook_max_attempts

    @property
    def pending_tasks(self) -> int:
        """Number of fire-and-forget fan-outs still running."""
        return len(self._tasks)

    def retry_delay(self, attempt: int) -> float:
        """Backoff delay after a failed attempt, using configured bounds."""
        return compute_backoff(
            attempt,
            base=self._settings.retry_base_delay_seconds,
            cap=self._settings.retry_max_delay_seconds,
            jitter_ratio=self._settings.retry_jitter_ratio,
            rng=self._rng,
        )

    def trigger(
        self,
        workspace_id: str,
        event_type: str,
        data: BaseModel | dict[str, Any] | None = None,
    ) -> None:
        """Validate an event and deliver it in the background.

        Returns as soon as the fan-out task is scheduled. Delivery outcomes
        only show up in the delivery log. Must be called from a running
        event loop.

        Raises:
            ValidationError: Unknown event type, webhook.test, or malformed payload.
        """
        envelope = self._event_envelope(workspace_id, event_type, data)
        task = asyncio.create_task(self._fan_out(envelope))
        self._tasks.add(task)
        task.add_done_callback(self._on_fan_out_done)

    def _on_fan_out_done(self, task: asyncio.Task[list[str]]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Webhook fan-out cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Webhook fan-out failed: %s", exc, exc_info=exc)
        else:
            logger.debug("Webhook fan-out started %d deliveries", len(task.result()))

    async def drain(self) -> None:
        """Wait for every background fan-out started by trigger()."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def dispatch(
        self,
        workspace_id: str,
        event_type: str,
        data: BaseModel | dict[str, Any] | None = None,
    ) -> list[str]:
        """Deliver an event to every matching webhook and wait for first attempts.

        Args:
            workspace_id: Workspace that emitted the event.
            event_type: Event type to deliver.
            data: Event payload.

        Returns:
            Delivery (lineage) IDs created, one per matching webhook.

        Raises:
            ValidationError: Unknown event type, webhook.test, or malformed payload.
        """
        envelope = self._event_envelope(workspace_id, event_type, data)
        return await self._fan_out(envelope)

    def _event_envelope(
        self,
        workspace_id: str,
        event_type: str,
        data: BaseModel | dict[str, Any] | None,
    ) -> Envelope:
        if event_type == TEST_EVENT:
            raise ValidationError("event", "webhook.test can only be sent with send_test")
        return build_envelope(workspace_id, event_type, data)

    async def _fan_out(self, envelope: Envelope) -> list[str]:
        try:
            webhooks = await self._registry.list(envelope.workspace_id)
        except WebhookError as e:
            logger.error("Failed to load webhooks for workspace %s: %s", envelope.workspace_id, e)
            return []

        targets = [w for w in webhooks if w.subscribes_to(envelope.event)]

        if not targets:
            logger.debug(
                "No webhooks subscribed to event %s for workspace %s",
                envelope.event,
                envelope.workspace_id,
            )
            return []

        event_id = generate_id("evt")
        delivery_ids = [generate_id("dlv") for _ in targets]

        results = await asyncio.gather(
            *(
                self._deliver_first(webhook, envelope, delivery_id, event_id)
                for webhook, delivery_id in zip(targets, delivery_ids, strict=True)
            ),
            return_exceptions=True,
        )

        for webhook, result in zip(targets, results, strict=True):
            if isinstance(result, BaseException):
                logger.error("Webhook delivery to %s failed: %s", webhook.id, result)

        return delivery_ids

    async def _deliver_first(
        self,
        webhook: WebhookSubscription,
        envelope: Envelope,
        delivery_id: str,
        event_id: str,
    ) -> DeliveryAttemptLog:
        async with self._semaphore:
            return await self.attempt_delivery(
                webhook,
                envelope,
                1,
                delivery_id=delivery_id,
                event_id=event_id,
            )

    async def attempt_delivery(
        self,
        webhook: WebhookSubscription,
        envelope: Envelope,
        attempt: int,
        *,
        delivery_id: str,
        event_id: str,
    ) -> DeliveryAttemptLog:
        """Make one delivery attempt and append its log record.

        Args:
            webhook: Subscription to deliver to; its current secret signs the body.
            envelope: Event envelope to send.
            attempt: Attempt number within the lineage (1-indexed).
            delivery_id: Lineage ID.
            event_id: Triggering event ID.

        Returns:
            The appended DeliveryAttemptLog.
        """
        body = envelope_body(envelope)
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign(webhook.secret, body),
            EVENT_HEADER: envelope.event,
            TIMESTAMP_HEADER: str(envelope.timestamp),
            WEBHOOK_ID_HEADER: webhook.id,
            DELIVERY_ID_HEADER: delivery_id,
            ATTEMPT_HEADER: str(attempt),
        }

        started = time.monotonic()
        error: TransientDeliveryError | None = None
        response_status: int | None = None
        response_body: str | None = None

        try:
            response = await self._send(webhook.url, body, headers)
            response_status = response.status_code
            response_body = self._truncate(response.text)
        except TransientDeliveryError as e:
            error = e
            response_status = e.response_status
            response_body = e.response_body

        duration_ms = int((time.monotonic() - started) * 1000)
        now = utc_now()

        if error is None:
            status = DeliveryStatus.SUCCESS
            next_retry_at = None
            logger.info(
                "Webhook delivered: %s to %s (status %d, attempt %d)",
                envelope.event,
                webhook.url,
                response_status,
                attempt,
            )
        elif attempt < self.max_attempts:
            status = DeliveryStatus.RETRYING
            next_retry_at = now + timedelta(seconds=self.retry_delay(attempt))
            logger.info(
                "Webhook scheduled for retry: %s to %s (attempt %d failed: %s, next at %s)",
                envelope.event,
                webhook.url,
                attempt,
                error.message,
                next_retry_at.isoformat(),
            )
        else:
            status = DeliveryStatus.FAILED
            next_retry_at = None
            logger.warning(
                "Webhook max attempts exceeded: %s to %s after %d attempts (%s)",
                envelope.event,
                webhook.url,
                attempt,
                error.message,
            )

        record = DeliveryAttemptLog(
            delivery_id=delivery_id,
            event_id=event_id,
            webhook_id=webhook.id,
            workspace_id=webhook.workspace_id,
            event_type=envelope.event,
            status=status,
            attempt=attempt,
            response_status=response_status,
            response_body=response_body,
            duration_ms=duration_ms,
            error_message=error.message if error is not None else None,
            timestamp=now,
            next_retry_at=next_retry_at,
            payload=body.decode("utf-8"),
        )
        await self._storage.append_delivery_log(record)
        return record

    async def _send(self, url: str, body: bytes, headers: dict[str, str]) -> httpx.Response:
        """POST the body, raising TransientDeliveryError for any non-2xx outcome."""
        timeout = self._settings.webhook_request_timeout_seconds
        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    url, content=body, headers=headers, timeout=timeout
                )
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.post(url, content=body, headers=headers)
        except httpx.TimeoutException as e:
            raise TransientDeliveryError("Request timeout") from e
        except httpx.RequestError as e:
            raise TransientDeliveryError(f"Request failed: {e}") from e
        except Exception as e:
            logger.exception("Webhook delivery error: %s", e)
            raise TransientDeliveryError(f"Unexpected error: {e}") from e

        if not response.is_success:
            raise TransientDeliveryError(
                f"HTTP {response.status_code}",
                response_status=response.status_code,
                response_body=self._truncate(response.text),
            )
        return response

    def _truncate(self, text: str) -> str | None:
        if not text:
            return None
        return text[: self._settings.response_body_max_chars]

    async def send_test(self, workspace_id: str, webhook_id: str) -> DeliveryAttemptLog:
        """Send a webhook.test event to one webhook and return the attempt record.

        Event subscriptions are ignored; the webhook must be enabled.

        Raises:
            NotFoundError: Unknown webhook.
            ValidationError: The webhook is disabled.
        """
        webhook = await self._registry.get(workspace_id, webhook_id)
        if not webhook.enabled:
            raise ValidationError("enabled", "cannot send a test to a disabled webhook")

        data = TestEventData(webhook_id=webhook.id, webhook_name=webhook.name)
        envelope = build_envelope(workspace_id, TEST_EVENT, data)
        async with self._semaphore:
            return await self.attempt_delivery(
                webhook,
                envelope,
                1,
                delivery_id=generate_id("dlv"),
                event_id=generate_id("evt"),
            )
