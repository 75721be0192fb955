"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import random
from collections.abc import AsyncIterator

import httpx
import pytest
from qdrant_client import AsyncQdrantClient

from worklin_webhooks.config import Settings
from worklin_webhooks.storage import WebhookStorage
from worklin_webhooks.webhooks import WebhookDispatcher, WebhookRegistry

TIMEOUT = "timeout"
CONNECT_ERROR = "connect_error"


class Subscriber:
    """A fake webhook endpoint that records requests.

    Responses are consumed in order; once exhausted every request gets
    the default status. An entry may be an HTTP status code, TIMEOUT or
    CONNECT_ERROR.
    """

    def __init__(self, responses: list[int | str] | None = None, default: int = 200) -> None:
        self.requests: list[httpx.Request] = []
        self._responses = list(responses or [])
        self._default = default

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self._responses.pop(0) if self._responses else self._default
        if outcome == TIMEOUT:
            raise httpx.ReadTimeout("timed out", request=request)
        if outcome == CONNECT_ERROR:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(int(outcome), text=f"status {outcome}")

    @property
    def bodies(self) -> list[bytes]:
        return [r.content for r in self.requests]


class SubscriberNetwork:
    """Routes outbound requests to Subscribers by URL."""

    def __init__(self) -> None:
        self._subscribers: dict[str, Subscriber] = {}

    def add(
        self,
        url: str,
        responses: list[int | str] | None = None,
        default: int = 200,
    ) -> Subscriber:
        subscriber = Subscriber(responses, default)
        self._subscribers[url] = subscriber
        return subscriber

    def _handle(self, request: httpx.Request) -> httpx.Response:
        subscriber = self._subscribers.get(str(request.url))
        if subscriber is None:
            return httpx.Response(404, text="no such endpoint")
        return subscriber.handle(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self._handle))


@pytest.fixture
def test_settings() -> Settings:
    """Settings with deterministic backoff and a fast poll interval."""
    return Settings(
        collection_prefix="test",
        webhook_request_timeout_seconds=1.0,
        webhook_max_attempts=5,
        retry_base_delay_seconds=1.0,
        retry_max_delay_seconds=300.0,
        retry_jitter_ratio=0.0,
        retry_poll_interval_seconds=0.01,
    )


@pytest.fixture
async def storage() -> AsyncIterator[WebhookStorage]:
    """Create an in-memory storage instance for testing.

    Uses qdrant-client's local mode with in-memory storage.
    """
    store = WebhookStorage(prefix="test")
    store._client = AsyncQdrantClient(location=":memory:")
    await store._ensure_collections()
    store._collections_initialized = True

    yield store

    await store.close()


@pytest.fixture
def network() -> SubscriberNetwork:
    return SubscriberNetwork()


@pytest.fixture
async def http_client(network: SubscriberNetwork) -> AsyncIterator[httpx.AsyncClient]:
    async with network.client() as client:
        yield client


@pytest.fixture
def registry(storage: WebhookStorage) -> WebhookRegistry:
    return WebhookRegistry(storage)


@pytest.fixture
def dispatcher(
    storage: WebhookStorage,
    registry: WebhookRegistry,
    test_settings: Settings,
    http_client: httpx.AsyncClient,
) -> WebhookDispatcher:
    return WebhookDispatcher(
        storage,
        registry=registry,
        settings=test_settings,
        http_client=http_client,
        rng=random.Random(7),
    )
