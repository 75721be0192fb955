"""Base storage class and helpers.

Contains initialization, collection management, and shared utilities.
"""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

from pydantic import BaseModel
from qdrant_client import AsyncQdrantClient, models

from worklin_webhooks.config import settings

ModelT = TypeVar("ModelT", bound=BaseModel)

# Collection names by record type
COLLECTION_NAMES = {
    "webhooks": "webhooks",
    "deliveries": "webhook_deliveries",
    "retry_queue": "webhook_retry_queue",
}

# Keyword fields indexed per collection for filtered scrolls
KEYWORD_INDEXES = {
    "webhooks": ("workspace_id",),
    "deliveries": ("workspace_id", "webhook_id", "delivery_id", "status"),
    "retry_queue": ("workspace_id", "delivery_id"),
}

# Numeric fields indexed per collection for range filters and ordering
NUMERIC_INDEXES = {
    "webhooks": ("created_at_us",),
    "deliveries": ("timestamp_us", "next_retry_at_ms"),
    "retry_queue": ("next_retry_at_ms",),
}

# Derived fields written for range filters and ordering, not part of any model
INDEX_ONLY_FIELDS = frozenset({"created_at_us", "timestamp_us", "next_retry_at_ms"})

# Records are looked up by payload only; every point carries this vector
PLACEHOLDER_VECTOR = [1.0]

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def to_epoch_us(value: datetime) -> int:
    """Exact integer microseconds since the epoch, used as an ordering key."""
    return (value - _EPOCH) // timedelta(microseconds=1)


class StorageBase:
    """Base class for webhook storage with initialization and helpers.

    Provides:
    - Client initialization and lifecycle management
    - Collection creation and indexing
    - Key building and point ID conversion
    - Paged and ordered scrolling
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        prefix: str | None = None,
        max_scroll_limit: int | None = None,
    ) -> None:
        """Initialize storage client.

        Args:
            url: Qdrant server URL. Defaults to settings.qdrant_url.
                Use ":memory:" for a local in-process store.
            api_key: Qdrant API key. Defaults to settings.qdrant_api_key.
            prefix: Collection name prefix. Defaults to settings.collection_prefix.
            max_scroll_limit: Cap on records read by one scroll.
        """
        self._url = url or settings.qdrant_url
        self._api_key = api_key or settings.qdrant_api_key
        self._prefix = prefix or settings.collection_prefix
        self._max_scroll_limit = max_scroll_limit or settings.storage_max_scroll_limit
        self._client: AsyncQdrantClient | None = None
        self._collections_initialized = False

    @property
    def client(self) -> AsyncQdrantClient:
        """Get the Qdrant client, raising if not initialized."""
        if self._client is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._client

    async def initialize(self) -> None:
        """Initialize the storage client and ensure collections exist."""
        if self._url == ":memory:":
            self._client = AsyncQdrantClient(location=":memory:")
        else:
            self._client = AsyncQdrantClient(url=self._url, api_key=self._api_key)
        await self._ensure_collections()
        self._collections_initialized = True

    async def close(self) -> None:
        """Close the storage client connection."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._collections_initialized = False

    def _collection_name(self, record_type: str) -> str:
        """Get full collection name with prefix."""
        suffix = COLLECTION_NAMES.get(record_type, record_type)
        return f"{self._prefix}_{suffix}"

    @staticmethod
    def _build_key(record_id: str, workspace_id: str) -> str:
        """Build a workspace-scoped storage key: {workspace_id}/{record_id}."""
        return f"{workspace_id}/{record_id}"

    @staticmethod
    def _key_to_point_id(key: str) -> str:
        """Convert a storage key to a valid Qdrant point ID.

        Qdrant requires point IDs to be UUIDs or unsigned integers.
        We hash the key to create a deterministic UUID-format string.
        """
        h = hashlib.sha256(key.encode()).hexdigest()[:32]
        return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"

    async def _ensure_collections(self) -> None:
        """Ensure all required collections exist with payload indexes."""
        collections = await self.client.get_collections()
        existing = {c.name for c in collections.collections}

        for record_type in COLLECTION_NAMES:
            collection_name = self._collection_name(record_type)
            if collection_name in existing:
                continue

            await self.client.create_collection(
                collection_name=collection_name,
                vectors_config=models.VectorParams(
                    size=len(PLACEHOLDER_VECTOR),
                    distance=models.Distance.DOT,
                ),
            )
            await self._create_indexes(record_type, collection_name)

    async def _create_indexes(self, record_type: str, collection_name: str) -> None:
        """Create payload indexes for efficient filtering."""
        for field_name in KEYWORD_INDEXES[record_type]:
            await self.client.create_payload_index(
                collection_name=collection_name,
                field_name=field_name,
                field_schema=models.PayloadSchemaType.KEYWORD,
            )
        for field_name in NUMERIC_INDEXES[record_type]:
            await self.client.create_payload_index(
                collection_name=collection_name,
                field_name=field_name,
                field_schema=models.PayloadSchemaType.INTEGER,
            )

    async def _upsert(self, collection_name: str, key: str, payload: dict[str, Any]) -> None:
        await self.client.upsert(
            collection_name=collection_name,
            points=[
                models.PointStruct(
                    id=self._key_to_point_id(key),
                    vector=PLACEHOLDER_VECTOR,
                    payload=payload,
                )
            ],
        )

    async def _scroll_all(
        self,
        collection_name: str,
        scroll_filter: models.Filter,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Read every payload matching a filter, page by page.

        Args:
            collection_name: Collection to scroll.
            scroll_filter: Qdrant filter.
            limit: Stop after this many records (capped by max_scroll_limit).

        Returns:
            Matching payloads in store order.
        """
        cap = min(limit, self._max_scroll_limit) if limit is not None else self._max_scroll_limit
        page_size = min(cap, 256)
        payloads: list[dict[str, Any]] = []
        offset: Any = None

        while len(payloads) < cap:
            points, offset = await self.client.scroll(
                collection_name=collection_name,
                scroll_filter=scroll_filter,
                limit=page_size,
                offset=offset,
                with_payload=True,
                with_vectors=False,
            )
            payloads.extend(p.payload for p in points if p.payload is not None)
            if offset is None:
                break

        return payloads[:cap]

    async def _scroll_ordered(
        self,
        collection_name: str,
        scroll_filter: models.Filter,
        order_key: str,
        *,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Read the first payloads matching a filter in order of an indexed field.

        Qdrant does the ordering, so the cap keeps the records that come
        first rather than whichever pages were read first. Points without
        order_key are skipped.

        Args:
            collection_name: Collection to scroll.
            scroll_filter: Qdrant filter.
            order_key: Numeric payload field to order by.
            descending: Largest values first.
            limit: Stop after this many records (capped by max_scroll_limit).

        Returns:
            Matching payloads in order_key order.
        """
        cap = min(limit, self._max_scroll_limit) if limit is not None else self._max_scroll_limit
        direction = models.Direction.DESC if descending else models.Direction.ASC

        # order_by scrolls do not paginate by offset; one request covers the cap
        points, _ = await self.client.scroll(
            collection_name=collection_name,
            scroll_filter=scroll_filter,
            limit=cap,
            order_by=models.OrderBy(key=order_key, direction=direction),
            with_payload=True,
            with_vectors=False,
        )
        return [p.payload for p in points if p.payload is not None]

    async def _delete_key(self, collection_name: str, key: str) -> None:
        await self.client.delete(
            collection_name=collection_name,
            points_selector=models.PointIdsList(
                points=[self._key_to_point_id(key)],
            ),
        )

    @staticmethod
    def _payload_to_model(payload: dict[str, Any], model_class: type[ModelT]) -> ModelT:
        """Convert a stored payload back to its model, dropping index-only fields."""
        data = {k: v for k, v in payload.items() if k not in INDEX_ONLY_FIELDS}
        return model_class.model_validate(data)
