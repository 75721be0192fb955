"""Shared helpers for webhook models."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4


def generate_id(prefix: str) -> str:
    """Generate a unique ID with a type prefix.

    Args:
        prefix: Short type tag, e.g. "whk" or "dlv".

    Returns:
        ID in the form "<prefix>_<hex>".
    """
    return f"{prefix}_{uuid4().hex[:16]}"


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def to_epoch_ms(value: datetime) -> int:
    """Convert a datetime to integer milliseconds since the epoch."""
    return int(value.timestamp() * 1000)
