"""Retry utilities for storage operations.

Provides exponential backoff retry logic for transient network errors
when communicating with the Qdrant document store.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import httpx
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from worklin_webhooks.exceptions import StorageError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

# Errors surfaced as StorageError once retries are exhausted
STORAGE_ERRORS: tuple[type[Exception], ...] = (
    httpx.ConnectError,
    httpx.TimeoutException,
    UnexpectedResponse,
    ResponseHandlingException,
)


def _is_retryable_qdrant_error(exc: BaseException) -> bool:
    """Network errors and 5xx responses are retried; 4xx responses are not."""
    if isinstance(exc, UnexpectedResponse):
        return exc.status_code is not None and exc.status_code >= 500
    return isinstance(
        exc, (httpx.ConnectError, httpx.TimeoutException, ResponseHandlingException)
    )


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts with context.

    Args:
        retry_state: Current retry state from tenacity.
    """
    logger.warning(
        "Retrying Qdrant operation",
        extra={
            "attempt": retry_state.attempt_number,
            "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
            "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
        },
    )


# Decorator for retrying transient Qdrant errors
qdrant_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_retryable_qdrant_error),
    before_sleep=_log_retry,
    reraise=True,
)


def storage_operation(fn: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
    """Retry a storage coroutine and surface store failures as StorageError."""
    retrying = qdrant_retry(fn)

    @functools.wraps(fn)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return await retrying(*args, **kwargs)
        except STORAGE_ERRORS as e:
            raise StorageError(f"{fn.__name__} failed: {e}") from e

    return wrapper
