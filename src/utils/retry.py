"""Shared retry-with-backoff wrapper for outbound provider calls.

Every call that leaves the process (embedding, generation, vector store,
metadata and blob storage) goes through :func:`call_with_retry`, so retry
policy is decided in one place by error type:

* :class:`~src.utils.errors.TransientProviderError` (rate limits, timeouts,
  connection resets) is retried with exponential backoff.
* Everything else propagates on the first attempt.

Each attempt is bounded by ``asyncio.wait_for``; an attempt that exceeds
its timeout becomes a :class:`~src.utils.errors.ProviderTimeoutError` and
is retried like any other transient failure.  When the attempt budget is
exhausted the last transient error is re-raised; callers translate it into
their own "unavailable" error.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.utils.errors import ProviderTimeoutError, TransientProviderError
from src.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def call_with_retry(
    fn: Callable[[], Awaitable[_T]],
    *,
    operation: str,
    provider_name: str | None = None,
    max_attempts: int = 3,
    timeout: float | None = None,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
) -> _T:
    """Await ``fn()`` with per-attempt timeout and transient-error retries.

    Parameters
    ----------
    fn:
        Zero-argument factory returning a fresh awaitable per attempt.
    operation:
        Short name used in log events, e.g. ``"embed_batch"``.
    provider_name:
        Attached to the timeout error raised when an attempt times out.
    max_attempts:
        Total attempts including the first (``1`` disables retries).
    timeout:
        Per-attempt timeout in seconds; ``None`` means unbounded.
    base_delay, max_delay:
        Exponential backoff bounds in seconds.

    Raises
    ------
    TransientProviderError
        The last transient failure once ``max_attempts`` is exhausted.
    Exception
        Any non-transient error, immediately.
    """

    async def _attempt() -> _T:
        if timeout is None:
            return await fn()
        try:
            return await asyncio.wait_for(fn(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(
                message=f"{operation} timed out after {timeout:.1f}s",
                provider_name=provider_name,
            ) from exc

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=base_delay, min=base_delay, max=max_delay),
        retry=retry_if_exception_type(TransientProviderError),
        before_sleep=lambda state: _logger.warning(
            "provider_call_retrying",
            operation=operation,
            provider=provider_name,
            attempt=state.attempt_number,
            error=str(state.outcome.exception()) if state.outcome else None,
        ),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await _attempt()
    # AsyncRetrying with reraise=True either returns or raises above.
    raise AssertionError("unreachable")  # pragma: no cover
