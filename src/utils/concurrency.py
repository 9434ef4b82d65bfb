"""Shared concurrency primitives for embedding and ingestion.

Two patterns are exposed:

1. **throttled_gather** -- ``asyncio.gather`` with each awaitable wrapped in
   a semaphore acquire/release.  The embedding client uses it to send
   sub-batches concurrently without exceeding the provider's limits.

2. **InFlightRegistry** -- a per-key claim set.  The ingestion pipeline
   claims a document id before processing it so a second ingestion of the
   same document is rejected instead of interleaving with the first.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

import structlog

from src.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore,
    return_exceptions: bool = False,
) -> list[_T | BaseException]:
    """Run awaitables concurrently, at most ``semaphore``'s value at a time.

    Results are returned in input order regardless of completion order.
    With ``return_exceptions=False`` (the default) the first failure
    propagates and the remaining awaitables are cancelled.
    """

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [asyncio.ensure_future(_wrapped(c)) for c in coros]
    try:
        return await asyncio.gather(*tasks, return_exceptions=return_exceptions)
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        raise


class InFlightRegistry:
    """Tracks keys (document ids) that currently have work in progress.

    ``claim`` is atomic with respect to other coroutines on the same event
    loop: it never awaits between the membership check and the insert.
    """

    def __init__(self) -> None:
        self._keys: set[str] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    def claim(self, key: str) -> bool:
        """Claim *key*; return ``False`` if it is already claimed."""
        if key in self._keys:
            return False
        self._keys.add(key)
        self._idle.clear()
        return True

    def release(self, key: str) -> None:
        self._keys.discard(key)
        if not self._keys:
            self._idle.set()

    def is_claimed(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    async def wait_idle(self) -> None:
        """Block until no key is claimed."""
        await self._idle.wait()
        _logger.debug("in_flight_registry_idle")
