"""Batched, retrying embedding client.

Wraps an :class:`~src.interfaces.embedding_provider.IEmbeddingProvider`
with the policy every caller needs:

* **Sub-batching** -- inputs are split to respect the provider's item and
  character limits; sub-batches run concurrently (bounded by a semaphore)
  and results are reassembled in input order.
* **Retries** -- transient provider errors are retried with exponential
  backoff via :func:`~src.utils.retry.call_with_retry`.  When the budget
  is exhausted, or the provider fails permanently, the caller sees
  :class:`~src.utils.errors.EmbeddingUnavailable`.
* **Dimension check** -- every vector must have the provider's declared
  length, otherwise :class:`~src.utils.errors.DimensionMismatchError`.

The client also publishes the *embedding version* tag stored with every
chunk, so retrieval never compares vectors from different models.
"""

from __future__ import annotations

import asyncio

import structlog

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.utils.concurrency import throttled_gather
from src.utils.errors import (
    DimensionMismatchError,
    EmbeddingUnavailable,
    ProviderError,
    TransientProviderError,
    ValidationError,
)
from src.utils.retry import call_with_retry

logger = structlog.get_logger(logger_name=__name__)


class EmbeddingClient:
    """Order-preserving batched embedding with retries.

    Parameters
    ----------
    provider:
        The embedding backend.
    max_attempts:
        Attempts per sub-batch, including the first (default 3).
    concurrency:
        Maximum sub-batches in flight at once.
    timeout:
        Per-attempt timeout in seconds.
    base_delay, max_delay:
        Exponential backoff bounds in seconds.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        max_attempts: int = 3,
        concurrency: int = 4,
        timeout: float | None = 30.0,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
    ) -> None:
        self._provider = provider
        self._max_attempts = max_attempts
        self._concurrency = max(1, concurrency)
        self._timeout = timeout
        self._base_delay = base_delay
        self._max_delay = max_delay

    @property
    def embedding_version(self) -> str:
        """Tag identifying the vector space, e.g. ``"openai:text-embedding-3-small:1536"``."""
        return (
            f"{self._provider.get_provider_name()}:"
            f"{self._provider.get_model_name()}:"
            f"{self._provider.get_dimension()}"
        )

    @property
    def dimension(self) -> int:
        return self._provider.get_dimension()

    @property
    def provider_name(self) -> str:
        return self._provider.get_provider_name()

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts*, returning one vector per input in the same order.

        Raises
        ------
        ValidationError
            If any input is empty or whitespace-only.
        EmbeddingUnavailable
            If a sub-batch still fails after all attempts.
        DimensionMismatchError
            If the provider returns a vector of the wrong length.
        """
        if not texts:
            return []
        if any(not t or not t.strip() for t in texts):
            raise ValidationError(message="Cannot embed empty text")

        batches = self._split_batches(texts)
        semaphore = asyncio.Semaphore(self._concurrency)
        results = await throttled_gather(
            [self._embed_batch(batch) for batch in batches],
            semaphore=semaphore,
        )

        vectors: list[list[float]] = []
        for batch_vectors in results:
            vectors.extend(batch_vectors)  # type: ignore[arg-type]

        logger.info(
            "embedding_complete",
            provider=self.provider_name,
            texts=len(texts),
            batches=len(batches),
        )
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query string."""
        vectors = await self.embed([text])
        return vectors[0]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _split_batches(self, texts: list[str]) -> list[list[str]]:
        """Greedy split respecting both the item and character limits.

        A single text longer than the character limit gets a batch of its
        own; the provider decides whether it accepts it.
        """
        max_items, max_chars = self._provider.get_batch_limits()
        batches: list[list[str]] = []
        current: list[str] = []
        current_chars = 0
        for text in texts:
            if current and (len(current) >= max_items or current_chars + len(text) > max_chars):
                batches.append(current)
                current, current_chars = [], 0
            current.append(text)
            current_chars += len(text)
        if current:
            batches.append(current)
        return batches

    async def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        provider_name = self.provider_name
        try:
            vectors = await call_with_retry(
                lambda: self._provider.embed(batch),
                operation="embed_batch",
                provider_name=provider_name,
                max_attempts=self._max_attempts,
                timeout=self._timeout,
                base_delay=self._base_delay,
                max_delay=self._max_delay,
            )
        except TransientProviderError as exc:
            logger.error(
                "embedding_retries_exhausted",
                provider=provider_name,
                attempts=self._max_attempts,
                error_type=type(exc).__name__,
            )
            raise EmbeddingUnavailable(
                message=f"Embedding failed after {self._max_attempts} attempts: {exc.message}",
                provider_name=provider_name,
            ) from exc
        except ProviderError as exc:
            logger.error("embedding_provider_error", provider=provider_name, error=str(exc))
            raise EmbeddingUnavailable(
                message=f"Embedding provider rejected the request: {exc.message}",
                provider_name=provider_name,
            ) from exc

        if len(vectors) != len(batch):
            raise EmbeddingUnavailable(
                message=f"Provider returned {len(vectors)} vectors for {len(batch)} texts",
                provider_name=provider_name,
            )
        expected = self._provider.get_dimension()
        for vector in vectors:
            if len(vector) != expected:
                raise DimensionMismatchError(
                    message=f"Expected {expected}-dim vectors, got {len(vector)}",
                    provider_name=provider_name,
                )
        return vectors
