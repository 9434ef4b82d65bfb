"""Abstract base class for text-embedding service providers.

Defines the contract for generating embedding vectors from text.
Implementations wrap OpenAI ``text-embedding-3-small`` or a local model
served by Ollama (``nomic-embed-text``).  Batching, retries and dimension
checks live in :class:`~src.services.embedding_client.EmbeddingClient`,
so providers only make one API call per :meth:`embed`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider  -- text-embedding-3-small (requires API key)
#   OllamaEmbeddingProvider  -- nomic-embed-text via a local Ollama server
# Located in: src/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by the RAG pipeline."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for one batch of texts.

        The batch never exceeds :meth:`get_batch_limits`.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.

        Raises
        ------
        src.utils.errors.TransientProviderError
            Rate limits, timeouts and connection failures.
        src.utils.errors.ProviderError
            Any other API failure.
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        Example values: ``1536`` (OpenAI ``text-embedding-3-small``),
        ``768`` (Nomic ``nomic-embed-text``).
        """

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the embedding model identifier, e.g. ``"text-embedding-3-small"``."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier for this provider, e.g. ``"openai"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured (credentials or endpoint present)."""

    def get_batch_limits(self) -> tuple[int, int]:
        """Return ``(max_items, max_chars)`` accepted by a single :meth:`embed` call."""
        return 96, 100_000
