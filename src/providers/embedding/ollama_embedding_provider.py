"""Ollama embedding provider adapter (local/free).

Calls Ollama's native ``/api/embed`` endpoint with ``httpx`` to implement
:class:`IEmbeddingProvider`.  Defaults to ``nomic-embed-text`` (768
dimensions); no API key required.
"""

from __future__ import annotations

import httpx
import structlog

from src.config.settings import Settings
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.providers.errors import translate_httpx_error
from src.utils.errors import ProviderError

logger = structlog.get_logger(logger_name=__name__)

_OLLAMA_MAX_BATCH_ITEMS = 256
_OLLAMA_MAX_BATCH_CHARS = 60_000

_MODEL_DIMENSIONS: dict[str, int] = {
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
    "bge-m3": 1024,
}


class OllamaEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by a model served by a local Ollama server."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._model = settings.ollama_embedding_model or "nomic-embed-text"
        self._dimension = _MODEL_DIMENSIONS.get(self._model, 768)
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url or "http://localhost:11434",
            timeout=settings.embedding_timeout,
        )

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed one batch with a single ``POST /api/embed`` call."""
        if not texts:
            return []

        try:
            response = await self._client.post(
                "/api/embed",
                json={"model": self._model, "input": texts},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise translate_httpx_error(exc, self.get_provider_name()) from exc

        embeddings = response.json().get("embeddings") or []
        if len(embeddings) != len(texts):
            raise ProviderError(
                message=f"Expected {len(texts)} embeddings, got {len(embeddings)}",
                provider_name=self.get_provider_name(),
            )
        logger.debug("ollama_embedding_batch", model=self._model, batch_size=len(texts))
        return embeddings

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return "ollama"

    def is_available(self) -> bool:
        """Return ``True`` if an Ollama base URL is configured."""
        return bool(self._base_url)

    def get_batch_limits(self) -> tuple[int, int]:
        return _OLLAMA_MAX_BATCH_ITEMS, _OLLAMA_MAX_BATCH_CHARS

    async def close(self) -> None:
        await self._client.aclose()
