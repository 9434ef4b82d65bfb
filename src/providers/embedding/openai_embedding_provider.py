"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Supports both real OpenAI and OpenAI-compatible providers (TogetherAI,
Fireworks) via custom ``base_url`` and model name settings.
"""

from __future__ import annotations

import openai
import structlog

from src.config.settings import Settings
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.providers.errors import translate_openai_error
from src.utils.errors import ProviderError

logger = structlog.get_logger(logger_name=__name__)

# Requests above ~300k tokens are rejected; 100k chars keeps well clear.
_OPENAI_MAX_BATCH_ITEMS = 2048
_OPENAI_MAX_BATCH_CHARS = 100_000

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
    "intfloat/multilingual-e5-large-instruct": 1024,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``text-embedding-3-small`` (1536 dims) by default.  When
    ``openai_base_url`` is configured the client points at that URL.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._api_key = settings.openai_api_key

        # Build client kwargs -- add base_url only when configured.
        client_kwargs: dict = {"api_key": self._api_key, "max_retries": 0}
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = settings.openai_embedding_model or "text-embedding-3-small"
        self._dimension = _MODEL_DIMENSIONS.get(self._model, 1536)

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed one batch with a single ``embeddings.create`` call."""
        if not texts:
            return []

        try:
            response = await self._client.embeddings.create(
                input=texts,
                model=self._model,
            )
        except openai.OpenAIError as exc:
            raise translate_openai_error(exc, self.get_provider_name()) from exc

        # The API documents that ``index`` matches input order; sort to be sure.
        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(texts):
            raise ProviderError(
                message=f"Expected {len(texts)} embeddings, got {len(data)}",
                provider_name=self.get_provider_name(),
            )
        logger.debug(
            "openai_embedding_batch",
            model=self._model,
            batch_size=len(texts),
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return [item.embedding for item in data]

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return "openai"

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

    def get_batch_limits(self) -> tuple[int, int]:
        return _OPENAI_MAX_BATCH_ITEMS, _OPENAI_MAX_BATCH_CHARS
