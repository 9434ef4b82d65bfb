"""Shared pytest fixtures for the Groundbot test suite.

The fakes here implement the real provider interfaces so services can be
exercised end to end without network access:

* :class:`KeywordEmbeddingProvider` -- deterministic vectors built from
  keyword counts, so tests control exactly which chunks match a query.
* :class:`ScriptedLLMProvider` -- returns a fixed answer (or raises queued
  errors) and records every prompt it receives.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, AsyncIterator, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from src.config.settings import Settings
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.vector_store_provider import IVectorStoreProvider
from src.models.conversation import ChatMessage
from src.models.document import Document
from src.providers.metadata.sqlite_metadata_store import SQLiteMetadataStore
from src.providers.storage.local_blob_storage import LocalBlobStorage
from src.providers.vector_store.memory_provider import InMemoryVectorStore
from src.utils.errors import ProviderError, RateLimitError, TransientProviderError

DEFAULT_KEYWORDS = ("zephyr", "refund", "shipping", "warranty", "opening")


# ---------------------------------------------------------------------------
# Fake providers
# ---------------------------------------------------------------------------


class KeywordEmbeddingProvider(IEmbeddingProvider):
    """Embeds text as keyword counts plus a small constant component.

    A query naming one keyword scores ~1.0 (cosine) against chunks that
    mention it and ~0.1 against chunks that don't.

    Parameters
    ----------
    keywords:
        Vocabulary; the vector dimension is ``len(keywords) + 1``.
    fail_times:
        Number of calls that raise :class:`RateLimitError` before succeeding.
    always_fail:
        Every call raises :class:`RateLimitError`.
    """

    def __init__(
        self,
        keywords: tuple[str, ...] = DEFAULT_KEYWORDS,
        fail_times: int = 0,
        always_fail: bool = False,
        model: str = "keyword-test",
        batch_limits: tuple[int, int] = (96, 100_000),
    ) -> None:
        self.keywords = keywords
        self.fail_times = fail_times
        self.always_fail = always_fail
        self.model = model
        self.batch_limits = batch_limits
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.always_fail:
            raise RateLimitError(provider_name="fake")
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RateLimitError(provider_name="fake")
        return [self.vector_for(text) for text in texts]

    def vector_for(self, text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(k)) for k in self.keywords] + [0.1]

    def get_dimension(self) -> int:
        return len(self.keywords) + 1

    def get_model_name(self) -> str:
        return self.model

    def get_provider_name(self) -> str:
        return "fake"

    def is_available(self) -> bool:
        return True

    def get_batch_limits(self) -> tuple[int, int]:
        return self.batch_limits


class ScriptedLLMProvider(ILLMProvider):
    """Answers every prompt with ``reply``; queued ``errors`` are raised first.

    ``stream_fail_after`` makes the stream raise a transient error after
    that many deltas.
    """

    def __init__(
        self,
        name: str = "openai",
        reply: str = "Our opening hours are 9 to 5 [Source 1].",
        errors: list[Exception] | None = None,
        available: bool = True,
        model: str = "scripted-model",
        stream_fail_after: int | None = None,
    ) -> None:
        self.name = name
        self.reply = reply
        self.errors = list(errors or [])
        self.available = available
        self.model = model
        self.stream_fail_after = stream_fail_after
        self.calls: list[dict[str, Any]] = []
        self.streams_closed = 0

    def _record(self, system_prompt: str, messages: list[ChatMessage], model: str | None) -> None:
        self.calls.append({"system_prompt": system_prompt, "messages": list(messages), "model": model})

    async def complete(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ) -> str:
        self._record(system_prompt, messages, model)
        if self.errors:
            raise self.errors.pop(0)
        return self.reply

    async def stream(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ) -> AsyncIterator[str]:
        self._record(system_prompt, messages, model)
        if self.errors:
            raise self.errors.pop(0)
        try:
            for index, piece in enumerate(split_deltas(self.reply)):
                if self.stream_fail_after is not None and index >= self.stream_fail_after:
                    raise TransientProviderError(message="stream reset", provider_name=self.name)
                yield piece
        finally:
            self.streams_closed += 1

    def get_default_model(self) -> str:
        return self.model

    def get_provider_name(self) -> str:
        return self.name

    def is_available(self) -> bool:
        return self.available


def split_deltas(text: str) -> list[str]:
    """Split *text* into word-sized deltas whose concatenation is *text*."""
    return re.findall(r"\S+\s*|\s+", text)


def transient(name: str = "openai") -> TransientProviderError:
    return TransientProviderError(message="upstream hiccup", provider_name=name)


def permanent(name: str = "openai") -> ProviderError:
    return ProviderError(message="invalid api key", provider_name=name)


# ---------------------------------------------------------------------------
# Settings & stores
# ---------------------------------------------------------------------------


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    """Settings for tests: memory vector store, files under *tmp_path*, no backoff."""
    defaults: dict[str, Any] = {
        "openai_api_key": "",
        "anthropic_api_key": "",
        "ollama_base_url": "",
        "vector_store_backend": "memory",
        "similarity_metric": "cosine",
        "metadata_db_path": str(tmp_path / "groundbot.db"),
        "blob_storage_dir": str(tmp_path / "blobs"),
        "retry_base_delay": 0.0,
        "retry_max_delay": 0.0,
        "embedding_timeout": 5.0,
        "generation_timeout": 5.0,
        "vector_store_timeout": 5.0,
        "storage_timeout": 5.0,
        "app_env": "test",
    }
    defaults.update(overrides)
    return Settings(**defaults)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def embedding_provider() -> KeywordEmbeddingProvider:
    return KeywordEmbeddingProvider()


@pytest.fixture
def llm_provider() -> ScriptedLLMProvider:
    return ScriptedLLMProvider()


@pytest.fixture
def memory_vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore(similarity_metric="cosine")


@pytest_asyncio.fixture
async def metadata_store(tmp_path: Path) -> SQLiteMetadataStore:
    store = SQLiteMetadataStore(db_path=tmp_path / "meta.db")
    await store.initialize()
    return store


@pytest.fixture
def blob_storage(tmp_path: Path) -> LocalBlobStorage:
    return LocalBlobStorage(root=tmp_path / "blobs")


@pytest.fixture
def mock_llm_provider() -> MagicMock:
    """A mock ILLMProvider for tests that only need call assertions."""
    mock = MagicMock(spec=ILLMProvider)
    mock.complete = AsyncMock(return_value="mocked answer")
    mock.get_default_model.return_value = "mock-model"
    mock.get_provider_name.return_value = "openai"
    mock.is_available.return_value = True
    return mock


@pytest.fixture
def mock_vector_backend() -> MagicMock:
    mock = MagicMock(spec=IVectorStoreProvider)
    mock.add = AsyncMock(side_effect=lambda company_id, records: len(records))
    mock.query = AsyncMock(return_value=[])
    mock.delete_by_document = AsyncMock(return_value=0)
    mock.count = AsyncMock(return_value=0)
    mock.get_similarity_metric.return_value = "cosine"
    mock.get_dimension.return_value = None
    mock.get_provider_name.return_value = "mock"
    mock.is_available.return_value = True
    return mock


# ---------------------------------------------------------------------------
# Fully wired application components
# ---------------------------------------------------------------------------


@pytest.fixture
def make_components(tmp_path: Path) -> Callable[..., dict[str, Any]]:
    """Factory building the application's component dict around the fakes.

    Keyword arguments not naming a component are treated as settings
    overrides.  The metadata store is not initialized; the application's
    startup (or the ``components`` fixture) does that.
    """

    def _make(
        llm_providers: dict[str, ILLMProvider] | None = None,
        embedding: IEmbeddingProvider | None = None,
        vector_backend: IVectorStoreProvider | None = None,
        **settings_overrides: Any,
    ) -> dict[str, Any]:
        from src.main import build_services

        app_settings = make_settings(tmp_path, **settings_overrides)
        return build_services(
            app_settings,
            llm_providers=llm_providers if llm_providers is not None else {"openai": ScriptedLLMProvider()},
            embedding_provider=embedding if embedding is not None else KeywordEmbeddingProvider(),
            vector_backend=(
                vector_backend
                if vector_backend is not None
                else InMemoryVectorStore(similarity_metric=app_settings.similarity_metric)
            ),
            metadata_store=SQLiteMetadataStore(db_path=app_settings.metadata_db_path),
            blob_storage=LocalBlobStorage(root=app_settings.blob_storage_dir),
        )

    return _make


@pytest_asyncio.fixture
async def components(make_components: Callable[..., dict[str, Any]]) -> dict[str, Any]:
    built = make_components()
    await built["metadata_store"].initialize()
    yield built
    await built["ingestion_service"].shutdown()


async def ingest_text(
    components: dict[str, Any],
    text: str,
    filename: str = "faq.txt",
    company_id: str = "acme",
) -> Document:
    """Upload *text* as a plain-text document and ingest it to READY."""
    ingestion = components["ingestion_service"]
    document = await ingestion.create_document(company_id, filename, "txt", text.encode("utf-8"))
    result = await ingestion.ingest(document.document_id)
    assert result.status == "ready", result.error_message
    return await components["metadata_store"].get_document(document.document_id)
