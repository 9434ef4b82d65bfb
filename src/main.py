"""Groundbot FastAPI application entry point.

Wires together all providers, services, and routes via dependency injection.
Loads configuration from ``.env`` and ``config/config.yaml`` and configures
structured logging.

Providers are chosen through name -> factory registries, so adding a
backend means adding one registry entry rather than another ``if`` in the
business logic.  :func:`build_services` accepts pre-built components for
every external dependency, which is how tests run the whole application
against in-memory fakes.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Callable

import structlog
import uvicorn
from fastapi import FastAPI, WebSocket

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router as api_router
from src.api.websocket import websocket_chat
from src.config.loader import load_config, provider_preference
from src.config.settings import Settings
from src.interfaces.blob_storage import IBlobStorage
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.metadata_store import IMetadataStore
from src.interfaces.vector_store_provider import IVectorStoreProvider
from src.providers.embedding.ollama_embedding_provider import OllamaEmbeddingProvider
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from src.providers.extraction.text_extractor import DocumentTextExtractor
from src.providers.llm.anthropic_provider import AnthropicLLMProvider
from src.providers.llm.ollama_provider import OllamaLLMProvider
from src.providers.llm.openai_provider import OpenAILLMProvider
from src.providers.metadata.sqlite_metadata_store import SQLiteMetadataStore
from src.providers.storage.local_blob_storage import LocalBlobStorage
from src.providers.vector_store.chromadb_provider import ChromaDBProvider
from src.providers.vector_store.memory_provider import InMemoryVectorStore
from src.services.chat_service import ChatService
from src.services.chatbot_service import ChatbotService
from src.services.chunker import TextChunker
from src.services.embedding_client import EmbeddingClient
from src.services.generation_service import GenerationService
from src.services.ingestion_service import IngestionService
from src.services.prompt_builder import PromptBuilder
from src.services.retrieval_service import RetrievalService
from src.services.vector_store_adapter import VectorStoreAdapter
from src.utils.errors import ConfigurationError
from src.utils.logging import configure_logging, get_logger

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Provider registries
# ---------------------------------------------------------------------------

_LLM_FACTORIES: dict[str, Callable[[Settings], ILLMProvider]] = {
    "openai": OpenAILLMProvider,
    "anthropic": AnthropicLLMProvider,
    "ollama": OllamaLLMProvider,
}

_EMBEDDING_FACTORIES: dict[str, Callable[[Settings], IEmbeddingProvider]] = {
    "openai": OpenAIEmbeddingProvider,
    "ollama": OllamaEmbeddingProvider,
}


def _build_chromadb(app_settings: Settings) -> IVectorStoreProvider:
    return ChromaDBProvider(
        persist_directory=app_settings.chromadb_persist_dir,
        collection_name=app_settings.chromadb_collection,
        similarity_metric=app_settings.similarity_metric,
    )


_VECTOR_STORE_FACTORIES: dict[str, Callable[[Settings], IVectorStoreProvider]] = {
    "chromadb": _build_chromadb,
    "memory": lambda s: InMemoryVectorStore(similarity_metric=s.similarity_metric),
}


def _build_llm_registry(app_settings: Settings) -> dict[str, ILLMProvider]:
    """Instantiate every LLM provider whose credentials or endpoint are configured."""
    registry: dict[str, ILLMProvider] = {}
    for name in app_settings.get_available_llm_providers():
        provider = _LLM_FACTORIES[name](app_settings)
        if provider.is_available():
            registry[name] = provider
    return registry


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    factory = _EMBEDDING_FACTORIES.get(app_settings.embedding_provider)
    if factory is None:
        raise ConfigurationError(
            message=(
                f"Unknown embedding provider {app_settings.embedding_provider!r}; "
                f"expected one of {sorted(_EMBEDDING_FACTORIES)}"
            )
        )
    return factory(app_settings)


def _build_vector_backend(app_settings: Settings) -> IVectorStoreProvider:
    factory = _VECTOR_STORE_FACTORIES.get(app_settings.vector_store_backend)
    if factory is None:
        raise ConfigurationError(
            message=(
                f"Unknown vector store backend {app_settings.vector_store_backend!r}; "
                f"expected one of {sorted(_VECTOR_STORE_FACTORIES)}"
            )
        )
    return factory(app_settings)


# ---------------------------------------------------------------------------
# Full DI assembly for the FastAPI application
# ---------------------------------------------------------------------------


def build_services(
    app_settings: Settings,
    *,
    llm_providers: dict[str, ILLMProvider] | None = None,
    embedding_provider: IEmbeddingProvider | None = None,
    vector_backend: IVectorStoreProvider | None = None,
    metadata_store: IMetadataStore | None = None,
    blob_storage: IBlobStorage | None = None,
) -> dict[str, Any]:
    """Construct every provider and service instance for the application.

    Any external component passed in is used instead of the one the
    settings describe.  Returns a flat dict of named components to be
    stored on ``app.state``.
    """
    config = load_config(settings=app_settings)

    # -- Providers --
    llm_registry = llm_providers if llm_providers is not None else _build_llm_registry(app_settings)
    embedder = (
        embedding_provider if embedding_provider is not None else _build_embedding_provider(app_settings)
    )
    backend = vector_backend if vector_backend is not None else _build_vector_backend(app_settings)
    store = (
        metadata_store
        if metadata_store is not None
        else SQLiteMetadataStore(db_path=app_settings.metadata_db_path)
    )
    blobs = blob_storage if blob_storage is not None else LocalBlobStorage(root=app_settings.blob_storage_dir)

    if backend.get_similarity_metric() != app_settings.similarity_metric:
        raise ConfigurationError(
            message=(
                f"Vector store metric {backend.get_similarity_metric()!r} does not match "
                f"SIMILARITY_METRIC={app_settings.similarity_metric!r}"
            )
        )

    # -- Shared clients --
    embedding_client = EmbeddingClient(
        provider=embedder,
        max_attempts=app_settings.embedding_max_attempts,
        concurrency=app_settings.embedding_batch_concurrency,
        timeout=app_settings.embedding_timeout,
        base_delay=app_settings.retry_base_delay,
        max_delay=app_settings.retry_max_delay,
    )
    vector_store = VectorStoreAdapter(
        backend=backend,
        timeout=app_settings.vector_store_timeout,
        base_delay=app_settings.retry_base_delay,
        max_delay=app_settings.retry_max_delay,
    )

    # -- Services --
    ingestion_service = IngestionService(
        metadata_store=store,
        blob_storage=blobs,
        extractor=DocumentTextExtractor(),
        chunker=TextChunker(
            target_size=app_settings.chunk_target_size,
            overlap=app_settings.chunk_overlap,
        ),
        embedding_client=embedding_client,
        vector_store=vector_store,
        max_upload_bytes=app_settings.max_upload_bytes,
        storage_timeout=app_settings.storage_timeout,
    )
    retrieval_service = RetrievalService(
        metadata_store=store,
        embedding_client=embedding_client,
        vector_store=vector_store,
        default_top_k=app_settings.rag_top_k,
        default_min_score=app_settings.rag_min_score,
    )
    generation_service = GenerationService(
        providers=llm_registry,
        prompt_builder=PromptBuilder(
            prompt_max_chars=app_settings.prompt_max_chars,
            history_max_chars=app_settings.history_max_chars,
        ),
        default_provider=app_settings.default_llm_provider,
        fallback_provider=app_settings.fallback_llm_provider or None,
        preference=provider_preference(config),
        timeout=app_settings.generation_timeout,
        temperature=app_settings.generation_temperature,
        max_tokens=app_settings.generation_max_tokens,
        base_delay=app_settings.retry_base_delay,
        max_delay=app_settings.retry_max_delay,
    )
    chat_service = ChatService(
        metadata_store=store,
        retrieval=retrieval_service,
        generation=generation_service,
    )
    chatbot_service = ChatbotService(metadata_store=store, llm_providers=sorted(_LLM_FACTORIES))

    provider_registry: dict[str, Any] = {
        "llm": bool(llm_registry),
        "llm_providers": sorted(llm_registry),
        "embedding": embedder.is_available(),
        "embedding_version": embedding_client.embedding_version,
        "vector_backend": backend.get_provider_name(),
    }

    return {
        "settings": app_settings,
        "config": config,
        "metadata_store": store,
        "blob_storage": blobs,
        "embedding_provider": embedder,
        "vector_backend": backend,
        "vector_store": vector_store,
        "ingestion_service": ingestion_service,
        "retrieval_service": retrieval_service,
        "generation_service": generation_service,
        "chat_service": chat_service,
        "chatbot_service": chatbot_service,
        "provider_registry": provider_registry,
    }


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(
    app_settings: Settings | None = None,
    components: dict[str, Any] | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Components are built lazily at startup unless *components* is given.
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def _lifespan(application: FastAPI):  # noqa: ANN202
        built = components if components is not None else build_services(app_settings)
        for key, value in built.items():
            setattr(application.state, key, value)

        store: IMetadataStore = built["metadata_store"]
        await store.initialize()
        ingestion: IngestionService = built["ingestion_service"]
        await ingestion.recover_interrupted()

        _logger.info(
            "app_startup",
            version=_VERSION,
            environment=app_settings.app_env,
            llm_providers=built["provider_registry"]["llm_providers"],
            embedding_version=built["provider_registry"]["embedding_version"],
            vector_backend=built["provider_registry"]["vector_backend"],
        )

        yield

        # -- Shutdown: stop ingestion runs, release clients --
        await ingestion.shutdown()
        embedder = built["embedding_provider"]
        close_embedder = getattr(embedder, "close", None)
        if close_embedder is not None:
            await close_embedder()
        close_backend = getattr(built["vector_backend"], "close", None)
        if close_backend is not None:
            close_backend()
        _logger.info("app_shutdown")

    application = FastAPI(
        title="Groundbot API",
        version=_VERSION,
        description=(
            "Build chatbots grounded in a company's own documents: upload "
            "documents, authorize them per chatbot, and chat in the "
            "customer's language with cited answers."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    # -- API routes --
    application.include_router(api_router)

    # -- WebSocket --
    @application.websocket("/ws/chatbots/{chatbot_id}/chat")
    async def ws_chat(websocket: WebSocket, chatbot_id: str) -> None:
        await websocket_chat(websocket, chatbot_id)

    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
