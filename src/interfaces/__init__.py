"""Public interface definitions for all external service providers.

Every external API or storage backend in Groundbot is accessed exclusively
through the abstract base classes defined in this package.  Concrete
adapters implement these interfaces and are injected at startup in
``src/main.py``, so unit tests can substitute fakes without real API calls.

CONCRETE PROVIDER MAP:
    Interface              ->  Concrete implementations (in src/providers/)
    -----------------------------------------------------------------
    ILLMProvider           ->  OpenAILLMProvider, AnthropicLLMProvider,
                               OllamaLLMProvider
    IEmbeddingProvider     ->  OpenAIEmbeddingProvider, OllamaEmbeddingProvider
    IVectorStoreProvider   ->  ChromaDBProvider, InMemoryVectorStore
    IMetadataStore         ->  SQLiteMetadataStore
    IBlobStorage           ->  LocalBlobStorage
    ITextExtractor         ->  DocumentTextExtractor
"""

from src.interfaces.blob_storage import IBlobStorage
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.metadata_store import IMetadataStore
from src.interfaces.text_extractor import ITextExtractor
from src.interfaces.vector_store_provider import IVectorStoreProvider, VectorFilter

__all__ = [
    "IBlobStorage",
    "IEmbeddingProvider",
    "ILLMProvider",
    "IMetadataStore",
    "ITextExtractor",
    "IVectorStoreProvider",
    "VectorFilter",
]
