"""Abstract base class for vector-store backends.

Defines the raw storage contract for embedded chunks.  Backends know
nothing about chatbots: they store :class:`~src.models.rag.VectorRecord`
rows tagged with ``company_id``, ``document_id`` and ``embedding_version``
and answer nearest-neighbour queries restricted by a :class:`VectorFilter`.
Tenant and chatbot scoping is enforced one level up, by
:class:`~src.services.vector_store_adapter.VectorStoreAdapter`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict

from src.models.rag import SearchHit, VectorRecord


class VectorFilter(BaseModel):
    """Server-side filter applied before ranking.

    A chunk matches when it belongs to ``company_id``, to one of
    ``document_ids``, and (when set) was written at ``embedding_version``.
    """

    model_config = ConfigDict(frozen=True)

    company_id: str
    document_ids: frozenset[str]
    embedding_version: str | None = None


# Concrete implementations: ChromaDBProvider, InMemoryVectorStore
# Located in: src/providers/vector_store/
class IVectorStoreProvider(ABC):
    """Contract for vector-store backends.

    All methods are async so network or disk backed stores never block the
    event loop.  A backend's delete is atomic with respect to its queries:
    a concurrent query sees all of a document's chunks or none of them.
    """

    @abstractmethod
    async def add(self, company_id: str, records: list[VectorRecord]) -> int:
        """Insert or overwrite *records* (keyed by ``chunk_id``); return the count written."""

    @abstractmethod
    async def query(
        self,
        query_vector: list[float],
        top_k: int,
        where: VectorFilter,
    ) -> list[SearchHit]:
        """Return up to *top_k* matching chunks, most similar first.

        Scores follow the backend's metric with "higher is more similar".
        """

    @abstractmethod
    async def delete_by_document(self, company_id: str, document_id: str) -> int:
        """Delete every chunk of a document; return the number deleted."""

    @abstractmethod
    async def count(
        self,
        company_id: str,
        document_id: str,
        embedding_version: str | None = None,
    ) -> int:
        """Count a document's stored chunks, optionally at one embedding version."""

    @abstractmethod
    def get_similarity_metric(self) -> str:
        """Return the metric the index was built with: ``"cosine"`` or ``"dot"``."""

    @abstractmethod
    def get_dimension(self) -> int | None:
        """Return the vector length the index holds, or ``None`` while it is empty."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier for this backend, e.g. ``"chromadb"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the backend was initialized and can serve queries."""
