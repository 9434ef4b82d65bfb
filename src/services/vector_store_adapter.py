"""Tenant-scoped access to the vector store.

:class:`VectorStoreAdapter` is the only path from services to an
:class:`~src.interfaces.vector_store_provider.IVectorStoreProvider`.  It
enforces the retrieval boundary before anything reaches the backend:

* every read and write names a company, and a chatbot scope from another
  company is a :class:`~src.utils.errors.ScopeViolation`;
* searches are filtered server-side to the chatbot's authorized documents
  (and, when pinned, one embedding version) -- an empty scope returns no
  results without querying the index;
* vectors whose length differs from the index raise
  :class:`~src.utils.errors.DimensionMismatchError`;
* the similarity metric is fixed per deployment.

Backend calls go through the shared retry wrapper with a timeout.
"""

from __future__ import annotations

import structlog

from src.interfaces.vector_store_provider import IVectorStoreProvider, VectorFilter
from src.models.rag import ChatbotScope, SearchHit, VectorRecord
from src.utils.errors import (
    DimensionMismatchError,
    ScopeViolation,
    TransientProviderError,
    ValidationError,
    VectorStoreError,
)
from src.utils.retry import call_with_retry

logger = structlog.get_logger(logger_name=__name__)


class VectorStoreAdapter:
    """Scope-enforcing facade over a vector store backend."""

    def __init__(
        self,
        backend: IVectorStoreProvider,
        max_attempts: int = 3,
        timeout: float | None = 15.0,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
    ) -> None:
        self._backend = backend
        self._max_attempts = max_attempts
        self._timeout = timeout
        self._base_delay = base_delay
        self._max_delay = max_delay

    @property
    def similarity_metric(self) -> str:
        return self._backend.get_similarity_metric()

    @property
    def backend_name(self) -> str:
        return self._backend.get_provider_name()

    def is_available(self) -> bool:
        return self._backend.is_available()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(
        self,
        company_id: str,
        chatbot_scope: ChatbotScope | None,
        record: VectorRecord,
    ) -> None:
        """Write a single chunk vector."""
        await self.upsert_many(company_id, [record], chatbot_scope=chatbot_scope)

    async def upsert_many(
        self,
        company_id: str,
        records: list[VectorRecord],
        chatbot_scope: ChatbotScope | None = None,
    ) -> int:
        """Write chunk vectors for *company_id*; return the number written.

        When *chatbot_scope* is given, every record's document must be in
        it and the scope must belong to *company_id*.
        """
        if not records:
            return 0
        if chatbot_scope is not None:
            self._check_company(company_id, chatbot_scope)
            outside = {r.document_id for r in records} - chatbot_scope.document_ids
            if outside:
                logger.warning(
                    "vector_upsert_scope_violation",
                    company_id=company_id,
                    chatbot_id=chatbot_scope.chatbot_id,
                    document_count=len(outside),
                )
                raise ScopeViolation(message="Records reference documents outside the chatbot scope")

        dimensions = {len(r.vector) for r in records}
        if len(dimensions) != 1:
            raise DimensionMismatchError(message="Records in one write have different vector lengths")
        self._check_dimension(dimensions.pop())

        return await self._call("add", lambda: self._backend.add(company_id, records))

    async def delete_by_document(self, company_id: str, document_id: str) -> int:
        """Remove every chunk of a document in one backend operation."""
        return await self._call(
            "delete_by_document",
            lambda: self._backend.delete_by_document(company_id, document_id),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search(
        self,
        company_id: str,
        chatbot_scope: ChatbotScope,
        query_vector: list[float],
        top_k: int,
        similarity_metric: str | None = None,
    ) -> list[SearchHit]:
        """Return up to *top_k* chunks from the scope's documents, most similar first."""
        self._check_company(company_id, chatbot_scope)
        if similarity_metric is not None and similarity_metric != self.similarity_metric:
            raise ValidationError(
                message=(
                    f"Similarity metric {similarity_metric!r} does not match "
                    f"the deployment metric {self.similarity_metric!r}"
                )
            )
        if top_k <= 0:
            raise ValidationError(message=f"top_k must be positive, got {top_k}")
        if chatbot_scope.is_empty:
            return []
        self._check_dimension(len(query_vector))

        where = VectorFilter(
            company_id=company_id,
            document_ids=chatbot_scope.document_ids,
            embedding_version=chatbot_scope.embedding_version,
        )
        hits = await self._call("query", lambda: self._backend.query(query_vector, top_k, where))

        # Backends filter server-side; a hit outside the scope means the
        # backend ignored the filter and nothing may be returned.
        if any(hit.document_id not in chatbot_scope.document_ids for hit in hits):
            logger.error(
                "vector_search_scope_violation",
                backend=self.backend_name,
                company_id=company_id,
                chatbot_id=chatbot_scope.chatbot_id,
            )
            raise ScopeViolation(message="Vector store returned results outside the chatbot scope")

        logger.debug(
            "vector_search",
            company_id=company_id,
            chatbot_id=chatbot_scope.chatbot_id,
            documents=len(chatbot_scope.document_ids),
            results=len(hits),
        )
        return hits

    async def count_by_document(
        self,
        company_id: str,
        document_id: str,
        embedding_version: str | None = None,
    ) -> int:
        return await self._call(
            "count",
            lambda: self._backend.count(company_id, document_id, embedding_version),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _check_company(company_id: str, chatbot_scope: ChatbotScope) -> None:
        if chatbot_scope.company_id != company_id:
            logger.warning(
                "vector_store_company_mismatch",
                company_id=company_id,
                chatbot_id=chatbot_scope.chatbot_id,
            )
            raise ScopeViolation(message="Chatbot scope belongs to a different company")

    def _check_dimension(self, length: int) -> None:
        index_dim = self._backend.get_dimension()
        if index_dim is not None and length != index_dim:
            raise DimensionMismatchError(
                message=f"Vector length {length} does not match index dimension {index_dim}",
                provider_name=self.backend_name,
            )

    async def _call(self, operation: str, fn):  # noqa: ANN001, ANN202
        try:
            return await call_with_retry(
                fn,
                operation=f"vector_{operation}",
                provider_name=self.backend_name,
                max_attempts=self._max_attempts,
                timeout=self._timeout,
                base_delay=self._base_delay,
                max_delay=self._max_delay,
            )
        except TransientProviderError as exc:
            raise VectorStoreError(
                message=f"Vector store {operation} unavailable: {exc.message}",
                provider_name=self.backend_name,
            ) from exc
