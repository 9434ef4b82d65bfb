"""In-memory vector store provider.

A numpy-backed implementation of :class:`IVectorStoreProvider` for tests
and single-process development deployments.  Nothing is persisted.

Every method body runs without awaiting, so on a single event loop each
operation is atomic with respect to the others.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import structlog

from src.interfaces.vector_store_provider import IVectorStoreProvider, VectorFilter
from src.models.rag import SearchHit, VectorRecord
from src.utils.errors import ValidationError

logger = structlog.get_logger(logger_name=__name__)

_METRICS = ("cosine", "dot")


@dataclass
class _StoredChunk:
    company_id: str
    document_id: str
    embedding_version: str
    vector: np.ndarray
    text: str
    metadata: dict[str, str | int | float | bool]


class InMemoryVectorStore(IVectorStoreProvider):
    """Brute-force nearest-neighbour search over vectors held in a dict."""

    def __init__(self, similarity_metric: str = "cosine") -> None:
        if similarity_metric not in _METRICS:
            raise ValidationError(
                message=f"Unsupported similarity metric: {similarity_metric!r}",
                provider_name="memory",
            )
        self._metric = similarity_metric
        self._chunks: dict[str, _StoredChunk] = {}
        self._dimension: int | None = None

    async def add(self, company_id: str, records: list[VectorRecord]) -> int:
        for record in records:
            self._chunks[record.chunk_id] = _StoredChunk(
                company_id=company_id,
                document_id=record.document_id,
                embedding_version=record.embedding_version,
                vector=np.asarray(record.vector, dtype=np.float64),
                text=record.text,
                metadata=dict(record.metadata),
            )
        if records and self._dimension is None:
            self._dimension = len(records[0].vector)
        return len(records)

    async def query(
        self,
        query_vector: list[float],
        top_k: int,
        where: VectorFilter,
    ) -> list[SearchHit]:
        candidates = [
            (chunk_id, chunk)
            for chunk_id, chunk in self._chunks.items()
            if chunk.company_id == where.company_id
            and chunk.document_id in where.document_ids
            and (where.embedding_version is None or chunk.embedding_version == where.embedding_version)
        ]
        if not candidates or top_k <= 0:
            return []

        matrix = np.vstack([chunk.vector for _, chunk in candidates])
        query = np.asarray(query_vector, dtype=np.float64)
        scores = matrix @ query
        if self._metric == "cosine":
            norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
            scores = np.divide(scores, norms, out=np.zeros_like(scores), where=norms > 0)

        # Stable sort keeps insertion order among equal scores.
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            SearchHit(
                chunk_id=candidates[i][0],
                document_id=candidates[i][1].document_id,
                text=candidates[i][1].text,
                score=float(scores[i]),
                metadata=dict(candidates[i][1].metadata),
            )
            for i in order
        ]

    async def delete_by_document(self, company_id: str, document_id: str) -> int:
        doomed = [
            chunk_id
            for chunk_id, chunk in self._chunks.items()
            if chunk.company_id == company_id and chunk.document_id == document_id
        ]
        for chunk_id in doomed:
            del self._chunks[chunk_id]
        logger.debug(
            "memory_store_delete_by_document",
            document_id=document_id,
            deleted_count=len(doomed),
        )
        return len(doomed)

    async def count(
        self,
        company_id: str,
        document_id: str,
        embedding_version: str | None = None,
    ) -> int:
        return sum(
            1
            for chunk in self._chunks.values()
            if chunk.company_id == company_id
            and chunk.document_id == document_id
            and (embedding_version is None or chunk.embedding_version == embedding_version)
        )

    def get_similarity_metric(self) -> str:
        return self._metric

    def get_dimension(self) -> int | None:
        return self._dimension

    def get_provider_name(self) -> str:
        return "memory"

    def is_available(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._chunks)
