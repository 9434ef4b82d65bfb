"""ChromaDB vector store provider adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IVectorStoreProvider`.
Fully local and Python-native -- no external service required.

ChromaDB's client is synchronous.  Every collection call is dispatched to
a single-worker thread pool, which keeps the event loop free and also
serializes calls: a ``delete_by_document`` runs entirely before or after
any concurrent ``query``, never interleaved with it.
"""

from __future__ import annotations

import asyncio
import os
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, TypeVar

# Disable ChromaDB telemetry completely before importing chromadb.
# A version mismatch between ChromaDB's bundled PostHog client and the
# installed version causes "capture() takes 1 positional argument but 3
# were given" errors.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import posthog

posthog.disabled = True

import chromadb
import httpx
import structlog

from src.interfaces.vector_store_provider import IVectorStoreProvider, VectorFilter
from src.models.rag import SearchHit, VectorRecord
from src.utils.errors import TransientProviderError, ValidationError, VectorStoreError

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")

# Metric name -> ChromaDB ``hnsw:space``.  With "ip" ChromaDB reports
# distance = 1 - dot, so similarity is ``1 - distance`` for both spaces.
_HNSW_SPACES: dict[str, str] = {"cosine": "cosine", "dot": "ip"}

_UPSERT_BATCH_SIZE = 500


def _is_transient(exc: Exception) -> bool:
    """Connection drops and SQLite lock contention clear on retry."""
    if isinstance(exc, (ConnectionError, TimeoutError, httpx.TransportError)):
        return True
    return isinstance(exc, sqlite3.OperationalError) and "locked" in str(exc).lower()


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """No-op embedding function that prevents ChromaDB from loading a model.

    Groundbot always passes pre-computed embeddings, so ChromaDB's built-in
    embedding is never invoked.  Without this, ChromaDB downloads its
    default ONNX model on collection creation.
    """

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError(
            "Groundbot uses pre-computed embeddings; "
            "ChromaDB's built-in embedding should never be called."
        )

    def name(self) -> str:
        """Return function name (required by ChromaDB's EmbeddingFunction protocol)."""
        return "noop_precomputed"


class ChromaDBProvider(IVectorStoreProvider):
    """Vector store backed by a persistent ChromaDB collection.

    One collection holds every company's chunks; isolation comes from the
    ``company_id`` metadata field, which every query filters on server-side.
    """

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "groundbot_chunks",
        similarity_metric: str = "cosine",
        client: Any | None = None,
    ) -> None:
        if similarity_metric not in _HNSW_SPACES:
            raise ValidationError(
                message=f"Unsupported similarity metric: {similarity_metric!r}",
                provider_name="chromadb",
            )
        self._metric = similarity_metric
        self._collection_name = collection_name
        self._client = client or chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": _HNSW_SPACES[similarity_metric]},
            embedding_function=_NoopEmbeddingFunction(),
        )
        stored_space = (self._collection.metadata or {}).get("hnsw:space", "l2")
        if stored_space != _HNSW_SPACES[similarity_metric]:
            raise ValidationError(
                message=(
                    f"Collection '{collection_name}' was built with '{stored_space}' "
                    f"but '{similarity_metric}' is configured"
                ),
                provider_name="chromadb",
            )
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chromadb")
        self._dimension = self._peek_dimension()

    # ------------------------------------------------------------------
    # IVectorStoreProvider implementation
    # ------------------------------------------------------------------

    async def add(self, company_id: str, records: list[VectorRecord]) -> int:
        """Upsert records in batches of 500 to bound peak memory."""
        if not records:
            return 0

        def _upsert() -> int:
            for start in range(0, len(records), _UPSERT_BATCH_SIZE):
                batch = records[start : start + _UPSERT_BATCH_SIZE]
                self._collection.upsert(
                    ids=[r.chunk_id for r in batch],
                    embeddings=[r.vector for r in batch],
                    documents=[r.text for r in batch],
                    metadatas=[self._record_to_metadata(company_id, r) for r in batch],
                )
            return len(records)

        stored = await self._run("add", _upsert)
        if self._dimension is None:
            self._dimension = len(records[0].vector)
        logger.info("chromadb_add", company_id=company_id, count=stored)
        return stored

    async def query(
        self,
        query_vector: list[float],
        top_k: int,
        where: VectorFilter,
    ) -> list[SearchHit]:
        where_clause = self._translate_filter(where)
        results = await self._run(
            "query",
            partial(
                self._collection.query,
                query_embeddings=[query_vector],
                n_results=top_k,
                where=where_clause,
                include=["documents", "metadatas", "distances"],
            ),
        )

        if not results["ids"] or not results["ids"][0]:
            return []

        ids = results["ids"][0]
        documents = results["documents"][0] if results.get("documents") else [""] * len(ids)
        metadatas = results["metadatas"][0] if results.get("metadatas") else [{}] * len(ids)
        distances = results["distances"][0] if results.get("distances") else [1.0] * len(ids)

        hits = [
            SearchHit(
                chunk_id=chunk_id,
                document_id=str(meta.get("document_id", "")),
                text=text or "",
                score=1.0 - float(distance),
                metadata=self._public_metadata(meta),
            )
            for chunk_id, text, meta, distance in zip(ids, documents, metadatas, distances)
        ]
        hits.sort(key=lambda h: h.score, reverse=True)
        logger.debug(
            "chromadb_query",
            company_id=where.company_id,
            results_count=len(hits),
            top_score=hits[0].score if hits else None,
        )
        return hits

    async def delete_by_document(self, company_id: str, document_id: str) -> int:
        where = {"$and": [{"company_id": company_id}, {"document_id": document_id}]}

        def _delete() -> int:
            existing = self._collection.get(where=where, include=[])
            count = len(existing["ids"]) if existing["ids"] else 0
            if count > 0:
                self._collection.delete(where=where)
            return count

        deleted = await self._run("delete_by_document", _delete)
        logger.info(
            "chromadb_delete_by_document",
            company_id=company_id,
            document_id=document_id,
            deleted_count=deleted,
        )
        return deleted

    async def count(
        self,
        company_id: str,
        document_id: str,
        embedding_version: str | None = None,
    ) -> int:
        conditions: list[dict[str, Any]] = [
            {"company_id": company_id},
            {"document_id": document_id},
        ]
        if embedding_version is not None:
            conditions.append({"embedding_version": embedding_version})
        existing = await self._run(
            "count",
            partial(self._collection.get, where={"$and": conditions}, include=[]),
        )
        return len(existing["ids"]) if existing["ids"] else 0

    def get_similarity_metric(self) -> str:
        return self._metric

    def get_dimension(self) -> int | None:
        return self._dimension

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        """Return ``True`` if the ChromaDB collection is accessible."""
        try:
            self._collection.count()
            return True
        except Exception:
            return False

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _run(self, operation: str, fn: Callable[[], _T]) -> _T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, fn)
        except Exception as exc:
            if _is_transient(exc):
                raise TransientProviderError(
                    message=f"ChromaDB {operation} temporarily failed: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
            raise VectorStoreError(
                message=f"ChromaDB {operation} failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def _peek_dimension(self) -> int | None:
        """Return the length of a stored vector, or ``None`` for an empty collection."""
        try:
            if self._collection.count() == 0:
                return None
            sample = self._collection.peek(limit=1)
        except Exception as exc:
            logger.warning("chromadb_dimension_check_skipped", error=str(exc))
            return None
        embeddings = sample.get("embeddings") if sample else None
        if embeddings is None or len(embeddings) == 0:
            return None
        return len(embeddings[0])

    @staticmethod
    def _record_to_metadata(
        company_id: str, record: VectorRecord
    ) -> dict[str, str | int | float | bool]:
        """Build the stored metadata; the filter fields always win over chunk metadata."""
        metadata: dict[str, str | int | float | bool] = dict(record.metadata)
        metadata["company_id"] = company_id
        metadata["document_id"] = record.document_id
        metadata["embedding_version"] = record.embedding_version
        return metadata

    @staticmethod
    def _public_metadata(meta: dict[str, Any] | None) -> dict[str, str | int | float | bool]:
        if not meta:
            return {}
        return {k: v for k, v in meta.items() if k not in ("company_id", "embedding_version")}

    @staticmethod
    def _translate_filter(where: VectorFilter) -> dict[str, Any]:
        """Translate a :class:`VectorFilter` into a ChromaDB ``where`` clause."""
        conditions: list[dict[str, Any]] = [
            {"company_id": where.company_id},
            {"document_id": {"$in": sorted(where.document_ids)}},
        ]
        if where.embedding_version is not None:
            conditions.append({"embedding_version": where.embedding_version})
        return {"$and": conditions}
