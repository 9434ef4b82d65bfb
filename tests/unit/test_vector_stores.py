"""Unit tests for the vector store backends -- in-memory and ChromaDB.

Both backends must agree on the raw contract: server-side filtering by
company, document set and embedding version, "higher score is more
similar", and whole-document deletes.
"""

from __future__ import annotations

import sqlite3
from unittest.mock import MagicMock

import pytest

from src.interfaces.vector_store_provider import VectorFilter
from src.models.rag import VectorRecord
from src.providers.vector_store.memory_provider import InMemoryVectorStore
from src.utils.errors import TransientProviderError, ValidationError, VectorStoreError


def _record(
    chunk_id: str,
    document_id: str = "doc-1",
    vector: list[float] | None = None,
    text: str = "chunk text",
    embedding_version: str = "fake:m:3",
    **metadata,
) -> VectorRecord:
    return VectorRecord(
        chunk_id=chunk_id,
        document_id=document_id,
        vector=vector or [1.0, 0.0, 0.0],
        text=text,
        embedding_version=embedding_version,
        metadata={"filename": "faq.txt", **metadata},
    )


def _where(company_id: str = "acme", *document_ids: str, version: str | None = None) -> VectorFilter:
    return VectorFilter(
        company_id=company_id,
        document_ids=frozenset(document_ids or ("doc-1",)),
        embedding_version=version,
    )


# ======================================================================
# InMemoryVectorStore
# ======================================================================


class TestInMemoryVectorStore:
    @pytest.mark.asyncio
    async def test_query_ranks_by_cosine_similarity(self) -> None:
        store = InMemoryVectorStore()
        await store.add(
            "acme",
            [
                _record("far", vector=[0.0, 1.0, 0.0]),
                _record("near", vector=[0.9, 0.1, 0.0]),
                _record("exact", vector=[2.0, 0.0, 0.0]),
            ],
        )

        hits = await store.query([1.0, 0.0, 0.0], top_k=3, where=_where())

        assert [h.chunk_id for h in hits] == ["exact", "near", "far"]
        assert hits[0].score == pytest.approx(1.0)
        assert hits[2].score == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_dot_metric_uses_raw_products(self) -> None:
        store = InMemoryVectorStore(similarity_metric="dot")
        await store.add("acme", [_record("a", vector=[2.0, 0.0, 0.0])])

        hits = await store.query([0.5, 0.0, 0.0], top_k=1, where=_where())
        assert hits[0].score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_query_filters_company_and_documents(self) -> None:
        store = InMemoryVectorStore()
        await store.add("acme", [_record("a1", "doc-1"), _record("a2", "doc-2")])
        await store.add("globex", [_record("g1", "doc-1")])

        hits = await store.query([1.0, 0.0, 0.0], top_k=10, where=_where("acme", "doc-1"))

        assert [h.chunk_id for h in hits] == ["a1"]

    @pytest.mark.asyncio
    async def test_query_filters_embedding_version(self) -> None:
        store = InMemoryVectorStore()
        await store.add(
            "acme",
            [_record("old", embedding_version="v1"), _record("new", embedding_version="v2")],
        )

        hits = await store.query([1.0, 0.0, 0.0], top_k=10, where=_where(version="v2"))
        assert [h.chunk_id for h in hits] == ["new"]

    @pytest.mark.asyncio
    async def test_top_k_limits_results(self) -> None:
        store = InMemoryVectorStore()
        await store.add("acme", [_record(f"c{i}") for i in range(5)])

        hits = await store.query([1.0, 0.0, 0.0], top_k=2, where=_where())
        assert len(hits) == 2

    @pytest.mark.asyncio
    async def test_delete_by_document_is_company_scoped(self) -> None:
        store = InMemoryVectorStore()
        await store.add("acme", [_record("a1"), _record("a2")])
        await store.add("globex", [_record("g1")])

        deleted = await store.delete_by_document("acme", "doc-1")

        assert deleted == 2
        assert await store.count("acme", "doc-1") == 0
        assert await store.count("globex", "doc-1") == 1

    @pytest.mark.asyncio
    async def test_add_overwrites_by_chunk_id(self) -> None:
        store = InMemoryVectorStore()
        await store.add("acme", [_record("a", text="first")])
        await store.add("acme", [_record("a", text="second")])

        hits = await store.query([1.0, 0.0, 0.0], top_k=5, where=_where())
        assert [h.text for h in hits] == ["second"]
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_dimension_is_learned_from_first_write(self) -> None:
        store = InMemoryVectorStore()
        assert store.get_dimension() is None
        await store.add("acme", [_record("a")])
        assert store.get_dimension() == 3

    @pytest.mark.asyncio
    async def test_hits_carry_metadata(self) -> None:
        store = InMemoryVectorStore()
        await store.add("acme", [_record("a", page_number=4)])

        hits = await store.query([1.0, 0.0, 0.0], top_k=1, where=_where())
        assert hits[0].metadata["page_number"] == 4
        assert hits[0].metadata["filename"] == "faq.txt"

    def test_unknown_metric_rejected(self) -> None:
        with pytest.raises(ValidationError):
            InMemoryVectorStore(similarity_metric="euclidean")


# ======================================================================
# ChromaDBProvider (real local client under tmp_path)
# ======================================================================


class TestChromaDBProvider:
    @pytest.fixture()
    def provider(self, tmp_path):
        from src.providers.vector_store.chromadb_provider import ChromaDBProvider

        provider = ChromaDBProvider(
            persist_directory=str(tmp_path / "chroma"),
            collection_name="test_chunks",
        )
        yield provider
        provider.close()

    def test_get_provider_name(self, provider) -> None:
        assert provider.get_provider_name() == "chromadb"
        assert provider.get_similarity_metric() == "cosine"

    def test_is_available(self, provider) -> None:
        assert provider.is_available() is True

    @pytest.mark.asyncio
    async def test_add_and_query_with_scope(self, provider) -> None:
        await provider.add(
            "acme",
            [
                _record("a1", "doc-1", vector=[1.0, 0.0, 0.0], text="Refunds take 5 days"),
                _record("a2", "doc-2", vector=[1.0, 0.0, 0.0], text="Unauthorized doc"),
            ],
        )
        await provider.add("globex", [_record("g1", "doc-1", vector=[1.0, 0.0, 0.0])])

        hits = await provider.query([1.0, 0.0, 0.0], top_k=5, where=_where("acme", "doc-1"))

        assert [h.chunk_id for h in hits] == ["a1"]
        assert hits[0].document_id == "doc-1"
        assert hits[0].score == pytest.approx(1.0, abs=1e-4)
        assert "company_id" not in hits[0].metadata

    @pytest.mark.asyncio
    async def test_delete_and_count(self, provider) -> None:
        await provider.add(
            "acme",
            [_record("a1", embedding_version="v1"), _record("a2", embedding_version="v2")],
        )

        assert await provider.count("acme", "doc-1") == 2
        assert await provider.count("acme", "doc-1", "v2") == 1

        deleted = await provider.delete_by_document("acme", "doc-1")
        assert deleted == 2
        assert await provider.count("acme", "doc-1") == 0

    @pytest.mark.asyncio
    async def test_dimension_is_recovered_on_reopen(self, tmp_path) -> None:
        from src.providers.vector_store.chromadb_provider import ChromaDBProvider

        path = str(tmp_path / "chroma")
        first = ChromaDBProvider(persist_directory=path, collection_name="dims")
        await first.add("acme", [_record("a1")])
        first.close()

        reopened = ChromaDBProvider(persist_directory=path, collection_name="dims")
        try:
            assert reopened.get_dimension() == 3
        finally:
            reopened.close()

    def test_translate_filter(self) -> None:
        from src.providers.vector_store.chromadb_provider import ChromaDBProvider

        clause = ChromaDBProvider._translate_filter(_where("acme", "doc-2", "doc-1", version="v1"))

        assert clause == {
            "$and": [
                {"company_id": "acme"},
                {"document_id": {"$in": ["doc-1", "doc-2"]}},
                {"embedding_version": "v1"},
            ]
        }

    def test_record_metadata_filter_fields_win(self) -> None:
        from src.providers.vector_store.chromadb_provider import ChromaDBProvider

        record = _record("a1", company_id="spoofed")
        metadata = ChromaDBProvider._record_to_metadata("acme", record)

        assert metadata["company_id"] == "acme"
        assert metadata["document_id"] == "doc-1"
        assert metadata["embedding_version"] == "fake:m:3"

    @pytest.mark.asyncio
    async def test_locked_database_is_transient(self, provider) -> None:
        provider._collection = MagicMock()
        provider._collection.get.side_effect = sqlite3.OperationalError("database is locked")

        with pytest.raises(TransientProviderError, match="temporarily failed"):
            await provider.count("acme", "doc-1")

    @pytest.mark.asyncio
    async def test_other_failures_are_permanent(self, provider) -> None:
        provider._collection = MagicMock()
        provider._collection.get.side_effect = ValueError("bad where clause")

        with pytest.raises(VectorStoreError) as excinfo:
            await provider.count("acme", "doc-1")

        assert not isinstance(excinfo.value, TransientProviderError)

    @pytest.mark.asyncio
    async def test_adapter_retries_a_locked_database(self, provider) -> None:
        from src.services.vector_store_adapter import VectorStoreAdapter

        provider._collection = MagicMock()
        provider._collection.get.side_effect = [
            sqlite3.OperationalError("database is locked"),
            {"ids": ["a1", "a2"]},
        ]
        adapter = VectorStoreAdapter(backend=provider, max_attempts=2, timeout=None, base_delay=0.0, max_delay=0.0)

        assert await adapter.count_by_document("acme", "doc-1") == 2
        assert provider._collection.get.call_count == 2
