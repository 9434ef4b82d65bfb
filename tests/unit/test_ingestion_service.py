"""Unit tests for IngestionService -- the document status pipeline.

Runs against the real SQLite metadata store, local blob storage and the
in-memory vector store, with the keyword embedding fake.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
import pytest_asyncio

from src.interfaces.vector_store_provider import VectorFilter
from src.models.document import DocumentStatus
from src.utils.errors import IngestionInProgressError, NotFoundError, ValidationError
from tests.conftest import KeywordEmbeddingProvider

POLICY_TEXT = ("Refunds are accepted within 30 days of purchase with a receipt. " * 50).encode()


async def _upload(components: dict[str, Any], data: bytes = POLICY_TEXT, file_type: str = "txt", **kwargs):
    ingestion = components["ingestion_service"]
    return await ingestion.create_document(
        kwargs.get("company_id", "acme"),
        kwargs.get("filename", "policy.txt"),
        file_type,
        data,
    )


class _GatedEmbedding(KeywordEmbeddingProvider):
    """Blocks every embed call until the test opens the gate."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def embed(self, texts: list[str]) -> list[list[float]]:
        await self.gate.wait()
        return await super().embed(texts)


@pytest_asyncio.fixture
async def failing_components(make_components):
    built = make_components(embedding=KeywordEmbeddingProvider(always_fail=True))
    await built["metadata_store"].initialize()
    yield built
    await built["ingestion_service"].shutdown()


# ======================================================================
# Upload
# ======================================================================


class TestCreateDocument:
    @pytest.mark.asyncio
    async def test_creates_pending_record_and_blob(self, components: dict[str, Any]) -> None:
        document = await _upload(components, file_type=".TXT")

        assert document.status is DocumentStatus.PENDING
        assert document.file_type == "txt"
        assert document.byte_size == len(POLICY_TEXT)
        assert await components["blob_storage"].get(document.blob_url) == POLICY_TEXT
        stored = await components["metadata_store"].get_document(document.document_id)
        assert stored is not None and stored.company_id == "acme"

    @pytest.mark.asyncio
    async def test_empty_upload_rejected(self, components: dict[str, Any]) -> None:
        with pytest.raises(ValidationError):
            await _upload(components, data=b"")

    @pytest.mark.asyncio
    async def test_oversized_upload_rejected(self, make_components) -> None:
        built = make_components(max_upload_bytes=10)
        await built["metadata_store"].initialize()

        with pytest.raises(ValidationError):
            await _upload(built, data=b"x" * 11)

    @pytest.mark.asyncio
    async def test_company_is_required(self, components: dict[str, Any]) -> None:
        with pytest.raises(ValidationError):
            await _upload(components, company_id="  ")


# ======================================================================
# Ingestion runs
# ======================================================================


class TestIngest:
    @pytest.mark.asyncio
    async def test_document_becomes_ready_with_chunks(self, components: dict[str, Any]) -> None:
        document = await _upload(components)

        result = await components["ingestion_service"].ingest(document.document_id)

        assert result.status == "ready"
        assert result.chunk_count > 1
        assert result.embedding_version == "fake:keyword-test:6"

        stored = await components["metadata_store"].get_document(document.document_id)
        assert stored.status is DocumentStatus.READY
        assert stored.chunk_count == result.chunk_count
        assert stored.char_length == len(POLICY_TEXT.decode().strip())
        assert stored.error_message is None

        count = await components["vector_store"].count_by_document(
            "acme", document.document_id, "fake:keyword-test:6"
        )
        assert count == result.chunk_count

    @pytest.mark.asyncio
    async def test_chunks_carry_provenance(self, components: dict[str, Any]) -> None:
        document = await _upload(components)
        await components["ingestion_service"].ingest(document.document_id)

        hits = await components["vector_backend"].query(
            KeywordEmbeddingProvider().vector_for("refund"),
            top_k=50,
            where=VectorFilter(company_id="acme", document_ids=frozenset({document.document_id})),
        )

        positions = sorted(h.metadata["position"] for h in hits)
        assert positions == list(range(len(hits)))
        assert all(h.metadata["filename"] == "policy.txt" for h in hits)
        assert all(h.metadata["language"] == "en" for h in hits)
        assert "page_number" not in hits[0].metadata

    @pytest.mark.asyncio
    async def test_unsupported_type_fails_document(self, components: dict[str, Any]) -> None:
        document = await _upload(components, file_type="docx")

        result = await components["ingestion_service"].ingest(document.document_id)

        assert result.status == "failed"
        assert "Unsupported file type" in result.error_message
        stored = await components["metadata_store"].get_document(document.document_id)
        assert stored.status is DocumentStatus.FAILED
        assert stored.error_message == result.error_message

    @pytest.mark.asyncio
    async def test_document_without_text_fails(self, components: dict[str, Any]) -> None:
        document = await _upload(components, data=b"<html><body><script>x()</script></body></html>", file_type="html")

        result = await components["ingestion_service"].ingest(document.document_id)

        assert result.status == "failed"
        assert "no extractable text" in result.error_message

    @pytest.mark.asyncio
    async def test_embedding_outage_rolls_back(self, failing_components: dict[str, Any]) -> None:
        document = await _upload(failing_components)

        result = await failing_components["ingestion_service"].ingest(document.document_id)

        assert result.status == "failed"
        assert result.chunk_count == 0
        assert len(failing_components["embedding_provider"].calls) == 3
        stored = await failing_components["metadata_store"].get_document(document.document_id)
        assert stored.status is DocumentStatus.FAILED
        assert stored.chunk_count == 0
        assert await failing_components["vector_backend"].count("acme", document.document_id) == 0

    @pytest.mark.asyncio
    async def test_ingest_requires_pending_document(self, components: dict[str, Any]) -> None:
        document = await _upload(components)
        ingestion = components["ingestion_service"]
        await ingestion.ingest(document.document_id)

        with pytest.raises(IngestionInProgressError):
            await ingestion.ingest(document.document_id)

    @pytest.mark.asyncio
    async def test_unknown_document(self, components: dict[str, Any]) -> None:
        with pytest.raises(NotFoundError):
            await components["ingestion_service"].ingest("missing")

    @pytest.mark.asyncio
    async def test_second_run_while_scheduled_is_rejected(self, components: dict[str, Any]) -> None:
        document = await _upload(components)
        ingestion = components["ingestion_service"]

        task = ingestion.schedule(document.document_id)
        assert ingestion.is_in_flight(document.document_id)
        with pytest.raises(IngestionInProgressError):
            await ingestion.ingest(document.document_id)

        result = await task
        assert result.status == "ready"
        assert not ingestion.is_in_flight(document.document_id)

    @pytest.mark.asyncio
    async def test_wait_idle_drains_scheduled_runs(self, components: dict[str, Any]) -> None:
        ingestion = components["ingestion_service"]
        documents = [await _upload(components, filename=f"p{i}.txt") for i in range(3)]
        for document in documents:
            ingestion.schedule(document.document_id)

        await ingestion.wait_idle()

        for document in documents:
            stored = await components["metadata_store"].get_document(document.document_id)
            assert stored.status is DocumentStatus.READY


# ======================================================================
# Re-ingestion, deletion, maintenance
# ======================================================================


class TestReingestAndDelete:
    @pytest.mark.asyncio
    async def test_reingest_replaces_chunk_set(self, components: dict[str, Any]) -> None:
        document = await _upload(components)
        ingestion = components["ingestion_service"]
        backend = components["vector_backend"]
        where = VectorFilter(company_id="acme", document_ids=frozenset({document.document_id}))
        query = KeywordEmbeddingProvider().vector_for("refund")

        first = await ingestion.ingest(document.document_id)
        first_ids = {h.chunk_id for h in await backend.query(query, top_k=100, where=where)}
        second = await ingestion.reingest(document.document_id)
        second_ids = {h.chunk_id for h in await backend.query(query, top_k=100, where=where)}

        assert second.status == "ready"
        assert second.chunk_count == first.chunk_count
        assert len(second_ids) == second.chunk_count
        assert first_ids.isdisjoint(second_ids)

    @pytest.mark.asyncio
    async def test_reingest_recovers_failed_document(self, make_components) -> None:
        provider = KeywordEmbeddingProvider(fail_times=3)
        built = make_components(embedding=provider)
        await built["metadata_store"].initialize()
        document = await _upload(built)

        failed = await built["ingestion_service"].ingest(document.document_id)
        recovered = await built["ingestion_service"].reingest(document.document_id)

        assert failed.status == "failed"
        assert recovered.status == "ready"
        stored = await built["metadata_store"].get_document(document.document_id)
        assert stored.error_message is None

    @pytest.mark.asyncio
    async def test_delete_removes_everything(self, components: dict[str, Any]) -> None:
        document = await _upload(components)
        ingestion = components["ingestion_service"]
        await ingestion.ingest(document.document_id)

        await ingestion.delete_document(document.document_id)

        assert await components["metadata_store"].get_document(document.document_id) is None
        assert await components["vector_backend"].count("acme", document.document_id) == 0
        with pytest.raises(NotFoundError):
            await components["blob_storage"].get(document.blob_url)

    @pytest.mark.asyncio
    async def test_delete_rejected_while_in_flight(self, make_components) -> None:
        embedding = _GatedEmbedding()
        built = make_components(embedding=embedding)
        await built["metadata_store"].initialize()
        document = await _upload(built)
        ingestion = built["ingestion_service"]
        task = ingestion.schedule(document.document_id)

        with pytest.raises(IngestionInProgressError):
            await ingestion.delete_document(document.document_id)

        embedding.gate.set()
        assert (await task).status == "ready"

    @pytest.mark.asyncio
    async def test_delete_unknown_document(self, components: dict[str, Any]) -> None:
        with pytest.raises(NotFoundError):
            await components["ingestion_service"].delete_document("missing")

    @pytest.mark.asyncio
    async def test_schedule_reingest_resets_to_pending_before_returning(self, make_components) -> None:
        embedding = _GatedEmbedding()
        embedding.gate.set()
        built = make_components(embedding=embedding)
        await built["metadata_store"].initialize()
        document = await _upload(built)
        ingestion = built["ingestion_service"]
        await ingestion.ingest(document.document_id)
        embedding.gate.clear()

        accepted = await ingestion.schedule_reingest(document.document_id)
        stored = await built["metadata_store"].get_document(document.document_id)

        assert accepted.status is DocumentStatus.PENDING
        assert stored.status is not DocumentStatus.READY
        with pytest.raises(IngestionInProgressError):
            await ingestion.delete_document(document.document_id)

        embedding.gate.set()
        await ingestion.wait_idle()
        stored = await built["metadata_store"].get_document(document.document_id)
        assert stored.status is DocumentStatus.READY
        await ingestion.delete_document(document.document_id)

    @pytest.mark.asyncio
    async def test_schedule_reingest_of_unknown_document_releases_claim(
        self, components: dict[str, Any]
    ) -> None:
        ingestion = components["ingestion_service"]

        with pytest.raises(NotFoundError):
            await ingestion.schedule_reingest("missing")

        assert not ingestion.is_in_flight("missing")

    @pytest.mark.asyncio
    async def test_migrate_reembeds_stale_documents_only(self, components: dict[str, Any]) -> None:
        ingestion = components["ingestion_service"]
        store = components["metadata_store"]
        stale = await _upload(components, filename="stale.txt")
        current = await _upload(components, filename="current.txt")
        await ingestion.ingest(stale.document_id)
        await ingestion.ingest(current.document_id)
        await store.transition_status(
            stale.document_id, {DocumentStatus.READY}, DocumentStatus.READY, embedding_version="old:model:6"
        )

        result = await ingestion.migrate_embeddings("acme")

        assert (result.migrated, result.failed, result.skipped) == (1, 0, 0)
        assert result.embedding_version == "fake:keyword-test:6"
        refreshed = await store.get_document(stale.document_id)
        assert refreshed.embedding_version == "fake:keyword-test:6"
        assert refreshed.status is DocumentStatus.READY

    @pytest.mark.asyncio
    async def test_recover_interrupted_fails_stuck_documents(self, components: dict[str, Any]) -> None:
        store = components["metadata_store"]
        document = await _upload(components)
        await store.transition_status(document.document_id, {DocumentStatus.PENDING}, DocumentStatus.EXTRACTING)
        await store.transition_status(document.document_id, {DocumentStatus.EXTRACTING}, DocumentStatus.CHUNKING)

        recovered = await components["ingestion_service"].recover_interrupted()

        assert recovered == 1
        stored = await store.get_document(document.document_id)
        assert stored.status is DocumentStatus.FAILED
        assert "interrupted" in stored.error_message

    @pytest.mark.asyncio
    async def test_shutdown_cancels_runs_and_fails_documents(self, make_components) -> None:
        built = make_components(embedding=_GatedEmbedding())
        await built["metadata_store"].initialize()
        document = await _upload(built)
        ingestion = built["ingestion_service"]

        ingestion.schedule(document.document_id)
        for _ in range(100):
            stored = await built["metadata_store"].get_document(document.document_id)
            if stored.status is DocumentStatus.EMBEDDING:
                break
            await asyncio.sleep(0.01)
        await ingestion.shutdown()

        stored = await built["metadata_store"].get_document(document.document_id)
        assert stored.status is DocumentStatus.FAILED
        assert not ingestion.is_in_flight(document.document_id)
