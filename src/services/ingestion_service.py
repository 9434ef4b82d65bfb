"""Document ingestion pipeline -- turns an uploaded file into retrievable chunks.

The pipeline moves a document through a fixed sequence of states, each
persisted with a compare-and-set update in the metadata store:

    PENDING -> EXTRACTING -> CHUNKING -> EMBEDDING -> STORING -> READY

1. **Extract** -- load the raw bytes from blob storage and pull plain text
   out of them (PDF pages, HTML, CSV, ...).
2. **Chunk** -- split the text into overlapping windows.
3. **Embed** -- vectorize every chunk through the embedding client.
4. **Store** -- write chunks + vectors to the vector store, tagged with the
   company, document and embedding version.

Every run starts by deleting the document's existing chunks, so a re-run
leaves only the new chunk set.  When any stage fails, chunks already
written are deleted again and the document becomes FAILED with the error
message.  Retrieval only reads READY documents, so a half-processed
document is never visible to a chatbot.

A document has at most one run in flight per process; the
:class:`~src.utils.concurrency.InFlightRegistry` rejects a second request
with :class:`~src.utils.errors.IngestionInProgressError`, and the status
compare-and-set rejects runs started elsewhere.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Any

import structlog

from src.interfaces.blob_storage import IBlobStorage
from src.interfaces.metadata_store import IMetadataStore
from src.interfaces.text_extractor import ITextExtractor
from src.models.document import Document, DocumentStatus, ExtractedText
from src.models.rag import ChunkSpan, IngestionResult, MigrationResult, VectorRecord
from src.providers.extraction.text_extractor import normalize_file_type
from src.services.chunker import TextChunker
from src.services.embedding_client import EmbeddingClient
from src.services.vector_store_adapter import VectorStoreAdapter
from src.utils.concurrency import InFlightRegistry
from src.utils.errors import (
    CorruptFile,
    GroundbotError,
    IngestionInProgressError,
    NotFoundError,
    StorageError,
    TransientProviderError,
    ValidationError,
)
from src.utils.retry import call_with_retry
from src.utils.text_normalizer import detect_language

logger = structlog.get_logger(logger_name=__name__)

# Chunks are embedded and written in slices of this size so a large
# document never holds every vector request in flight at once.
_EMBED_SLICE = 256

# Characters sampled from the start of a document for language detection.
_LANGUAGE_SAMPLE_CHARS = 5000

_INTERRUPTED_MESSAGE = "Ingestion was interrupted before it completed"


class IngestionService:
    """Orchestrates document ingestion, re-ingestion, deletion and migration.

    Parameters
    ----------
    metadata_store:
        Document records and the status compare-and-set.
    blob_storage:
        Raw uploaded files.
    extractor:
        Bytes -> plain text.
    chunker:
        Text -> overlapping spans.
    embedding_client:
        Batched, retrying embedding calls.
    vector_store:
        Tenant-scoped vector store adapter.
    max_upload_bytes:
        Uploads larger than this are rejected.
    storage_timeout:
        Per-attempt timeout for blob storage calls.
    """

    def __init__(
        self,
        metadata_store: IMetadataStore,
        blob_storage: IBlobStorage,
        extractor: ITextExtractor,
        chunker: TextChunker,
        embedding_client: EmbeddingClient,
        vector_store: VectorStoreAdapter,
        max_upload_bytes: int = 20 * 1024 * 1024,
        storage_timeout: float | None = 15.0,
    ) -> None:
        self._store = metadata_store
        self._blobs = blob_storage
        self._extractor = extractor
        self._chunker = chunker
        self._embedding_client = embedding_client
        self._vector_store = vector_store
        self._max_upload_bytes = max_upload_bytes
        self._storage_timeout = storage_timeout
        self._in_flight = InFlightRegistry()
        self._tasks: set[asyncio.Task[IngestionResult]] = set()

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def create_document(
        self,
        company_id: str,
        filename: str,
        file_type: str,
        data: bytes,
    ) -> Document:
        """Store an uploaded file and create its PENDING document record.

        The declared type is kept as given; an unsupported type fails the
        ingestion run so the document records why it was rejected.
        """
        if not company_id.strip():
            raise ValidationError(message="company_id is required")
        if not filename.strip():
            raise ValidationError(message="filename is required")
        if not data:
            raise ValidationError(message="Uploaded file is empty")
        if len(data) > self._max_upload_bytes:
            raise ValidationError(
                message=f"Uploaded file exceeds {self._max_upload_bytes} bytes"
            )

        document_id = str(uuid.uuid4())
        blob_url = await self._storage_call(
            "blob_put",
            lambda: self._blobs.put(company_id, document_id, filename, data),
        )
        document = Document(
            document_id=document_id,
            company_id=company_id,
            filename=filename,
            file_type=normalize_file_type(file_type) or file_type,
            byte_size=len(data),
            blob_url=blob_url,
        )
        await self._store.create_document(document)
        logger.info(
            "document_created",
            document_id=document_id,
            company_id=company_id,
            file_type=document.file_type,
            byte_size=len(data),
        )
        return document

    # ------------------------------------------------------------------
    # Running ingestion
    # ------------------------------------------------------------------

    def schedule(self, document_id: str) -> asyncio.Task[IngestionResult]:
        """Start ingestion of a PENDING document as a background task.

        Raises
        ------
        IngestionInProgressError
            If the document already has a run in flight in this process.
        """
        self._claim(document_id)
        return self._start_task(document_id, reingest=False)

    async def schedule_reingest(self, document_id: str) -> Document:
        """Reset a READY or FAILED document to PENDING, then re-ingest it in the background.

        The reset happens before this returns, so callers observe PENDING
        and a concurrent delete is rejected rather than racing the run.

        Raises
        ------
        NotFoundError
            If the document does not exist.
        IngestionInProgressError
            If a run is in flight or the document cannot be reset.
        """
        self._claim(document_id)
        try:
            document = await self._reset_to_pending(document_id)
        except BaseException:
            self._in_flight.release(document_id)
            raise
        self._start_task(document_id, reingest=True)
        return document

    def _start_task(self, document_id: str, reingest: bool) -> asyncio.Task[IngestionResult]:
        task = asyncio.create_task(self._run_claimed(document_id, reingest=False))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        logger.info("ingestion_scheduled", document_id=document_id, reingest=reingest)
        return task

    async def ingest(self, document_id: str) -> IngestionResult:
        """Run ingestion of a PENDING document to completion.

        Failures inside the pipeline do not raise: they leave the document
        FAILED and are reported in the returned :class:`IngestionResult`.
        """
        self._claim(document_id)
        return await self._run_claimed(document_id, reingest=False)

    async def reingest(self, document_id: str) -> IngestionResult:
        """Re-run ingestion of a READY or FAILED document."""
        self._claim(document_id)
        return await self._run_claimed(document_id, reingest=True)

    async def wait_idle(self) -> None:
        """Wait for every scheduled ingestion task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self._in_flight.wait_idle()

    async def shutdown(self) -> None:
        """Cancel scheduled runs; cancelled documents end up FAILED."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def is_in_flight(self, document_id: str) -> bool:
        return self._in_flight.is_claimed(document_id)

    def _on_task_done(self, task: asyncio.Task[IngestionResult]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("ingestion_task_error", error_type=type(exc).__name__, error=str(exc))

    # ------------------------------------------------------------------
    # Deletion and maintenance
    # ------------------------------------------------------------------

    async def delete_document(self, document_id: str) -> None:
        """Delete a document: its chunks first, then the record and the file.

        Raises
        ------
        NotFoundError
            If the document does not exist.
        IngestionInProgressError
            If the document is being ingested right now.
        """
        document = await self._get_document(document_id)
        self._claim(document_id)
        try:
            removed = await self._vector_store.delete_by_document(document.company_id, document_id)
            await self._store.delete_document(document_id)
            try:
                await self._storage_call("blob_delete", lambda: self._blobs.delete(document.blob_url))
            except StorageError as exc:
                # The record is gone; an orphaned file is harmless.
                logger.warning(
                    "blob_delete_failed",
                    document_id=document_id,
                    error_type=type(exc).__name__,
                )
        finally:
            self._in_flight.release(document_id)
        logger.info(
            "document_deleted",
            document_id=document_id,
            company_id=document.company_id,
            chunks_removed=removed,
        )

    async def migrate_embeddings(self, company_id: str) -> MigrationResult:
        """Re-ingest READY documents embedded with an older embedding version.

        Documents already at the current version are left alone; documents
        with a run in flight are counted as skipped.
        """
        current = self._embedding_client.embedding_version
        documents = await self._store.list_documents(company_id, status=DocumentStatus.READY)
        stale = [d for d in documents if d.embedding_version != current]

        migrated = failed = skipped = 0
        for document in stale:
            try:
                result = await self.reingest(document.document_id)
            except IngestionInProgressError:
                skipped += 1
                continue
            if result.status == DocumentStatus.READY.value:
                migrated += 1
            else:
                failed += 1

        logger.info(
            "embedding_migration_complete",
            company_id=company_id,
            embedding_version=current,
            candidates=len(stale),
            migrated=migrated,
            failed=failed,
            skipped=skipped,
        )
        return MigrationResult(
            company_id=company_id,
            embedding_version=current,
            migrated=migrated,
            failed=failed,
            skipped=skipped,
        )

    async def recover_interrupted(self) -> int:
        """Mark documents left mid-pipeline by a previous process as FAILED.

        Called once at startup, before any ingestion is scheduled.  Their
        partial chunks are removed so a re-run starts clean.
        """
        in_flight = {s for s in DocumentStatus if s.is_in_flight}
        documents = await self._store.list_documents_by_status(in_flight)
        recovered = 0
        for document in documents:
            if self._in_flight.is_claimed(document.document_id):
                continue
            await self._rollback_chunks(document)
            updated = await self._store.transition_status(
                document.document_id,
                {document.status},
                DocumentStatus.FAILED,
                error_message=_INTERRUPTED_MESSAGE,
            )
            if updated is not None:
                recovered += 1
        if recovered:
            logger.warning("interrupted_ingestions_recovered", count=recovered)
        return recovered

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _claim(self, document_id: str) -> None:
        if not self._in_flight.claim(document_id):
            raise IngestionInProgressError(
                message=f"Document {document_id} is already being ingested"
            )

    async def _run_claimed(self, document_id: str, reingest: bool) -> IngestionResult:
        try:
            if reingest:
                await self._reset_to_pending(document_id)
            return await self._process(document_id)
        finally:
            self._in_flight.release(document_id)

    async def _reset_to_pending(self, document_id: str) -> Document:
        document = await self._get_document(document_id)
        if document.status == DocumentStatus.PENDING:
            return document
        updated = await self._store.transition_status(
            document_id,
            {DocumentStatus.READY, DocumentStatus.FAILED},
            DocumentStatus.PENDING,
            error_message=None,
        )
        if updated is None:
            raise IngestionInProgressError(
                message=f"Document {document_id} is {document.status.value} and cannot be re-ingested"
            )
        return updated

    async def _process(self, document_id: str) -> IngestionResult:
        start = time.monotonic()
        document = await self._get_document(document_id)
        document = await self._advance(document, DocumentStatus.EXTRACTING, expected=DocumentStatus.PENDING)

        try:
            # Leftovers from an earlier run must never mix with the new chunk set.
            await self._vector_store.delete_by_document(document.company_id, document_id)

            extracted = await self._extract(document)
            document = await self._advance(document, DocumentStatus.CHUNKING)

            spans = self._chunker.chunk(extracted.text)
            if not spans:
                raise CorruptFile(message="Document contains no extractable text")
            document = await self._advance(document, DocumentStatus.EMBEDDING)

            embedding_version = self._embedding_client.embedding_version
            records = await self._embed(document, extracted, spans, embedding_version)
            document = await self._advance(document, DocumentStatus.STORING)

            await self._vector_store.upsert_many(document.company_id, records)
            stored = await self._vector_store.count_by_document(
                document.company_id, document_id, embedding_version
            )
            if stored != len(records):
                raise StorageError(
                    message=f"Expected {len(records)} stored chunks, found {stored}",
                    provider_name=self._vector_store.backend_name,
                )

            document = await self._advance(
                document,
                DocumentStatus.READY,
                chunk_count=len(records),
                char_length=len(extracted.text),
                embedding_version=embedding_version,
                error_message=None,
            )
        except asyncio.CancelledError:
            await self._fail(document, _INTERRUPTED_MESSAGE)
            raise
        except Exception as exc:  # noqa: BLE001 -- every failure ends in FAILED
            return await self._handle_failure(document, exc, time.monotonic() - start)

        elapsed = time.monotonic() - start
        logger.info(
            "ingestion_complete",
            document_id=document_id,
            company_id=document.company_id,
            chunk_count=document.chunk_count,
            char_length=document.char_length,
            embedding_version=embedding_version,
            elapsed_s=round(elapsed, 2),
        )
        return IngestionResult(
            document_id=document_id,
            status=DocumentStatus.READY.value,
            chunk_count=document.chunk_count,
            char_length=document.char_length,
            embedding_version=embedding_version,
            ingestion_time=round(elapsed, 3),
        )

    async def _extract(self, document: Document) -> ExtractedText:
        data = await self._storage_call("blob_get", lambda: self._blobs.get(document.blob_url))
        # PDF parsing is CPU-bound; keep it off the event loop.
        return await asyncio.to_thread(self._extractor.extract, data, document.file_type)

    async def _embed(
        self,
        document: Document,
        extracted: ExtractedText,
        spans: list[ChunkSpan],
        embedding_version: str,
    ) -> list[VectorRecord]:
        language = detect_language(extracted.text[:_LANGUAGE_SAMPLE_CHARS]) or ""
        # Chunk offsets are relative to the stripped text.
        lead = len(extracted.text) - len(extracted.text.lstrip())

        records: list[VectorRecord] = []
        for begin in range(0, len(spans), _EMBED_SLICE):
            batch = spans[begin : begin + _EMBED_SLICE]
            vectors = await self._embedding_client.embed([span.text for span in batch])
            for offset, (span, vector) in enumerate(zip(batch, vectors)):
                metadata: dict[str, Any] = {
                    "position": begin + offset,
                    "start_offset": span.start,
                    "end_offset": span.end,
                    "filename": document.filename,
                    "language": language,
                }
                page = extracted.page_for_offset(span.start + lead)
                if page is not None:
                    metadata["page_number"] = page
                records.append(
                    VectorRecord(
                        chunk_id=str(uuid.uuid4()),
                        document_id=document.document_id,
                        vector=vector,
                        text=span.text,
                        embedding_version=embedding_version,
                        metadata=metadata,
                    )
                )
        return records

    async def _advance(
        self,
        document: Document,
        target: DocumentStatus,
        expected: DocumentStatus | None = None,
        **fields: Any,
    ) -> Document:
        current = expected or document.status
        updated = await self._store.transition_status(
            document.document_id, {current}, target, **fields
        )
        if updated is not None:
            logger.debug(
                "document_status_changed",
                document_id=document.document_id,
                status=target.value,
            )
            return updated

        latest = await self._store.get_document(document.document_id)
        if latest is None:
            raise NotFoundError(message=f"Document {document.document_id} was deleted during ingestion")
        raise IngestionInProgressError(
            message=(
                f"Document {document.document_id} is {latest.status.value}, "
                f"expected {current.value}"
            )
        )

    async def _handle_failure(
        self,
        document: Document,
        exc: Exception,
        elapsed: float,
    ) -> IngestionResult:
        if isinstance(exc, GroundbotError):
            message = exc.message
            logger.error(
                "ingestion_failed",
                document_id=document.document_id,
                company_id=document.company_id,
                stage=document.status.value,
                error_type=type(exc).__name__,
                provider=exc.provider_name,
            )
        else:
            message = "Internal error during ingestion"
            logger.exception(
                "ingestion_failed_unexpected",
                document_id=document.document_id,
                company_id=document.company_id,
                stage=document.status.value,
                error_type=type(exc).__name__,
            )

        await self._fail(document, message)
        return IngestionResult(
            document_id=document.document_id,
            status=DocumentStatus.FAILED.value,
            error_message=message,
            ingestion_time=round(elapsed, 3),
        )

    async def _fail(self, document: Document, message: str) -> None:
        """Remove partial chunks and move the document to FAILED."""
        await self._rollback_chunks(document)
        latest = await self._store.get_document(document.document_id)
        if latest is None or latest.status.is_terminal:
            return
        await self._store.transition_status(
            document.document_id,
            {latest.status},
            DocumentStatus.FAILED,
            chunk_count=0,
            error_message=message,
        )

    async def _rollback_chunks(self, document: Document) -> None:
        try:
            await self._vector_store.delete_by_document(document.company_id, document.document_id)
        except GroundbotError as exc:
            # Chunks of a non-READY document are never retrieved; the next
            # run deletes them before writing.
            logger.error(
                "ingestion_rollback_failed",
                document_id=document.document_id,
                error_type=type(exc).__name__,
            )

    async def _get_document(self, document_id: str) -> Document:
        document = await self._store.get_document(document_id)
        if document is None:
            raise NotFoundError(message=f"Document {document_id} not found")
        return document

    async def _storage_call(self, operation: str, fn):  # noqa: ANN001, ANN202
        try:
            return await call_with_retry(
                fn,
                operation=operation,
                provider_name=self._blobs.get_provider_name(),
                max_attempts=2,
                timeout=self._storage_timeout,
                base_delay=0.2,
                max_delay=1.0,
            )
        except TransientProviderError as exc:
            raise StorageError(
                message=f"Blob storage unavailable: {exc.message}",
                provider_name=self._blobs.get_provider_name(),
            ) from exc
