"""Orchestrator for the knowledge ingestion pipeline.

Pipeline stages: **extract -> chunk -> embed -> store**.

The :class:`IngestionService` coordinates its collaborators (extractor
factory, chunker, embedding provider, vector store, repository) without any
of them knowing about each other.  Each public ``process_*`` method follows
the same flow:

    1. Move the source to ``processing`` (via ``pending`` when re-submitted)
    2. ExtractorFactory -- document bytes or fetched HTML to plain text
    3. TextChunker -- text to strategy-tagged chunks
    4. IEmbeddingProvider -- chunk vectors, in batches
    5. IVectorStoreProvider -- replace the source's points
    6. Mark the source ``indexed`` with its chunk and token counts

Errors are caught only at this boundary: the source is marked ``failed``
with the error text and a ``ProcessingResult(success=False)`` is returned.
Embedding always finishes before existing vectors are deleted, so an
embedding failure leaves the previous index intact.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any, Callable
from urllib.parse import urlsplit

import httpx
import structlog
from pydantic import TypeAdapter

from knowledge.models.chunking import ChunkingOptions, ChunkMetadata, TextChunk, get_preset
from knowledge.models.ingestion import (
    FaqProcessingResult,
    MigrationResult,
    ProcessingOptions,
    ProcessingProgress,
    ProcessingResult,
    ProcessingStage,
    ReprocessSummary,
)
from knowledge.models.knowledge import KnowledgeSource, SourceStatus
from knowledge.models.vector import ChunkPayload, FaqPayload, VectorRecord, source_filter
from knowledge.services.chunking.chunker import TextChunker
from knowledge.services.extraction.factory import ExtractorFactory
from knowledge.utils.errors import IngestionError

if TYPE_CHECKING:
    from knowledge.interfaces.embedding_provider import IEmbeddingProvider
    from knowledge.interfaces.knowledge_repository import IKnowledgeRepository
    from knowledge.interfaces.vector_store_provider import IVectorStoreProvider

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_EMBED_BATCH_SIZE = 50
DEFAULT_CHUNKING_PRESET = "qa"

StepCallback = Callable[[int, str], None]

_CHUNK_METADATA_ADAPTER: TypeAdapter[ChunkMetadata] = TypeAdapter(ChunkMetadata)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class IngestionService:
    """Turns knowledge sources and FAQs into vector store points.

    Parameters
    ----------
    extractor_factory:
        Resolves a content extractor by MIME type or filename.
    chunker:
        Splits extracted text into chunks.
    embedding_provider:
        Generates vectors for chunk and FAQ text.
    vector_store:
        Receives the chunk and FAQ points.
    repository:
        Source, FAQ and fallback-chunk persistence.
    http_client:
        Client used by :meth:`process_url`.  Created on first use (and
        closed by :meth:`aclose`) when not injected.
    """

    def __init__(
        self,
        extractor_factory: ExtractorFactory,
        chunker: TextChunker,
        embedding_provider: IEmbeddingProvider,
        vector_store: IVectorStoreProvider,
        repository: IKnowledgeRepository,
        http_client: httpx.AsyncClient | None = None,
        chunks_collection: str = "knowledge_chunks",
        faq_collection: str = "faq_items",
        default_chunking_preset: str = DEFAULT_CHUNKING_PRESET,
        embed_batch_size: int = DEFAULT_EMBED_BATCH_SIZE,
        http_timeout: float = 30.0,
    ) -> None:
        self._extractors = extractor_factory
        self._chunker = chunker
        self._embedding_provider = embedding_provider
        self._vector_store = vector_store
        self._repository = repository
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._chunks_collection = chunks_collection
        self._faq_collection = faq_collection
        self._default_preset = default_chunking_preset
        self._embed_batch_size = embed_batch_size
        self._http_timeout = http_timeout

    # ------------------------------------------------------------------
    # Source entry points
    # ------------------------------------------------------------------

    async def process_file(
        self,
        source_id: str,
        data: bytes,
        mime_type: str | None = None,
        filename: str | None = None,
        options: ProcessingOptions | None = None,
    ) -> ProcessingResult:
        """Extract an uploaded document and index its text."""
        options = options or ProcessingOptions()
        started = time.perf_counter()
        try:
            source = await self._start(source_id)
            _notify(options, ProcessingStage.EXTRACTING, 0, "Extracting text from document")
            extraction = await self._extractors.extract_async(data, mime_type, filename)
            _notify(options, ProcessingStage.EXTRACTING, 100, "Text extraction complete")

            meta = extraction.metadata
            source = await self._repository.update_source(
                source.model_copy(
                    update={
                        "metadata": {
                            **source.metadata,
                            "extraction": {
                                "file_type": meta.file_type,
                                "title": meta.title,
                                "page_count": meta.page_count,
                                "word_count": meta.word_count,
                            },
                        }
                    }
                )
            )
            return await self._index(source, extraction.content, options, started)
        except Exception as exc:
            return await self._fail(source_id, exc, options, started)

    async def process_url(
        self,
        source_id: str,
        url: str,
        options: ProcessingOptions | None = None,
    ) -> ProcessingResult:
        """Fetch *url*, extract its content and index it.

        The extractor is picked from the response content type, then the
        URL's file extension; PDF and DOCX bodies are passed as raw bytes.
        A non-2xx response fails the source.  The crawl details are kept in
        ``source_config`` as ``{url, last_crawled, content_type}``.
        """
        options = options or ProcessingOptions()
        started = time.perf_counter()
        try:
            source = await self._start(source_id)
            _notify(options, ProcessingStage.EXTRACTING, 0, "Fetching URL content")

            response = await self._get_http_client().get(url, follow_redirects=True)
            if not response.is_success:
                raise IngestionError(
                    message=f"Failed to fetch URL: {response.status_code} {response.reason_phrase}"
                )
            content_type = response.headers.get("content-type", "text/html")
            _notify(options, ProcessingStage.EXTRACTING, 50, "Parsing content")

            filename = PurePosixPath(urlsplit(url).path).name or None
            extractor = self._extractors.resolve(content_type, filename)
            # Text formats use the body as decoded with the response charset.
            body = response.content if extractor.binary else response.text
            extraction = await self._extractors.extract_async(body, content_type, filename)
            _notify(options, ProcessingStage.EXTRACTING, 100, "Content extraction complete")

            source = await self._repository.update_source(
                source.model_copy(
                    update={
                        "source_config": {
                            "url": url,
                            "last_crawled": _now().isoformat(),
                            "content_type": content_type,
                        }
                    }
                )
            )
            logger.info("url_fetched", source_id=source_id, url=url, content_type=content_type)
            return await self._index(source, extraction.content, options, started)
        except Exception as exc:
            return await self._fail(source_id, exc, options, started)

    async def process_text(
        self,
        source_id: str,
        text: str,
        options: ProcessingOptions | None = None,
    ) -> ProcessingResult:
        """Index raw pasted text."""
        return await self.process_content(source_id, text, options)

    async def process_content(
        self,
        source_id: str,
        text: str,
        options: ProcessingOptions | None = None,
    ) -> ProcessingResult:
        """Chunk, embed and store already-extracted *text* for a source."""
        options = options or ProcessingOptions()
        started = time.perf_counter()
        try:
            source = await self._start(source_id)
            return await self._index(source, text, options, started)
        except Exception as exc:
            return await self._fail(source_id, exc, options, started)

    # ------------------------------------------------------------------
    # Source maintenance
    # ------------------------------------------------------------------

    async def delete_source_chunks(self, source_id: str) -> None:
        """Remove a source's vectors and reset its chunk and token counts."""
        await self._vector_store.delete_by_filter(self._chunks_collection, source_filter(source_id))
        source = await self._repository.get_source(source_id)
        if source is not None:
            await self._repository.update_source(
                source.model_copy(update={"chunk_count": 0, "token_count": 0})
            )
        logger.info("source_chunks_deleted", source_id=source_id)

    async def migrate_to_vector_store(
        self,
        source_id: str,
        tenant_id: str,
        on_progress: StepCallback | None = None,
    ) -> MigrationResult:
        """Copy a source's relational fallback chunks into the vector store.

        Stored embeddings are reused as-is and point ids keep the original
        row ids.  Rows that cannot be converted are counted in ``errors``.
        """
        rows = await self._repository.list_fallback_chunks(source_id)
        source = await self._repository.get_source(source_id)
        category = source.category if source else None

        records: list[VectorRecord] = []
        errors = 0
        for i, row in enumerate(rows):
            try:
                if not row.embedding:
                    raise ValueError("empty embedding")
                metadata = _CHUNK_METADATA_ADAPTER.validate_python(
                    {"strategy": "fixed", **row.metadata}
                )
                records.append(
                    VectorRecord(
                        id=row.id,
                        vector=row.embedding,
                        payload=ChunkPayload(
                            tenant_id=tenant_id,
                            source_id=source_id,
                            category=category,
                            content=row.content,
                            chunk_index=row.chunk_index,
                            token_count=row.token_count,
                            metadata=metadata,
                        ),
                    )
                )
            except ValueError as exc:
                errors += 1
                logger.warning("fallback_chunk_skipped", chunk_id=row.id, error=str(exc))

            if on_progress and (i % 20 == 0 or i == len(rows) - 1):
                on_progress(round((i + 1) / len(rows) * 100), f"Migrating {i + 1}/{len(rows)} chunks")

        if records:
            await self._vector_store.upsert(self._chunks_collection, records)

        logger.info(
            "fallback_chunks_migrated",
            source_id=source_id,
            migrated=len(records),
            errors=errors,
        )
        return MigrationResult(migrated=len(records), errors=errors)

    # ------------------------------------------------------------------
    # FAQs
    # ------------------------------------------------------------------

    async def process_faq(self, faq_id: str) -> FaqProcessingResult:
        """Embed ``question\\nanswer`` and upsert it under the FAQ id."""
        try:
            faq = await self._repository.get_faq(faq_id)
            if faq is None:
                return FaqProcessingResult(success=False, faq_id=faq_id, error="FAQ not found")

            vector = await self._embedding_provider.embed_single(faq.embedding_text())
            record = VectorRecord(
                id=faq.id,
                vector=vector,
                payload=FaqPayload(
                    tenant_id=faq.tenant_id,
                    question=faq.question,
                    answer=faq.answer,
                    category=faq.category,
                ),
            )
            await self._vector_store.upsert(self._faq_collection, [record])
            await self._repository.update_faq_vector_id(faq.id, faq.id)
            logger.info("faq_indexed", faq_id=faq_id, tenant_id=faq.tenant_id)
            return FaqProcessingResult(success=True, faq_id=faq_id)
        except Exception as exc:
            logger.warning("faq_processing_failed", faq_id=faq_id, error=str(exc))
            return FaqProcessingResult(success=False, faq_id=faq_id, error=str(exc))

    async def delete_faq_embedding(self, faq_id: str) -> None:
        """Remove an FAQ's vector point and clear its recorded ``vector_id``."""
        await self._vector_store.delete_by_ids(self._faq_collection, [faq_id])
        await self._repository.update_faq_vector_id(faq_id, None)
        logger.info("faq_embedding_deleted", faq_id=faq_id)

    async def reprocess_faqs(
        self,
        tenant_id: str,
        on_progress: StepCallback | None = None,
    ) -> ReprocessSummary:
        """Re-embed every FAQ of a tenant, one at a time."""
        faqs = await self._repository.list_faqs(tenant_id)
        processed = failed = 0
        for i, faq in enumerate(faqs):
            result = await self.process_faq(faq.id)
            if result.success:
                processed += 1
            else:
                failed += 1
            if on_progress:
                on_progress(round((i + 1) / len(faqs) * 100), f"Processed {i + 1}/{len(faqs)} FAQs")

        logger.info("faqs_reprocessed", tenant_id=tenant_id, processed=processed, failed=failed)
        return ReprocessSummary(processed=processed, failed=failed)

    async def aclose(self) -> None:
        """Close the HTTP client if this service created it."""
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # ------------------------------------------------------------------
    # Pipeline internals
    # ------------------------------------------------------------------

    async def _index(
        self,
        source: KnowledgeSource,
        text: str,
        options: ProcessingOptions,
        started: float,
    ) -> ProcessingResult:
        """Chunk, embed, replace stored vectors and mark the source indexed."""
        _notify(options, ProcessingStage.CHUNKING, 0, "Splitting into chunks")
        chunks = self._chunker.chunk(text, self._chunking_options(options))
        _notify(
            options,
            ProcessingStage.CHUNKING,
            100,
            f"Created {len(chunks)} chunks",
            total_chunks=len(chunks),
        )
        if not chunks:
            raise IngestionError(message="No chunks created from content")

        vectors, total_tokens = await self._embed_chunks(chunks, options)

        _notify(options, ProcessingStage.STORING, 0, "Storing chunks in vector store")
        records = [
            VectorRecord(
                id=chunk.id,
                vector=vector,
                payload=ChunkPayload(
                    tenant_id=source.tenant_id,
                    source_id=source.id,
                    category=source.category,
                    content=chunk.content,
                    chunk_index=chunk.index,
                    token_count=chunk.token_estimate,
                    metadata=chunk.metadata,
                ),
            )
            for chunk, vector in zip(chunks, vectors)
        ]
        await self._vector_store.delete_by_filter(self._chunks_collection, source_filter(source.id))
        await self._vector_store.upsert(self._chunks_collection, records)
        _notify(
            options,
            ProcessingStage.STORING,
            100,
            f"Stored {len(records)} chunks",
            chunks_processed=len(records),
            total_chunks=len(records),
        )

        await self._repository.update_source(
            source.with_status(
                SourceStatus.INDEXED,
                chunk_count=len(chunks),
                token_count=total_tokens,
                last_processed_at=_now(),
                processing_error=None,
            )
        )
        _notify(options, ProcessingStage.COMPLETE, 100, "Processing complete")

        result = ProcessingResult(
            success=True,
            source_id=source.id,
            chunks_created=len(chunks),
            total_tokens=total_tokens,
            processing_time_ms=_elapsed_ms(started),
            vector_store=self._vector_store.get_provider_name(),
        )
        logger.info(
            "source_indexed",
            source_id=source.id,
            tenant_id=source.tenant_id,
            chunks=result.chunks_created,
            tokens=result.total_tokens,
            elapsed_ms=result.processing_time_ms,
        )
        return result

    async def _embed_chunks(
        self, chunks: list[TextChunk], options: ProcessingOptions
    ) -> tuple[list[list[float]], int]:
        batch_size = options.embed_batch_size or self._embed_batch_size
        total = len(chunks)
        vectors: list[list[float]] = []
        total_tokens = 0

        _notify(options, ProcessingStage.EMBEDDING, 0, "Generating embeddings")
        for start in range(0, total, batch_size):
            batch = [c.content for c in chunks[start : start + batch_size]]
            result = await self._embedding_provider.embed_batch(batch)
            if len(result.embeddings) != len(batch):
                raise IngestionError(
                    message=f"Embedding provider returned {len(result.embeddings)} vectors for {len(batch)} chunks",
                    provider_name=self._embedding_provider.get_provider_name(),
                )
            vectors.extend(result.embeddings)
            total_tokens += result.total_tokens
            done = start + len(batch)
            _notify(
                options,
                ProcessingStage.EMBEDDING,
                round(done / total * 100),
                f"Embedded {done}/{total} chunks",
                chunks_processed=done,
                total_chunks=total,
            )
        return vectors, total_tokens

    def _chunking_options(self, options: ProcessingOptions) -> ChunkingOptions:
        if options.chunking is not None:
            return options.chunking
        return get_preset(options.chunking_preset or self._default_preset)

    async def _start(self, source_id: str) -> KnowledgeSource:
        """Load a source and move it to ``processing``."""
        source = await self._repository.get_source(source_id)
        if source is None:
            raise IngestionError(message=f"Source not found: {source_id}")
        return await self._to_processing(source)

    async def _to_processing(self, source: KnowledgeSource) -> KnowledgeSource:
        if source.status in (SourceStatus.INDEXED, SourceStatus.FAILED):
            source = await self._repository.update_source(source.with_status(SourceStatus.PENDING))
        return await self._repository.update_source(source.with_status(SourceStatus.PROCESSING))

    async def _fail(
        self,
        source_id: str,
        exc: Exception,
        options: ProcessingOptions,
        started: float,
    ) -> ProcessingResult:
        """Mark the source failed and build the failure result."""
        error = str(exc)
        logger.error("source_processing_failed", source_id=source_id, error=error)
        source = await self._repository.get_source(source_id)
        if source is not None:
            if source.status is not SourceStatus.PROCESSING:
                source = await self._to_processing(source)
            await self._repository.update_source(
                source.with_status(SourceStatus.FAILED, processing_error=error)
            )
        _notify(options, ProcessingStage.FAILED, 100, error)
        return ProcessingResult(
            success=False,
            source_id=source_id,
            processing_time_ms=_elapsed_ms(started),
            error=error,
        )

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._http_timeout)
        return self._http_client


def _notify(
    options: ProcessingOptions,
    stage: ProcessingStage,
    progress: int,
    message: str,
    **counts: Any,
) -> None:
    if options.on_progress is None:
        return
    options.on_progress(
        ProcessingProgress(stage=stage, progress=progress, message=message, **counts)
    )


def new_id() -> str:
    """Generate an id usable as a vector point id by every backend."""
    return str(uuid.uuid4())
