"""Unit tests for IngestionService: sources, URLs, FAQs and migration."""

from __future__ import annotations

import io
from unittest.mock import AsyncMock

import docx
import fitz
import httpx
import pytest

from knowledge.interfaces.embedding_provider import EmbeddingBatch
from knowledge.models.chunking import ChunkingOptions, ChunkingStrategy
from knowledge.models.ingestion import ProcessingOptions, ProcessingProgress, ProcessingStage
from knowledge.models.knowledge import (
    FallbackChunk,
    FaqItem,
    KnowledgeSource,
    SourceStatus,
    SourceType,
)
from knowledge.services.chunking.chunker import TextChunker
from knowledge.services.extraction.factory import ExtractorFactory
from knowledge.services.ingestion.ingestion_service import IngestionService, new_id
from knowledge.utils.errors import EmbeddingError, VectorStoreError
from tests.conftest import EMBEDDING_DIM

_CHUNKS = "knowledge_chunks"
_FAQS = "faq_items"

_PARAGRAPH = " ".join(["Refunds are issued to the original card within thirty days."] * 7)
_TEXT = "\n\n".join([_PARAGRAPH, _PARAGRAPH.replace("Refunds", "Exchanges"), _PARAGRAPH])


async def _create_source(repository, source_id: str = "src-1", **kwargs) -> KnowledgeSource:
    return await repository.create_source(
        KnowledgeSource(id=source_id, tenant_id="t1", name="Help Center", **kwargs)
    )


def _track_statuses(repository, monkeypatch) -> list[SourceStatus]:
    """Record every status written through ``update_source``."""
    statuses: list[SourceStatus] = []
    original = repository.update_source

    async def _update(source):
        statuses.append(source.status)
        return await original(source)

    monkeypatch.setattr(repository, "update_source", _update)
    return statuses


def _service_with_client(
    mock_embedding_provider, mock_vector_store, repository, handler
) -> IngestionService:
    return IngestionService(
        extractor_factory=ExtractorFactory(),
        chunker=TextChunker(),
        embedding_provider=mock_embedding_provider,
        vector_store=mock_vector_store,
        repository=repository,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestProcessText:
    @pytest.mark.asyncio
    async def test_indexes_source(
        self, ingestion_service: IngestionService, mock_vector_store, repository, monkeypatch
    ) -> None:
        await _create_source(repository, category="billing")
        statuses = _track_statuses(repository, monkeypatch)
        events: list[ProcessingProgress] = []

        result = await ingestion_service.process_text(
            "src-1", _TEXT, ProcessingOptions(chunking_preset="qa", on_progress=events.append)
        )

        assert result.success is True
        assert result.vector_store == "mock-vector-store"
        records = mock_vector_store.records(_CHUNKS)
        assert result.chunks_created == len(records) >= 1
        assert statuses[0] == SourceStatus.PROCESSING
        assert statuses[-1] == SourceStatus.INDEXED
        assert {r.payload.tenant_id for r in records} == {"t1"}
        assert {r.payload.category for r in records} == {"billing"}
        assert sorted(r.payload.chunk_index for r in records) == list(range(len(records)))

        source = await repository.get_source("src-1")
        assert source.status == SourceStatus.INDEXED
        assert source.chunk_count == result.chunks_created
        assert source.token_count == result.total_tokens > 0
        assert source.last_processed_at is not None

        stages = [e.stage for e in events]
        assert stages[0] == ProcessingStage.CHUNKING
        assert ProcessingStage.EMBEDDING in stages
        assert stages[-1] == ProcessingStage.COMPLETE

    @pytest.mark.asyncio
    async def test_reprocessing_replaces_vectors(
        self, ingestion_service: IngestionService, mock_vector_store, repository, monkeypatch
    ) -> None:
        await _create_source(repository)
        first = await ingestion_service.process_text("src-1", _TEXT)
        first_ids = {r.id for r in mock_vector_store.records(_CHUNKS)}
        statuses = _track_statuses(repository, monkeypatch)

        second = await ingestion_service.process_text("src-1", _TEXT)

        assert second.chunks_created == first.chunks_created
        records = mock_vector_store.records(_CHUNKS)
        assert len(records) == first.chunks_created
        assert first_ids.isdisjoint(r.id for r in records)
        assert statuses[:2] == [SourceStatus.PENDING, SourceStatus.PROCESSING]

    @pytest.mark.asyncio
    async def test_explicit_chunking_options_win(
        self, ingestion_service: IngestionService, repository
    ) -> None:
        await _create_source(repository)
        options = ProcessingOptions(
            chunking_preset="large",
            chunking=ChunkingOptions(
                strategy=ChunkingStrategy.FIXED, chunk_size=200, chunk_overlap=0, min_chunk_size=0
            ),
        )

        result = await ingestion_service.process_text("src-1", _TEXT, options)

        assert result.chunks_created >= len(_TEXT) // 200

    @pytest.mark.asyncio
    async def test_embed_batch_size(
        self, ingestion_service: IngestionService, mock_embedding_provider, repository
    ) -> None:
        await _create_source(repository)
        options = ProcessingOptions(
            chunking=ChunkingOptions(
                strategy=ChunkingStrategy.FIXED, chunk_size=300, chunk_overlap=0, min_chunk_size=0
            ),
            embed_batch_size=2,
        )

        result = await ingestion_service.process_text("src-1", _TEXT, options)

        assert [len(call) for call in mock_embedding_provider.calls][:-1] == [2] * (
            len(mock_embedding_provider.calls) - 1
        )
        assert sum(len(call) for call in mock_embedding_provider.calls) == result.chunks_created


class TestFailures:
    @pytest.mark.asyncio
    async def test_missing_source(self, ingestion_service: IngestionService) -> None:
        result = await ingestion_service.process_text("missing", _TEXT)
        assert result.success is False
        assert "Source not found" in result.error

    @pytest.mark.asyncio
    async def test_empty_text_fails_source(
        self, ingestion_service: IngestionService, repository
    ) -> None:
        await _create_source(repository)
        events: list[ProcessingProgress] = []

        result = await ingestion_service.process_text(
            "src-1", "   \n\n ", ProcessingOptions(on_progress=events.append)
        )

        assert result.success is False
        assert result.error == "No chunks created from content"
        source = await repository.get_source("src-1")
        assert source.status == SourceStatus.FAILED
        assert source.processing_error == "No chunks created from content"
        assert events[-1].stage == ProcessingStage.FAILED

    @pytest.mark.asyncio
    async def test_embedding_failure_keeps_previous_index(
        self, ingestion_service: IngestionService, mock_embedding_provider, mock_vector_store, repository
    ) -> None:
        await _create_source(repository)
        await ingestion_service.process_text("src-1", _TEXT)
        before = {r.id for r in mock_vector_store.records(_CHUNKS)}
        mock_embedding_provider.embed_batch = AsyncMock(
            side_effect=EmbeddingError(message="quota", provider_name="mock-embedding")
        )

        result = await ingestion_service.process_text("src-1", _TEXT)

        assert result.success is False
        assert "quota" in result.error
        assert {r.id for r in mock_vector_store.records(_CHUNKS)} == before
        assert (await repository.get_source("src-1")).status == SourceStatus.FAILED

    @pytest.mark.asyncio
    async def test_store_failure_after_delete_fails_source(
        self, ingestion_service: IngestionService, mock_vector_store, repository
    ) -> None:
        await _create_source(repository)
        await ingestion_service.process_text("src-1", _TEXT)
        mock_vector_store.upsert = AsyncMock(
            side_effect=VectorStoreError(message="collection unavailable", provider_name="mock")
        )

        result = await ingestion_service.process_text("src-1", _TEXT)

        assert result.success is False
        assert result.error == "[mock] collection unavailable"
        assert mock_vector_store.records(_CHUNKS) == []
        source = await repository.get_source("src-1")
        assert source.status == SourceStatus.FAILED
        assert source.processing_error == "[mock] collection unavailable"

    @pytest.mark.asyncio
    async def test_vector_count_mismatch(
        self, ingestion_service: IngestionService, mock_embedding_provider, repository
    ) -> None:
        await _create_source(repository)
        mock_embedding_provider.embed_batch = AsyncMock(
            return_value=EmbeddingBatch(embeddings=[], total_tokens=0, model="mock")
        )

        result = await ingestion_service.process_text("src-1", _TEXT)

        assert result.success is False
        assert "returned 0 vectors" in result.error

    @pytest.mark.asyncio
    async def test_failed_source_can_be_retried(
        self, ingestion_service: IngestionService, repository
    ) -> None:
        await _create_source(repository)
        await ingestion_service.process_text("src-1", "")

        result = await ingestion_service.process_text("src-1", _TEXT)

        assert result.success is True
        source = await repository.get_source("src-1")
        assert source.status == SourceStatus.INDEXED
        assert source.processing_error is None


class TestProcessFile:
    @pytest.mark.asyncio
    async def test_markdown_upload(
        self, ingestion_service: IngestionService, mock_vector_store, repository
    ) -> None:
        await _create_source(repository, source_type=SourceType.FILE)
        data = f"# Refunds\n\n{_PARAGRAPH}\n\n## Exchanges\n\n{_PARAGRAPH}\n".encode("utf-8")

        result = await ingestion_service.process_file(
            "src-1", data, mime_type="text/markdown", filename="refunds.md"
        )

        assert result.success is True
        source = await repository.get_source("src-1")
        assert source.metadata["extraction"]["file_type"] == "markdown"
        assert source.metadata["extraction"]["word_count"] > 0
        assert all("#" not in r.payload.content for r in mock_vector_store.records(_CHUNKS))

    @pytest.mark.asyncio
    async def test_corrupt_pdf_fails(self, ingestion_service: IngestionService, repository) -> None:
        await _create_source(repository, source_type=SourceType.FILE)

        result = await ingestion_service.process_file(
            "src-1", b"not really a pdf", mime_type="application/pdf"
        )

        assert result.success is False
        assert (await repository.get_source("src-1")).status == SourceStatus.FAILED


class TestProcessUrl:
    @pytest.mark.asyncio
    async def test_fetch_and_index(
        self, mock_embedding_provider, mock_vector_store, repository
    ) -> None:
        html = (
            "<html><head><title>Refund Help</title></head><body>"
            "<nav>Home | Pricing</nav>"
            f"<main><h1>Refunds</h1><p>{_PARAGRAPH}</p><p>{_PARAGRAPH}</p></main>"
            "</body></html>"
        )
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, text=html, headers={"content-type": "text/html; charset=utf-8"})

        service = _service_with_client(mock_embedding_provider, mock_vector_store, repository, handler)
        await _create_source(repository, source_type=SourceType.URL)

        result = await service.process_url("src-1", "https://help.example.com/refunds")

        assert result.success is True
        assert requested == ["https://help.example.com/refunds"]
        source = await repository.get_source("src-1")
        assert source.source_config["url"] == "https://help.example.com/refunds"
        assert source.source_config["content_type"] == "text/html; charset=utf-8"
        assert "last_crawled" in source.source_config
        assert all("Pricing" not in r.payload.content for r in mock_vector_store.records(_CHUNKS))

    @pytest.mark.asyncio
    async def test_pdf_url_indexed_from_raw_bytes(
        self, mock_embedding_provider, mock_vector_store, repository
    ) -> None:
        doc = fitz.open()
        page = doc.new_page()
        page.insert_text((72, 72), "\n".join(["Refunds are issued within thirty days."] * 8))
        pdf = doc.tobytes()
        doc.close()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=pdf, headers={"content-type": "application/pdf"})

        service = _service_with_client(mock_embedding_provider, mock_vector_store, repository, handler)
        await _create_source(repository, source_type=SourceType.URL)

        result = await service.process_url("src-1", "https://help.example.com/docs/policy.pdf")

        assert result.success is True, result.error
        assert result.chunks_created >= 1
        records = mock_vector_store.records(_CHUNKS)
        assert any("Refunds are issued" in r.payload.content for r in records)
        source = await repository.get_source("src-1")
        assert source.status == SourceStatus.INDEXED
        assert source.source_config["content_type"] == "application/pdf"

    @pytest.mark.asyncio
    async def test_docx_url_resolved_by_extension(
        self, mock_embedding_provider, mock_vector_store, repository
    ) -> None:
        document = docx.Document()
        for _ in range(4):
            document.add_paragraph(_PARAGRAPH)
        buffer = io.BytesIO()
        document.save(buffer)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                content=buffer.getvalue(),
                headers={"content-type": "application/octet-stream"},
            )

        service = _service_with_client(mock_embedding_provider, mock_vector_store, repository, handler)
        await _create_source(repository, source_type=SourceType.URL)

        result = await service.process_url("src-1", "https://help.example.com/files/refunds.docx")

        assert result.success is True, result.error
        assert any(
            "original card" in r.payload.content for r in mock_vector_store.records(_CHUNKS)
        )

    @pytest.mark.asyncio
    async def test_http_error_fails_source(
        self, mock_embedding_provider, mock_vector_store, repository
    ) -> None:
        service = _service_with_client(
            mock_embedding_provider,
            mock_vector_store,
            repository,
            lambda request: httpx.Response(404),
        )
        await _create_source(repository, source_type=SourceType.URL)

        result = await service.process_url("src-1", "https://help.example.com/missing")

        assert result.success is False
        assert result.error == "Failed to fetch URL: 404 Not Found"
        assert (await repository.get_source("src-1")).status == SourceStatus.FAILED

    @pytest.mark.asyncio
    async def test_owned_client_closed(
        self, mock_embedding_provider, mock_vector_store, repository
    ) -> None:
        service = IngestionService(
            extractor_factory=ExtractorFactory(),
            chunker=TextChunker(),
            embedding_provider=mock_embedding_provider,
            vector_store=mock_vector_store,
            repository=repository,
        )
        client = service._get_http_client()

        await service.aclose()

        assert client.is_closed


class TestSourceMaintenance:
    @pytest.mark.asyncio
    async def test_delete_source_chunks(
        self, ingestion_service: IngestionService, mock_vector_store, repository
    ) -> None:
        await _create_source(repository)
        await _create_source(repository, "src-2")
        await ingestion_service.process_text("src-1", _TEXT)
        await ingestion_service.process_text("src-2", _TEXT)

        await ingestion_service.delete_source_chunks("src-1")

        assert {r.payload.source_id for r in mock_vector_store.records(_CHUNKS)} == {"src-2"}
        source = await repository.get_source("src-1")
        assert source.chunk_count == 0
        assert source.token_count == 0

    @pytest.mark.asyncio
    async def test_migrate_fallback_chunks(
        self, ingestion_service: IngestionService, mock_vector_store, repository
    ) -> None:
        await _create_source(repository, category="billing")
        await repository.add_fallback_chunks(
            [
                FallbackChunk(
                    id=new_id(),
                    source_id="src-1",
                    tenant_id="t1",
                    content=f"legacy chunk {i}",
                    chunk_index=i,
                    embedding=[1.0] + [0.0] * (EMBEDDING_DIM - 1),
                    metadata={"page_number": 2},
                )
                for i in range(3)
            ]
            + [
                FallbackChunk(
                    id=new_id(),
                    source_id="src-1",
                    tenant_id="t1",
                    content="no vector",
                    chunk_index=3,
                    embedding=[],
                )
            ]
        )
        progress: list[tuple[int, str]] = []

        result = await ingestion_service.migrate_to_vector_store(
            "src-1", "t1", on_progress=lambda pct, msg: progress.append((pct, msg))
        )

        assert (result.migrated, result.errors) == (3, 1)
        records = mock_vector_store.records(_CHUNKS)
        assert {r.payload.category for r in records} == {"billing"}
        assert {r.payload.metadata.page_number for r in records} == {2}
        assert progress[-1] == (100, "Migrating 4/4 chunks")

    @pytest.mark.asyncio
    async def test_migrate_nothing(self, ingestion_service: IngestionService) -> None:
        result = await ingestion_service.migrate_to_vector_store("none", "t1")
        assert (result.migrated, result.errors) == (0, 0)


class TestFaqs:
    @pytest.mark.asyncio
    async def test_process_faq(
        self, ingestion_service: IngestionService, mock_vector_store, repository
    ) -> None:
        faq_id = new_id()
        await repository.create_faq(
            FaqItem(id=faq_id, tenant_id="t1", question="How long?", answer="Thirty days.", category="billing")
        )

        result = await ingestion_service.process_faq(faq_id)

        assert result.success is True
        (record,) = mock_vector_store.records(_FAQS)
        assert record.id == faq_id
        assert record.payload.question == "How long?"
        assert record.payload.category == "billing"
        assert (await repository.get_faq(faq_id)).vector_id == faq_id

    @pytest.mark.asyncio
    async def test_missing_faq(self, ingestion_service: IngestionService) -> None:
        result = await ingestion_service.process_faq("missing")
        assert result.success is False
        assert result.error == "FAQ not found"

    @pytest.mark.asyncio
    async def test_faq_embedding_failure(
        self, ingestion_service: IngestionService, mock_embedding_provider, repository
    ) -> None:
        await repository.create_faq(FaqItem(id="f1", tenant_id="t1", question="q", answer="a"))
        mock_embedding_provider.embed_batch = AsyncMock(side_effect=EmbeddingError(message="down"))

        result = await ingestion_service.process_faq("f1")

        assert result.success is False
        assert result.error == "down"

    @pytest.mark.asyncio
    async def test_delete_faq_embedding(
        self, ingestion_service: IngestionService, mock_vector_store, repository
    ) -> None:
        faq_id = new_id()
        await repository.create_faq(FaqItem(id=faq_id, tenant_id="t1", question="q", answer="a"))
        await ingestion_service.process_faq(faq_id)

        await ingestion_service.delete_faq_embedding(faq_id)

        assert mock_vector_store.records(_FAQS) == []
        assert (await repository.get_faq(faq_id)).vector_id is None

    @pytest.mark.asyncio
    async def test_reprocess_faqs(
        self, ingestion_service: IngestionService, mock_vector_store, repository
    ) -> None:
        for i in range(3):
            await repository.create_faq(
                FaqItem(id=new_id(), tenant_id="t1", question=f"Question {i}?", answer="Answer.")
            )
        await repository.create_faq(FaqItem(id=new_id(), tenant_id="t2", question="q", answer="a"))
        progress: list[tuple[int, str]] = []

        summary = await ingestion_service.reprocess_faqs(
            "t1", on_progress=lambda pct, msg: progress.append((pct, msg))
        )

        assert (summary.processed, summary.failed) == (3, 0)
        assert len(mock_vector_store.records(_FAQS)) == 3
        assert progress == [(33, "Processed 1/3 FAQs"), (67, "Processed 2/3 FAQs"), (100, "Processed 3/3 FAQs")]
