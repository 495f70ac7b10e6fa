"""Dependency-injection assembly for the knowledge pipeline.

:func:`build_knowledge_services` constructs every provider once from
:class:`~knowledge.config.settings.Settings` and wires them into the
ingestion and retrieval services.  Callers own the returned
:class:`KnowledgeServices` and must ``await services.aclose()`` when done.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog

from knowledge.config.settings import Settings
from knowledge.interfaces.embedding_provider import IEmbeddingProvider
from knowledge.interfaces.knowledge_repository import IKnowledgeRepository
from knowledge.interfaces.llm_provider import ILLMProvider
from knowledge.interfaces.vector_store_provider import IVectorStoreProvider
from knowledge.models.chunking import get_preset
from knowledge.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from knowledge.providers.llm.openai_provider import OpenAILLMProvider
from knowledge.providers.repository.sqlite_knowledge_repository import SQLiteKnowledgeRepository
from knowledge.services.chunking.chunker import TextChunker
from knowledge.services.extraction.factory import ExtractorFactory
from knowledge.services.ingestion.ingestion_service import IngestionService
from knowledge.services.retrieval.rag_service import RagService
from knowledge.utils.errors import ConfigurationError

_logger = structlog.get_logger(logger_name=__name__)


@dataclass
class KnowledgeServices:
    """Every long-lived component of the pipeline, built once per process."""

    settings: Settings
    embedding_provider: IEmbeddingProvider
    vector_store: IVectorStoreProvider
    repository: IKnowledgeRepository
    llm_provider: ILLMProvider | None
    extractor_factory: ExtractorFactory
    chunker: TextChunker
    http_client: httpx.AsyncClient
    ingestion: IngestionService
    rag: RagService

    async def aclose(self) -> None:
        """Close the HTTP, embedding, LLM and vector store clients."""
        await self.http_client.aclose()
        close_embedding = getattr(self.embedding_provider, "close", None)
        if close_embedding is not None:
            await close_embedding()
        close_llm = getattr(self.llm_provider, "close", None)
        if close_llm is not None:
            await close_llm()
        await self.vector_store.close()


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_vector_store(app_settings: Settings, dimension: int) -> IVectorStoreProvider:
    """Select the vector store backend named by ``vector_store_backend``."""
    collections = (app_settings.chunks_collection, app_settings.faq_collection)
    backend = app_settings.vector_store_backend.lower()
    if backend == "chromadb":
        from knowledge.providers.vector_store.chromadb_provider import ChromaDBProvider

        return ChromaDBProvider(
            persist_directory=app_settings.chromadb_persist_dir,
            collections=collections,
            dimension=dimension,
        )
    if backend == "qdrant":
        from knowledge.providers.vector_store.qdrant_provider import QdrantProvider

        return QdrantProvider(
            url=app_settings.qdrant_url,
            api_key=app_settings.qdrant_api_key,
            collections=collections,
            dimension=dimension,
        )
    raise ConfigurationError(
        message=f"Unknown vector store backend '{app_settings.vector_store_backend}'",
    )


def _build_llm_provider(app_settings: Settings) -> ILLMProvider | None:
    """Return the LLM used by expansion and reranking, or ``None`` without a key."""
    if app_settings.has_llm():
        return OpenAILLMProvider(settings=app_settings)
    return None


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def build_knowledge_services(app_settings: Settings | None = None) -> KnowledgeServices:
    """Construct every provider and service instance for the pipeline."""
    app_settings = app_settings or Settings()

    # Fail fast on a bad preset name rather than on the first ingestion.
    get_preset(app_settings.default_chunking_preset)

    # -- Shared resources --
    http_client = httpx.AsyncClient(timeout=app_settings.http_timeout)

    # -- Providers --
    embedding_provider = OpenAIEmbeddingProvider(settings=app_settings)
    if not embedding_provider.is_available():
        _logger.warning(
            "embedding_provider_unconfigured",
            msg="OPENAI_API_KEY is not set; ingestion and search will fail until it is.",
        )
    vector_store = _build_vector_store(app_settings, embedding_provider.get_dimension())
    repository = SQLiteKnowledgeRepository(db_path=app_settings.knowledge_db_path)
    llm_provider = _build_llm_provider(app_settings)

    # -- Services --
    extractor_factory = ExtractorFactory(
        max_content_length=app_settings.extraction_max_content_length
    )
    chunker = TextChunker()
    ingestion = IngestionService(
        extractor_factory=extractor_factory,
        chunker=chunker,
        embedding_provider=embedding_provider,
        vector_store=vector_store,
        repository=repository,
        http_client=http_client,
        chunks_collection=app_settings.chunks_collection,
        faq_collection=app_settings.faq_collection,
        default_chunking_preset=app_settings.default_chunking_preset,
        embed_batch_size=app_settings.embed_batch_size,
    )
    rag = RagService(
        embedding_provider=embedding_provider,
        vector_store=vector_store,
        repository=repository,
        llm_provider=llm_provider,
        chunks_collection=app_settings.chunks_collection,
        faq_collection=app_settings.faq_collection,
        faq_threshold_offset=app_settings.faq_score_threshold - app_settings.chunk_score_threshold,
    )

    _logger.info(
        "knowledge_services_built",
        embedding_provider=embedding_provider.get_provider_name(),
        vector_store=vector_store.get_provider_name(),
        llm=llm_provider.get_provider_name() if llm_provider else None,
        db_path=app_settings.knowledge_db_path,
    )
    return KnowledgeServices(
        settings=app_settings,
        embedding_provider=embedding_provider,
        vector_store=vector_store,
        repository=repository,
        llm_provider=llm_provider,
        extractor_factory=extractor_factory,
        chunker=chunker,
        http_client=http_client,
        ingestion=ingestion,
        rag=rag,
    )
