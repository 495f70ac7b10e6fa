"""Shared pytest fixtures for the knowledge pipeline test suite."""

from __future__ import annotations

import hashlib
import math
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from knowledge.config.settings import Settings
from knowledge.interfaces.embedding_provider import EmbeddingBatch, IEmbeddingProvider
from knowledge.interfaces.llm_provider import ILLMProvider
from knowledge.interfaces.vector_store_provider import IVectorStoreProvider
from knowledge.models.chunking import estimate_tokens
from knowledge.models.vector import (
    PayloadFilter,
    ScoredRecord,
    StoredRecord,
    VectorRecord,
    index_fields,
)
from knowledge.providers.repository.sqlite_knowledge_repository import SQLiteKnowledgeRepository
from knowledge.services.chunking.chunker import TextChunker
from knowledge.services.extraction.factory import ExtractorFactory
from knowledge.services.ingestion.ingestion_service import IngestionService
from knowledge.services.retrieval.rag_service import RagService
from knowledge.utils.errors import VectorStoreError
from knowledge.utils.similarity import cosine_similarity
from knowledge.utils.text import content_keywords

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    defaults = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "embedding_model": "text-embedding-3-small",
        "embedding_dimensions": 0,
        "embedding_batch_delay_ms": 0,
        "vector_store_backend": "chromadb",
        "app_env": "test",
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


@pytest.fixture
def project_root() -> Path:
    return Path(__file__).parent.parent


@pytest.fixture
def settings() -> Settings:
    return make_settings()


# ---------------------------------------------------------------------------
# Deterministic embedding
# ---------------------------------------------------------------------------

EMBEDDING_DIM = 256


def bag_of_words_vector(text: str, dim: int = EMBEDDING_DIM) -> list[float]:
    """Hash each content keyword of *text* into a bucket and normalise.

    Deterministic, and texts sharing no keywords are (hash collisions
    aside) orthogonal, so cosine similarity tracks keyword overlap.
    """
    vector = [0.0] * dim
    for word in content_keywords(text):
        bucket = int.from_bytes(hashlib.sha256(word.encode("utf-8")).digest()[:4], "big") % dim
        vector[bucket] += 1.0
    magnitude = math.sqrt(sum(v * v for v in vector))
    if magnitude == 0.0:
        return vector
    return [v / magnitude for v in vector]


class MockEmbeddingProvider(IEmbeddingProvider):
    """In-memory deterministic embedding provider for tests."""

    def __init__(self, dim: int = EMBEDDING_DIM) -> None:
        self._dim = dim
        self.calls: list[list[str]] = []

    async def embed_batch(self, texts: list[str]) -> EmbeddingBatch:
        self.calls.append(list(texts))
        return EmbeddingBatch(
            embeddings=[bag_of_words_vector(t, self._dim) for t in texts],
            total_tokens=sum(estimate_tokens(t) for t in texts),
            model="mock-embedding",
        )

    def get_dimension(self) -> int:
        return self._dim

    def get_provider_name(self) -> str:
        return "mock-embedding"

    def is_available(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# In-memory vector store
# ---------------------------------------------------------------------------


class MockVectorStore(IVectorStoreProvider):
    """Dict-backed vector store with exact cosine search and payload filters."""

    def __init__(self, dimension: int = EMBEDDING_DIM) -> None:
        self._dimension = dimension
        self._collections: dict[str, dict[str, VectorRecord]] = {}

    def records(self, collection: str) -> list[VectorRecord]:
        return list(self._collections.get(collection, {}).values())

    async def initialize(self) -> None:
        return None

    async def upsert(self, collection: str, records: list[VectorRecord]) -> int:
        store = self._collections.setdefault(collection, {})
        for record in records:
            if len(record.vector) != self._dimension:
                raise VectorStoreError(
                    message=f"Dimension mismatch: expected {self._dimension}, got {len(record.vector)}",
                    provider_name="mock",
                )
            store[record.id] = record
        return len(records)

    async def search(
        self,
        collection: str,
        vector: list[float],
        limit: int = 10,
        filter: PayloadFilter | None = None,
        score_threshold: float | None = None,
    ) -> list[ScoredRecord]:
        hits: list[ScoredRecord] = []
        for record in self._matching(collection, filter):
            score = max(0.0, min(1.0, cosine_similarity(vector, record.vector)))
            if score_threshold is not None and score < score_threshold:
                continue
            hits.append(ScoredRecord(id=record.id, payload=record.payload, score=score))
        hits.sort(key=lambda h: (-h.score, h.id))
        return hits[:limit]

    async def delete_by_filter(self, collection: str, filter: PayloadFilter) -> None:
        store = self._collections.get(collection, {})
        for record in self._matching(collection, filter):
            del store[record.id]

    async def delete_by_ids(self, collection: str, ids: list[str]) -> None:
        store = self._collections.get(collection, {})
        for point_id in ids:
            store.pop(point_id, None)

    async def get_by_ids(self, collection: str, ids: list[str]) -> list[StoredRecord]:
        store = self._collections.get(collection, {})
        return [
            StoredRecord(id=store[i].id, payload=store[i].payload) for i in ids if i in store
        ]

    async def count(
        self,
        collection: str,
        filter: PayloadFilter | None = None,
        exact: bool = True,
    ) -> int:
        return len(self._matching(collection, filter))

    async def scroll(
        self,
        collection: str,
        filter: PayloadFilter | None = None,
        page_size: int = 100,
        offset: str | None = None,
    ) -> tuple[list[StoredRecord], str | None]:
        matching = sorted(self._matching(collection, filter), key=lambda r: r.id)
        start = int(offset) if offset else 0
        page = matching[start : start + page_size]
        next_offset = str(start + page_size) if start + page_size < len(matching) else None
        return [StoredRecord(id=r.id, payload=r.payload) for r in page], next_offset

    def get_provider_name(self) -> str:
        return "mock-vector-store"

    def is_available(self) -> bool:
        return True

    def _matching(self, collection: str, filter: PayloadFilter | None) -> list[VectorRecord]:
        records = self._collections.get(collection, {}).values()
        if filter is None:
            return list(records)
        return [r for r in records if filter.matches(index_fields(r.payload))]


# ---------------------------------------------------------------------------
# Provider fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_embedding_provider() -> MockEmbeddingProvider:
    return MockEmbeddingProvider()


@pytest.fixture
def mock_vector_store() -> MockVectorStore:
    return MockVectorStore()


@pytest.fixture
def mock_llm_provider() -> ILLMProvider:
    """Mock ILLMProvider.

    Override with ``mock_llm_provider.complete.return_value = "..."`` or
    ``mock_llm_provider.complete.side_effect = [...]`` for specific tests.
    """
    mock = MagicMock(spec=ILLMProvider)
    mock.get_provider_name.return_value = "mock-llm"
    mock.is_available.return_value = True
    mock.complete = AsyncMock(return_value='{"expanded": []}')
    return mock


@pytest.fixture
def repository(tmp_path: Path) -> SQLiteKnowledgeRepository:
    return SQLiteKnowledgeRepository(db_path=tmp_path / "knowledge.db")


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def ingestion_service(
    mock_embedding_provider: MockEmbeddingProvider,
    mock_vector_store: MockVectorStore,
    repository: SQLiteKnowledgeRepository,
) -> IngestionService:
    return IngestionService(
        extractor_factory=ExtractorFactory(),
        chunker=TextChunker(),
        embedding_provider=mock_embedding_provider,
        vector_store=mock_vector_store,
        repository=repository,
        http_client=MagicMock(),
    )


@pytest.fixture
def rag_service(
    mock_embedding_provider: MockEmbeddingProvider,
    mock_vector_store: MockVectorStore,
    repository: SQLiteKnowledgeRepository,
) -> RagService:
    """Retrieval without an LLM: no expansion, keyword reranking."""
    return RagService(
        embedding_provider=mock_embedding_provider,
        vector_store=mock_vector_store,
        repository=repository,
    )
