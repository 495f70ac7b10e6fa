"""Public interface definitions for every external service the pipeline uses.

Business logic (ingestion, retrieval) talks only to these abstract base
classes.  Concrete adapters live in ``knowledge/providers/`` and are
constructed once in ``knowledge/main.py``, then injected through
constructors.

CONCRETE PROVIDER MAP:
    Interface                  →  Concrete implementations (in knowledge/providers/)
    ─────────────────────────────────────────────────────────────────────
    IEmbeddingProvider         →  OpenAIEmbeddingProvider
    IVectorStoreProvider       →  ChromaDBProvider, QdrantProvider
    ILLMProvider               →  OpenAILLMProvider
    IKnowledgeRepository       →  SQLiteKnowledgeRepository
"""

from knowledge.interfaces.embedding_provider import EmbeddingBatch, IEmbeddingProvider
from knowledge.interfaces.knowledge_repository import IKnowledgeRepository
from knowledge.interfaces.llm_provider import ILLMProvider
from knowledge.interfaces.vector_store_provider import IVectorStoreProvider

__all__ = [
    "EmbeddingBatch",
    "IEmbeddingProvider",
    "IKnowledgeRepository",
    "ILLMProvider",
    "IVectorStoreProvider",
]
