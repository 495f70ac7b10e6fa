"""Vector store provider implementations (ChromaDB default, Qdrant optional)."""

from knowledge.providers.vector_store.chromadb_provider import ChromaDBProvider
from knowledge.providers.vector_store.qdrant_provider import QdrantProvider

__all__ = ["ChromaDBProvider", "QdrantProvider"]
