"""Embedding provider implementations.

Embeddings convert text into vectors that capture semantic meaning; chunks,
FAQs and queries are all embedded with the same provider so their vectors
are comparable.
"""

from knowledge.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider"]
