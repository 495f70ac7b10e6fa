"""Abstract base class for text-embedding service providers.

Defines the contract for turning text into dense vectors.  Ingestion embeds
chunks and FAQs through it; retrieval embeds queries and their expansions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class EmbeddingBatch:
    """Vectors for one :meth:`IEmbeddingProvider.embed_batch` call plus token usage."""

    embeddings: list[list[float]]
    total_tokens: int
    model: str


# Concrete implementation: OpenAIEmbeddingProvider (knowledge/providers/embedding/)
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by the knowledge pipeline.

    Output vectors correspond positionally to the input texts and all have
    length :meth:`get_dimension`.
    """

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> EmbeddingBatch:
        """Embed *texts* and report token usage.

        Parameters
        ----------
        texts:
            Texts to embed.  Implementations split into provider-sized
            batches internally.

        Returns
        -------
        EmbeddingBatch
            Order-preserving vectors, summed token usage and the model name.

        Raises
        ------
        knowledge.utils.errors.EmbeddingError
            If the provider fails or rate-limit retries are exhausted.
        """

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts*, returning only the vectors."""
        if not texts:
            return []
        batch = await self.embed_batch(texts)
        return batch.embeddings

    async def embed_single(self, text: str) -> list[float]:
        """Embed one text (e.g. a search query)."""
        vectors = await self.embed([text])
        return vectors[0]

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        Constant for the lifetime of the provider and equal to the vector
        store collection dimension.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured (credentials present)."""
