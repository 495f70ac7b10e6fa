"""Utility modules for the knowledge pipeline.

- **errors** -- Exception hierarchy rooted at KnowledgeError; each pipeline
  stage raises its own subclass so callers can handle failures granularly.
- **logging** -- structlog setup with console output in development and
  JSON in production.
- **concurrency** -- semaphore-throttled gather used by the retrieval
  fan-out.
- **similarity** -- cosine similarity, normalization and nearest-neighbour
  ranking for local vector comparisons.
- **text** (not re-exported here) -- stop words and keyword extraction
  shared by topic segmentation, reranking and hybrid search.
"""

from knowledge.utils.concurrency import throttled_gather
from knowledge.utils.errors import (
    ChunkingError,
    ConfigurationError,
    EmbeddingError,
    ExtractionError,
    IngestionError,
    InvalidTransitionError,
    KnowledgeError,
    LLMError,
    ProviderUnavailableError,
    RateLimitError,
    VectorStoreError,
)
from knowledge.utils.logging import configure_logging, get_logger
from knowledge.utils.similarity import cosine_similarity, find_most_similar, normalize_embedding

__all__ = [
    "ChunkingError",
    "ConfigurationError",
    "EmbeddingError",
    "ExtractionError",
    "IngestionError",
    "InvalidTransitionError",
    "KnowledgeError",
    "LLMError",
    "ProviderUnavailableError",
    "RateLimitError",
    "VectorStoreError",
    "configure_logging",
    "cosine_similarity",
    "find_most_similar",
    "get_logger",
    "normalize_embedding",
    "throttled_gather",
]
