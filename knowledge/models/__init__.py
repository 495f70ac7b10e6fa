"""Pydantic models for the knowledge pipeline.

All models are frozen; state changes produce copies via ``model_copy``.

- **knowledge** -- KnowledgeSource, FaqItem and the SourceStatus lifecycle.
- **extraction** -- ExtractionResult, ExtractionMetadata, ContentSection.
- **chunking** -- ChunkingOptions, presets, TextChunk and its
  strategy-tagged metadata.
- **vector** -- versioned point payloads, records and payload filters.
- **ingestion** -- ProcessingOptions, progress events and results.
- **rag** -- SearchOptions, retrieval results, RagContext, StageResult.
"""

from knowledge.models.chunking import (
    CHUNKING_PRESETS,
    ChunkingOptions,
    ChunkingStrategy,
    ChunkMetadata,
    TextChunk,
    get_preset,
)
from knowledge.models.extraction import ContentSection, ExtractionMetadata, ExtractionResult
from knowledge.models.ingestion import (
    FaqProcessingResult,
    MigrationResult,
    ProcessingOptions,
    ProcessingProgress,
    ProcessingResult,
    ProcessingStage,
    ReprocessSummary,
)
from knowledge.models.knowledge import (
    FaqItem,
    KnowledgeSource,
    SourceStatus,
    SourceType,
    transition,
)
from knowledge.models.rag import (
    ChunkResult,
    FaqResult,
    KnowledgeStats,
    RagContext,
    RerankModel,
    SearchOptions,
    StageResult,
)
from knowledge.models.vector import (
    ChunkPayload,
    FaqPayload,
    FieldCondition,
    PayloadFilter,
    ScoredRecord,
    StoredRecord,
    VectorRecord,
)

__all__ = [
    "CHUNKING_PRESETS",
    "ChunkMetadata",
    "ChunkPayload",
    "ChunkResult",
    "ChunkingOptions",
    "ChunkingStrategy",
    "ContentSection",
    "ExtractionMetadata",
    "ExtractionResult",
    "FaqItem",
    "FaqPayload",
    "FaqProcessingResult",
    "FaqResult",
    "FieldCondition",
    "KnowledgeSource",
    "KnowledgeStats",
    "MigrationResult",
    "PayloadFilter",
    "ProcessingOptions",
    "ProcessingProgress",
    "ProcessingResult",
    "ProcessingStage",
    "RagContext",
    "RerankModel",
    "ReprocessSummary",
    "ScoredRecord",
    "SearchOptions",
    "SourceStatus",
    "SourceType",
    "StageResult",
    "StoredRecord",
    "TextChunk",
    "VectorRecord",
    "get_preset",
    "transition",
]
