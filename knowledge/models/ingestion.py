"""Ingestion run options, progress events and results."""

from __future__ import annotations

from enum import Enum
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field

from knowledge.models.chunking import ChunkingOptions


class ProcessingStage(str, Enum):  # noqa: UP042  StrEnum requires Python 3.11+
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    STORING = "storing"
    COMPLETE = "complete"
    FAILED = "failed"


class ProcessingProgress(BaseModel):
    """A progress event passed to ``ProcessingOptions.on_progress``."""

    model_config = ConfigDict(frozen=True)

    stage: ProcessingStage
    progress: int = Field(ge=0, le=100, description="Overall completion percentage.")
    message: str = ""
    chunks_processed: int | None = None
    total_chunks: int | None = None


ProgressCallback = Callable[[ProcessingProgress], None]


class ProcessingOptions(BaseModel):
    """Options for one ingestion run.

    ``chunking`` wins over ``chunking_preset`` when both are given.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    chunking_preset: str | None = None
    chunking: ChunkingOptions | None = None
    embed_batch_size: int | None = Field(default=None, gt=0)
    on_progress: ProgressCallback | None = None


class ProcessingResult(BaseModel):
    """Outcome of processing one knowledge source."""

    model_config = ConfigDict(frozen=True)

    success: bool
    source_id: str
    chunks_created: int = 0
    total_tokens: int = 0
    processing_time_ms: float = 0.0
    error: str | None = None
    vector_store: str | None = Field(default=None, description="Backend that received the vectors.")


class FaqProcessingResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    faq_id: str
    error: str | None = None


class ReprocessSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    processed: int = 0
    failed: int = 0


class MigrationResult(BaseModel):
    """Outcome of copying relational fallback chunks into the vector store."""

    model_config = ConfigDict(frozen=True)

    migrated: int = 0
    errors: int = 0
