"""Retrieval models: search options, results and the assembled context.

:class:`StageResult` is how every optional retrieval stage (query
expansion, reranking, context expansion) reports back.  A degraded stage
still yields a usable ``value`` (the un-enhanced input) together with the
error that caused the fallback.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

_T = TypeVar("_T")


class RerankModel(str, Enum):  # noqa: UP042  StrEnum requires Python 3.11+
    CROSS_ENCODER = "cross-encoder"
    KEYWORD = "keyword"


class SearchOptions(BaseModel):
    """Per-request retrieval knobs."""

    model_config = ConfigDict(frozen=True)

    limit: int = Field(default=5, gt=0)
    min_score: float = Field(default=0.7, ge=0.0, le=1.0)
    sources: list[str] | None = Field(default=None, description="Restrict to these source ids.")
    categories: list[str] | None = None
    include_metadata: bool = True
    search_faqs: bool = True
    rerank: bool = True
    expand_query: bool = True
    expand_context: bool = True
    max_expansions: int = Field(default=3, ge=0)
    rerank_top_n: int = Field(default=10, gt=0, description="Results sent to the cross-encoder.")
    rerank_model: RerankModel = RerankModel.CROSS_ENCODER


class ChunkResult(BaseModel):
    """A retrieved document chunk."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    score: float
    source_id: str
    source_name: str | None = None
    chunk_index: int
    metadata: dict[str, Any] | None = None
    expanded_context: str | None = Field(
        default=None, description="Sibling chunk text joined with '\\n---\\n'."
    )

    @property
    def dedupe_key(self) -> tuple[str, int]:
        return (self.source_id, self.chunk_index)


class FaqResult(BaseModel):
    """A retrieved FAQ entry."""

    model_config = ConfigDict(frozen=True)

    id: str
    question: str
    answer: str
    score: float
    category: str | None = None


class RagContext(BaseModel):
    """Everything a downstream prompt needs from one retrieval call."""

    model_config = ConfigDict(frozen=True)

    chunks: list[ChunkResult] = Field(default_factory=list)
    faqs: list[FaqResult] = Field(default_factory=list)
    total_results: int = 0
    search_time_ms: float = 0.0
    expanded_queries: list[str] | None = None
    degraded_stages: list[str] = Field(
        default_factory=list,
        description="Names of best-effort stages that fell back to their input.",
    )


class KnowledgeStats(BaseModel):
    """Per-tenant knowledge base counters."""

    model_config = ConfigDict(frozen=True)

    total_sources: int = 0
    indexed_sources: int = 0
    sources_by_type: dict[str, int] = Field(default_factory=dict)
    total_faqs: int = 0
    total_chunks: int = 0


@dataclass(frozen=True)
class StageResult(Generic[_T]):
    """Outcome of a best-effort retrieval stage."""

    value: _T
    degraded: bool = False
    error: str | None = None

    @classmethod
    def ok(cls, value: _T) -> StageResult[_T]:
        return cls(value=value)

    @classmethod
    def fallback(cls, value: _T, error: BaseException | str) -> StageResult[_T]:
        return cls(value=value, degraded=True, error=str(error))
