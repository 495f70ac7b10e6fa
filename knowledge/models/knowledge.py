"""Knowledge source and FAQ models plus the source status lifecycle.

A :class:`KnowledgeSource` is one uploaded file, crawled URL or pasted text
belonging to a tenant.  Its ``status`` only moves along the edges listed in
``_ALLOWED_TRANSITIONS``; every status change goes through
:func:`transition`, so an illegal move raises instead of being persisted.

All models are frozen; status changes produce a new instance via
``model_copy(update=...)``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from knowledge.utils.errors import InvalidTransitionError


# ─── SourceStatus ────────────────────────────────────────────────────
class SourceStatus(str, Enum):  # noqa: UP042  StrEnum requires Python 3.11+
    """Lifecycle states of a knowledge source."""

    PENDING = "pending"
    PROCESSING = "processing"
    INDEXED = "indexed"
    FAILED = "failed"


class SourceType(str, Enum):  # noqa: UP042
    """Where a knowledge source's content came from."""

    FILE = "file"
    URL = "url"
    TEXT = "text"


_ALLOWED_TRANSITIONS: dict[SourceStatus, frozenset[SourceStatus]] = {
    SourceStatus.PENDING: frozenset({SourceStatus.PENDING, SourceStatus.PROCESSING}),
    SourceStatus.PROCESSING: frozenset(
        {SourceStatus.PROCESSING, SourceStatus.INDEXED, SourceStatus.FAILED}
    ),
    SourceStatus.INDEXED: frozenset({SourceStatus.PENDING}),
    SourceStatus.FAILED: frozenset({SourceStatus.PENDING}),
}


def can_transition(current: SourceStatus, target: SourceStatus) -> bool:
    """Return ``True`` if a source in *current* may move to *target*."""
    return target in _ALLOWED_TRANSITIONS[current]


def transition(current: SourceStatus, target: SourceStatus) -> SourceStatus:
    """Validate a status change and return the new status.

    Raises
    ------
    InvalidTransitionError
        If *target* is not reachable from *current*.  Re-processing an
        ``indexed`` or ``failed`` source must go through ``pending`` first.
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(
            message=f"Cannot move source from {current.value} to {target.value}"
        )
    return target


# ─── KnowledgeSource ─────────────────────────────────────────────────
class KnowledgeSource(BaseModel):
    """A tenant-owned document whose content is chunked into the vector store."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique identifier of the source.")
    tenant_id: str = Field(description="Owning tenant; every vector carries it.")
    name: str = Field(description="Display name shown in search context headers.")
    description: str | None = Field(default=None)
    source_type: SourceType = Field(default=SourceType.TEXT)
    status: SourceStatus = Field(default=SourceStatus.PENDING)
    category: str | None = Field(default=None, description="Optional filter category.")
    source_config: dict[str, Any] = Field(
        default_factory=dict,
        description="Type-specific configuration, e.g. the crawled URL.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    chunk_count: int = Field(default=0, ge=0)
    token_count: int = Field(default=0, ge=0)
    processing_error: str | None = Field(default=None)
    last_processed_at: datetime | None = Field(default=None)
    created_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)
    deleted_at: datetime | None = Field(default=None)

    def with_status(self, target: SourceStatus, **changes: Any) -> KnowledgeSource:
        """Return a copy moved to *target*, validated by :func:`transition`."""
        return self.model_copy(update={"status": transition(self.status, target), **changes})


# ─── FaqItem ─────────────────────────────────────────────────────────
class FaqItem(BaseModel):
    """A curated question/answer pair embedded alongside document chunks."""

    model_config = ConfigDict(frozen=True)

    id: str
    tenant_id: str
    question: str
    answer: str
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    priority: int = 0
    vector_id: str | None = Field(
        default=None, description="Id of the FAQ's vector point once embedded."
    )
    deleted_at: datetime | None = None

    def embedding_text(self) -> str:
        """Text that represents this FAQ in the vector store."""
        return f"{self.question}\n{self.answer}"


# ─── FallbackChunk ───────────────────────────────────────────────────
# Rows of the relational chunk table used before a vector store was
# configured.  They already carry their embedding, so migration copies
# them without calling the embedding provider.
class FallbackChunk(BaseModel):
    """An embedded chunk stored in the relational fallback table."""

    model_config = ConfigDict(frozen=True)

    id: str
    source_id: str
    tenant_id: str
    content: str
    chunk_index: int = Field(ge=0)
    token_count: int = Field(default=0, ge=0)
    embedding: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)
