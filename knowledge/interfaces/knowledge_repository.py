"""Abstract base class for knowledge-source and FAQ persistence.

The relational rows (sources, FAQs, and the legacy fallback chunk table)
live outside the vector store.  Ingestion reads and updates them through
this contract; retrieval uses it to resolve source names and statistics.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from knowledge.models.knowledge import FallbackChunk, FaqItem, KnowledgeSource


# Concrete implementation: SQLiteKnowledgeRepository (knowledge/providers/repository/)
class IKnowledgeRepository(ABC):
    """Contract for the relational side of the knowledge base.

    Soft-deleted rows (``deleted_at`` set) are excluded from every lookup
    and listing.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables if they do not exist."""

    # -- Sources ---------------------------------------------------------

    @abstractmethod
    async def create_source(self, source: KnowledgeSource) -> KnowledgeSource:
        """Insert a new source row and return it with timestamps filled."""

    @abstractmethod
    async def get_source(self, source_id: str) -> KnowledgeSource | None:
        """Return the source, or ``None`` if missing or soft-deleted."""

    @abstractmethod
    async def update_source(self, source: KnowledgeSource) -> KnowledgeSource:
        """Persist every mutable field of *source* and bump ``updated_at``."""

    @abstractmethod
    async def list_sources(self, tenant_id: str) -> list[KnowledgeSource]:
        """Return the tenant's sources, newest first."""

    @abstractmethod
    async def get_source_names(self, source_ids: list[str]) -> dict[str, str]:
        """Map source ids to display names; unknown ids are omitted."""

    # -- FAQs ------------------------------------------------------------

    @abstractmethod
    async def create_faq(self, faq: FaqItem) -> FaqItem:
        """Insert a new FAQ row."""

    @abstractmethod
    async def get_faq(self, faq_id: str) -> FaqItem | None:
        """Return the FAQ, or ``None`` if missing or soft-deleted."""

    @abstractmethod
    async def list_faqs(self, tenant_id: str) -> list[FaqItem]:
        """Return the tenant's FAQs, highest priority first."""

    @abstractmethod
    async def count_faqs(self, tenant_id: str) -> int:
        """Count the tenant's live FAQs."""

    @abstractmethod
    async def update_faq_vector_id(self, faq_id: str, vector_id: str | None) -> None:
        """Record (or clear) the vector point id of an FAQ."""

    # -- Relational fallback chunks -----------------------------------------

    @abstractmethod
    async def add_fallback_chunks(self, chunks: list[FallbackChunk]) -> int:
        """Insert rows into the fallback chunk table."""

    @abstractmethod
    async def list_fallback_chunks(self, source_id: str) -> list[FallbackChunk]:
        """Return a source's fallback chunks in ``chunk_index`` order."""
