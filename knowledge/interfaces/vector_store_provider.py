"""Abstract base class for vector-store service providers.

The contract is collection-scoped: one provider instance manages the chunk
collection and the FAQ collection, both cosine-distance with a fixed vector
dimension set when the collection is created.  Payloads are the closed
models from :mod:`knowledge.models.vector`; filters are
:class:`~knowledge.models.vector.PayloadFilter` objects that each backend
translates into its own query language.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from knowledge.models.vector import PayloadFilter, ScoredRecord, StoredRecord, VectorRecord

UPSERT_BATCH_SIZE = 100


# Concrete implementations: ChromaDBProvider, QdrantProvider
# Located in: knowledge/providers/vector_store/
class IVectorStoreProvider(ABC):
    """Contract for vector stores used by ingestion and retrieval.

    Every method initializes the backend on first use, so callers never
    need to call :meth:`initialize` explicitly.  Backend failures surface
    as :class:`~knowledge.utils.errors.VectorStoreError`; an unreachable
    backend raises
    :class:`~knowledge.utils.errors.ProviderUnavailableError`.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create the configured collections and payload indexes if missing.

        Idempotent: repeated calls after the first are no-ops.
        """

    @abstractmethod
    async def upsert(self, collection: str, records: list[VectorRecord]) -> int:
        """Insert or replace points, in batches of ``UPSERT_BATCH_SIZE``.

        Returns
        -------
        int
            Number of points written.

        Raises
        ------
        knowledge.utils.errors.VectorStoreError
            If a vector's length differs from the collection dimension or
            the write fails.
        """

    @abstractmethod
    async def search(
        self,
        collection: str,
        vector: list[float],
        limit: int = 10,
        filter: PayloadFilter | None = None,
        score_threshold: float | None = None,
    ) -> list[ScoredRecord]:
        """Return the *limit* nearest points, best first.

        Scores are cosine similarities clamped to ``[0, 1]``; hits below
        *score_threshold* are dropped.
        """

    @abstractmethod
    async def delete_by_filter(self, collection: str, filter: PayloadFilter) -> None:
        """Delete every point matching *filter*."""

    @abstractmethod
    async def delete_by_ids(self, collection: str, ids: list[str]) -> None:
        """Delete points by id.  Unknown ids are ignored."""

    @abstractmethod
    async def get_by_ids(self, collection: str, ids: list[str]) -> list[StoredRecord]:
        """Fetch points by id, skipping ids that do not exist."""

    @abstractmethod
    async def count(
        self,
        collection: str,
        filter: PayloadFilter | None = None,
        exact: bool = True,
    ) -> int:
        """Count points, optionally restricted by *filter*."""

    @abstractmethod
    async def scroll(
        self,
        collection: str,
        filter: PayloadFilter | None = None,
        page_size: int = 100,
        offset: str | None = None,
    ) -> tuple[list[StoredRecord], str | None]:
        """Return one page of points and the offset of the next page.

        The next offset is ``None`` once the last page has been returned.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return the backend name recorded on ingestion results."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the backend is configured."""

    async def iterate(
        self,
        collection: str,
        filter: PayloadFilter | None = None,
        page_size: int = 100,
        max_pages: int | None = None,
    ) -> AsyncIterator[StoredRecord]:
        """Yield every matching point by following :meth:`scroll` pages."""
        offset: str | None = None
        pages = 0
        while True:
            records, offset = await self.scroll(collection, filter, page_size, offset)
            pages += 1
            for record in records:
                yield record
            if offset is None or (max_pages is not None and pages >= max_pages):
                return

    async def close(self) -> None:
        """Release client resources.  Default: nothing to release."""
