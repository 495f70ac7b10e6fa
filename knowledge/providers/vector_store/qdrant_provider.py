"""Qdrant vector store provider adapter.

Wraps ``qdrant_client.AsyncQdrantClient`` to implement
:class:`IVectorStoreProvider`.  Payloads are stored as-is (Qdrant filters
nested JSON natively) and keyword payload indexes are created on the
fields in :data:`~knowledge.models.vector.INDEXED_FIELDS`.

With no URL configured the client runs an in-process ``:memory:``
instance, which is what the tests use.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from qdrant_client import AsyncQdrantClient, models
from qdrant_client.http.exceptions import ResponseHandlingException

from knowledge.interfaces.vector_store_provider import UPSERT_BATCH_SIZE, IVectorStoreProvider
from knowledge.models.vector import (
    INDEXED_FIELDS,
    FieldCondition,
    PayloadFilter,
    ScoredRecord,
    StoredRecord,
    VectorRecord,
    parse_payload,
)
from knowledge.utils.errors import ProviderUnavailableError, VectorStoreError

logger = structlog.get_logger(logger_name=__name__)


class QdrantProvider(IVectorStoreProvider):
    """Vector store provider backed by Qdrant.

    Point ids must be UUID strings; chunk and FAQ ids are generated as
    uuid4 values so they qualify.
    """

    def __init__(
        self,
        url: str = "",
        api_key: str = "",
        collections: tuple[str, ...] = ("knowledge_chunks", "faq_items"),
        dimension: int = 1536,
        client: AsyncQdrantClient | None = None,
    ) -> None:
        if client is None:
            if url:
                client = AsyncQdrantClient(url=url, api_key=api_key or None)
            else:
                client = AsyncQdrantClient(location=":memory:")
        self._client = client
        self._url = url
        self._collection_names = tuple(collections)
        self._dimension = dimension
        self._dimensions: dict[str, int] = {}
        self._initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        if self._initialized:
            return
        for name in self._collection_names:
            await self._ensure_collection(name)
        self._initialized = True
        logger.info(
            "qdrant_initialized",
            url=self._url or ":memory:",
            collections=list(self._collection_names),
            dimension=self._dimension,
        )

    async def _ensure_collection(self, name: str) -> int:
        if name in self._dimensions:
            return self._dimensions[name]
        async with self._errors("initialize"):
            if await self._client.collection_exists(name):
                info = await self._client.get_collection(name)
                size = info.config.params.vectors.size
            else:
                await self._client.create_collection(
                    collection_name=name,
                    vectors_config=models.VectorParams(
                        size=self._dimension, distance=models.Distance.COSINE
                    ),
                )
                for field in ("kind", *INDEXED_FIELDS):
                    await self._client.create_payload_index(
                        collection_name=name,
                        field_name=field,
                        field_schema=models.PayloadSchemaType.KEYWORD,
                    )
                size = self._dimension
        self._dimensions[name] = size
        return size

    async def _prepare(self, collection: str) -> int:
        await self.initialize()
        return await self._ensure_collection(collection)

    async def close(self) -> None:
        await self._client.close()

    # ------------------------------------------------------------------
    # IVectorStoreProvider implementation
    # ------------------------------------------------------------------

    async def upsert(self, collection: str, records: list[VectorRecord]) -> int:
        if not records:
            return 0
        expected = await self._prepare(collection)
        for record in records:
            if len(record.vector) != expected:
                raise VectorStoreError(
                    message=(
                        f"Vector dimension mismatch for '{record.id}': collection "
                        f"'{collection}' expects {expected}, got {len(record.vector)}"
                    ),
                    provider_name=self.get_provider_name(),
                )

        written = 0
        for start in range(0, len(records), UPSERT_BATCH_SIZE):
            batch = records[start : start + UPSERT_BATCH_SIZE]
            points = [
                models.PointStruct(
                    id=r.id, vector=r.vector, payload=r.payload.model_dump(mode="json")
                )
                for r in batch
            ]
            async with self._errors("upsert"):
                await self._client.upsert(collection_name=collection, points=points, wait=True)
            written += len(batch)

        logger.info("qdrant_upsert", collection=collection, count=written)
        return written

    async def search(
        self,
        collection: str,
        vector: list[float],
        limit: int = 10,
        filter: PayloadFilter | None = None,
        score_threshold: float | None = None,
    ) -> list[ScoredRecord]:
        if limit <= 0:
            return []
        await self._prepare(collection)
        async with self._errors("search"):
            response = await self._client.query_points(
                collection_name=collection,
                query=vector,
                limit=limit,
                query_filter=translate_filter(filter),
                score_threshold=score_threshold,
                with_payload=True,
            )
        hits = [
            ScoredRecord(
                id=str(point.id),
                payload=parse_payload(point.payload),
                score=max(0.0, min(1.0, point.score)),
            )
            for point in response.points
        ]
        logger.debug(
            "qdrant_search",
            collection=collection,
            results_count=len(hits),
            top_score=hits[0].score if hits else 0.0,
        )
        return hits

    async def delete_by_filter(self, collection: str, filter: PayloadFilter) -> None:
        await self._prepare(collection)
        async with self._errors("delete_by_filter"):
            await self._client.delete(
                collection_name=collection,
                points_selector=models.FilterSelector(filter=translate_filter(filter)),
                wait=True,
            )
        logger.info("qdrant_delete_by_filter", collection=collection)

    async def delete_by_ids(self, collection: str, ids: list[str]) -> None:
        if not ids:
            return
        await self._prepare(collection)
        async with self._errors("delete_by_ids"):
            await self._client.delete(
                collection_name=collection,
                points_selector=models.PointIdsList(points=list(ids)),
                wait=True,
            )

    async def get_by_ids(self, collection: str, ids: list[str]) -> list[StoredRecord]:
        if not ids:
            return []
        await self._prepare(collection)
        async with self._errors("get_by_ids"):
            points = await self._client.retrieve(
                collection_name=collection, ids=list(ids), with_payload=True
            )
        return [StoredRecord(id=str(p.id), payload=parse_payload(p.payload)) for p in points]

    async def count(
        self,
        collection: str,
        filter: PayloadFilter | None = None,
        exact: bool = True,
    ) -> int:
        await self._prepare(collection)
        async with self._errors("count"):
            result = await self._client.count(
                collection_name=collection,
                count_filter=translate_filter(filter),
                exact=exact,
            )
        return result.count

    async def scroll(
        self,
        collection: str,
        filter: PayloadFilter | None = None,
        page_size: int = 100,
        offset: str | None = None,
    ) -> tuple[list[StoredRecord], str | None]:
        await self._prepare(collection)
        async with self._errors("scroll"):
            points, next_offset = await self._client.scroll(
                collection_name=collection,
                scroll_filter=translate_filter(filter),
                limit=page_size,
                offset=offset,
                with_payload=True,
                with_vectors=False,
            )
        records = [StoredRecord(id=str(p.id), payload=parse_payload(p.payload)) for p in points]
        return records, str(next_offset) if next_offset is not None else None

    def get_provider_name(self) -> str:
        return "qdrant"

    def is_available(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _errors(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except VectorStoreError:
            raise
        except ResponseHandlingException as exc:
            raise ProviderUnavailableError(
                message=f"Qdrant unreachable during {operation}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        except Exception as exc:
            raise VectorStoreError(
                message=f"Qdrant {operation} failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc


def translate_filter(filter: PayloadFilter | None) -> models.Filter | None:
    """Translate a :class:`PayloadFilter` into a native Qdrant filter."""
    if filter is None or not (filter.must or filter.should):
        return None
    return models.Filter(
        must=[_translate_condition(c) for c in filter.must] or None,
        should=[_translate_condition(c) for c in filter.should] or None,
    )


def _translate_condition(condition: FieldCondition) -> models.FieldCondition:
    if condition.match is not None:
        return models.FieldCondition(
            key=condition.key, match=models.MatchValue(value=condition.match)
        )
    if condition.any is not None:
        return models.FieldCondition(key=condition.key, match=models.MatchAny(any=condition.any))
    return models.FieldCondition(
        key=condition.key, range=models.Range(gte=condition.gte, lte=condition.lte)
    )
