"""Unit tests for the Qdrant vector store provider (in-process ``:memory:`` client)."""

from __future__ import annotations

import uuid

import pytest
from qdrant_client import models

from knowledge.models.vector import (
    ChunkPayload,
    FieldCondition,
    PayloadFilter,
    VectorRecord,
    chunk_filter,
    source_filter,
)
from knowledge.providers.vector_store.qdrant_provider import QdrantProvider, translate_filter
from knowledge.utils.errors import VectorStoreError

_CHUNKS = "test_chunks"


def _chunk(vector: list[float], tenant: str = "t1", source: str = "s1", category: str | None = None) -> VectorRecord:
    return VectorRecord(
        id=str(uuid.uuid4()),
        vector=vector,
        payload=ChunkPayload(
            tenant_id=tenant,
            source_id=source,
            content="some content",
            chunk_index=0,
            category=category,
        ),
    )


@pytest.fixture
def provider() -> QdrantProvider:
    return QdrantProvider(collections=(_CHUNKS,), dimension=4)


class TestTranslateFilter:
    def test_empty(self) -> None:
        assert translate_filter(None) is None
        assert translate_filter(PayloadFilter()) is None

    def test_must_and_should(self) -> None:
        native = translate_filter(chunk_filter("t1", source_ids=["a", "b"]))
        assert isinstance(native, models.Filter)
        assert [c.key for c in native.must] == ["tenant_id", "kind"]
        assert native.must[0].match == models.MatchValue(value="t1")
        assert native.should[0].match == models.MatchAny(any=["a", "b"])

    def test_no_should_is_none(self) -> None:
        assert translate_filter(source_filter("s1")).should is None

    def test_range(self) -> None:
        native = translate_filter(PayloadFilter(must=[FieldCondition(key="chunk_index", gte=2)]))
        assert native.must[0].range == models.Range(gte=2, lte=None)


class TestQdrantProvider:
    @pytest.mark.asyncio
    async def test_upsert_and_search(self, provider: QdrantProvider) -> None:
        near = _chunk([1.0, 0.0, 0.0, 0.0])
        far = _chunk([0.0, 1.0, 0.0, 0.0])
        assert await provider.upsert(_CHUNKS, [near, far]) == 2

        hits = await provider.search(_CHUNKS, [1.0, 0.1, 0.0, 0.0], limit=2)

        assert hits[0].id == near.id
        assert hits[0].payload == near.payload
        assert all(0.0 <= h.score <= 1.0 for h in hits)

    @pytest.mark.asyncio
    async def test_filters_and_threshold(self, provider: QdrantProvider) -> None:
        mine = _chunk([1.0, 0.0, 0.0, 0.0], tenant="t1", category="billing")
        other_category = _chunk([1.0, 0.0, 0.0, 0.0], tenant="t1", source="s2", category="shipping")
        theirs = _chunk([1.0, 0.0, 0.0, 0.0], tenant="t2")
        await provider.upsert(_CHUNKS, [mine, other_category, theirs])

        tenant_hits = await provider.search(_CHUNKS, [1.0, 0.0, 0.0, 0.0], filter=chunk_filter("t1"))
        assert {h.id for h in tenant_hits} == {mine.id, other_category.id}

        scoped = await provider.search(
            _CHUNKS, [1.0, 0.0, 0.0, 0.0], filter=chunk_filter("t1", categories=["billing"])
        )
        assert [h.id for h in scoped] == [mine.id]

        none = await provider.search(_CHUNKS, [0.0, 0.0, 0.0, 1.0], score_threshold=0.5)
        assert none == []

    @pytest.mark.asyncio
    async def test_dimension_mismatch(self, provider: QdrantProvider) -> None:
        with pytest.raises(VectorStoreError, match="expects 4"):
            await provider.upsert(_CHUNKS, [_chunk([1.0, 0.0, 0.0])])

    @pytest.mark.asyncio
    async def test_delete_count_get(self, provider: QdrantProvider) -> None:
        a = _chunk([1.0, 0.0, 0.0, 0.0], source="a")
        b = _chunk([0.0, 1.0, 0.0, 0.0], source="b")
        await provider.upsert(_CHUNKS, [a, b])
        assert await provider.count(_CHUNKS) == 2

        await provider.delete_by_filter(_CHUNKS, source_filter("a"))
        assert await provider.count(_CHUNKS) == 1
        assert [s.id for s in await provider.get_by_ids(_CHUNKS, [a.id, b.id])] == [b.id]

        await provider.delete_by_ids(_CHUNKS, [b.id])
        assert await provider.count(_CHUNKS, filter=chunk_filter("t1")) == 0

    @pytest.mark.asyncio
    async def test_iterate_pages(self, provider: QdrantProvider) -> None:
        records = [_chunk([1.0, float(i), 0.0, 0.0]) for i in range(5)]
        await provider.upsert(_CHUNKS, records)

        seen = [r.id async for r in provider.iterate(_CHUNKS, page_size=2)]

        assert sorted(seen) == sorted(r.id for r in records)

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, provider: QdrantProvider) -> None:
        await provider.initialize()
        await provider.initialize()
        assert await provider.count(_CHUNKS) == 0
