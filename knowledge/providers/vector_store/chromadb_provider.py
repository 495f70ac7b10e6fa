"""ChromaDB vector store provider adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IVectorStoreProvider`.
Collections use cosine distance.  Fully local, no external service required.

Chroma metadata must be flat scalars, so each point stores the filterable
payload fields (see :func:`~knowledge.models.vector.index_fields`) next to
the full payload serialized as JSON under the ``payload`` key.
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Callable, TypeVar

# Disable ChromaDB telemetry before importing chromadb.  A version mismatch
# between ChromaDB's bundled PostHog client and the installed one makes
# capture() raise on every call.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import posthog

posthog.disabled = True

import chromadb
import structlog

from knowledge.interfaces.vector_store_provider import UPSERT_BATCH_SIZE, IVectorStoreProvider
from knowledge.models.vector import (
    FieldCondition,
    PayloadFilter,
    ScoredRecord,
    StoredRecord,
    VectorRecord,
    index_fields,
    parse_payload,
)
from knowledge.utils.errors import VectorStoreError

logger = structlog.get_logger(logger_name=__name__)

T = TypeVar("T")

_PAYLOAD_KEY = "payload"


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """No-op embedding function that keeps ChromaDB from loading a model.

    Vectors are always computed by the embedding provider and passed in
    explicitly; without this ChromaDB downloads its default ONNX model on
    collection creation.
    """

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError("Vectors are pre-computed; ChromaDB embedding is never used.")

    def name(self) -> str:
        """Return function name (required by ChromaDB's EmbeddingFunction protocol)."""
        return "noop_precomputed"


class ChromaDBProvider(IVectorStoreProvider):
    """Vector store provider backed by ChromaDB with local persistence.

    Parameters
    ----------
    persist_directory:
        Directory for the persistent client.  Ignored when *client* is given.
    collections:
        Collection names created on :meth:`initialize`.
    dimension:
        Vector dimension for new collections.  Existing collections keep the
        dimension recorded in their metadata.
    client:
        Optional pre-built ChromaDB client (tests pass an isolated one).
    """

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        collections: tuple[str, ...] = ("knowledge_chunks", "faq_items"),
        dimension: int = 1536,
        client: Any | None = None,
    ) -> None:
        self._persist_directory = persist_directory
        self._collection_names = tuple(collections)
        self._dimension = dimension
        self._client = client
        self._collections: dict[str, Any] = {}
        self._initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        if self._initialized:
            return
        await self._run("initialize", self._initialize_sync)
        self._initialized = True
        logger.info(
            "chromadb_initialized",
            persist_directory=self._persist_directory,
            collections=list(self._collection_names),
            dimension=self._dimension,
        )

    def _initialize_sync(self) -> None:
        if self._client is None:
            self._client = chromadb.PersistentClient(
                path=self._persist_directory,
                settings=chromadb.config.Settings(anonymized_telemetry=False),
            )
        for name in self._collection_names:
            self._open_collection(name)

    def _open_collection(self, name: str) -> Any:
        collection = self._collections.get(name)
        if collection is not None:
            return collection
        # Older clients list Collection objects, newer ones list names.
        existing = {getattr(c, "name", c) for c in self._client.list_collections()}
        try:
            if name in existing:
                # Keep the persisted metadata, including the original dimension.
                collection = self._client.get_collection(
                    name=name, embedding_function=_NoopEmbeddingFunction()
                )
            else:
                # Indexes are implicit: Chroma filters any flat metadata key.
                collection = self._client.create_collection(
                    name=name,
                    metadata={"hnsw:space": "cosine", "dimension": self._dimension},
                    embedding_function=_NoopEmbeddingFunction(),
                )
        except ValueError:
            # Collection persisted with a different embedding function.
            collection = self._client.get_collection(name=name)
        self._collections[name] = collection
        return collection

    async def _collection(self, name: str) -> Any:
        await self.initialize()
        if name in self._collections:
            return self._collections[name]
        return await self._run("open_collection", self._open_collection, name)

    # ------------------------------------------------------------------
    # IVectorStoreProvider implementation
    # ------------------------------------------------------------------

    async def upsert(self, collection: str, records: list[VectorRecord]) -> int:
        if not records:
            return 0
        coll = await self._collection(collection)
        expected = self._collection_dimension(coll)
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
            await self._run(
                "upsert",
                coll.upsert,
                ids=[r.id for r in batch],
                embeddings=[r.vector for r in batch],
                documents=[_document_text(r) for r in batch],
                metadatas=[_to_metadata(r) for r in batch],
            )
            written += len(batch)

        logger.info("chromadb_upsert", collection=collection, count=written)
        return written

    async def search(
        self,
        collection: str,
        vector: list[float],
        limit: int = 10,
        filter: PayloadFilter | None = None,
        score_threshold: float | None = None,
    ) -> list[ScoredRecord]:
        coll = await self._collection(collection)
        total = await self._run("count", coll.count)
        if total == 0 or limit <= 0:
            return []

        kwargs: dict[str, Any] = {
            "query_embeddings": [vector],
            "n_results": min(limit, total),
            "include": ["metadatas", "distances"],
        }
        where = translate_filter(filter)
        if where:
            kwargs["where"] = where
        results = await self._run("search", coll.query, **kwargs)

        ids = results["ids"][0] if results["ids"] else []
        metadatas = results["metadatas"][0] if results["metadatas"] else []
        distances = results["distances"][0] if results["distances"] else []

        hits: list[ScoredRecord] = []
        for point_id, meta, distance in zip(ids, metadatas, distances):
            score = max(0.0, min(1.0, 1.0 - distance))
            if score_threshold is not None and score < score_threshold:
                continue
            hits.append(ScoredRecord(id=point_id, payload=_payload_from(meta), score=score))

        logger.debug(
            "chromadb_search",
            collection=collection,
            results_count=len(hits),
            top_score=hits[0].score if hits else 0.0,
        )
        return hits

    async def delete_by_filter(self, collection: str, filter: PayloadFilter) -> None:
        coll = await self._collection(collection)
        where = translate_filter(filter)
        if not where:
            raise VectorStoreError(
                message="Refusing to delete with an empty filter",
                provider_name=self.get_provider_name(),
            )
        await self._run("delete_by_filter", coll.delete, where=where)
        logger.info("chromadb_delete_by_filter", collection=collection)

    async def delete_by_ids(self, collection: str, ids: list[str]) -> None:
        if not ids:
            return
        coll = await self._collection(collection)
        await self._run("delete_by_ids", coll.delete, ids=list(ids))

    async def get_by_ids(self, collection: str, ids: list[str]) -> list[StoredRecord]:
        if not ids:
            return []
        coll = await self._collection(collection)
        result = await self._run("get_by_ids", coll.get, ids=list(ids), include=["metadatas"])
        return _stored_records(result)

    async def count(
        self,
        collection: str,
        filter: PayloadFilter | None = None,
        exact: bool = True,
    ) -> int:
        coll = await self._collection(collection)
        where = translate_filter(filter)
        if not where:
            return await self._run("count", coll.count)
        result = await self._run("count", coll.get, where=where, include=[])
        return len(result["ids"] or [])

    async def scroll(
        self,
        collection: str,
        filter: PayloadFilter | None = None,
        page_size: int = 100,
        offset: str | None = None,
    ) -> tuple[list[StoredRecord], str | None]:
        coll = await self._collection(collection)
        start = int(offset) if offset else 0
        kwargs: dict[str, Any] = {"include": ["metadatas"], "limit": page_size, "offset": start}
        where = translate_filter(filter)
        if where:
            kwargs["where"] = where
        result = await self._run("scroll", coll.get, **kwargs)
        records = _stored_records(result)
        next_offset = str(start + len(records)) if len(records) == page_size else None
        return records, next_offset

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        """Return ``True``: the store is local and needs no credentials."""
        return True

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _collection_dimension(self, coll: Any) -> int:
        metadata = coll.metadata or {}
        return int(metadata.get("dimension", self._dimension))

    async def _run(self, operation: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking ChromaDB call off the event loop, wrapping failures."""
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except VectorStoreError:
            raise
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB {operation} failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc


def translate_filter(filter: PayloadFilter | None) -> dict[str, Any] | None:
    """Translate a :class:`PayloadFilter` into a ChromaDB ``where`` clause.

    ``must`` conditions are AND-ed, ``should`` conditions OR-ed into one
    extra clause.  ChromaDB rejects ``$and``/``$or`` with a single operand,
    so single clauses are returned bare.
    """
    if filter is None:
        return None

    clauses = [_translate_condition(c) for c in filter.must]
    should = [_translate_condition(c) for c in filter.should]
    if len(should) == 1:
        clauses.append(should[0])
    elif should:
        clauses.append({"$or": should})

    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _translate_condition(condition: FieldCondition) -> dict[str, Any]:
    if condition.match is not None:
        return {condition.key: {"$eq": condition.match}}
    if condition.any is not None:
        return {condition.key: {"$in": list(condition.any)}}
    bounds: list[dict[str, Any]] = []
    if condition.gte is not None:
        bounds.append({condition.key: {"$gte": condition.gte}})
    if condition.lte is not None:
        bounds.append({condition.key: {"$lte": condition.lte}})
    return bounds[0] if len(bounds) == 1 else {"$and": bounds}


def _document_text(record: VectorRecord) -> str:
    payload = record.payload
    if payload.kind == "chunk":
        return payload.content
    return f"{payload.question}\n{payload.answer}"


def _to_metadata(record: VectorRecord) -> dict[str, str | int | float | bool]:
    meta: dict[str, str | int | float | bool] = dict(index_fields(record.payload))
    meta[_PAYLOAD_KEY] = record.payload.model_dump_json()
    return meta


def _payload_from(meta: dict[str, Any]):
    return parse_payload(json.loads(meta[_PAYLOAD_KEY]))


def _stored_records(result: dict[str, Any]) -> list[StoredRecord]:
    ids = result.get("ids") or []
    metadatas = result.get("metadatas") or []
    return [
        StoredRecord(id=point_id, payload=_payload_from(meta))
        for point_id, meta in zip(ids, metadatas)
    ]
