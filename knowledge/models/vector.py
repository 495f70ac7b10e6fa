"""Vector store records, versioned payloads and payload filters.

Every stored point carries a closed payload tagged by ``kind`` and stamped
with a schema ``version``.  Both payload kinds carry ``tenant_id``; filters
built by :func:`chunk_filter` and :func:`faq_filter` always include it.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from knowledge.models.chunking import ChunkMetadata, FixedChunkMetadata

PAYLOAD_VERSION = 1

# Payload fields every backend indexes for exact-match filtering.
INDEXED_FIELDS: tuple[str, ...] = ("tenant_id", "source_id", "category")


class ChunkPayload(BaseModel):
    """Payload of a document chunk point."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["chunk"] = "chunk"
    version: int = PAYLOAD_VERSION
    tenant_id: str
    source_id: str
    category: str | None = None
    content: str
    chunk_index: int = Field(ge=0)
    token_count: int = Field(default=0, ge=0)
    metadata: ChunkMetadata = Field(default_factory=FixedChunkMetadata)


class FaqPayload(BaseModel):
    """Payload of an FAQ point."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["faq"] = "faq"
    version: int = PAYLOAD_VERSION
    tenant_id: str
    question: str
    answer: str
    category: str | None = None


Payload = Annotated[Union[ChunkPayload, FaqPayload], Field(discriminator="kind")]

_PAYLOAD_ADAPTER: TypeAdapter[Payload] = TypeAdapter(Payload)


def parse_payload(data: dict[str, Any]) -> ChunkPayload | FaqPayload:
    """Validate a raw payload dict read back from a store."""
    return _PAYLOAD_ADAPTER.validate_python(data)


def index_fields(payload: ChunkPayload | FaqPayload) -> dict[str, Any]:
    """Flat scalar fields used by backends that cannot filter nested payloads."""
    fields: dict[str, Any] = {
        "kind": payload.kind,
        "version": payload.version,
        "tenant_id": payload.tenant_id,
    }
    if payload.category is not None:
        fields["category"] = payload.category
    if isinstance(payload, ChunkPayload):
        fields["source_id"] = payload.source_id
        fields["chunk_index"] = payload.chunk_index
    return fields


class VectorRecord(BaseModel):
    """A point to upsert: id, vector and payload."""

    model_config = ConfigDict(frozen=True)

    id: str
    vector: list[float]
    payload: Payload


class StoredRecord(BaseModel):
    """A point read back by id or scroll (vector not included)."""

    model_config = ConfigDict(frozen=True)

    id: str
    payload: Payload


class ScoredRecord(StoredRecord):
    """A search hit with its similarity score in ``[0, 1]``."""

    score: float


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


class FieldCondition(BaseModel):
    """One condition on an indexed payload field.

    Exactly one of ``match`` (equality), ``any`` (membership) or a
    ``gte``/``lte`` range must be given.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    match: str | int | None = None
    any: list[str | int] | None = None
    gte: float | None = None
    lte: float | None = None

    @model_validator(mode="after")
    def _one_kind(self) -> FieldCondition:
        kinds = [
            self.match is not None,
            self.any is not None,
            self.gte is not None or self.lte is not None,
        ]
        if sum(kinds) != 1:
            raise ValueError("FieldCondition needs exactly one of match, any or a range")
        return self


class PayloadFilter(BaseModel):
    """Conjunction of ``must`` conditions and at least one ``should`` condition (when given)."""

    model_config = ConfigDict(frozen=True)

    must: list[FieldCondition] = Field(default_factory=list)
    should: list[FieldCondition] = Field(default_factory=list)

    def matches(self, payload: dict[str, Any]) -> bool:
        """Evaluate the filter against a flat payload dict."""
        if not all(_condition_matches(c, payload) for c in self.must):
            return False
        if self.should and not any(_condition_matches(c, payload) for c in self.should):
            return False
        return True


def _condition_matches(condition: FieldCondition, payload: dict[str, Any]) -> bool:
    value = payload.get(condition.key)
    if condition.match is not None:
        return value == condition.match
    if condition.any is not None:
        return value in condition.any
    if value is None:
        return False
    if condition.gte is not None and value < condition.gte:
        return False
    if condition.lte is not None and value > condition.lte:
        return False
    return True


def chunk_filter(
    tenant_id: str,
    source_ids: list[str] | None = None,
    categories: list[str] | None = None,
) -> PayloadFilter:
    """Tenant-scoped filter for chunk points.

    Source and category restrictions form one ``should`` group: a chunk
    passes when it belongs to any listed source or any listed category.
    """
    must = [
        FieldCondition(key="tenant_id", match=tenant_id),
        FieldCondition(key="kind", match="chunk"),
    ]
    should = []
    if source_ids:
        should.append(FieldCondition(key="source_id", any=list(source_ids)))
    if categories:
        should.append(FieldCondition(key="category", any=list(categories)))
    return PayloadFilter(must=must, should=should)


def faq_filter(tenant_id: str, categories: list[str] | None = None) -> PayloadFilter:
    """Tenant-scoped filter for FAQ points."""
    must = [
        FieldCondition(key="tenant_id", match=tenant_id),
        FieldCondition(key="kind", match="faq"),
    ]
    should = []
    if categories:
        should.append(FieldCondition(key="category", any=list(categories)))
    return PayloadFilter(must=must, should=should)


def source_filter(source_id: str) -> PayloadFilter:
    """Filter selecting every chunk of one source."""
    return PayloadFilter(must=[FieldCondition(key="source_id", match=source_id)])
