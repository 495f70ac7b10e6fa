"""SQLite-backed knowledge repository.

Persists knowledge sources, FAQs and the relational fallback chunk table to
a local SQLite database at ``data/knowledge.db``.  Uses ``aiosqlite`` for
async I/O and ``PRAGMA journal_mode=WAL`` for concurrent read safety.

JSON-valued columns (``source_config``, ``metadata``, ``tags`` and the
fallback ``embedding``) are stored as TEXT.  Timestamps are ISO-8601 UTC
strings.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from knowledge.interfaces.knowledge_repository import IKnowledgeRepository
from knowledge.models.knowledge import (
    FallbackChunk,
    FaqItem,
    KnowledgeSource,
    SourceStatus,
    SourceType,
)

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge.db")

# ── Schema DDL ────────────────────────────────────────────────────────

_CREATE_SOURCES_TABLE = """\
CREATE TABLE IF NOT EXISTS knowledge_sources (
    id                TEXT    PRIMARY KEY,
    tenant_id         TEXT    NOT NULL,
    name              TEXT    NOT NULL,
    description       TEXT,
    source_type       TEXT    NOT NULL DEFAULT 'text',
    status            TEXT    NOT NULL DEFAULT 'pending',
    category          TEXT,
    source_config     TEXT    NOT NULL DEFAULT '{}',
    metadata          TEXT    NOT NULL DEFAULT '{}',
    chunk_count       INTEGER NOT NULL DEFAULT 0,
    token_count       INTEGER NOT NULL DEFAULT 0,
    processing_error  TEXT,
    last_processed_at TEXT,
    created_at        TEXT    NOT NULL,
    updated_at        TEXT    NOT NULL,
    deleted_at        TEXT
);
"""

_CREATE_FAQS_TABLE = """\
CREATE TABLE IF NOT EXISTS faq_items (
    id          TEXT    PRIMARY KEY,
    tenant_id   TEXT    NOT NULL,
    question    TEXT    NOT NULL,
    answer      TEXT    NOT NULL,
    category    TEXT,
    tags        TEXT    NOT NULL DEFAULT '[]',
    priority    INTEGER NOT NULL DEFAULT 0,
    vector_id   TEXT,
    created_at  TEXT    NOT NULL,
    deleted_at  TEXT
);
"""

_CREATE_CHUNKS_TABLE = """\
CREATE TABLE IF NOT EXISTS knowledge_chunks (
    id           TEXT    PRIMARY KEY,
    source_id    TEXT    NOT NULL REFERENCES knowledge_sources(id),
    tenant_id    TEXT    NOT NULL,
    content      TEXT    NOT NULL,
    chunk_index  INTEGER NOT NULL,
    token_count  INTEGER NOT NULL DEFAULT 0,
    embedding    TEXT    NOT NULL,
    metadata     TEXT    NOT NULL DEFAULT '{}'
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_sources_tenant ON knowledge_sources(tenant_id);",
    "CREATE INDEX IF NOT EXISTS idx_faqs_tenant ON faq_items(tenant_id);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_source ON knowledge_chunks(source_id, chunk_index);",
]

_SOURCE_COLUMNS = (
    "id, tenant_id, name, description, source_type, status, category, source_config, "
    "metadata, chunk_count, token_count, processing_error, last_processed_at, "
    "created_at, updated_at, deleted_at"
)

_INSERT_SOURCE_SQL = f"""\
INSERT INTO knowledge_sources ({_SOURCE_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_UPDATE_SOURCE_SQL = """\
UPDATE knowledge_sources
SET name = ?, description = ?, source_type = ?, status = ?, category = ?,
    source_config = ?, metadata = ?, chunk_count = ?, token_count = ?,
    processing_error = ?, last_processed_at = ?, updated_at = ?, deleted_at = ?
WHERE id = ?;
"""

_FAQ_COLUMNS = "id, tenant_id, question, answer, category, tags, priority, vector_id, deleted_at"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteKnowledgeRepository(IKnowledgeRepository):
    """SQLite persistence for sources, FAQs and fallback chunks."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)
        self._initialized = False

    async def initialize(self) -> None:
        """Create the tables and indices if they don't exist."""
        if self._initialized:
            return
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.execute(_CREATE_SOURCES_TABLE)
            await db.execute(_CREATE_FAQS_TABLE)
            await db.execute(_CREATE_CHUNKS_TABLE)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        self._initialized = True
        logger.info("knowledge_db_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def create_source(self, source: KnowledgeSource) -> KnowledgeSource:
        await self.initialize()
        now = _now()
        source = source.model_copy(
            update={"created_at": source.created_at or now, "updated_at": now}
        )
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                _INSERT_SOURCE_SQL,
                (
                    source.id,
                    source.tenant_id,
                    source.name,
                    source.description,
                    source.source_type.value,
                    source.status.value,
                    source.category,
                    json.dumps(source.source_config),
                    json.dumps(source.metadata),
                    source.chunk_count,
                    source.token_count,
                    source.processing_error,
                    _iso(source.last_processed_at),
                    _iso(source.created_at),
                    _iso(source.updated_at),
                    _iso(source.deleted_at),
                ),
            )
            await db.commit()
        logger.info("source_created", source_id=source.id, tenant_id=source.tenant_id)
        return source

    async def get_source(self, source_id: str) -> KnowledgeSource | None:
        await self.initialize()
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_SOURCE_COLUMNS} FROM knowledge_sources "
                "WHERE id = ? AND deleted_at IS NULL",
                (source_id,),
            )
            row = await cursor.fetchone()
        return self._row_to_source(row) if row else None

    async def update_source(self, source: KnowledgeSource) -> KnowledgeSource:
        await self.initialize()
        source = source.model_copy(update={"updated_at": _now()})
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                _UPDATE_SOURCE_SQL,
                (
                    source.name,
                    source.description,
                    source.source_type.value,
                    source.status.value,
                    source.category,
                    json.dumps(source.source_config),
                    json.dumps(source.metadata),
                    source.chunk_count,
                    source.token_count,
                    source.processing_error,
                    _iso(source.last_processed_at),
                    _iso(source.updated_at),
                    _iso(source.deleted_at),
                    source.id,
                ),
            )
            await db.commit()
        return source

    async def list_sources(self, tenant_id: str) -> list[KnowledgeSource]:
        await self.initialize()
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_SOURCE_COLUMNS} FROM knowledge_sources "
                "WHERE tenant_id = ? AND deleted_at IS NULL ORDER BY created_at DESC",
                (tenant_id,),
            )
            rows = await cursor.fetchall()
        return [self._row_to_source(r) for r in rows]

    async def get_source_names(self, source_ids: list[str]) -> dict[str, str]:
        if not source_ids:
            return {}
        await self.initialize()
        placeholders = ", ".join("?" for _ in source_ids)
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                f"SELECT id, name FROM knowledge_sources WHERE id IN ({placeholders})",
                tuple(source_ids),
            )
            rows = await cursor.fetchall()
        return {row[0]: row[1] for row in rows}

    # ------------------------------------------------------------------
    # FAQs
    # ------------------------------------------------------------------

    async def create_faq(self, faq: FaqItem) -> FaqItem:
        await self.initialize()
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                f"INSERT INTO faq_items ({_FAQ_COLUMNS}, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    faq.id,
                    faq.tenant_id,
                    faq.question,
                    faq.answer,
                    faq.category,
                    json.dumps(faq.tags),
                    faq.priority,
                    faq.vector_id,
                    _iso(faq.deleted_at),
                    _iso(_now()),
                ),
            )
            await db.commit()
        logger.info("faq_created", faq_id=faq.id, tenant_id=faq.tenant_id)
        return faq

    async def get_faq(self, faq_id: str) -> FaqItem | None:
        await self.initialize()
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_FAQ_COLUMNS} FROM faq_items WHERE id = ? AND deleted_at IS NULL",
                (faq_id,),
            )
            row = await cursor.fetchone()
        return self._row_to_faq(row) if row else None

    async def list_faqs(self, tenant_id: str) -> list[FaqItem]:
        await self.initialize()
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_FAQ_COLUMNS} FROM faq_items "
                "WHERE tenant_id = ? AND deleted_at IS NULL ORDER BY priority DESC, id",
                (tenant_id,),
            )
            rows = await cursor.fetchall()
        return [self._row_to_faq(r) for r in rows]

    async def count_faqs(self, tenant_id: str) -> int:
        await self.initialize()
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM faq_items WHERE tenant_id = ? AND deleted_at IS NULL",
                (tenant_id,),
            )
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def update_faq_vector_id(self, faq_id: str, vector_id: str | None) -> None:
        await self.initialize()
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "UPDATE faq_items SET vector_id = ? WHERE id = ?",
                (vector_id, faq_id),
            )
            await db.commit()

    # ------------------------------------------------------------------
    # Fallback chunks
    # ------------------------------------------------------------------

    async def add_fallback_chunks(self, chunks: list[FallbackChunk]) -> int:
        if not chunks:
            return 0
        await self.initialize()
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.executemany(
                "INSERT INTO knowledge_chunks "
                "(id, source_id, tenant_id, content, chunk_index, token_count, embedding, metadata) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        c.id,
                        c.source_id,
                        c.tenant_id,
                        c.content,
                        c.chunk_index,
                        c.token_count,
                        json.dumps(c.embedding),
                        json.dumps(c.metadata),
                    )
                    for c in chunks
                ],
            )
            await db.commit()
        return len(chunks)

    async def list_fallback_chunks(self, source_id: str) -> list[FallbackChunk]:
        await self.initialize()
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT id, source_id, tenant_id, content, chunk_index, token_count, "
                "embedding, metadata FROM knowledge_chunks "
                "WHERE source_id = ? ORDER BY chunk_index",
                (source_id,),
            )
            rows = await cursor.fetchall()
        return [
            FallbackChunk(
                id=r["id"],
                source_id=r["source_id"],
                tenant_id=r["tenant_id"],
                content=r["content"],
                chunk_index=r["chunk_index"],
                token_count=r["token_count"],
                embedding=json.loads(r["embedding"]),
                metadata=json.loads(r["metadata"]),
            )
            for r in rows
        ]

    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""
        return "sqlite_knowledge"

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_source(row: Any) -> KnowledgeSource:
        return KnowledgeSource(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            description=row["description"],
            source_type=SourceType(row["source_type"]),
            status=SourceStatus(row["status"]),
            category=row["category"],
            source_config=json.loads(row["source_config"] or "{}"),
            metadata=json.loads(row["metadata"] or "{}"),
            chunk_count=row["chunk_count"],
            token_count=row["token_count"],
            processing_error=row["processing_error"],
            last_processed_at=_parse_dt(row["last_processed_at"]),
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
            deleted_at=_parse_dt(row["deleted_at"]),
        )

    @staticmethod
    def _row_to_faq(row: Any) -> FaqItem:
        return FaqItem(
            id=row["id"],
            tenant_id=row["tenant_id"],
            question=row["question"],
            answer=row["answer"],
            category=row["category"],
            tags=json.loads(row["tags"] or "[]"),
            priority=row["priority"],
            vector_id=row["vector_id"],
            deleted_at=_parse_dt(row["deleted_at"]),
        )
