"""Retrieval service: semantic and hybrid search over the knowledge base.

Search pipeline for :meth:`RagService.search`:

    1. QueryExpander -- optional LLM rephrasings of the query
    2. IEmbeddingProvider -- one vector per query variant, concurrently
    3. IVectorStoreProvider -- tenant-filtered chunk and FAQ search per
       variant, concurrently
    4. Dedup -- best score per ``(source_id, chunk_index)`` / FAQ id
    5. Reranker -- optional cross-encoder or keyword rescoring
    6. Context expansion -- sibling chunk text for topic chunks
    7. Limit and resolve source names

Stages 1, 5 and 6 (and name resolution) are best-effort: a failure keeps
the stage's input and is recorded in ``RagContext.degraded_stages``.  An
unreachable embedding provider or vector store yields an empty context
rather than an exception.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import structlog

from knowledge.models.knowledge import SourceStatus
from knowledge.models.rag import (
    ChunkResult,
    FaqResult,
    KnowledgeStats,
    RagContext,
    SearchOptions,
    StageResult,
)
from knowledge.models.vector import ChunkPayload, FaqPayload, ScoredRecord, chunk_filter, faq_filter
from knowledge.services.retrieval.query_expander import QueryExpander
from knowledge.services.retrieval.reranker import Reranker, sort_results
from knowledge.utils.concurrency import DEFAULT_MAX_CONCURRENCY, throttled_gather

if TYPE_CHECKING:
    from knowledge.interfaces.embedding_provider import IEmbeddingProvider
    from knowledge.interfaces.knowledge_repository import IKnowledgeRepository
    from knowledge.interfaces.llm_provider import ILLMProvider
    from knowledge.interfaces.vector_store_provider import IVectorStoreProvider

logger = structlog.get_logger(logger_name=__name__)

FAQ_SEARCH_LIMIT = 5
FAQ_THRESHOLD_OFFSET = 0.05
DEFAULT_KEYWORD_WEIGHT = 0.3
KEYWORD_SCAN_PAGE_SIZE = 100
KEYWORD_SCAN_MAX_PAGES = 10
KEYWORD_MIN_SCORE = 0.5
KEYWORD_MAX_HITS = 20
KEYWORD_TOP_N = 10


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def dedupe_chunks(results: list[ChunkResult]) -> list[ChunkResult]:
    """Keep the highest-scoring result per ``(source_id, chunk_index)``."""
    best: dict[tuple[str, int], ChunkResult] = {}
    for result in results:
        existing = best.get(result.dedupe_key)
        if existing is None or result.score > existing.score:
            best[result.dedupe_key] = result
    return sort_results(list(best.values()))


def dedupe_faqs(results: list[FaqResult]) -> list[FaqResult]:
    """Keep the highest-scoring hit per FAQ id."""
    best: dict[str, FaqResult] = {}
    for result in results:
        existing = best.get(result.id)
        if existing is None or result.score > existing.score:
            best[result.id] = result
    return sorted(best.values(), key=lambda r: (-r.score, r.id))


def combine_results(
    semantic: list[ChunkResult],
    keyword: list[ChunkResult],
    keyword_weight: float,
) -> list[ChunkResult]:
    """Blend ``semantic * (1 - w) + keyword * w`` per ``(source_id, chunk_index)``."""
    combined: dict[tuple[str, int], ChunkResult] = {}
    for result in semantic:
        combined[result.dedupe_key] = result.model_copy(
            update={"score": result.score * (1 - keyword_weight)}
        )
    for result in keyword:
        existing = combined.get(result.dedupe_key)
        if existing is not None:
            combined[result.dedupe_key] = existing.model_copy(
                update={"score": existing.score + result.score * keyword_weight}
            )
        else:
            combined[result.dedupe_key] = result.model_copy(
                update={"score": result.score * keyword_weight}
            )
    return sort_results(list(combined.values()))


class RagService:
    """Answers tenant-scoped knowledge queries.

    Parameters
    ----------
    embedding_provider:
        Embeds the query and its expansions; must be the provider used at
        ingestion so vectors are comparable.
    vector_store:
        Holds the chunk and FAQ collections.
    repository:
        Resolves source names and statistics.
    llm_provider:
        Optional; enables query expansion and cross-encoder reranking.
    max_concurrency:
        Bound on concurrent embedding and search calls across all
        in-flight searches of this service.
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        vector_store: IVectorStoreProvider,
        repository: IKnowledgeRepository,
        llm_provider: ILLMProvider | None = None,
        chunks_collection: str = "knowledge_chunks",
        faq_collection: str = "faq_items",
        faq_threshold_offset: float = FAQ_THRESHOLD_OFFSET,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        self._embedding_provider = embedding_provider
        self._vector_store = vector_store
        self._repository = repository
        self._expander = QueryExpander(llm_provider)
        self._reranker = Reranker(llm_provider)
        self._chunks_collection = chunks_collection
        self._faq_collection = faq_collection
        self._faq_threshold_offset = faq_threshold_offset
        self._semaphore = asyncio.Semaphore(max_concurrency)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        tenant_id: str,
        options: SearchOptions | None = None,
    ) -> RagContext:
        """Semantic search over the tenant's chunks and FAQs."""
        opts = options or SearchOptions()
        started = time.perf_counter()
        degraded: list[str] = []

        # Step 1: query expansion
        expansions: list[str] = []
        if opts.expand_query:
            stage = await self._expander.expand(query, opts.max_expansions)
            _record(stage, "query_expansion", degraded)
            expansions = stage.value
        queries = [query, *expansions]

        # Step 2: embed every variant
        vectors = await self._embed_queries(queries, degraded)
        if not vectors:
            return RagContext(
                search_time_ms=_elapsed_ms(started),
                expanded_queries=expansions or None,
                degraded_stages=degraded,
            )

        # Step 3: multi-query search
        chunk_hits, faq_hits, siblings = await self._search_variants(
            vectors, tenant_id, opts, degraded
        )

        # Step 4: dedup
        chunks = dedupe_chunks(chunk_hits)
        faqs = dedupe_faqs(faq_hits)

        # Step 5: rerank
        if opts.rerank:
            stage = await self._reranker.rerank(
                query, chunks, opts.rerank_model, top_n=opts.rerank_top_n
            )
            _record(stage, "rerank", degraded)
            chunks = stage.value

        # Step 6: sibling context
        if opts.expand_context:
            stage = await self._expand_context(chunks, tenant_id, siblings)
            _record(stage, "context_expansion", degraded)
            chunks = stage.value

        # Step 7: limit and assemble
        chunks = await self._with_source_names(chunks[: opts.limit], degraded)
        context = RagContext(
            chunks=chunks,
            faqs=faqs[: max(3, opts.limit // 2)],
            total_results=len(chunks) + len(faqs),
            search_time_ms=_elapsed_ms(started),
            expanded_queries=expansions or None,
            degraded_stages=degraded,
        )
        logger.info(
            "rag_search",
            tenant_id=tenant_id,
            query_length=len(query),
            variants=len(queries),
            chunks=len(context.chunks),
            faqs=len(context.faqs),
            degraded=degraded or None,
            elapsed_ms=context.search_time_ms,
        )
        return context

    async def hybrid_search(
        self,
        query: str,
        tenant_id: str,
        options: SearchOptions | None = None,
        keyword_weight: float = DEFAULT_KEYWORD_WEIGHT,
    ) -> RagContext:
        """Blend semantic results with a payload keyword scan.

        The keyword scan pages through the tenant's chunks; it is a
        fallback for exact-term matches, not a full-text index.
        """
        opts = options or SearchOptions()
        started = time.perf_counter()
        semantic = await self.search(query, tenant_id, opts.model_copy(update={"rerank": False}))
        if not semantic.chunks or keyword_weight == 0:
            return semantic

        degraded = list(semantic.degraded_stages)
        stage = await self._keyword_search(query, tenant_id, opts)
        _record(stage, "keyword_search", degraded)
        chunks = combine_results(semantic.chunks, stage.value, keyword_weight)

        if opts.rerank:
            rerank_stage = await self._reranker.rerank(
                query, chunks, opts.rerank_model, top_n=opts.rerank_top_n
            )
            _record(rerank_stage, "rerank", degraded)
            chunks = rerank_stage.value

        chunks = await self._with_source_names(chunks[: opts.limit], degraded)
        return semantic.model_copy(
            update={
                "chunks": chunks,
                "degraded_stages": degraded,
                "search_time_ms": semantic.search_time_ms + _elapsed_ms(started),
            }
        )

    async def get_knowledge_stats(self, tenant_id: str) -> KnowledgeStats:
        """Source, FAQ and chunk counters for a tenant."""
        sources = await self._repository.list_sources(tenant_id)
        total_faqs = await self._repository.count_faqs(tenant_id)

        total_chunks = 0
        try:
            total_chunks = await self._vector_store.count(
                self._chunks_collection, chunk_filter(tenant_id)
            )
        except Exception as exc:
            logger.warning("chunk_count_unavailable", tenant_id=tenant_id, error=str(exc))

        sources_by_type: dict[str, int] = {}
        for source in sources:
            key = source.source_type.value
            sources_by_type[key] = sources_by_type.get(key, 0) + 1

        return KnowledgeStats(
            total_sources=len(sources),
            indexed_sources=sum(1 for s in sources if s.status is SourceStatus.INDEXED),
            sources_by_type=sources_by_type,
            total_faqs=total_faqs,
            total_chunks=total_chunks,
        )

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------

    async def _embed_queries(self, queries: list[str], degraded: list[str]) -> list[list[float]]:
        results = await throttled_gather(
            [self._embedding_provider.embed_single(q) for q in queries],
            semaphore=self._semaphore,
            return_exceptions=True,
        )
        vectors = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            degraded.append("embedding")
            logger.warning(
                "query_embedding_failed",
                failed=len(failures),
                total=len(queries),
                error=str(failures[0]),
            )
        return vectors

    async def _search_variants(
        self,
        vectors: list[list[float]],
        tenant_id: str,
        opts: SearchOptions,
        degraded: list[str],
    ) -> tuple[list[ChunkResult], list[FaqResult], dict[str, list[str]]]:
        chunk_flt = chunk_filter(tenant_id, opts.sources, opts.categories)
        chunk_calls = [
            self._vector_store.search(
                self._chunks_collection,
                vector,
                limit=opts.limit * 2,
                filter=chunk_flt,
                score_threshold=opts.min_score,
            )
            for vector in vectors
        ]
        faq_calls = []
        if opts.search_faqs:
            faq_flt = faq_filter(tenant_id)
            faq_calls = [
                self._vector_store.search(
                    self._faq_collection,
                    vector,
                    limit=FAQ_SEARCH_LIMIT,
                    filter=faq_flt,
                    score_threshold=min(1.0, opts.min_score + self._faq_threshold_offset),
                )
                for vector in vectors
            ]

        results = await throttled_gather(
            [*chunk_calls, *faq_calls], semaphore=self._semaphore, return_exceptions=True
        )
        chunk_results = results[: len(chunk_calls)]
        faq_results = results[len(chunk_calls) :]

        chunks: list[ChunkResult] = []
        siblings: dict[str, list[str]] = {}
        for hits in _successful(chunk_results, "chunk_search", degraded):
            for hit in hits:
                chunks.append(_to_chunk_result(hit, opts.include_metadata))
                if hit.payload.metadata.sibling_chunk_ids:
                    siblings[hit.id] = list(hit.payload.metadata.sibling_chunk_ids)
        faqs: list[FaqResult] = []
        for hits in _successful(faq_results, "faq_search", degraded):
            faqs.extend(_to_faq_result(h) for h in hits)
        return chunks, faqs, siblings

    async def _expand_context(
        self,
        chunks: list[ChunkResult],
        tenant_id: str,
        siblings: dict[str, list[str]],
    ) -> StageResult[list[ChunkResult]]:
        """Attach sibling chunk text (same tenant only) to each result."""
        siblings_by_chunk = {c.id: siblings.get(c.id, []) for c in chunks}
        wanted = sorted({sid for ids in siblings_by_chunk.values() for sid in ids})
        if not wanted:
            return StageResult.ok(chunks)

        try:
            records = await self._vector_store.get_by_ids(self._chunks_collection, wanted)
        except Exception as exc:
            logger.warning("context_expansion_failed", error=str(exc))
            return StageResult.fallback(chunks, exc)

        content_by_id = {
            r.id: r.payload.content
            for r in records
            if isinstance(r.payload, ChunkPayload)
            and r.payload.tenant_id == tenant_id
            and r.payload.content
        }
        expanded: list[ChunkResult] = []
        for chunk in chunks:
            texts = [content_by_id[sid] for sid in siblings_by_chunk[chunk.id] if sid in content_by_id]
            if texts:
                chunk = chunk.model_copy(update={"expanded_context": "\n---\n".join(texts)})
            expanded.append(chunk)
        return StageResult.ok(expanded)

    async def _keyword_search(
        self, query: str, tenant_id: str, opts: SearchOptions
    ) -> StageResult[list[ChunkResult]]:
        keywords = [w for w in query.lower().split() if len(w) > 2]
        if not keywords:
            return StageResult.ok([])

        hits: list[ChunkResult] = []
        try:
            async for record in self._vector_store.iterate(
                self._chunks_collection,
                chunk_filter(tenant_id, opts.sources, opts.categories),
                page_size=KEYWORD_SCAN_PAGE_SIZE,
                max_pages=KEYWORD_SCAN_MAX_PAGES,
            ):
                payload = record.payload
                if not isinstance(payload, ChunkPayload):
                    continue
                content = payload.content.lower()
                score = sum(1 for k in keywords if k in content) / len(keywords)
                if score >= KEYWORD_MIN_SCORE:
                    hits.append(
                        _chunk_result(record.id, payload, score, opts.include_metadata)
                    )
                    if len(hits) >= KEYWORD_MAX_HITS:
                        break
        except Exception as exc:
            logger.warning("keyword_search_failed", tenant_id=tenant_id, error=str(exc))
            return StageResult.fallback(sort_results(hits)[:KEYWORD_TOP_N], exc)

        return StageResult.ok(sort_results(hits)[:KEYWORD_TOP_N])

    async def _with_source_names(
        self, chunks: list[ChunkResult], degraded: list[str]
    ) -> list[ChunkResult]:
        ids = sorted({c.source_id for c in chunks})
        if not ids:
            return chunks
        try:
            names = await self._repository.get_source_names(ids)
        except Exception as exc:
            logger.warning("source_name_lookup_failed", error=str(exc))
            degraded.append("source_names")
            return chunks
        return [
            c.model_copy(update={"source_name": names.get(c.source_id, c.source_name)})
            for c in chunks
        ]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _record(stage: StageResult, name: str, degraded: list[str]) -> None:
    if stage.degraded:
        degraded.append(name)


def _successful(results: list, stage: str, degraded: list[str]) -> list[list[ScoredRecord]]:
    """Drop failed searches, flagging the stage when any failed."""
    ok = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, BaseException)]
    if failures:
        degraded.append(stage)
        logger.warning("search_stage_failed", stage=stage, failed=len(failures), error=str(failures[0]))
    return ok


def _chunk_result(
    point_id: str, payload: ChunkPayload, score: float, include_metadata: bool
) -> ChunkResult:
    return ChunkResult(
        id=point_id,
        content=payload.content,
        score=score,
        source_id=payload.source_id,
        chunk_index=payload.chunk_index,
        metadata=payload.metadata.model_dump() if include_metadata else None,
    )


def _to_chunk_result(hit: ScoredRecord, include_metadata: bool) -> ChunkResult:
    return _chunk_result(hit.id, hit.payload, hit.score, include_metadata)


def _to_faq_result(hit: ScoredRecord) -> FaqResult:
    payload: FaqPayload = hit.payload
    return FaqResult(
        id=hit.id,
        question=payload.question,
        answer=payload.answer,
        score=hit.score,
        category=payload.category,
    )
