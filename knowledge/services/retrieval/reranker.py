"""Result reranking: LLM cross-encoder scoring with a keyword fallback.

The cross-encoder asks the LLM to score the top passages for relevance and
blends that score into the vector similarity as ``score * (0.5 + llm)``:
an LLM score of 0.0 halves the similarity, 0.5 leaves it unchanged and 1.0
boosts it by half, capped at 1.  Passages outside the top N (ten by
default) are scaled by 0.8.  Any cross-encoder failure falls back to keyword
reranking.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog

from knowledge.models.rag import ChunkResult, RerankModel, StageResult
from knowledge.services.retrieval.query_expander import strip_code_fences
from knowledge.utils.text import query_terms

if TYPE_CHECKING:
    from knowledge.interfaces.llm_provider import ILLMProvider

logger = structlog.get_logger(logger_name=__name__)

CROSS_ENCODER_TOP_N = 10
_PASSAGE_CHARS = 1000
_OUTSIDE_TOP_N_FACTOR = 0.8
_NEUTRAL_LLM_SCORE = 0.5
_EXACT_PHRASE_BOOST = 0.15
_KEYWORD_HIT_BOOST = 0.02
_KEYWORD_MAX_BOOST = 0.1

_SYSTEM_PROMPT = """\
You are a relevance scoring assistant. Score each document passage for relevance to the query on a scale of 0.0 to 1.0.

Return ONLY a JSON array of scores in the same order as the passages.
Example: [0.95, 0.72, 0.45, 0.88]

Consider:
- Direct answer to the query (highest score)
- Related information that provides context
- Tangentially related content (lower score)
- Irrelevant content (0.0)"""


def sort_results(results: list[ChunkResult]) -> list[ChunkResult]:
    """Order by score descending, ties broken by ``(source_id, chunk_index)``."""
    return sorted(results, key=lambda r: (-r.score, r.dedupe_key))


def keyword_rerank(query: str, results: list[ChunkResult]) -> list[ChunkResult]:
    """Boost results by exact-phrase and keyword occurrences in their content."""
    keywords = query_terms(query, min_length=3)
    phrase = query.lower()
    rescored: list[ChunkResult] = []
    for result in results:
        content = result.content.lower()
        boost = _EXACT_PHRASE_BOOST if phrase and phrase in content else 0.0
        for keyword in keywords:
            boost += min(content.count(keyword) * _KEYWORD_HIT_BOOST, _KEYWORD_MAX_BOOST)
        rescored.append(result.model_copy(update={"score": min(1.0, result.score + boost)}))
    return sort_results(rescored)


def parse_scores(raw: str) -> list[float | None]:
    """Parse the LLM's JSON array of relevance scores.

    Non-numeric entries become ``None`` (treated as neutral).

    Raises
    ------
    ValueError
        If the reply is not a JSON array.
    """
    data = json.loads(strip_code_fences(raw))
    if not isinstance(data, list):
        raise ValueError("Rerank reply is not a JSON array")
    scores: list[float | None] = []
    for item in data:
        if isinstance(item, (int, float)) and not isinstance(item, bool):
            scores.append(max(0.0, min(1.0, float(item))))
        else:
            scores.append(None)
    return scores


class Reranker:
    """Reorders retrieved chunks by relevance to the query."""

    def __init__(self, llm_provider: ILLMProvider | None = None) -> None:
        self._llm = llm_provider

    async def rerank(
        self,
        query: str,
        results: list[ChunkResult],
        model: RerankModel = RerankModel.CROSS_ENCODER,
        top_n: int = CROSS_ENCODER_TOP_N,
    ) -> StageResult[list[ChunkResult]]:
        """Rerank *results*; a failed cross-encoder degrades to keyword scoring.

        Only the first *top_n* results are sent to the cross-encoder.
        """
        if not results:
            return StageResult.ok(results)

        use_llm = self._llm is not None and self._llm.is_available()
        if model is not RerankModel.CROSS_ENCODER or not use_llm:
            return StageResult.ok(keyword_rerank(query, results))

        try:
            return StageResult.ok(await self._cross_encoder(query, results, top_n))
        except Exception as exc:
            logger.warning("cross_encoder_rerank_failed", error=str(exc))
            return StageResult.fallback(keyword_rerank(query, results), exc)

    async def _cross_encoder(
        self, query: str, results: list[ChunkResult], top_n: int
    ) -> list[ChunkResult]:
        top = results[:top_n]
        passages = "\n\n".join(
            f"[{i}] {r.content[:_PASSAGE_CHARS]}" for i, r in enumerate(top)
        )
        raw = await self._llm.complete(
            system_prompt=_SYSTEM_PROMPT,
            user_prompt=f'Query: "{query}"\n\nPassages:\n{passages}',
            temperature=0.0,
            max_tokens=200,
        )
        scores = parse_scores(raw)

        rescored: list[ChunkResult] = []
        for i, result in enumerate(top):
            llm_score = scores[i] if i < len(scores) and scores[i] is not None else _NEUTRAL_LLM_SCORE
            blended = min(1.0, result.score * (0.5 + llm_score))
            rescored.append(result.model_copy(update={"score": blended}))
        for result in results[top_n:]:
            rescored.append(
                result.model_copy(update={"score": result.score * _OUTSIDE_TOP_N_FACTOR})
            )

        logger.debug("cross_encoder_reranked", scored=len(top), total=len(results))
        return sort_results(rescored)
