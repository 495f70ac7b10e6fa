"""LLM-based query expansion.

Asks the LLM for alternative phrasings of a search query so retrieval can
match passages that use different vocabulary.  Expansion is best-effort:
any LLM or parsing failure leaves only the original query.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING

import structlog

from knowledge.models.rag import StageResult

if TYPE_CHECKING:
    from knowledge.interfaces.llm_provider import ILLMProvider

logger = structlog.get_logger(logger_name=__name__)

_SYSTEM_PROMPT = """\
You are a search query expansion assistant. Given a user query, generate {count} alternative queries that:
1. Use synonyms or related terms
2. Rephrase the question differently
3. Include related concepts that might be in relevant documents

Return ONLY a JSON object with this format:
{{"expanded": ["query1", "query2", "query3"], "reasoning": "brief explanation"}}

Keep queries concise and focused on the original intent."""

_EXPANSION_TEMPERATURE = 0.7
_EXPANSION_MAX_TOKENS = 300


def strip_code_fences(raw: str) -> str:
    """Remove a surrounding Markdown code fence from an LLM reply."""
    text = raw.strip()
    if text.startswith("```"):
        lines = [line for line in text.split("\n") if not line.strip().startswith("```")]
        text = "\n".join(lines).strip()
    return text


def parse_expansions(raw: str, query: str, max_expansions: int) -> list[str]:
    """Pull the ``expanded`` list out of an LLM reply.

    Raises
    ------
    ValueError
        If the reply is not a JSON object with an ``expanded`` list.
    """
    text = strip_code_fences(raw)
    if not text.startswith("{"):
        match = re.search(r"\{[\s\S]*\}", text)
        if match:
            text = match.group(0)

    data = json.loads(text)
    if not isinstance(data, dict) or not isinstance(data.get("expanded"), list):
        raise ValueError("Expansion reply has no 'expanded' list")

    seen = {query.strip().lower()}
    expansions: list[str] = []
    for item in data["expanded"]:
        if not isinstance(item, str):
            continue
        candidate = item.strip()
        if candidate and candidate.lower() not in seen:
            seen.add(candidate.lower())
            expansions.append(candidate)
    return expansions[:max_expansions]


class QueryExpander:
    """Generates alternative search queries with an injected LLM provider."""

    def __init__(self, llm_provider: ILLMProvider | None = None) -> None:
        self._llm = llm_provider

    @property
    def enabled(self) -> bool:
        return self._llm is not None and self._llm.is_available()

    async def expand(self, query: str, max_expansions: int) -> StageResult[list[str]]:
        """Return up to *max_expansions* alternative queries.

        Without a configured LLM the stage is skipped (not degraded).
        """
        if max_expansions <= 0 or not self.enabled:
            return StageResult.ok([])

        try:
            raw = await self._llm.complete(
                system_prompt=_SYSTEM_PROMPT.format(count=max_expansions),
                user_prompt=f'Original query: "{query}"',
                temperature=_EXPANSION_TEMPERATURE,
                max_tokens=_EXPANSION_MAX_TOKENS,
            )
            expansions = parse_expansions(raw, query, max_expansions)
        except Exception as exc:
            logger.warning("query_expansion_failed", query=query[:80], error=str(exc))
            return StageResult.fallback([], exc)

        logger.debug("query_expanded", query=query[:80], expansions=len(expansions))
        return StageResult.ok(expansions)
