"""Render a :class:`RagContext` as prompt-ready text."""

from __future__ import annotations

from knowledge.models.rag import RagContext


def build_context_string(context: RagContext) -> str:
    """Format FAQs first (likely direct answers), then knowledge base chunks.

    Chunks are numbered ``[1]``, ``[2]``, ... with their source name when
    known.  A trailing HTML comment lists the expanded queries, if any.
    """
    parts: list[str] = []

    if context.faqs:
        parts.append("## Relevant FAQs\n")
        for faq in context.faqs:
            parts.append(f"Q: {faq.question}")
            parts.append(f"A: {faq.answer}\n")

    if context.chunks:
        parts.append("## Knowledge Base\n")
        for i, chunk in enumerate(context.chunks, start=1):
            source_info = f" (Source: {chunk.source_name})" if chunk.source_name else ""
            parts.append(f"[{i}]{source_info}")
            parts.append(chunk.content)
            if chunk.expanded_context:
                parts.append("\n[Additional context:]")
                parts.append(chunk.expanded_context)
            parts.append("")

    if context.expanded_queries:
        parts.append(f"\n<!-- Search included: {'; '.join(context.expanded_queries)} -->")

    return "\n".join(parts)
