"""Retrieval: semantic and hybrid search, reranking and context assembly."""

from knowledge.services.retrieval.context_builder import build_context_string
from knowledge.services.retrieval.query_expander import QueryExpander
from knowledge.services.retrieval.rag_service import RagService
from knowledge.services.retrieval.reranker import Reranker, keyword_rerank

__all__ = ["QueryExpander", "RagService", "Reranker", "build_context_string", "keyword_rerank"]
