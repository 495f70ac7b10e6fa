"""Relational persistence for sources, FAQs and fallback chunks."""

from knowledge.providers.repository.sqlite_knowledge_repository import SQLiteKnowledgeRepository

__all__ = ["SQLiteKnowledgeRepository"]
