"""Ingestion orchestration: sources and FAQs to vector store points."""

from knowledge.services.ingestion.ingestion_service import IngestionService, new_id

__all__ = ["IngestionService", "new_id"]
