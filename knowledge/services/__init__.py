"""Business logic: extraction, chunking, ingestion and retrieval."""
