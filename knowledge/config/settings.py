"""Application settings loaded from environment variables via pydantic-settings.

Values are read from (highest priority first):

  1. Environment variables, e.g. ``OPENAI_API_KEY=sk-abc123``
  2. A ``.env`` file in the working directory
  3. The defaults below

Field ``openai_api_key`` maps to ``OPENAI_API_KEY``; pydantic-settings
matches names case-insensitively.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Knowledge pipeline settings.

    Environment variables override defaults.  Loaded from .env when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === OpenAI ===
    # Empty key = "not configured": the LLM-backed retrieval stages are
    # skipped and the embedding provider reports itself unavailable.
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoint override
    openai_text_model: str = "gpt-4o-mini"  # query expansion + cross-encoder rerank
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 0  # 0 = model default
    embedding_batch_size: int = 100
    embedding_batch_delay_ms: int = 100
    embedding_max_rate_limit_retries: int = 5

    # === Vector Store ===
    vector_store_backend: str = "chromadb"  # chromadb | qdrant
    chromadb_persist_dir: str = "./data/chromadb"
    qdrant_url: str = ""  # empty = in-process ":memory:" instance
    qdrant_api_key: str = ""
    chunks_collection: str = "knowledge_chunks"
    faq_collection: str = "faq_items"

    # === Repository / HTTP ===
    knowledge_db_path: str = "data/knowledge.db"
    http_timeout: float = 30.0

    # === Pipeline Defaults ===
    default_chunking_preset: str = "qa"
    embed_batch_size: int = 50
    chunk_score_threshold: float = 0.7
    faq_score_threshold: float = 0.75
    extraction_max_content_length: int = 10_000_000

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    def has_llm(self) -> bool:
        """Return ``True`` when an LLM key is configured for expansion and reranking."""
        return bool(self.openai_api_key)
