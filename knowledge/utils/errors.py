"""Custom exception hierarchy for the knowledge pipeline.

All application exceptions inherit from :class:`KnowledgeError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai_embedding", "chromadb", "qdrant") caused the
failure.

The hierarchy is organized by pipeline stage:

    KnowledgeError  (base -- catch-all for any knowledge pipeline error)
    +-- ExtractionError          (document bytes -> text)
    +-- ChunkingError            (text -> chunks)
    +-- EmbeddingError           (chunks -> vectors)
    +-- VectorStoreError         (vector persistence / search)
    +-- LLMError                 (query expansion / reranking calls)
    +-- RateLimitError           (provider rate-limit exceeded)
    +-- ProviderUnavailableError (external service down / unreachable)
    +-- IngestionError           (orchestration failures)
    |   +-- InvalidTransitionError (illegal SourceStatus change)
    +-- ConfigurationError       (startup / missing config)

Callers retry on RateLimitError, degrade retrieval stages on LLMError and
ProviderUnavailableError, and abort ingestion on everything else.
"""


class KnowledgeError(Exception):
    """Base exception for all knowledge pipeline errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[chromadb] Dimension mismatch``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Ingestion stage errors
# ---------------------------------------------------------------------------

class ExtractionError(KnowledgeError):
    """Raised when a document cannot be converted to text.

    ``format_name`` names the extractor that failed (``"pdf"``, ``"docx"``,
    ``"html"``, ``"markdown"``, ``"text"``).  Extraction never returns
    partial content: either a full result or this error.
    """

    def __init__(
        self,
        message: str = "Content extraction failed",
        format_name: str | None = None,
        provider_name: str | None = None,
    ) -> None:
        self._format_name = format_name
        super().__init__(message=message, provider_name=provider_name or format_name)

    @property
    def format_name(self) -> str | None:
        return self._format_name


class ChunkingError(KnowledgeError):
    """Raised when chunking options are invalid or text cannot be segmented."""

    def __init__(
        self,
        message: str = "Text chunking failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingError(KnowledgeError):
    """Raised when the embedding provider fails or exhausts its retries."""

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class VectorStoreError(KnowledgeError):
    """Raised when a vector store operation fails (including dimension mismatch)."""

    def __init__(
        self,
        message: str = "Vector store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# External service / provider errors
# ---------------------------------------------------------------------------

class ProviderUnavailableError(KnowledgeError):
    """Raised when an external service or provider is unreachable.

    Retrieval catches this to return an empty, degraded context instead of
    failing the caller.
    """

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(KnowledgeError):
    """Raised when an API rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LLMError(KnowledgeError):
    """Raised when an LLM API call fails or returns an unparseable response."""

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Orchestration / configuration errors
# ---------------------------------------------------------------------------

class IngestionError(KnowledgeError):
    """Raised when the ingestion orchestrator cannot complete a run."""

    def __init__(
        self,
        message: str = "Ingestion failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class InvalidTransitionError(IngestionError):
    """Raised when a knowledge source is moved to a status it cannot reach."""

    def __init__(
        self,
        message: str = "Invalid source status transition",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(KnowledgeError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
