"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Inputs are whitespace-collapsed and truncated to the model's context before
sending.  Batches go out sequentially with a short pause between them; a
rate-limited batch is retried after the server's ``retry-after`` delay.
"""

from __future__ import annotations

import asyncio

import openai
import structlog

from knowledge.config.settings import Settings
from knowledge.interfaces.embedding_provider import EmbeddingBatch, IEmbeddingProvider
from knowledge.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

# Model context is 8191 tokens; keep a 100-token margin at ~4 chars/token.
_MAX_INPUT_CHARS = (8191 - 100) * 4
_DEFAULT_RETRY_AFTER = 1.0


def preprocess_text(text: str) -> str:
    """Collapse whitespace and truncate to the model's input budget."""
    return " ".join(text.split())[:_MAX_INPUT_CHARS]


def _retry_after_seconds(exc: openai.RateLimitError) -> float:
    response = getattr(exc, "response", None)
    header = response.headers.get("retry-after") if response is not None else None
    try:
        return float(header) if header is not None else _DEFAULT_RETRY_AFTER
    except ValueError:
        return _DEFAULT_RETRY_AFTER


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``text-embedding-3-small`` (1536 dims) by default.  A non-zero
    ``embedding_dimensions`` is forwarded only to ``text-embedding-3*``
    models, which are the only ones that accept it.
    """

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI | None = None) -> None:
        self._api_key = settings.openai_api_key

        if client is None:
            client_kwargs: dict = {"api_key": self._api_key}
            if settings.openai_base_url:
                client_kwargs["base_url"] = settings.openai_base_url
            client = openai.AsyncOpenAI(**client_kwargs)

        self._client = client
        self._model = settings.embedding_model or "text-embedding-3-small"
        self._requested_dimensions = settings.embedding_dimensions
        self._dimension = settings.embedding_dimensions or _MODEL_DIMENSIONS.get(self._model, 1536)
        self._batch_size = settings.embedding_batch_size
        self._batch_delay = settings.embedding_batch_delay_ms / 1000
        self._max_retries = settings.embedding_max_rate_limit_retries
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed_batch(self, texts: list[str]) -> EmbeddingBatch:
        """Embed *texts* in provider-sized batches, preserving input order."""
        if not texts:
            return EmbeddingBatch(embeddings=[], total_tokens=0, model=self._model)

        prepared = [preprocess_text(t) for t in texts]
        embeddings: list[list[float]] = []
        total_tokens = 0

        for start in range(0, len(prepared), self._batch_size):
            if start > 0 and self._batch_delay > 0:
                await asyncio.sleep(self._batch_delay)
            batch = prepared[start : start + self._batch_size]
            vectors, tokens = await self._embed_with_retry(batch)
            embeddings.extend(vectors)
            total_tokens += tokens

        return EmbeddingBatch(embeddings=embeddings, total_tokens=total_tokens, model=self._model)

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

    async def close(self) -> None:
        await self._client.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _embed_with_retry(self, batch: list[str]) -> tuple[list[list[float]], int]:
        attempt = 0
        while True:
            try:
                return await self._create(batch)
            except openai.RateLimitError as exc:
                attempt += 1
                if attempt > self._max_retries:
                    raise EmbeddingError(
                        message=(
                            f"{self._provider_label} rate limit persisted after "
                            f"{self._max_retries} retries: {exc}"
                        ),
                        provider_name=self.get_provider_name(),
                    ) from exc
                delay = _retry_after_seconds(exc)
                logger.warning(
                    "embedding_rate_limited",
                    provider=self._provider_label,
                    retry_in_s=delay,
                    attempt=attempt,
                )
                await asyncio.sleep(delay)
            except openai.APIError as exc:
                raise EmbeddingError(
                    message=f"{self._provider_label} API error: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc

    async def _create(self, batch: list[str]) -> tuple[list[list[float]], int]:
        kwargs: dict = {"input": batch, "model": self._model}
        if self._requested_dimensions and self._model.startswith("text-embedding-3"):
            kwargs["dimensions"] = self._requested_dimensions

        response = await self._client.embeddings.create(**kwargs)
        items = sorted(response.data, key=lambda item: item.index)
        if len(items) != len(batch):
            raise EmbeddingError(
                message=f"Expected {len(batch)} embeddings, got {len(items)}",
                provider_name=self.get_provider_name(),
            )
        tokens = response.usage.total_tokens if response.usage else 0
        logger.info(
            "openai_embedding_batch",
            model=self._model,
            provider=self._provider_label,
            batch_size=len(batch),
            tokens=tokens,
        )
        return [list(item.embedding) for item in items], tokens
