"""Unit tests for the exception hierarchy in knowledge.utils.errors."""

from __future__ import annotations

import pytest

from knowledge.utils.errors import (
    ChunkingError,
    ConfigurationError,
    EmbeddingError,
    ExtractionError,
    IngestionError,
    InvalidTransitionError,
    KnowledgeError,
    LLMError,
    ProviderUnavailableError,
    RateLimitError,
    VectorStoreError,
)


class TestKnowledgeError:
    def test_str_without_provider(self) -> None:
        err = KnowledgeError(message="boom")
        assert str(err) == "boom"
        assert err.provider_name is None

    def test_str_prefixes_provider(self) -> None:
        err = VectorStoreError(message="Dimension mismatch", provider_name="chromadb")
        assert str(err) == "[chromadb] Dimension mismatch"
        assert err.message == "Dimension mismatch"

    @pytest.mark.parametrize(
        "cls",
        [
            ExtractionError,
            ChunkingError,
            EmbeddingError,
            VectorStoreError,
            LLMError,
            RateLimitError,
            ProviderUnavailableError,
            IngestionError,
            ConfigurationError,
        ],
    )
    def test_subclasses_share_base(self, cls: type[KnowledgeError]) -> None:
        err = cls()
        assert isinstance(err, KnowledgeError)
        assert err.message


class TestExtractionError:
    def test_format_name_doubles_as_provider(self) -> None:
        err = ExtractionError(message="bad pdf", format_name="pdf")
        assert err.format_name == "pdf"
        assert str(err) == "[pdf] bad pdf"

    def test_explicit_provider_wins(self) -> None:
        err = ExtractionError(message="x", format_name="html", provider_name="httpx")
        assert err.provider_name == "httpx"


def test_invalid_transition_is_ingestion_error() -> None:
    with pytest.raises(IngestionError):
        raise InvalidTransitionError(message="indexed -> processing")
