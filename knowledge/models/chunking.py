"""Chunking options, presets and the chunk model.

:class:`TextChunk` is the immutable unit produced by
:class:`~knowledge.services.chunking.chunker.TextChunker`.  Its ``metadata``
is a strategy-tagged union: each strategy records only the fields it can
fill, and the ``strategy`` tag tells consumers which shape they hold.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from knowledge.utils.errors import ChunkingError


class ChunkingStrategy(str, Enum):  # noqa: UP042  StrEnum requires Python 3.11+
    """Available chunking strategies."""

    FIXED = "fixed"
    SENTENCE = "sentence"
    PARAGRAPH = "paragraph"
    SEMANTIC = "semantic"
    SEMANTIC_NLP = "semantic-nlp"


class ChunkingOptions(BaseModel):
    """Size and strategy parameters for one chunking run."""

    model_config = ConfigDict(frozen=True)

    strategy: ChunkingStrategy = ChunkingStrategy.PARAGRAPH
    chunk_size: int = Field(default=1000, gt=0, description="Target chunk length in characters.")
    chunk_overlap: int = Field(default=200, ge=0, description="Characters shared between neighbours.")
    min_chunk_size: int = Field(default=100, ge=0)
    max_chunk_size: int = Field(default=2000, gt=0)
    preserve_sentences: bool = True
    semantic_threshold: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Keyword-overlap floor below which the topic strategy starts a new chunk.",
    )

    @model_validator(mode="after")
    def _check_sizes(self) -> ChunkingOptions:
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        if self.max_chunk_size < self.chunk_size:
            raise ValueError("max_chunk_size must be at least chunk_size")
        return self


CHUNKING_PRESETS: dict[str, ChunkingOptions] = {
    "default": ChunkingOptions(),
    "small": ChunkingOptions(chunk_size=500, chunk_overlap=100, min_chunk_size=50, max_chunk_size=1000),
    "large": ChunkingOptions(chunk_size=2000, chunk_overlap=400, min_chunk_size=200, max_chunk_size=4000),
    "qa": ChunkingOptions(
        strategy=ChunkingStrategy.PARAGRAPH,
        chunk_size=800,
        chunk_overlap=150,
        min_chunk_size=100,
        max_chunk_size=1500,
    ),
    "summary": ChunkingOptions(
        strategy=ChunkingStrategy.SEMANTIC,
        chunk_size=1500,
        chunk_overlap=300,
        min_chunk_size=200,
        max_chunk_size=3000,
    ),
    "topic": ChunkingOptions(
        strategy=ChunkingStrategy.SEMANTIC_NLP,
        chunk_size=1000,
        chunk_overlap=200,
        min_chunk_size=200,
        max_chunk_size=2000,
    ),
}


def get_preset(name: str) -> ChunkingOptions:
    """Return the named preset.

    Raises
    ------
    ChunkingError
        If *name* is not a known preset.
    """
    try:
        return CHUNKING_PRESETS[name]
    except KeyError:
        known = ", ".join(sorted(CHUNKING_PRESETS))
        raise ChunkingError(message=f"Unknown chunking preset '{name}' (known: {known})") from None


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


# ---------------------------------------------------------------------------
# Strategy-tagged chunk metadata
# ---------------------------------------------------------------------------


class _BaseChunkMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    page_number: int | None = None
    sibling_chunk_ids: list[str] = Field(
        default_factory=list,
        description="Ids of neighbouring chunks fetched during context expansion.",
    )


class FixedChunkMetadata(_BaseChunkMetadata):
    strategy: Literal["fixed"] = "fixed"


class SentenceChunkMetadata(_BaseChunkMetadata):
    strategy: Literal["sentence"] = "sentence"


class ParagraphChunkMetadata(_BaseChunkMetadata):
    strategy: Literal["paragraph"] = "paragraph"
    paragraph_index: int | None = Field(
        default=None,
        description="Set when an oversized paragraph was split into sentence chunks.",
    )


class SemanticChunkMetadata(_BaseChunkMetadata):
    strategy: Literal["semantic"] = "semantic"
    section_title: str | None = None
    paragraph_index: int | None = None


class TopicChunkMetadata(_BaseChunkMetadata):
    strategy: Literal["semantic-nlp"] = "semantic-nlp"
    topic_index: int = 0
    keywords: list[str] = Field(default_factory=list)
    coherence_score: float = Field(default=1.0, ge=0.0, le=1.0)


ChunkMetadata = Annotated[
    Union[
        FixedChunkMetadata,
        SentenceChunkMetadata,
        ParagraphChunkMetadata,
        SemanticChunkMetadata,
        TopicChunkMetadata,
    ],
    Field(discriminator="strategy"),
]


class TextChunk(BaseModel):
    """A contiguous slice of normalized source text.

    ``content`` always equals ``normalized_text[start_char:end_char]``.  The
    ``id`` is reused as the vector point id when the chunk is stored.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="UUID4 string; becomes the vector point id.")
    content: str = Field(min_length=1)
    index: int = Field(ge=0, description="Position of the chunk in source order.")
    start_char: int = Field(ge=0)
    end_char: int = Field(ge=0)
    token_estimate: int = Field(ge=0)
    metadata: ChunkMetadata = Field(default_factory=FixedChunkMetadata)
