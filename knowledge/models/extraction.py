"""Models returned by the content extractors."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ContentSection(BaseModel):
    """A titled region of an extracted document (page, heading section, CSV summary...)."""

    model_config = ConfigDict(frozen=True)

    title: str | None = None
    content: str
    level: int = Field(default=1, ge=0, description="Heading depth; 0 for intro text.")
    page_number: int | None = None
    index: int = Field(default=0, ge=0)


class ExtractionMetadata(BaseModel):
    """Document-level facts gathered during extraction."""

    model_config = ConfigDict(frozen=True)

    title: str | None = None
    author: str | None = None
    page_count: int | None = None
    word_count: int = 0
    char_count: int = 0
    mime_type: str | None = None
    file_type: str | None = Field(default=None, description="Extractor that produced the result.")
    extracted_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
    custom: dict[str, Any] = Field(
        default_factory=dict,
        description="Format-specific extras (PDF producer, detected text format, ...).",
    )


class ExtractionResult(BaseModel):
    """Full extracted text plus metadata and sections."""

    model_config = ConfigDict(frozen=True)

    content: str
    metadata: ExtractionMetadata
    sections: list[ContentSection] = Field(default_factory=list)
