"""Shared base for the format-specific content extractors.

Each extractor converts raw document bytes (or an already-decoded string)
into an :class:`~knowledge.models.extraction.ExtractionResult`.  Subclasses
only implement :meth:`ContentExtractor._extract_raw`; the base class applies
the common cleaning, truncation and word counting so every format produces
text the chunker can rely on:

* CRLF / CR normalized to LF
* control characters removed
* runs of spaces and tabs collapsed to one space
* spaces around line breaks removed
* three or more newlines collapsed to a blank line
* leading and trailing whitespace trimmed
* truncated to ``max_content_length``

Newlines survive cleaning so that paragraph structure reaches the chunker.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar

import structlog

from knowledge.models.extraction import ContentSection, ExtractionMetadata, ExtractionResult
from knowledge.utils.errors import ExtractionError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_MAX_CONTENT_LENGTH = 10_000_000

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_HORIZONTAL_WS = re.compile(r"[ \t]+")
_SPACE_AROUND_NEWLINE = re.compile(r" ?\n ?")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")


def clean_text(text: str, max_length: int | None = None) -> str:
    """Apply the shared extraction cleaning rules to *text*."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS.sub("", text)
    text = _HORIZONTAL_WS.sub(" ", text)
    text = _SPACE_AROUND_NEWLINE.sub("\n", text)
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    text = text.strip()
    if max_length is not None and len(text) > max_length:
        text = text[:max_length]
    return text


def decode_bytes(data: bytes | str) -> str:
    """Decode *data* as UTF-8 (BOM tolerated), replacing undecodable bytes."""
    if isinstance(data, str):
        return data
    return data.decode("utf-8-sig", errors="replace")


def normalize_type(mime_or_ext: str) -> str:
    """Lower-case a MIME type or extension and drop a leading dot and MIME parameters."""
    value = mime_or_ext.strip().lower()
    value = value.split(";", 1)[0].strip()
    return value.lstrip(".")


@dataclass
class RawExtraction:
    """What a format-specific extractor returns before shared post-processing."""

    content: str
    title: str | None = None
    author: str | None = None
    page_count: int | None = None
    sections: list[ContentSection] = field(default_factory=list)
    custom: dict[str, Any] = field(default_factory=dict)


class ContentExtractor(ABC):
    """Base class for all content extractors.

    Subclasses declare ``format_name``, ``mime_types`` and ``extensions``
    and implement :meth:`_extract_raw`.
    """

    format_name: ClassVar[str] = "unknown"
    mime_types: ClassVar[frozenset[str]] = frozenset()
    extensions: ClassVar[frozenset[str]] = frozenset()
    # Binary formats must receive the raw bytes, never decoded text.
    binary: ClassVar[bool] = False

    def __init__(self, max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH) -> None:
        self._max_content_length = max_content_length

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extract(self, data: bytes | str, mime_type: str | None = None) -> ExtractionResult:
        """Extract cleaned text, metadata and sections from *data*.

        Raises
        ------
        ExtractionError
            If the document cannot be parsed or contains no text.  No
            partial result is ever returned.
        """
        try:
            raw = self._extract_raw(data)
        except ExtractionError:
            raise
        except Exception as exc:
            raise ExtractionError(
                message=f"Failed to extract {self.format_name} content: {exc}",
                format_name=self.format_name,
            ) from exc

        content = clean_text(raw.content, self._max_content_length)
        if not content:
            raise ExtractionError(
                message=f"No text content found in {self.format_name} document",
                format_name=self.format_name,
            )

        sections = [
            section.model_copy(update={"content": clean_text(section.content), "index": idx})
            for idx, section in enumerate(s for s in raw.sections if s.content.strip())
        ]

        metadata = ExtractionMetadata(
            title=raw.title.strip() if raw.title else None,
            author=raw.author.strip() if raw.author else None,
            page_count=raw.page_count,
            word_count=len(content.split()),
            char_count=len(content),
            mime_type=mime_type,
            file_type=self.format_name,
            custom=raw.custom,
        )

        logger.info(
            "content_extracted",
            format=self.format_name,
            chars=metadata.char_count,
            words=metadata.word_count,
            sections=len(sections),
        )
        return ExtractionResult(content=content, metadata=metadata, sections=sections)

    def is_supported(self, mime_or_ext: str) -> bool:
        """Return ``True`` if this extractor handles the MIME type or extension."""
        value = normalize_type(mime_or_ext)
        return value in self.mime_types or value in self.extensions

    # ------------------------------------------------------------------
    # Subclass hook
    # ------------------------------------------------------------------

    @abstractmethod
    def _extract_raw(self, data: bytes | str) -> RawExtraction:
        """Parse *data* into raw text, metadata and sections."""
