"""Extractor lookup by MIME type, file extension or filename.

Resolution order for :meth:`ExtractorFactory.resolve`: declared MIME type,
then the filename's extension, then plain text.
"""

from __future__ import annotations

import asyncio
from pathlib import PurePath

import structlog

from knowledge.models.extraction import ExtractionResult
from knowledge.services.extraction.base import (
    DEFAULT_MAX_CONTENT_LENGTH,
    ContentExtractor,
    normalize_type,
)
from knowledge.services.extraction.docx_extractor import DocxExtractor
from knowledge.services.extraction.html_extractor import HTMLExtractor
from knowledge.services.extraction.markdown_extractor import MarkdownExtractor
from knowledge.services.extraction.pdf_extractor import PDFExtractor
from knowledge.services.extraction.text_extractor import TextExtractor
from knowledge.utils.errors import ExtractionError

logger = structlog.get_logger(logger_name=__name__)

_EXTRACTOR_CLASSES: dict[str, type[ContentExtractor]] = {
    "pdf": PDFExtractor,
    "docx": DocxExtractor,
    "html": HTMLExtractor,
    "markdown": MarkdownExtractor,
    "text": TextExtractor,
}


class ExtractorFactory:
    """Holds one extractor per format and picks the right one for a document."""

    def __init__(self, max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH) -> None:
        self._extractors: dict[str, ContentExtractor] = {
            name: cls(max_content_length=max_content_length)
            for name, cls in _EXTRACTOR_CLASSES.items()
        }

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def create(self, kind: str, max_content_length: int | None = None) -> ContentExtractor:
        """Return the extractor registered under *kind* (``"pdf"``, ``"html"``, ...).

        With *max_content_length* a fresh extractor with that limit is
        built instead of the shared instance.
        """
        if kind not in _EXTRACTOR_CLASSES:
            raise ExtractionError(message=f"Unknown extractor kind '{kind}'", format_name=kind)
        if max_content_length is not None:
            return _EXTRACTOR_CLASSES[kind](max_content_length=max_content_length)
        return self._extractors[kind]

    def get_by_mime_type(self, mime_type: str) -> ContentExtractor | None:
        value = normalize_type(mime_type)
        for extractor in self._extractors.values():
            if value in extractor.mime_types:
                return extractor
        return None

    def get_by_extension(self, extension: str) -> ContentExtractor | None:
        value = normalize_type(extension)
        for extractor in self._extractors.values():
            if value in extractor.extensions:
                return extractor
        return None

    def get_by_filename(self, filename: str) -> ContentExtractor | None:
        suffix = PurePath(filename).suffix
        return self.get_by_extension(suffix) if suffix else None

    def resolve(self, mime_type: str | None = None, filename: str | None = None) -> ContentExtractor:
        """Pick an extractor: MIME type first, then extension, then plain text."""
        if mime_type:
            extractor = self.get_by_mime_type(mime_type)
            if extractor is not None:
                return extractor
        if filename:
            extractor = self.get_by_filename(filename)
            if extractor is not None:
                return extractor
        return self._extractors["text"]

    def is_supported(self, mime_or_ext: str) -> bool:
        return any(e.is_supported(mime_or_ext) for e in self._extractors.values())

    def supported_mime_types(self) -> list[str]:
        return sorted({m for e in self._extractors.values() for m in e.mime_types})

    def supported_extensions(self) -> list[str]:
        return sorted({x for e in self._extractors.values() for x in e.extensions})

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def extract(
        self,
        data: bytes | str,
        mime_type: str | None = None,
        filename: str | None = None,
    ) -> ExtractionResult:
        """Resolve the extractor and run it synchronously."""
        extractor = self.resolve(mime_type, filename)
        logger.debug(
            "extractor_resolved",
            extractor=extractor.format_name,
            mime_type=mime_type,
            filename=filename,
        )
        return extractor.extract(data, mime_type=mime_type)

    async def extract_async(
        self,
        data: bytes | str,
        mime_type: str | None = None,
        filename: str | None = None,
    ) -> ExtractionResult:
        """Run :meth:`extract` in a worker thread so parsing does not block the event loop."""
        return await asyncio.to_thread(self.extract, data, mime_type, filename)


def extract_content(
    data: bytes | str,
    mime_type: str | None = None,
    filename: str | None = None,
    factory: ExtractorFactory | None = None,
) -> ExtractionResult:
    """Extract *data* with *factory*, or a default-configured one built for this call."""
    return (factory or ExtractorFactory()).extract(data, mime_type, filename)


def is_supported(mime_or_ext: str, factory: ExtractorFactory | None = None) -> bool:
    """Return ``True`` if any extractor of *factory* handles the MIME type or extension."""
    return (factory or ExtractorFactory()).is_supported(mime_or_ext)
