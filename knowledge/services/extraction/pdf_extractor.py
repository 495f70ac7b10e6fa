"""PDF extractor backed by PyMuPDF (fitz).

Text is read page by page and each page with text becomes a ``Page N``
section.  Some PDFs expose all of their text through a single page object;
in that case the text is split back into pages heuristically:

1. form feeds, ``Page N`` markers or ``N of M`` markers, when that yields
   no more parts than the document has pages;
2. otherwise an even split across the page count, with each boundary
   snapped to a nearby paragraph or sentence break.
"""

from __future__ import annotations

import re

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from knowledge.models.extraction import ContentSection
from knowledge.services.extraction.base import ContentExtractor, RawExtraction
from knowledge.utils.errors import ExtractionError

logger = structlog.get_logger(logger_name=__name__)

_PAGE_MARKERS: list[re.Pattern[str]] = [
    re.compile(r"\f"),
    re.compile(r"\n(?=Page \d+)"),
    re.compile(r"\n(?=\d+ of \d+)"),
]
_SENTENCE_BREAK = re.compile(r"[.!?]\s+")
_BREAK_WINDOW = 200


def find_natural_break(text: str, target: int, page_length: int) -> int:
    """Move a split position *target* to a nearby natural boundary.

    A paragraph break within ``_BREAK_WINDOW`` characters is used when it
    is closer to *target* than 20% of *page_length*; otherwise the last
    sentence end at or before ``target + 50``; otherwise *target* itself.
    """
    start = max(0, target - _BREAK_WINDOW)
    end = min(len(text), target + _BREAK_WINDOW)
    window = text[start:end]

    best_paragraph: int | None = None
    pos = window.find("\n\n")
    while pos != -1:
        absolute = start + pos + 2
        if best_paragraph is None or abs(absolute - target) < abs(best_paragraph - target):
            best_paragraph = absolute
        pos = window.find("\n\n", pos + 1)
    if best_paragraph is not None and abs(best_paragraph - target) < 0.2 * page_length:
        return best_paragraph

    best_sentence: int | None = None
    for match in _SENTENCE_BREAK.finditer(window):
        absolute = start + match.end()
        if absolute <= target + 50:
            best_sentence = absolute
    if best_sentence is not None:
        return best_sentence

    return target


def split_into_pages(text: str, page_count: int) -> list[str]:
    """Split concatenated document text into at most *page_count* pages."""
    if page_count <= 1 or not text:
        return [text]

    for marker in _PAGE_MARKERS:
        parts = [p.strip() for p in marker.split(text) if p.strip()]
        if 1 < len(parts) <= page_count:
            return parts

    page_length = len(text) // page_count
    pages: list[str] = []
    cursor = 0
    for page_idx in range(1, page_count):
        target = page_idx * page_length
        if target <= cursor:
            continue
        boundary = find_natural_break(text, target, page_length)
        if boundary <= cursor:
            boundary = target
        pages.append(text[cursor:boundary].strip())
        cursor = boundary
    pages.append(text[cursor:].strip())
    return [p for p in pages if p]


class PDFExtractor(ContentExtractor):
    """Extracts text, per-page sections and document metadata from PDFs."""

    format_name = "pdf"
    mime_types = frozenset({"application/pdf"})
    extensions = frozenset({"pdf"})
    binary = True

    def _extract_raw(self, data: bytes | str) -> RawExtraction:
        if isinstance(data, str):
            raise ExtractionError(message="PDF input must be bytes", format_name=self.format_name)

        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise ExtractionError(
                message=f"Cannot open PDF: {exc}", format_name=self.format_name
            ) from exc

        try:
            page_count = len(doc)
            page_texts = [doc[i].get_text("text").strip() for i in range(page_count)]
            meta = doc.metadata or {}
        finally:
            doc.close()

        pages_with_text = [(idx + 1, text) for idx, text in enumerate(page_texts) if text]
        full_text = "\n\n".join(text for _, text in pages_with_text)

        if len(pages_with_text) == 1 and page_count > 1:
            logger.debug("pdf_single_text_layer", page_count=page_count)
            split = split_into_pages(full_text, page_count)
            sections = [
                ContentSection(title=f"Page {n}", content=page, page_number=n)
                for n, page in enumerate(split, start=1)
            ]
        else:
            sections = [
                ContentSection(title=f"Page {n}", content=text, page_number=n)
                for n, text in pages_with_text
            ]

        custom = {
            key: value
            for key, value in {
                "creator": meta.get("creator"),
                "producer": meta.get("producer"),
                "creation_date": meta.get("creationDate"),
                "modification_date": meta.get("modDate"),
            }.items()
            if value
        }

        return RawExtraction(
            content=full_text,
            title=meta.get("title") or None,
            author=meta.get("author") or None,
            page_count=page_count,
            sections=sections,
            custom=custom,
        )
