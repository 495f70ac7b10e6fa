"""Span-level text segmentation shared by the chunking strategies.

Every strategy works on character spans of one normalized string, so a
chunk's content is always an exact slice of that string and its offsets can
be trusted downstream.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

_CRLF = re.compile(r"\r\n?")
_HORIZONTAL_WS = re.compile(r"[ \t]+")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")

# Common abbreviations that should NOT trigger a sentence split.
# "Dr. Smith" should remain one sentence, not split at the period.
_ABBREVIATIONS = frozenset(
    {
        "Dr", "Mr", "Mrs", "Ms", "Prof", "Jr", "Sr", "St", "Ave", "Blvd",
        "Vol", "No", "vs", "etc", "approx", "dept", "est", "govt", "inc",
        "ltd", "co", "ft", "e.g", "i.e",
    }
)
_ABBREVIATION_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(a) for a in sorted(_ABBREVIATIONS, key=len, reverse=True)) + r")\."
)

# A sentence ends at terminal punctuation followed by whitespace and a
# capital letter; a blank line always ends one.
_SENTENCE_BOUNDARY = re.compile(r"[.!?]+\s+(?=[A-Z])|\n[ ]*\n\s*")
_PARAGRAPH_BOUNDARY = re.compile(r"\n[ ]*\n\s*")


def normalize_text(text: str) -> str:
    """Normalize line endings and whitespace before chunking.

    CRLF/CR become LF, runs of spaces and tabs become one space, three or
    more newlines become a blank line, and the result is trimmed.
    """
    text = _CRLF.sub("\n", text)
    text = _HORIZONTAL_WS.sub(" ", text)
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    return text.strip()


@dataclass(frozen=True)
class Span:
    """Half-open character range ``[start, end)`` with optional chunk metadata."""

    start: int
    end: int
    metadata: Any = None

    @property
    def length(self) -> int:
        return self.end - self.start


def trim_span(text: str, start: int, end: int) -> tuple[int, int]:
    """Shrink ``[start, end)`` so it neither starts nor ends with whitespace."""
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


def _mask_abbreviations(segment: str) -> str:
    # Same-length substitution keeps indices aligned with the original text.
    return _ABBREVIATION_PATTERN.sub(lambda m: m.group(1) + "\x00", segment)


def _split(text: str, start: int, end: int, boundary: re.Pattern[str], mask: bool) -> list[Span]:
    segment = text[start:end]
    scan = _mask_abbreviations(segment) if mask else segment

    spans: list[Span] = []
    last = 0
    for match in boundary.finditer(scan):
        piece_end = match.start() + len(match.group().rstrip())
        s, e = trim_span(text, start + last, start + piece_end)
        if e > s:
            spans.append(Span(s, e))
        last = match.end()

    s, e = trim_span(text, start + last, end)
    if e > s:
        spans.append(Span(s, e))
    return spans


def split_sentences(text: str, start: int = 0, end: int | None = None) -> list[Span]:
    """Split ``text[start:end]`` into sentence spans.

    Boundaries are ``[.!?]+`` followed by whitespace and a capital letter,
    plus blank lines.  Periods after known abbreviations do not split.
    """
    return _split(text, start, len(text) if end is None else end, _SENTENCE_BOUNDARY, mask=True)


def split_paragraphs(text: str, start: int = 0, end: int | None = None) -> list[Span]:
    """Split ``text[start:end]`` into paragraph spans on blank lines."""
    return _split(text, start, len(text) if end is None else end, _PARAGRAPH_BOUNDARY, mask=False)


def hard_split(span: Span, size: int) -> list[Span]:
    """Cut a span with no usable boundaries into consecutive pieces of *size*."""
    pieces = []
    pos = span.start
    while pos < span.end:
        pieces.append(Span(pos, min(pos + size, span.end), span.metadata))
        pos += size
    return pieces
