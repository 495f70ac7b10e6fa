"""Plain-text extractor with format sniffing.

Handles plain text and the text-based data formats (CSV, TSV, JSON, XML,
log files).  The content itself is only cleaned; the detected format decides
how sections are cut:

* JSON -- one section per array item (``Item N``) or top-level key
* XML  -- one section per element longer than 50 characters
* CSV  -- a ``CSV Data Summary`` section plus the data (or a 50-row sample)
* log  -- one section per date (``Log entries: YYYY-MM-DD``)
* plain -- paragraphs grouped under single-line header paragraphs
"""

from __future__ import annotations

import json
import re
from typing import Literal

from knowledge.models.extraction import ContentSection
from knowledge.services.extraction.base import ContentExtractor, RawExtraction, decode_bytes

TextFormat = Literal["plain", "csv", "json", "xml", "log"]

_XML_ELEMENT = re.compile(r"<[^>]+>[\s\S]*</[^>]+>")
_XML_CHILD = re.compile(r"<([a-zA-Z][a-zA-Z0-9]*)[^>]*>[\s\S]*?</\1>")
_LOG_LINE = re.compile(r"^\[?\d{4}[-/]\d{2}[-/]\d{2}")
_LOG_DATE = re.compile(r"^[\[(]?(\d{4}[-/]\d{2}[-/]\d{2})")
_PLAIN_HEADER = re.compile(r"^[A-Z][^.!?]*$")
_PARAGRAPH_SPLIT = re.compile(r"\n\n+")

_CSV_INLINE_LIMIT = 100
_CSV_SAMPLE_ROWS = 50


def detect_format(content: str) -> TextFormat:
    """Guess the data format of *content*."""
    trimmed = content.strip()

    if (trimmed.startswith("{") and trimmed.endswith("}")) or (
        trimmed.startswith("[") and trimmed.endswith("]")
    ):
        try:
            json.loads(trimmed)
            return "json"
        except ValueError:
            pass

    if trimmed.startswith("<") and _XML_ELEMENT.search(trimmed):
        return "xml"

    lines = trimmed.split("\n")[:10]
    for delimiter in (",", "\t"):
        expected = len(lines[0].split(delimiter)) if lines else 0
        if expected > 1 and all(
            abs(len(line.split(delimiter)) - expected) <= 1 for line in lines
        ):
            return "csv"

    if _LOG_LINE.match(trimmed):
        return "log"

    return "plain"


class TextExtractor(ContentExtractor):
    """Extracts plain text and text-based data formats."""

    format_name = "text"
    mime_types = frozenset(
        {
            "text/plain",
            "text/csv",
            "text/tab-separated-values",
            "application/json",
            "text/xml",
            "application/xml",
        }
    )
    extensions = frozenset({"txt", "text", "csv", "tsv", "json", "xml", "log"})

    def _extract_raw(self, data: bytes | str) -> RawExtraction:
        raw = decode_bytes(data).replace("\r\n", "\n").replace("\r", "\n")
        detected = detect_format(raw)

        section_builders = {
            "json": self._json_sections,
            "xml": self._xml_sections,
            "csv": self._csv_sections,
            "log": self._log_sections,
            "plain": self._plain_sections,
        }
        sections = section_builders[detected](raw)

        return RawExtraction(
            content=raw,
            sections=sections,
            custom={"detected_format": detected, "line_count": len(raw.split("\n"))},
        )

    # ------------------------------------------------------------------
    # Section builders
    # ------------------------------------------------------------------

    @staticmethod
    def _plain_sections(content: str) -> list[ContentSection]:
        sections: list[ContentSection] = []
        title: str | None = None
        body: list[str] = []

        def flush() -> None:
            if body:
                sections.append(ContentSection(title=title, content="\n\n".join(body)))

        for paragraph in (p.strip() for p in _PARAGRAPH_SPLIT.split(content)):
            if not paragraph:
                continue
            lines = paragraph.split("\n")
            first = lines[0].strip()
            is_header = len(first) < 100 and (
                first.endswith(":") or first == first.upper() or bool(_PLAIN_HEADER.match(first))
            )
            if is_header and len(lines) == 1:
                flush()
                title = first.rstrip(":")
                body = []
            else:
                body.append(paragraph)

        flush()
        return sections

    def _json_sections(self, content: str) -> list[ContentSection]:
        try:
            data = json.loads(content)
        except ValueError:
            return self._plain_sections(content)

        if isinstance(data, list):
            return [
                ContentSection(title=f"Item {idx + 1}", content=json.dumps(item, indent=2))
                for idx, item in enumerate(data)
            ]
        if isinstance(data, dict):
            return [
                ContentSection(
                    title=str(key),
                    content=json.dumps(value, indent=2)
                    if isinstance(value, (dict, list))
                    else str(value),
                )
                for key, value in data.items()
            ]
        return []

    def _xml_sections(self, content: str) -> list[ContentSection]:
        sections = [
            ContentSection(title=match.group(1), content=match.group(0))
            for match in _XML_CHILD.finditer(content)
            if len(match.group(0)) > 50
        ]
        return sections or self._plain_sections(content)

    @staticmethod
    def _csv_sections(content: str) -> list[ContentSection]:
        lines = content.strip().split("\n")
        header_line = lines[0].strip()
        delimiter = "\t" if "\t" in header_line else ","
        headers = [h.strip() for h in header_line.split(delimiter)]

        sections = [
            ContentSection(
                title="CSV Data Summary",
                content=f"Headers: {', '.join(headers)}\nTotal rows: {len(lines) - 1}",
            )
        ]
        if len(lines) <= _CSV_INLINE_LIMIT:
            sections.append(ContentSection(title="Data Content", content="\n".join(lines)))
        else:
            sections.append(
                ContentSection(
                    title=f"Data Sample (first {_CSV_SAMPLE_ROWS} rows)",
                    content="\n".join(lines[: _CSV_SAMPLE_ROWS + 1]),
                )
            )
        return sections

    @staticmethod
    def _log_sections(content: str) -> list[ContentSection]:
        sections: list[ContentSection] = []
        current_date: str | None = None
        current: list[str] = []

        for line in content.split("\n"):
            match = _LOG_DATE.match(line)
            if match and match.group(1) != current_date:
                if current:
                    sections.append(
                        ContentSection(title=f"Log entries: {current_date}", content="\n".join(current))
                    )
                current_date = match.group(1)
                current = [line]
            elif current_date is not None:
                current.append(line)

        if current:
            sections.append(
                ContentSection(title=f"Log entries: {current_date}", content="\n".join(current))
            )
        return sections
