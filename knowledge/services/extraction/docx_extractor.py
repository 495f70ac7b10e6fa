"""DOCX extractor backed by python-docx.

Body paragraphs and tables are read in document order.  Each table row
becomes one line with its cells joined by `` | ``.  Paragraphs styled
``Heading N`` or ``Title`` open a new section at that level; text before
the first heading forms a level-0 section.

The title comes from the document's core properties, then the first heading
paragraph, then the first line shorter than 200 characters.
"""

from __future__ import annotations

import io
import re

import docx
from docx.table import Table
from docx.text.paragraph import Paragraph

from knowledge.models.extraction import ContentSection
from knowledge.services.extraction.base import ContentExtractor, RawExtraction

_HEADING_STYLE = re.compile(r"^Heading (\d)")


def heading_level(paragraph: Paragraph) -> int | None:
    """Heading depth of *paragraph* from its style, or ``None`` for body text."""
    style = paragraph.style.name if paragraph.style is not None else ""
    if style == "Title":
        return 1
    match = _HEADING_STYLE.match(style)
    return int(match.group(1)) if match else None


def table_text(table: Table) -> str:
    rows = []
    for row in table.rows:
        cells = [cell.text.strip() for cell in row.cells]
        if any(cells):
            rows.append(" | ".join(cells))
    return "\n".join(rows)


class DocxExtractor(ContentExtractor):
    """Extracts text, heading sections and tables from Word documents."""

    format_name = "docx"
    mime_types = frozenset(
        {"application/vnd.openxmlformats-officedocument.wordprocessingml.document"}
    )
    extensions = frozenset({"docx"})
    binary = True

    def _extract_raw(self, data: bytes | str) -> RawExtraction:
        if isinstance(data, str):
            data = data.encode("utf-8")
        document = docx.Document(io.BytesIO(data))

        blocks: list[str] = []
        sections: list[ContentSection] = []
        section_title: str | None = None
        section_level = 0
        section_body: list[str] = []
        first_heading: str | None = None
        table_count = 0

        def flush() -> None:
            if section_body:
                sections.append(
                    ContentSection(
                        title=section_title,
                        level=section_level,
                        content="\n\n".join(section_body),
                    )
                )

        for item in document.iter_inner_content():
            if isinstance(item, Table):
                text = table_text(item)
                table_count += 1
                level = None
            else:
                text = item.text.strip()
                level = heading_level(item)
            if not text:
                continue
            blocks.append(text)
            if level is not None:
                flush()
                section_title, section_level, section_body = text, level, []
                first_heading = first_heading or text
            else:
                section_body.append(text)
        flush()

        content = "\n\n".join(blocks)
        props = document.core_properties
        title = props.title or first_heading
        if not title:
            first_line = content.split("\n", 1)[0].strip()
            if first_line and len(first_line) < 200:
                title = first_line

        return RawExtraction(
            content=content,
            title=title,
            author=props.author or None,
            sections=sections,
            custom={"table_count": table_count},
        )
