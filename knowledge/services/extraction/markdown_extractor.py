"""Markdown extractor: markup is stripped to plain text, headings become sections."""

from __future__ import annotations

import re

from knowledge.models.extraction import ContentSection
from knowledge.services.extraction.base import ContentExtractor, RawExtraction, decode_bytes

# Applied in order; each entry is (pattern, replacement).
_PLAIN_TEXT_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"```[\s\S]*?```"), ""),
    (re.compile(r"`[^`]+`"), ""),
    (re.compile(r"!\[.*?\]\(.*?\)"), ""),
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\[[^\]]*\]"), r"\1"),
    (re.compile(r"^\[[^\]]+\]:.*$", re.MULTILINE), ""),
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"\*\*\*([^*]+)\*\*\*"), r"\1"),
    (re.compile(r"___([^_]+)___"), r"\1"),
    (re.compile(r"\*\*([^*]+)\*\*"), r"\1"),
    (re.compile(r"__([^_]+)__"), r"\1"),
    (re.compile(r"\*([^*]+)\*"), r"\1"),
    (re.compile(r"_([^_]+)_"), r"\1"),
    (re.compile(r"~~([^~]+)~~"), r"\1"),
    (re.compile(r"^[-*_]{3,}$", re.MULTILINE), ""),
    (re.compile(r"^>\s*", re.MULTILINE), ""),
    (re.compile(r"^\s*[-*+]\s+", re.MULTILINE), ""),
    (re.compile(r"^\s*\d+\.\s+", re.MULTILINE), ""),
    (re.compile(r"<[^>]+>"), ""),
    (re.compile(r"\n{3,}"), "\n\n"),
]

_ATX_HEADING = re.compile(r"^(#{1,6})\s+(.+)$", re.MULTILINE)
_SETEXT_H1 = re.compile(r"^(\S.*)\n=+[ \t]*$", re.MULTILINE)
_SETEXT_H2 = re.compile(r"^(\S.*)\n-+[ \t]*$", re.MULTILINE)
_H1 = re.compile(r"^#\s+(.+)$", re.MULTILINE)

_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_IMAGE = re.compile(r"!\[.*?\]\(.*?\)")


def to_plain_text(markdown: str) -> str:
    """Strip Markdown syntax, keeping link and emphasis text."""
    text = markdown
    for pattern, replacement in _PLAIN_TEXT_RULES:
        text = pattern.sub(replacement, text)
    return text


class MarkdownExtractor(ContentExtractor):
    """Extracts plain text and heading sections from Markdown."""

    format_name = "markdown"
    mime_types = frozenset({"text/markdown", "text/x-markdown"})
    extensions = frozenset({"md", "markdown", "mdown", "mkd"})

    def _extract_raw(self, data: bytes | str) -> RawExtraction:
        markdown = decode_bytes(data).replace("\r\n", "\n").replace("\r", "\n")
        headings = self._find_headings(markdown)

        return RawExtraction(
            content=to_plain_text(markdown),
            title=self._extract_title(markdown),
            sections=self._extract_sections(markdown, headings),
            custom={
                "heading_count": len(headings),
                "has_code_blocks": bool(_CODE_BLOCK.search(markdown)),
                "has_links": bool(_LINK.search(markdown)),
                "has_images": bool(_IMAGE.search(markdown)),
            },
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_title(markdown: str) -> str | None:
        match = _H1.search(markdown)
        if match:
            return match.group(1).strip()
        match = _SETEXT_H1.search(markdown)
        if match:
            return match.group(1).strip()
        for line in markdown.split("\n"):
            if line.strip():
                if len(line) < 200 and not line.startswith("```"):
                    return line.strip()
                break
        return None

    @staticmethod
    def _find_headings(markdown: str) -> list[tuple[int, int, int, str]]:
        """Return ``(start, body_start, level, title)`` for every heading, in order."""
        headings: list[tuple[int, int, int, str]] = []
        for match in _ATX_HEADING.finditer(markdown):
            headings.append((match.start(), match.end(), len(match.group(1)), match.group(2).strip()))
        for pattern, level in ((_SETEXT_H1, 1), (_SETEXT_H2, 2)):
            for match in pattern.finditer(markdown):
                title = match.group(1).strip()
                if title.startswith("#"):
                    continue
                headings.append((match.start(), match.end(), level, title))
        headings.sort(key=lambda h: h[0])
        return headings

    @staticmethod
    def _extract_sections(
        markdown: str, headings: list[tuple[int, int, int, str]]
    ) -> list[ContentSection]:
        if not headings:
            content = to_plain_text(markdown).strip()
            return [ContentSection(content=content, level=0)] if content else []

        sections: list[ContentSection] = []
        first_start = headings[0][0]
        if first_start > 0:
            intro = to_plain_text(markdown[:first_start]).strip()
            if intro:
                sections.append(ContentSection(content=intro, level=0))

        for idx, (_, body_start, level, title) in enumerate(headings):
            end = headings[idx + 1][0] if idx + 1 < len(headings) else len(markdown)
            body = to_plain_text(markdown[body_start:end]).strip()
            if body:
                sections.append(ContentSection(title=title, content=body, level=level))
        return sections
