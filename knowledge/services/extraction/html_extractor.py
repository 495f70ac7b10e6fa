"""HTML extractor backed by BeautifulSoup.

Boilerplate elements (scripts, navigation, footers, sidebars, ads) are
removed before text is read.  Body text comes from the first main-content
container holding more than 100 characters.  Each heading starts a section
that runs over its following siblings up to the next heading.
"""

from __future__ import annotations

from bs4 import BeautifulSoup, NavigableString, Tag

from knowledge.models.extraction import ContentSection
from knowledge.services.extraction.base import ContentExtractor, RawExtraction, decode_bytes

_BOILERPLATE = (
    "script, style, noscript, iframe, nav, footer, header, aside, "
    ".sidebar, .navigation, .menu, .ad, .advertisement, .comments"
)

_MAIN_CONTENT_SELECTORS: list[str] = [
    "article",
    "main",
    '[role="main"]',
    ".content",
    ".post-content",
    ".article-content",
    ".entry-content",
    "#content",
    "#main",
    ".main",
    "body",
]

_BLOCK_TAGS = [
    "p", "div", "section", "article", "main", "li", "ul", "ol", "pre",
    "blockquote", "table", "tr", "dt", "dd", "h1", "h2", "h3", "h4", "h5", "h6",
]
_HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")


class HTMLExtractor(ContentExtractor):
    """Extracts readable text, sections and page metadata from HTML."""

    format_name = "html"
    mime_types = frozenset({"text/html", "application/xhtml+xml"})
    extensions = frozenset({"html", "htm", "xhtml"})

    def _extract_raw(self, data: bytes | str) -> RawExtraction:
        soup = BeautifulSoup(decode_bytes(data), "html.parser")

        # Metadata is read before boilerplate removal drops <header>/<nav>.
        title = self._extract_title(soup)
        author = self._meta(soup, name="author") or self._meta(soup, prop="article:author")
        if not author:
            rel_author = soup.select_one('[rel="author"]')
            author = rel_author.get_text(strip=True) if rel_author else None

        custom = {
            key: value
            for key, value in {
                "description": self._meta(soup, name="description")
                or self._meta(soup, prop="og:description"),
                "keywords": self._meta(soup, name="keywords"),
                "canonical": self._canonical(soup),
            }.items()
            if value
        }

        for element in soup.select(_BOILERPLATE):
            element.decompose()
        self._mark_block_boundaries(soup)

        content = self._find_main_content(soup)
        sections = self._extract_sections(soup, content)

        return RawExtraction(
            content=content,
            title=title,
            author=author,
            sections=sections,
            custom=custom,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _meta(soup: BeautifulSoup, name: str | None = None, prop: str | None = None) -> str | None:
        attrs = {"name": name} if name else {"property": prop}
        tag = soup.find("meta", attrs=attrs)
        if isinstance(tag, Tag):
            value = tag.get("content")
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None

    @staticmethod
    def _canonical(soup: BeautifulSoup) -> str | None:
        link = soup.select_one('link[rel="canonical"]')
        if link is not None:
            href = link.get("href")
            if isinstance(href, str):
                return href
        return None

    def _extract_title(self, soup: BeautifulSoup) -> str | None:
        if soup.title and soup.title.get_text(strip=True):
            return soup.title.get_text(strip=True)
        h1 = soup.find("h1")
        if h1 and h1.get_text(strip=True):
            return h1.get_text(strip=True)
        return self._meta(soup, prop="og:title")

    @staticmethod
    def _mark_block_boundaries(soup: BeautifulSoup) -> None:
        """Insert line breaks around block elements so text keeps its paragraphs."""
        for br in soup.find_all("br"):
            br.replace_with(NavigableString("\n"))
        for tag in soup.find_all(_BLOCK_TAGS):
            tag.insert_before(NavigableString("\n\n"))
            tag.insert_after(NavigableString("\n\n"))

    @staticmethod
    def _find_main_content(soup: BeautifulSoup) -> str:
        for selector in _MAIN_CONTENT_SELECTORS:
            element = soup.select_one(selector)
            if element is not None:
                text = element.get_text().strip()
                if len(text) > 100:
                    return text
        body = soup.body
        return (body.get_text() if body is not None else soup.get_text()).strip()

    @staticmethod
    def _extract_sections(soup: BeautifulSoup, main_content: str) -> list[ContentSection]:
        headings = soup.find_all(_HEADING_TAGS)
        if not headings:
            if main_content.strip():
                return [ContentSection(content=main_content, level=1)]
            return []

        sections: list[ContentSection] = []
        for heading in headings:
            level = int(heading.name[1])
            texts: list[str] = []
            for sibling in heading.next_siblings:
                if isinstance(sibling, Tag):
                    if sibling.name in _HEADING_TAGS:
                        break
                    text = sibling.get_text().strip()
                elif isinstance(sibling, NavigableString):
                    text = str(sibling).strip()
                else:
                    continue
                if text:
                    texts.append(text)
            content = "\n\n".join(texts)
            if content.strip():
                sections.append(
                    ContentSection(
                        title=heading.get_text(strip=True) or None,
                        content=content,
                        level=level,
                    )
                )
        return sections
