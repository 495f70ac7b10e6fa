"""Content extraction: document bytes to cleaned text, metadata and sections.

One extractor per format (PDF via PyMuPDF, DOCX via python-docx, HTML via
BeautifulSoup, Markdown, plain text and its data variants), selected by
:class:`ExtractorFactory` from the declared MIME type or filename.
"""

from knowledge.services.extraction.base import ContentExtractor, clean_text
from knowledge.services.extraction.docx_extractor import DocxExtractor
from knowledge.services.extraction.factory import ExtractorFactory, extract_content, is_supported
from knowledge.services.extraction.html_extractor import HTMLExtractor
from knowledge.services.extraction.markdown_extractor import MarkdownExtractor
from knowledge.services.extraction.pdf_extractor import PDFExtractor
from knowledge.services.extraction.text_extractor import TextExtractor

__all__ = [
    "ContentExtractor",
    "DocxExtractor",
    "ExtractorFactory",
    "HTMLExtractor",
    "MarkdownExtractor",
    "PDFExtractor",
    "TextExtractor",
    "clean_text",
    "extract_content",
    "is_supported",
]
