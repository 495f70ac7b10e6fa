"""Text chunking with five strategies over one normalized string.

Splits source text into :class:`~knowledge.models.chunking.TextChunk`
objects sized for embedding models.  Every strategy works on character
spans of the normalized text, so for every chunk::

    chunk.content == normalized[chunk.start_char:chunk.end_char]

Strategies:

* **fixed** -- sliding windows of ``chunk_size`` with ``chunk_overlap``,
  optionally snapped to a nearby sentence end.
* **sentence** -- sentences packed up to ``chunk_size``; the next chunk
  re-opens at a sentence boundary near the tail of the previous one.
* **paragraph** -- blank-line paragraphs packed up to ``chunk_size`` with no
  overlap; an oversized paragraph is split by the sentence strategy.
* **semantic** -- one chunk per heading section (Markdown ``#`` headings or
  ``Title:`` lines); oversized sections are split by paragraph.
* **semantic-nlp** -- topic segmentation, see
  :mod:`knowledge.services.chunking.topic_segmenter`.

After any strategy runs, chunks shorter than ``min_chunk_size`` are merged
into their predecessor (or their successor, for the first chunk), so no
text is dropped and no chunk is undersized unless it is the only one.
"""

from __future__ import annotations

import re
import uuid
from typing import Callable

import structlog

from knowledge.models.chunking import (
    ChunkingOptions,
    ChunkingStrategy,
    ChunkMetadata,
    FixedChunkMetadata,
    ParagraphChunkMetadata,
    SemanticChunkMetadata,
    SentenceChunkMetadata,
    TextChunk,
    TopicChunkMetadata,
    estimate_tokens,
)
from knowledge.services.chunking.segments import (
    Span,
    hard_split,
    normalize_text,
    split_paragraphs,
    split_sentences,
    trim_span,
)
from knowledge.services.chunking.topic_segmenter import TopicSegmenter

logger = structlog.get_logger(logger_name=__name__)

# Fixed strategy: how far around the raw boundary to look for a sentence end.
_SNAP_WINDOW = 200
_SNAP_TOLERANCE = 50
_SENTENCE_END = re.compile(r"[.!?]+\s+")

# Sentence strategy: extra room beyond chunk_overlap when looking for a
# sentence boundary to re-open the next chunk at.
_OVERLAP_SLACK = 100

_HEADING = re.compile(r"^(?:#{1,6}[ \t]+.+|[A-Z][A-Za-z ]+:)[ \t]*$", re.MULTILINE)
_HASH_PREFIX = re.compile(r"^#+\s*")

MetadataFactory = Callable[[int | None], ChunkMetadata]


def find_overlap_start(text: str, overlap: int) -> int:
    """Return the offset inside *text* where the next chunk's overlap begins.

    Looks for the first sentence boundary within the last
    ``overlap + 100`` characters; falls back to ``len(text) - overlap``.
    Returns ``len(text)`` when *overlap* is zero.
    """
    if overlap <= 0:
        return len(text)
    search_from = max(0, len(text) - (overlap + _OVERLAP_SLACK))
    match = _SENTENCE_END.search(text, search_from)
    if match and len(text) - match.end() <= overlap + _OVERLAP_SLACK and match.end() < len(text):
        return match.end()
    return max(0, len(text) - overlap)


class TextChunker:
    """Splits text into ordered, non-empty chunks with exact character offsets.

    Parameters
    ----------
    options:
        Default options used when :meth:`chunk` is called without any.
    """

    def __init__(self, options: ChunkingOptions | None = None) -> None:
        self._default_options = options or ChunkingOptions()
        self._segmenter = TopicSegmenter()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str, options: ChunkingOptions | None = None) -> list[TextChunk]:
        """Split *text* into chunks using ``options.strategy``.

        Empty or whitespace-only text returns an empty list.
        """
        opts = options or self._default_options
        normalized = normalize_text(text)
        if not normalized:
            return []

        end = len(normalized)
        strategy = opts.strategy
        if strategy is ChunkingStrategy.FIXED:
            spans = self._fixed_spans(normalized, 0, end, opts)
        elif strategy is ChunkingStrategy.SENTENCE:
            spans = self._sentence_spans(normalized, 0, end, opts, SentenceChunkMetadata())
        elif strategy is ChunkingStrategy.PARAGRAPH:
            spans = self._paragraph_spans(
                normalized, 0, end, opts, lambda idx: ParagraphChunkMetadata(paragraph_index=idx)
            )
        elif strategy is ChunkingStrategy.SEMANTIC:
            spans = self._semantic_spans(normalized, opts)
        else:
            spans = self._segmenter.segment(normalized, opts)

        spans = self._merge_small(normalized, spans, opts.min_chunk_size)
        chunks = self._build_chunks(normalized, spans)

        logger.debug(
            "chunking_complete",
            strategy=strategy.value,
            num_chunks=len(chunks),
            avg_tokens=sum(c.token_estimate for c in chunks) // max(len(chunks), 1),
        )
        return chunks

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _fixed_spans(self, text: str, start: int, end: int, opts: ChunkingOptions) -> list[Span]:
        spans: list[Span] = []
        pos = start
        while pos < end:
            window_end = min(pos + opts.chunk_size, end)
            if opts.preserve_sentences and window_end < end:
                window_end = self._snap_to_sentence(text, pos, window_end, end)
            window_end = min(window_end, pos + opts.max_chunk_size)

            spans.append(Span(pos, window_end, FixedChunkMetadata()))
            if window_end >= end:
                break

            next_pos = window_end - opts.chunk_overlap
            if next_pos <= pos:
                next_pos = window_end
            pos = next_pos
        return spans

    @staticmethod
    def _snap_to_sentence(text: str, pos: int, target: int, end: int) -> int:
        """Move a raw window end to the last sentence end near *target*."""
        search_start = max(pos + 1, target - _SNAP_WINDOW)
        search_end = min(end, target + _SNAP_WINDOW)
        best: int | None = None
        for match in _SENTENCE_END.finditer(text, search_start, search_end):
            if match.end() <= target + _SNAP_TOLERANCE:
                best = match.end()
        return best if best is not None else target

    def _sentence_spans(
        self,
        text: str,
        start: int,
        end: int,
        opts: ChunkingOptions,
        metadata: ChunkMetadata,
    ) -> list[Span]:
        sentences: list[Span] = []
        for sentence in split_sentences(text, start, end):
            if sentence.length > opts.max_chunk_size:
                sentences.extend(hard_split(sentence, opts.chunk_size))
            else:
                sentences.append(sentence)

        spans: list[Span] = []
        chunk_start: int | None = None
        chunk_end = start
        for sentence in sentences:
            if chunk_start is None:
                chunk_start = sentence.start
            elif sentence.end - chunk_start > opts.chunk_size:
                spans.append(Span(chunk_start, chunk_end, metadata))
                closed = text[chunk_start:chunk_end]
                overlap_from = chunk_start + find_overlap_start(closed, opts.chunk_overlap)
                if (
                    overlap_from <= chunk_start
                    or sentence.end - overlap_from > opts.max_chunk_size
                ):
                    overlap_from = sentence.start
                chunk_start = min(overlap_from, sentence.start)
            chunk_end = sentence.end

        if chunk_start is not None:
            spans.append(Span(chunk_start, chunk_end, metadata))
        return spans

    def _paragraph_spans(
        self,
        text: str,
        start: int,
        end: int,
        opts: ChunkingOptions,
        make_metadata: MetadataFactory,
    ) -> list[Span]:
        spans: list[Span] = []
        current: list[Span] = []
        current_len = 0

        def flush() -> None:
            if current:
                spans.append(Span(current[0].start, current[-1].end, make_metadata(None)))

        for idx, paragraph in enumerate(split_paragraphs(text, start, end)):
            if paragraph.length > opts.chunk_size:
                flush()
                current, current_len = [], 0
                spans.extend(
                    self._sentence_spans(
                        text, paragraph.start, paragraph.end, opts, make_metadata(idx)
                    )
                )
                continue

            if current and current_len + 2 + paragraph.length > opts.chunk_size:
                flush()
                current, current_len = [], 0

            current_len = paragraph.length if not current else current_len + 2 + paragraph.length
            current.append(paragraph)

        flush()
        return spans

    def _semantic_spans(self, text: str, opts: ChunkingOptions) -> list[Span]:
        headings = list(_HEADING.finditer(text))
        if not headings:
            return self._paragraph_spans(
                text, 0, len(text), opts, lambda idx: SemanticChunkMetadata(paragraph_index=idx)
            )

        spans: list[Span] = []
        if text[: headings[0].start()].strip():
            spans.extend(
                self._section_spans(text, 0, headings[0].start(), opts, section_title=None)
            )

        for idx, heading in enumerate(headings):
            section_end = headings[idx + 1].start() if idx + 1 < len(headings) else len(text)
            title = _HASH_PREFIX.sub("", heading.group().strip())
            spans.extend(self._section_spans(text, heading.start(), section_end, opts, title))
        return spans

    def _section_spans(
        self,
        text: str,
        start: int,
        end: int,
        opts: ChunkingOptions,
        section_title: str | None,
    ) -> list[Span]:
        s, e = trim_span(text, start, end)
        if e <= s:
            return []
        if e - s <= opts.chunk_size:
            return [Span(s, e, SemanticChunkMetadata(section_title=section_title))]
        return self._paragraph_spans(
            text,
            s,
            e,
            opts,
            lambda idx: SemanticChunkMetadata(section_title=section_title, paragraph_index=idx),
        )

    # ------------------------------------------------------------------
    # Post-processing
    # ------------------------------------------------------------------

    @staticmethod
    def _merge_small(text: str, spans: list[Span], min_size: int) -> list[Span]:
        """Fold undersized spans into a neighbour so no text is lost."""
        trimmed: list[Span] = []
        for span in spans:
            s, e = trim_span(text, span.start, span.end)
            if e > s:
                trimmed.append(Span(s, e, span.metadata))
        if min_size <= 0 or len(trimmed) < 2:
            return trimmed

        merged: list[Span] = []
        for span in trimmed:
            if merged and span.length < min_size:
                prev = merged[-1]
                merged[-1] = Span(prev.start, max(prev.end, span.end), prev.metadata)
            else:
                merged.append(span)

        if len(merged) > 1 and merged[0].length < min_size:
            first, second = merged[0], merged[1]
            merged[1] = Span(first.start, max(first.end, second.end), second.metadata)
            merged.pop(0)
        return merged

    @staticmethod
    def _build_chunks(text: str, spans: list[Span]) -> list[TextChunk]:
        ids = [str(uuid.uuid4()) for _ in spans]
        chunks: list[TextChunk] = []
        for idx, span in enumerate(spans):
            metadata = span.metadata
            if isinstance(metadata, TopicChunkMetadata):
                siblings = [ids[i] for i in (idx - 1, idx + 1) if 0 <= i < len(ids)]
                metadata = metadata.model_copy(update={"sibling_chunk_ids": siblings})
            content = text[span.start : span.end]
            chunks.append(
                TextChunk(
                    id=ids[idx],
                    content=content,
                    index=idx,
                    start_char=span.start,
                    end_char=span.end,
                    token_estimate=estimate_tokens(content),
                    metadata=metadata,
                )
            )
        return chunks
