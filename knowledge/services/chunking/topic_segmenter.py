"""Topic-based segmentation for the ``semantic-nlp`` chunking strategy.

Sentences are walked in order while a running keyword set is kept for the
open chunk.  A new chunk starts when:

1. the chunk would grow past ``chunk_size``;
2. the sentence shares too few keywords with the chunk
   (``|chunk & sentence| / |sentence| < semantic_threshold``) and the
   chunk already meets ``min_chunk_size``; or
3. the sentence opens with a discourse marker ("However", "In
   conclusion", ...) and shares too few keywords with the last three
   sentences.

A sentence without content keywords never triggers rules 2 or 3.  When a
chunk closes, trailing sentences that fit in ``chunk_overlap`` characters
are carried into the next one.
"""

from __future__ import annotations

import re

import structlog

from knowledge.models.chunking import ChunkingOptions, TopicChunkMetadata
from knowledge.services.chunking.segments import Span, hard_split, split_sentences
from knowledge.utils.text import content_keywords, jaccard, top_keywords

logger = structlog.get_logger(logger_name=__name__)

DISCOURSE_MARKERS: tuple[str, ...] = (
    "however",
    "furthermore",
    "moreover",
    "in conclusion",
    "additionally",
    "nevertheless",
    "nonetheless",
    "on the other hand",
    "meanwhile",
    "consequently",
    "in contrast",
    "by contrast",
    "alternatively",
    "finally",
    "in summary",
    "to summarize",
    "next",
)

_MARKER_PATTERN = re.compile(
    r"^(?:" + "|".join(re.escape(m) for m in DISCOURSE_MARKERS) + r")\b",
    re.IGNORECASE,
)

_RECENT_WINDOW = 3


def keyword_overlap(chunk_keywords: set[str], sentence_keywords: set[str]) -> float:
    """Share of the sentence's keywords already present in the chunk."""
    if not sentence_keywords:
        return 1.0
    return len(chunk_keywords & sentence_keywords) / len(sentence_keywords)


def starts_with_marker(sentence: str) -> bool:
    return bool(_MARKER_PATTERN.match(sentence.lstrip()))


class TopicSegmenter:
    """Groups sentences into topically coherent spans."""

    def segment(self, text: str, opts: ChunkingOptions) -> list[Span]:
        sentences: list[Span] = []
        for sentence in split_sentences(text):
            if sentence.length > opts.max_chunk_size:
                sentences.extend(hard_split(sentence, opts.chunk_size))
            else:
                sentences.append(sentence)
        if not sentences:
            return []

        keywords = [set(content_keywords(text[s.start : s.end])) for s in sentences]

        groups: list[list[int]] = []
        current: list[int] = []
        current_keywords: set[str] = set()

        for idx, sentence in enumerate(sentences):
            if current and self._should_split(text, sentences, keywords, current, current_keywords, idx, opts):
                groups.append(current)
                current = self._overlap_tail(sentences, current, opts.chunk_overlap)
                current_keywords = set().union(*(keywords[i] for i in current)) if current else set()
            current.append(idx)
            current_keywords |= keywords[idx]

        if current:
            groups.append(current)

        spans = [
            Span(
                sentences[group[0]].start,
                sentences[group[-1]].end,
                TopicChunkMetadata(
                    topic_index=topic_idx,
                    keywords=top_keywords([text[sentences[i].start : sentences[i].end] for i in group]),
                    coherence_score=self._coherence([keywords[i] for i in group]),
                ),
            )
            for topic_idx, group in enumerate(groups)
        ]
        logger.debug("topic_segmentation_complete", sentences=len(sentences), topics=len(spans))
        return spans

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _should_split(
        text: str,
        sentences: list[Span],
        keywords: list[set[str]],
        current: list[int],
        current_keywords: set[str],
        idx: int,
        opts: ChunkingOptions,
    ) -> bool:
        chunk_start = sentences[current[0]].start
        chunk_len = sentences[current[-1]].end - chunk_start
        if sentences[idx].end - chunk_start >= opts.chunk_size:
            return True

        sentence_keywords = keywords[idx]
        if not sentence_keywords:
            return False

        if (
            chunk_len >= opts.min_chunk_size
            and keyword_overlap(current_keywords, sentence_keywords) < opts.semantic_threshold
        ):
            return True

        sentence_text = text[sentences[idx].start : sentences[idx].end]
        if starts_with_marker(sentence_text):
            recent = set().union(*(keywords[i] for i in current[-_RECENT_WINDOW:]))
            if keyword_overlap(recent, sentence_keywords) < opts.semantic_threshold:
                return True
        return False

    @staticmethod
    def _overlap_tail(sentences: list[Span], group: list[int], budget: int) -> list[int]:
        """Trailing sentence indices of *group* fitting in *budget* characters.

        Never returns the whole group, so every chunk advances.
        """
        tail: list[int] = []
        used = 0
        for i in reversed(group[1:]):
            length = sentences[i].length
            if used + length > budget:
                break
            tail.insert(0, i)
            used += length
        return tail

    @staticmethod
    def _coherence(sentence_keywords: list[set[str]]) -> float:
        """Mean Jaccard overlap between consecutive sentences; 1.0 for one sentence."""
        if len(sentence_keywords) < 2:
            return 1.0
        pairs = zip(sentence_keywords, sentence_keywords[1:])
        scores = [jaccard(a, b) for a, b in pairs]
        return sum(scores) / len(scores)
