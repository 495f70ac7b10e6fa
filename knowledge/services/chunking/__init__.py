"""Chunking engine: normalized text to ordered, offset-exact chunks."""

from knowledge.services.chunking.chunker import TextChunker, find_overlap_start
from knowledge.services.chunking.segments import normalize_text, split_paragraphs, split_sentences
from knowledge.services.chunking.topic_segmenter import TopicSegmenter

__all__ = [
    "TextChunker",
    "TopicSegmenter",
    "find_overlap_start",
    "normalize_text",
    "split_paragraphs",
    "split_sentences",
]
