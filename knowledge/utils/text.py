"""Keyword helpers shared by topic segmentation, reranking and hybrid search."""

from __future__ import annotations

import re
from collections import Counter

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WORD = re.compile(r"[a-z][a-z0-9']*")

STOP_WORDS: frozenset[str] = frozenset(
    {
        "a", "about", "above", "after", "again", "against", "all", "also", "am",
        "an", "and", "any", "are", "as", "at", "be", "because", "been", "before",
        "being", "below", "between", "both", "but", "by", "can", "could", "did",
        "do", "does", "doing", "down", "during", "each", "even", "few", "for",
        "from", "further", "had", "has", "have", "having", "he", "her", "here",
        "hers", "him", "his", "how", "however", "i", "if", "in", "into", "is",
        "it", "its", "itself", "just", "may", "me", "might", "more", "most",
        "much", "must", "my", "no", "nor", "not", "now", "of", "off", "on",
        "once", "only", "or", "other", "our", "ours", "out", "over", "own",
        "same", "she", "should", "so", "some", "such", "than", "that", "the",
        "their", "theirs", "them", "then", "there", "these", "they", "this",
        "those", "through", "thus", "to", "too", "under", "until", "up", "upon",
        "us", "very", "was", "we", "were", "what", "when", "where", "which",
        "while", "who", "whom", "why", "will", "with", "within", "without",
        "would", "you", "your", "yours",
    }
)


def query_terms(query: str, min_length: int) -> list[str]:
    """Lower-case *query*, replace punctuation with spaces, keep words longer than *min_length*."""
    cleaned = _NON_ALNUM.sub(" ", query.lower())
    return [word for word in cleaned.split() if len(word) > min_length]


def fold_plural(word: str) -> str:
    """Strip a simple English plural suffix (``policies`` -> ``policy``)."""
    if len(word) > 4 and word.endswith("ies"):
        return word[:-3] + "y"
    if len(word) > 4 and word.endswith(("sses", "shes", "ches", "xes")):
        return word[:-2]
    if len(word) > 3 and word.endswith("s") and not word.endswith(("ss", "us", "is")):
        return word[:-1]
    return word


def content_keywords(text: str) -> list[str]:
    """Return the content words of *text* in order of appearance.

    Words are lower-cased, at least three characters long, not stop words,
    and plural-folded.
    """
    words = []
    for raw in _WORD.findall(text.lower()):
        word = raw.strip("'")
        if len(word) < 3 or word in STOP_WORDS:
            continue
        words.append(fold_plural(word))
    return words


def top_keywords(texts: list[str], limit: int = 5) -> list[str]:
    """Most frequent content keywords across *texts*, ties broken by first appearance."""
    counts: Counter[str] = Counter()
    for text in texts:
        counts.update(content_keywords(text))
    return [word for word, _ in counts.most_common(limit)]


def jaccard(a: set[str], b: set[str]) -> float:
    """Jaccard overlap of two keyword sets; two empty sets count as identical."""
    if not a and not b:
        return 1.0
    union = a | b
    return len(a & b) / len(union)
