"""Unit tests for keyword helpers, vector math and the throttled gather."""

from __future__ import annotations

import asyncio

import pytest

from knowledge.services.chunking.segments import (
    Span,
    hard_split,
    normalize_text,
    split_paragraphs,
    split_sentences,
)
from knowledge.services.chunking.topic_segmenter import keyword_overlap, starts_with_marker
from knowledge.utils.concurrency import DEFAULT_MAX_CONCURRENCY, throttled_gather
from knowledge.utils.similarity import cosine_similarity, find_most_similar, normalize_embedding
from knowledge.utils.text import content_keywords, fold_plural, jaccard, query_terms, top_keywords
from tests.conftest import bag_of_words_vector

# ---------------------------------------------------------------------------
# Keywords
# ---------------------------------------------------------------------------


class TestKeywords:
    @pytest.mark.parametrize(
        ("word", "expected"),
        [("policies", "policy"), ("boxes", "box"), ("refunds", "refund"), ("status", "status"), ("class", "class")],
    )
    def test_fold_plural(self, word: str, expected: str) -> None:
        assert fold_plural(word) == expected

    def test_content_keywords_drop_stop_words(self) -> None:
        assert content_keywords("What is the refund policy for orders?") == [
            "refund",
            "policy",
            "order",
        ]

    def test_top_keywords_by_frequency(self) -> None:
        texts = ["Refunds take days.", "Refund requests need receipts.", "Shipping is fast."]
        assert top_keywords(texts, limit=1) == ["refund"]

    def test_query_terms(self) -> None:
        assert query_terms("What's the refund-policy?", min_length=3) == ["what", "refund", "policy"]

    def test_jaccard(self) -> None:
        assert jaccard(set(), set()) == 1.0
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)

    def test_keyword_overlap(self) -> None:
        assert keyword_overlap({"refund"}, set()) == 1.0
        assert keyword_overlap({"refund", "policy"}, {"refund", "shipping"}) == 0.5

    @pytest.mark.parametrize(
        ("sentence", "expected"),
        [
            ("However, this differs.", True),
            ("  In conclusion we agree.", True),
            ("Howevermore is not a word.", False),
            ("The next step.", False),
        ],
    )
    def test_starts_with_marker(self, sentence: str, expected: bool) -> None:
        assert starts_with_marker(sentence) is expected


# ---------------------------------------------------------------------------
# Segmentation primitives
# ---------------------------------------------------------------------------


class TestSegments:
    def test_normalize_text(self) -> None:
        assert normalize_text("  a\r\nb\t\t c\n\n\n\nd  ") == "a\nb c\n\nd"

    def test_split_sentences_offsets(self) -> None:
        text = "One here. Two there! Three?"
        spans = split_sentences(text)
        assert [text[s.start : s.end] for s in spans] == ["One here.", "Two there!", "Three?"]

    def test_split_sentences_needs_capital(self) -> None:
        text = "Version 2.5 is out. see notes."
        assert len(split_sentences(text)) == 1

    def test_split_paragraphs(self) -> None:
        text = "First para.\n\nSecond para.\n  \nThird."
        spans = split_paragraphs(text)
        assert [text[s.start : s.end] for s in spans] == ["First para.", "Second para.", "Third."]

    def test_hard_split(self) -> None:
        pieces = hard_split(Span(0, 25), 10)
        assert [(p.start, p.end) for p in pieces] == [(0, 10), (10, 20), (20, 25)]


# ---------------------------------------------------------------------------
# Vector math
# ---------------------------------------------------------------------------


class TestSimilarity:
    def test_identical_and_orthogonal(self) -> None:
        assert cosine_similarity([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 3.0]) == pytest.approx(0.0)

    def test_zero_vector(self) -> None:
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_dimension_mismatch(self) -> None:
        with pytest.raises(ValueError, match="Dimension mismatch"):
            cosine_similarity([1.0], [1.0, 2.0])

    def test_normalize_embedding(self) -> None:
        assert normalize_embedding([3.0, 4.0]) == pytest.approx([0.6, 0.8])
        assert normalize_embedding([0.0, 0.0]) == [0.0, 0.0]

    def test_find_most_similar(self) -> None:
        ranked = find_most_similar([1.0, 0.0], [[0.0, 1.0], [1.0, 0.1], [1.0, 0.0]], top_k=2)
        assert [idx for idx, _ in ranked] == [2, 1]


class TestDeterministicEmbedding:
    def test_same_text_same_vector(self) -> None:
        assert bag_of_words_vector("Refund policy") == bag_of_words_vector("Refund policy")

    def test_unrelated_texts_are_dissimilar(self) -> None:
        a = bag_of_words_vector("Our refund policy allows returns within thirty days.")
        b = bag_of_words_vector("Express shipping reaches most regions overnight.")
        assert cosine_similarity(a, b) < 0.7

    def test_related_texts_are_similar(self) -> None:
        a = bag_of_words_vector("refund policy")
        b = bag_of_words_vector("What is the refund policy?")
        assert cosine_similarity(a, b) == pytest.approx(1.0)


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestThrottledGather:
    @pytest.mark.asyncio
    async def test_preserves_order_and_limits_concurrency(self) -> None:
        running = 0
        peak = 0

        async def work(value: int) -> int:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return value * 2

        results = await throttled_gather(
            [work(i) for i in range(6)], semaphore=asyncio.Semaphore(2)
        )
        assert results == [0, 2, 4, 6, 8, 10]
        assert peak <= 2

    def test_default_limit_usable_across_event_loops(self) -> None:
        async def work(value: int) -> int:
            await asyncio.sleep(0.001)
            return value

        async def fan_out() -> list[int]:
            return await throttled_gather(
                [work(i) for i in range(DEFAULT_MAX_CONCURRENCY + 4)]
            )

        expected = list(range(DEFAULT_MAX_CONCURRENCY + 4))
        assert asyncio.run(fan_out()) == expected
        assert asyncio.run(fan_out()) == expected

    @pytest.mark.asyncio
    async def test_max_concurrency(self) -> None:
        running = 0
        peak = 0

        async def work() -> None:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        await throttled_gather([work() for _ in range(6)], max_concurrency=3)

        assert peak == 3

    @pytest.mark.asyncio
    async def test_return_exceptions(self) -> None:
        async def fail() -> int:
            raise RuntimeError("nope")

        async def ok() -> int:
            return 1

        results = await throttled_gather([ok(), fail()], return_exceptions=True)
        assert results[0] == 1
        assert isinstance(results[1], RuntimeError)
