"""Tests for lexical relevance selection."""

from __future__ import annotations

from conftest import FakeSource
from pollstore.index.artifacts import ArtifactCache
from pollstore.index.backends import MemoryBackend
from pollstore.index.search import RelevanceSelector, query_terms, score_chunk
from pollstore.ingestion.pipeline import ArtifactPipeline

TEXTS = {
    b"budget": "Statsbudsjettet for 2026.\n\nSkatt på inntekt økes.\n\nAvgift på tobakk.",
    b"tax": "Skatt og avgift på drivstoff.\n\nIngen endring for pensjon.",
}


def make_selector(source: FakeSource) -> RelevanceSelector:
    pipeline = ArtifactPipeline(
        source,
        ArtifactCache(MemoryBackend()),
        target_size=30,
        overlap=0,
        extractor=lambda data: TEXTS[data],
    )
    return RelevanceSelector(pipeline)


class TestQueryTerms:
    """Test query term extraction."""

    def test_lowercases_and_drops_short_terms(self) -> None:
        assert query_terms("Skatt på AVGIFT og Skatt") == ["skatt", "avgift"]

    def test_empty(self) -> None:
        assert query_terms("  a b  ") == []

    def test_score_counts_distinct_terms(self) -> None:
        assert score_chunk("Skatt, skatt og avgift", ["skatt", "avgift", "tobakk"]) == 2


class TestRelevanceSelector:
    """Test RelevanceSelector.select."""

    def test_every_result_contains_a_term(self, source: FakeSource) -> None:
        source.attachments = {"A": b"budget", "B": b"tax"}
        results = make_selector(source).select(["A", "B"], "skatt avgift")

        assert results
        for scored in results:
            text = scored.chunk.text.lower()
            assert "skatt" in text or "avgift" in text

    def test_ordering(self, source: FakeSource) -> None:
        source.attachments = {"A": b"budget", "B": b"tax"}
        results = make_selector(source).select(["A", "B"], "skatt avgift")

        # "Skatt og avgift" matches both terms and comes first
        assert results[0].chunk.attachment_id == "B"
        assert results[0].score == 2
        # ties keep attachment then sequence order
        rest = [(s.chunk.attachment_id, s.chunk.index) for s in results[1:]]
        assert rest == sorted(rest, key=lambda key: (["A", "B"].index(key[0]), key[1]))

    def test_limit(self, source: FakeSource) -> None:
        source.attachments = {"A": b"budget", "B": b"tax"}
        selector = make_selector(source)

        assert len(selector.select(["A", "B"], "skatt avgift", limit=1)) == 1
        assert selector.select(["A", "B"], "skatt avgift", limit=0) == []

    def test_unavailable_attachment_contributes_nothing(self, source: FakeSource) -> None:
        source.attachments = {"A": b"budget"}
        results = make_selector(source).select(["missing", "A"], "tobakk")

        assert [s.chunk.attachment_id for s in results] == ["A"]
        assert source.attachment_calls == ["missing", "A"]

    def test_duplicate_ids_processed_once(self, source: FakeSource) -> None:
        source.attachments = {"A": b"budget"}
        results = make_selector(source).select(["A", "A"], "tobakk")

        assert len(results) == 1

    def test_no_matches(self, source: FakeSource) -> None:
        source.attachments = {"A": b"budget"}
        assert make_selector(source).select(["A"], "jernbane") == []

    def test_query_without_terms(self, source: FakeSource) -> None:
        source.attachments = {"A": b"budget"}
        assert make_selector(source).select(["A"], "på og") == []
        assert source.attachment_calls == []
