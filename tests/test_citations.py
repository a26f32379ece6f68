from __future__ import annotations

from groundrag.models import RetrievedItem
from groundrag.services.citations import CitationExtractor, EntitySubstringStrategy, IndexMarkerStrategy


def _documents(*scores: float) -> list[RetrievedItem]:
    return [
        RetrievedItem(item_id=f"c{n}", score=score, payload={"source_title": f"Page {n}"})
        for n, score in enumerate(scores)
    ]


def _endpoints() -> list[RetrievedItem]:
    return [
        RetrievedItem("e0", 0.7, {"endpoint": "GET /pets", "method": "GET", "path": "/pets", "summary": "List pets"}),
        RetrievedItem("e1", 0.6, {"endpoint": "POST /users", "method": "POST", "path": "/users", "summary": "Create a user"}),
        RetrievedItem("e2", 0.5, {"endpoint": "DELETE /orders/{id}", "method": "DELETE", "path": "/orders/{id}"}),
    ]


def test_markers_map_to_context_positions():
    extractor = CitationExtractor(IndexMarkerStrategy())
    items = _documents(0.9, 0.8, 0.7)
    cited, citations = extractor.select("See [Document 1] and [document 3]; also [Document 1].", items)
    assert [item.item_id for item in cited] == ["c0", "c2"]
    assert citations.positions == (0, 2)
    assert not citations.fallback


def test_out_of_range_markers_are_ignored():
    extractor = CitationExtractor(IndexMarkerStrategy())
    citations = extractor.resolve("[Document 0] [Document 7] [Document 2]", _documents(0.9, 0.8))
    assert citations.positions == (1,)


def test_no_marker_falls_back_to_top_scores():
    extractor = CitationExtractor(IndexMarkerStrategy(), fallback_count=3)
    items = _documents(0.4, 0.9, 0.5, 0.8, 0.6)
    cited, citations = extractor.select("An answer without markers.", items)
    assert citations.fallback
    assert [item.score for item in cited] == [0.9, 0.8, 0.6]


def test_fallback_returns_all_items_when_fewer_than_count():
    extractor = CitationExtractor(IndexMarkerStrategy(), fallback_count=3)
    cited, citations = extractor.select("nothing cited", _documents(0.5, 0.7))
    assert citations.fallback
    assert len(cited) == 2


def test_endpoint_mentions_are_citations():
    extractor = CitationExtractor(EntitySubstringStrategy())
    cited, citations = extractor.select("Call `get /pets` first, then delete with DELETE /orders/{id}.", _endpoints())
    assert [item.item_id for item in cited] == ["e0", "e2"]
    assert not citations.fallback


def test_summary_mentions_are_citations():
    citations = CitationExtractor(EntitySubstringStrategy()).resolve("Use the create a USER operation.", _endpoints())
    assert citations.positions == (1,)


def test_path_alone_counts_as_citation():
    citations = CitationExtractor(EntitySubstringStrategy()).resolve("Send the payload to /users.", _endpoints())
    assert citations.positions == (1,)
