from __future__ import annotations

from typing import Optional

import pytest

from comparison.models import DocumentData, ImageElement, PageData, Style, TextRun
from comparison.segmentation import UNTITLED, SegmentationStrategy


def _run(text: str, y: float, size: float, bold: bool = False) -> TextRun:
    return TextRun(
        text=text,
        bbox={"x": 72.0, "y": y, "width": 300.0, "height": size},
        style=Style(font="Helvetica", size=size, bold=bold),
    )


def _page(index: int, title: Optional[str] = None, body: str = "Body text paragraph", images: int = 0) -> PageData:
    runs = []
    if title:
        runs.append(_run(title, y=60.0, size=24.0))
    runs.append(_run(body, y=400.0, size=10.0))
    return PageData(
        page_num=index,
        width=612.0,
        height=792.0,
        text="\n".join(run.text for run in runs),
        runs=runs,
        images=[ImageElement(name=f"img{i}", bbox={"x": 0, "y": 0, "width": 10, "height": 10}) for i in range(images)],
    )


def _document(count: int, titles=None) -> DocumentData:
    titles = titles or {}
    return DocumentData(name="doc.pdf", pages=[_page(i, titles.get(i)) for i in range(count)])


def test_short_runs_fold_into_previous_segment():
    doc = _document(9, {0: "Annual Report", 3: "Board Minutes", 5: "Appendix Tables", 7: "Glossary Terms"})
    strategy = SegmentationStrategy(min_pages=3)
    assert strategy.boundaries(doc) == [(0, 8)]


def test_short_run_does_not_swallow_next_title():
    doc = _document(8, {0: "Annual Report", 3: "Cover Letter", 4: "Board Minutes"})
    strategy = SegmentationStrategy(min_pages=3)
    assert strategy.boundaries(doc) == [(0, 3), (4, 7)]


def test_short_leading_run_keeps_growing():
    doc = _document(7, {0: "Annual Report", 1: "Board Minutes", 4: "Appendix Tables"})
    strategy = SegmentationStrategy(min_pages=3)
    assert strategy.boundaries(doc) == [(0, 3), (4, 6)]


def test_no_titles_single_segment():
    doc = _document(5)
    segments = SegmentationStrategy(min_pages=3).segment(doc)
    assert len(segments) == 1
    assert (segments[0].start_page, segments[0].end_page) == (0, 4)
    assert segments[0].title == UNTITLED


def test_empty_document():
    assert SegmentationStrategy().segment(DocumentData(name="empty.pdf")) == []


def test_segments_partition_pages():
    doc = _document(10, {0: "Chapter One", 4: "Chapter Two", 8: "Chapter Three"})
    segments = SegmentationStrategy(min_pages=2).segment(doc)
    covered = [p for seg in segments for p in seg.pages()]
    assert covered == list(range(10))
    assert [s.title for s in segments] == ["Chapter One", "Chapter Two", "Chapter Three"]


def test_title_candidates_respect_region_and_length():
    strategy = SegmentationStrategy(font_threshold=14, title_min_length=5, title_max_length=100)
    page = _page(0)
    page.runs = [
        _run("Tiny", y=50, size=30),  # too short
        _run("Proper Heading", y=50, size=20),
        _run("Low Heading Text", y=700, size=28),  # outside the top region
        _run("small print here", y=60, size=9),
    ]
    assert [r.text for r in strategy.title_candidates(page)] == ["Proper Heading"]


def test_failed_page_has_no_title_candidates():
    page = PageData(page_num=1, width=612, height=792, error="broken xref")
    assert SegmentationStrategy().title_candidates(page) == []


def test_extract_features():
    doc = DocumentData(
        name="report.pdf",
        pages=[
            _page(0, "Financial Statement", body="Revenue and expense budget for the balance sheet", images=2),
            _page(1, body="Profit and loss summary", images=1),
        ],
    )
    features = SegmentationStrategy().extract_features(doc, 0, 1)
    assert features.image_count == 3
    assert features.page_dimensions == ((612.0, 792.0), (612.0, 792.0))
    assert features.keywords == ("Financial Statement",)
    assert features.content_type == "FINANCIAL_DOCUMENT"
    assert "Profit and loss summary" in features.full_text


def test_invalid_min_pages():
    with pytest.raises(ValueError):
        SegmentationStrategy(min_pages=0)
