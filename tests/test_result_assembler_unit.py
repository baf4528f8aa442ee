from __future__ import annotations

import pytest

from comparison.models import (
    NO_PAGE,
    ChangeType,
    MetadataDifference,
    PageComparisonResult,
    PagePair,
    Severity,
    StructureDifference,
    TextDifference,
)
from comparison.result_assembler import assemble_result, count_by_kind, summarize


def _results():
    identical = PageComparisonResult(base_page=0, compare_page=0, similarity=1.0)
    changed = PageComparisonResult(base_page=1, compare_page=1, similarity=0.8)
    changed.text_differences.append(TextDifference(ChangeType.MODIFIED, Severity.MINOR, line_number=3))
    added = PageComparisonResult(base_page=NO_PAGE, compare_page=2, only_in_compare=True)
    added.structure_differences.append(StructureDifference(ChangeType.ADDED, Severity.CRITICAL, "new", compare_page=2))
    pairs = [PagePair(0, 0, 1.0, True), PagePair(1, 1, 0.8, True), PagePair(NO_PAGE, 2, 0.0, False)]
    return pairs, [identical, changed, added]


def test_count_by_kind_is_zero_filled():
    _, results = _results()
    meta = [MetadataDifference(ChangeType.MODIFIED, Severity.COSMETIC, "title")]
    totals = count_by_kind(results, meta)
    assert totals == {"text": 1, "image": 0, "font": 0, "style": 0, "metadata": 1, "structure": 1}


def test_summarize():
    pairs, results = _results()
    summary = summarize(pairs, results, base_page_count=2, compare_page_count=3)
    assert summary.matched_pages == 2
    assert summary.unmatched_compare_pages == 1
    assert summary.unmatched_base_pages == 0
    assert summary.identical_pages == 1
    assert summary.pages_with_differences == 2
    assert summary.structural_differences == 1
    assert summary.total_differences == 2
    assert summary.page_count_mismatch
    assert summary.overall_similarity == pytest.approx(1.8 / 3)
    assert summary.identical_percentage == pytest.approx(50.0)


def test_summarize_empty():
    summary = summarize([], [])
    assert summary.overall_similarity == 0.0
    assert summary.identical_percentage == 0.0
    assert not summary.page_count_mismatch


def test_assemble_result_carries_completion_flag():
    pairs, results = _results()
    result = assemble_result("a.pdf", "b.pdf", pairs, results, complete=False, metadata={"elapsed_seconds": 1.5})
    assert result.complete is False
    assert result.summary.matched_pages == 2
    data = result.to_dict()
    assert data["metadata"]["elapsed_seconds"] == 1.5
    assert data["summary"]["totals"]["structure"] == 1
