"""Roll page-level results up into a document-level comparison result."""
from __future__ import annotations

from typing import Dict, Optional, Sequence

from comparison.models import (
    DIFFERENCE_KINDS,
    ComparisonResult,
    ComparisonSummary,
    DocumentPair,
    MetadataDifference,
    PageComparisonResult,
    PagePair,
)
from utils.logging import logger


def count_by_kind(
    page_results: Sequence[PageComparisonResult],
    metadata_differences: Sequence[MetadataDifference] = (),
) -> Dict[str, int]:
    """Difference totals keyed by every known kind, zero-filled."""
    totals = {kind: 0 for kind in DIFFERENCE_KINDS}
    for result in page_results:
        for diff in result.differences:
            totals[diff.kind] += 1
    totals["metadata"] += len(metadata_differences)
    return totals


def summarize(
    page_pairs: Sequence[PagePair],
    page_results: Sequence[PageComparisonResult],
    metadata_differences: Sequence[MetadataDifference] = (),
    base_page_count: int = 0,
    compare_page_count: int = 0,
) -> ComparisonSummary:
    """Build the document-level rollup."""
    totals = count_by_kind(page_results, metadata_differences)

    matched_results = [r for r in page_results if not r.only_in_base and not r.only_in_compare]
    identical = sum(1 for r in matched_results if r.is_identical)

    similarity = 0.0
    if page_pairs:
        similarity = sum(p.similarity if p.matched else 0.0 for p in page_pairs) / len(page_pairs)

    return ComparisonSummary(
        matched_pages=sum(1 for p in page_pairs if p.matched),
        unmatched_base_pages=sum(1 for p in page_pairs if p.is_base_only),
        unmatched_compare_pages=sum(1 for p in page_pairs if p.is_compare_only),
        identical_pages=identical,
        pages_with_differences=sum(1 for r in page_results if r.difference_count > 0 or r.dimensions_different),
        failed_pages=sum(1 for r in page_results if r.error is not None),
        totals=totals,
        total_differences=sum(totals.values()),
        structural_differences=sum(1 for r in page_results if r.only_in_base or r.only_in_compare),
        overall_similarity=min(1.0, max(0.0, similarity)),
        page_count_mismatch=base_page_count != compare_page_count,
    )


def assemble_result(
    base_name: str,
    compare_name: str,
    page_pairs: Sequence[PagePair],
    page_results: Sequence[PageComparisonResult],
    metadata_differences: Sequence[MetadataDifference] = (),
    document_pairs: Optional[Sequence[DocumentPair]] = None,
    base_page_count: int = 0,
    compare_page_count: int = 0,
    complete: bool = True,
    metadata: Optional[dict] = None,
) -> ComparisonResult:
    summary = summarize(
        page_pairs,
        page_results,
        metadata_differences,
        base_page_count=base_page_count,
        compare_page_count=compare_page_count,
    )
    logger.info(
        "Comparison %s: %d matched, %d base-only, %d compare-only, %d differences",
        "complete" if complete else "INCOMPLETE",
        summary.matched_pages,
        summary.unmatched_base_pages,
        summary.unmatched_compare_pages,
        summary.total_differences,
    )
    return ComparisonResult(
        base_name=base_name,
        compare_name=compare_name,
        page_pairs=list(page_pairs),
        document_pairs=list(document_pairs or []),
        page_results=list(page_results),
        metadata_differences=list(metadata_differences),
        summary=summary,
        complete=complete,
        metadata=dict(metadata or {}),
    )

