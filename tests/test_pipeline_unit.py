from __future__ import annotations

from typing import List, Optional

import numpy as np
import pytest
from PIL import Image

from comparison.diff_extractor import DifferenceExtractor
from comparison.models import NO_PAGE, ChangeType, DocumentData, PageData, Severity, Style, TextRun
from extraction.provider import StaticDocumentProvider
from pipeline import ComparisonPipeline, PipelineConfig, compare_documents

PAGE_TEXTS = [
    "Quarterly revenue increased across every regional office",
    "Shipping delays affected northern warehouses during winter",
    "The board approved a revised hiring policy for engineers",
    "Customer satisfaction survey scores improved substantially",
    "Headquarters relocation is scheduled for next spring",
]


def _page(index: int, text: str, error: Optional[str] = None) -> PageData:
    if error is not None:
        return PageData(page_num=index, width=0.0, height=0.0, error=error)
    return PageData(
        page_num=index,
        width=612.0,
        height=792.0,
        text=text,
        runs=[TextRun(text=text, bbox={"x": 72, "y": 100, "width": 400, "height": 12}, style=Style(font="Helvetica", size=11))],
    )


def _document(name: str, texts: List[str], metadata=None) -> DocumentData:
    return DocumentData(name=name, pages=[_page(i, t) for i, t in enumerate(texts)], metadata=metadata or {})


def _page_image(seed: int) -> Image.Image:
    """Coarse block pattern; different seeds give unrelated layouts."""
    blocks = np.random.default_rng(seed).integers(0, 256, size=(8, 8), dtype=np.uint8)
    return Image.fromarray(blocks).resize((120, 160), Image.Resampling.NEAREST)


def test_identical_documents():
    base = _document("a.pdf", PAGE_TEXTS)
    compare = _document("b.pdf", PAGE_TEXTS)
    result = ComparisonPipeline(PipelineConfig(num_workers=2)).diff(base, compare)

    assert result.complete
    assert len(result.page_pairs) == 5
    assert all(p.matched and p.similarity >= 0.95 for p in result.page_pairs)
    assert [(p.base_index, p.compare_index) for p in result.page_pairs] == [(i, i) for i in range(5)]
    assert result.summary.total_differences == 0
    assert result.summary.identical_pages == 5
    assert result.summary.overall_similarity == pytest.approx(1.0)
    assert {"fingerprint", "matching", "extraction"} <= set(result.metadata["timings"])


def test_identical_documents_with_images():
    base = _document("a.pdf", PAGE_TEXTS[:3])
    compare = _document("b.pdf", PAGE_TEXTS[:3])
    images = [_page_image(i) for i in range(3)]
    result = compare_documents(base, compare, images, images)
    assert [(p.base_index, p.compare_index) for p in result.page_pairs] == [(0, 0), (1, 1), (2, 2)]
    assert all(r.visual_similarity == pytest.approx(1.0) for r in result.page_results)


def test_inserted_page_reported_as_added():
    base = _document("a.pdf", PAGE_TEXTS[:3])
    compare = _document("b.pdf", PAGE_TEXTS[:2] + ["An entirely new appendix about parking permits"] + PAGE_TEXTS[2:3])
    result = compare_documents(base, compare)

    matched = [(p.base_index, p.compare_index) for p in result.page_pairs if p.matched]
    assert matched == [(0, 0), (1, 1), (2, 3)]
    added = [p for p in result.page_pairs if p.is_compare_only]
    assert [(p.base_index, p.compare_index) for p in added] == [(NO_PAGE, 2)]

    added_result = result.page_results[-1]
    assert added_result.only_in_compare
    assert added_result.structure_differences[0].change_type == ChangeType.ADDED
    assert added_result.structure_differences[0].severity == Severity.CRITICAL
    assert result.summary.page_count_mismatch


def test_failed_page_is_not_comparable():
    base = _document("a.pdf", PAGE_TEXTS[:3])
    base.pages[1] = _page(1, "", error="bad xref table")
    compare = _document("b.pdf", PAGE_TEXTS[:3])
    result = compare_documents(base, compare)

    failed = [r for r in result.page_results if r.error is not None]
    assert len(failed) == 1
    assert (failed[0].base_page, failed[0].compare_page) == (1, 1)
    assert result.summary.failed_pages == 1
    assert result.summary.unmatched_base_pages == 0
    assert result.summary.unmatched_compare_pages == 0


def test_metadata_differences():
    base = _document("a.pdf", PAGE_TEXTS[:1], metadata={"title": "Draft"})
    compare = _document("b.pdf", PAGE_TEXTS[:1], metadata={"title": "Final"})
    result = compare_documents(base, compare)
    assert [d.key for d in result.metadata_differences] == ["title"]
    assert result.summary.totals["metadata"] == 1


class _CancelOnLoad(StaticDocumentProvider):
    """Cancels the owning pipeline while the documents load."""

    pipeline: Optional[ComparisonPipeline] = None

    def load_document(self, source):
        if self.pipeline is not None:
            self.pipeline.cancel()
        return super().load_document(source)


def _cancelling_pipeline():
    provider = _CancelOnLoad({"a": _document("a.pdf", PAGE_TEXTS), "b": _document("b.pdf", PAGE_TEXTS)})
    pipeline = ComparisonPipeline(PipelineConfig(render_images=False), provider=provider)
    provider.pipeline = pipeline
    return pipeline, provider


def test_cancelled_run_is_incomplete():
    pipeline, _ = _cancelling_pipeline()
    result = pipeline.compare("a", "b")
    assert pipeline.cancelled
    assert result.complete is False
    assert result.page_results == []


def test_pipeline_is_reusable_after_cancel():
    pipeline, provider = _cancelling_pipeline()
    assert pipeline.compare("a", "b").complete is False

    provider.pipeline = None
    result = pipeline.compare("a", "b")
    assert not pipeline.cancelled
    assert result.complete
    assert len(result.page_results) == 5

    pipeline.cancel()
    assert pipeline.diff(_document("a.pdf", PAGE_TEXTS), _document("b.pdf", PAGE_TEXTS)).complete


def test_unhashable_page_image_does_not_abort_run():
    base = _document("a.pdf", PAGE_TEXTS[:3])
    compare = _document("b.pdf", PAGE_TEXTS[:3])
    base_images = [_page_image(i) for i in range(3)]
    compare_images = [_page_image(0), np.zeros((160, 120, 2), dtype=np.uint8), _page_image(2)]
    result = compare_documents(base, compare, base_images, compare_images)

    assert result.complete
    assert [(p.base_index, p.compare_index) for p in result.page_pairs] == [(0, 0), (1, 1), (2, 2)]
    broken = result.page_results[1]
    assert broken.visual_similarity is None
    assert broken.error is None
    assert result.page_results[0].visual_similarity == pytest.approx(1.0)


def test_extractor_error_is_isolated_to_its_pair():
    class _Flaky(DifferenceExtractor):
        def compare_pages(self, base_page, compare_page, pair=None, base_image=None, compare_image=None):
            if base_page is not None and base_page.page_num == 1:
                raise RuntimeError("style table exploded")
            return super().compare_pages(base_page, compare_page, pair, base_image, compare_image)

    pipeline = ComparisonPipeline(PipelineConfig(num_workers=2), extractor=_Flaky())
    result = pipeline.diff(_document("a.pdf", PAGE_TEXTS[:3]), _document("b.pdf", PAGE_TEXTS[:3]))

    assert result.complete
    assert len(result.page_results) == 3
    failed = result.page_results[1]
    assert failed.error == "RuntimeError: style table exploded"
    assert failed.structure_differences[0].severity == Severity.CRITICAL
    assert result.page_results[0].error is None and result.page_results[2].error is None
    assert result.summary.failed_pages == 1


def test_segmented_comparison():
    texts = PAGE_TEXTS * 2
    result = compare_documents(_document("a.pdf", texts), _document("b.pdf", texts), segmentation=True)
    assert result.document_pairs
    assert all(p.matched for p in result.document_pairs)
    assert [(p.base_index, p.compare_index) for p in result.page_pairs] == [(i, i) for i in range(10)]


def test_compare_through_provider():
    provider = StaticDocumentProvider(
        {"v1": _document("v1", PAGE_TEXTS[:2]), "v2": _document("v2", PAGE_TEXTS[1:3])},
        images={"v1": [_page_image(0), _page_image(1)], "v2": [_page_image(1), _page_image(2)]},
    )
    result = ComparisonPipeline(provider=provider).compare("v1", "v2")
    matched = [(p.base_index, p.compare_index) for p in result.page_pairs if p.matched]
    assert matched == [(1, 0)]
    assert result.summary.unmatched_base_pages == 1
    assert result.summary.unmatched_compare_pages == 1


def test_unknown_source_raises():
    provider = StaticDocumentProvider({})
    with pytest.raises(FileNotFoundError):
        ComparisonPipeline(provider=provider).compare("missing", "missing")


@pytest.mark.parametrize(
    "kwargs",
    [{"similarity_threshold": 0.0}, {"num_workers": 0}, {"timeout_seconds": -1}, {"visual_metric": "pixels"}],
)
def test_invalid_pipeline_config(kwargs):
    with pytest.raises(ValueError):
        PipelineConfig(**kwargs)
