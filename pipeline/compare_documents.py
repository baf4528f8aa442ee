"""End-to-end page matching and difference pipeline."""
from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Sequence

from comparison.alignment import ComparisonCancelled, PageMatcher, SegmentMatcher, check_cancelled, pages_within
from comparison.diff_extractor import DifferenceExtractor
from comparison.fingerprint import build_fingerprints
from comparison.models import (
    NO_PAGE,
    ComparisonResult,
    DocumentData,
    DocumentPair,
    PageComparisonResult,
    PagePair,
)
from comparison.result_assembler import assemble_result
from comparison.scoring import SimilarityScorer
from comparison.segmentation import SegmentationStrategy
from comparison.visual_diff import compute_ssim
from config.settings import settings, validate_settings
from extraction.pdf_parser import PdfDocumentProvider
from extraction.provider import DocumentProvider, DocumentSource
from utils.logging import logger
from utils.performance import StageTimer

if TYPE_CHECKING:
    from PIL import Image

PageImages = Optional[Sequence[Optional["Image.Image"]]]


@dataclass
class PipelineConfig:
    """Per-run overrides. ``None`` means use the global settings value."""

    similarity_threshold: Optional[float] = None
    two_phase: Optional[bool] = None
    segmentation: Optional[bool] = None
    visual_metric: Optional[str] = None
    num_workers: Optional[int] = None
    timeout_seconds: Optional[float] = None
    render_images: bool = True

    def __post_init__(self) -> None:
        if self.similarity_threshold is not None and not 0.0 < self.similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be in (0, 1]")
        if self.num_workers is not None and self.num_workers <= 0:
            raise ValueError("num_workers must be positive")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.visual_metric is not None and self.visual_metric not in ("hash", "ssim"):
            raise ValueError(f"Unknown visual_metric: {self.visual_metric}")

    @property
    def effective_threshold(self) -> float:
        return self.similarity_threshold if self.similarity_threshold is not None else settings.similarity_threshold

    @property
    def effective_segmentation(self) -> bool:
        return self.segmentation if self.segmentation is not None else settings.segmentation_enabled

    @property
    def effective_visual_metric(self) -> str:
        return self.visual_metric or settings.visual_metric

    @property
    def effective_workers(self) -> int:
        return self.num_workers or settings.num_workers

    @property
    def effective_timeout(self) -> float:
        return self.timeout_seconds or settings.comparison_timeout_seconds


def _image_at(images: PageImages, index: int):
    if images is None or index == NO_PAGE or index >= len(images):
        return None
    return images[index]


def _pair_failed_pages(
    pairs: List[PagePair],
    base_doc: DocumentData,
    compare_doc: DocumentData,
) -> List[PagePair]:
    """Re-pair one-sided pages whose extraction failed with the same-index page on the other side.

    A failed page has no usable fingerprint, so the matcher cannot pair it;
    pairing it positionally lets the extractor report "could not compare"
    instead of a spurious insertion/deletion.
    """
    base_only = {p.base_index for p in pairs if p.is_base_only}
    compare_only = {p.compare_index for p in pairs if p.is_compare_only}
    rescued = {
        index for index in base_only & compare_only
        if base_doc.pages[index].failed or compare_doc.pages[index].failed
    }
    if not rescued:
        return pairs

    kept = [
        p for p in pairs
        if not (p.is_base_only and p.base_index in rescued)
        and not (p.is_compare_only and p.compare_index in rescued)
    ]
    matched = [p for p in kept if p.matched]
    one_sided = [p for p in kept if not p.matched]
    forced = [PagePair(index, index, 0.0, False) for index in sorted(rescued)]
    logger.info("Paired %d failed page(s) positionally", len(forced))
    return matched + forced + one_sided


class ComparisonPipeline:
    """
    End-to-end comparison: fingerprint, match, extract differences, roll up.

    Usage:
        pipeline = ComparisonPipeline(config)
        result = pipeline.compare("v1.pdf", "v2.pdf")

        # Or with documents that were already extracted:
        result = pipeline.diff(base_doc, compare_doc, base_images, compare_images)

    A run that is cancelled or exceeds its time budget returns the pairs and
    page results gathered so far with ``complete=False``.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        provider: Optional[DocumentProvider] = None,
        scorer: Optional[SimilarityScorer] = None,
        extractor: Optional[DifferenceExtractor] = None,
        segmenter: Optional[SegmentationStrategy] = None,
    ):
        validate_settings(settings)
        self.config = config or PipelineConfig()
        self.provider = provider or PdfDocumentProvider()
        self.scorer = scorer or SimilarityScorer()
        self.extractor = extractor or DifferenceExtractor()
        self.segmenter = segmenter or SegmentationStrategy(detector=self.scorer.detector)
        self._cancel_event = threading.Event()

    def cancel(self) -> None:
        """Abort the run in progress at the next unit boundary. Later runs start uncancelled."""
        self._cancel_event.set()

    def _start_run(self) -> threading.Event:
        self._cancel_event = threading.Event()
        return self._cancel_event

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def compare(self, source_a: DocumentSource, source_b: DocumentSource) -> ComparisonResult:
        """Load, render and compare two documents through the provider."""
        logger.info("=== Starting comparison pipeline ===")
        logger.info("Base: %s", source_a)
        logger.info("Compare: %s", source_b)

        cancel_event = self._start_run()
        timer = StageTimer()
        with timer.track("load"):
            base_doc = self.provider.load_document(source_a)
            compare_doc = self.provider.load_document(source_b)

        base_images: PageImages = None
        compare_images: PageImages = None
        if self.config.render_images:
            with timer.track("render", dpi=settings.render_dpi):
                base_images = self.provider.render_pages(source_a, settings.render_dpi)
                compare_images = self.provider.render_pages(source_b, settings.render_dpi)

        return self._run(base_doc, compare_doc, base_images, compare_images, timer, cancel_event)

    def diff(
        self,
        base_doc: DocumentData,
        compare_doc: DocumentData,
        base_images: PageImages = None,
        compare_images: PageImages = None,
        timer: Optional[StageTimer] = None,
    ) -> ComparisonResult:
        """Compare two extracted documents; stage durations land in ``result.metadata["timings"]``."""
        cancel_event = self._start_run()
        return self._run(base_doc, compare_doc, base_images, compare_images, timer or StageTimer(), cancel_event)

    def _run(
        self,
        base_doc: DocumentData,
        compare_doc: DocumentData,
        base_images: PageImages,
        compare_images: PageImages,
        timer: StageTimer,
        cancel_event: threading.Event,
    ) -> ComparisonResult:
        start = time.monotonic()
        deadline = start + self.config.effective_timeout

        document_pairs: List[DocumentPair] = []
        page_pairs: List[PagePair] = []
        page_results: List[PageComparisonResult] = []
        complete = True

        with ThreadPoolExecutor(max_workers=self.config.effective_workers) as executor:
            try:
                check_cancelled(cancel_event, deadline)
                with timer.track("fingerprint", pages=base_doc.page_count + compare_doc.page_count):
                    base_fps = build_fingerprints(base_doc, "base", base_images, executor)
                    compare_fps = build_fingerprints(compare_doc, "compare", compare_images, executor)

                windows = None
                if self.config.effective_segmentation:
                    with timer.track("segmentation"):
                        document_pairs = self._match_segments(
                            base_doc, compare_doc, executor, cancel_event, deadline,
                        )
                    windows = pages_within(document_pairs)

                with timer.track("matching"):
                    matcher = PageMatcher(
                        self.scorer,
                        threshold=self.config.effective_threshold,
                        two_phase=self.config.two_phase,
                        visual_fn=self._visual_fn(base_images, compare_images),
                        executor=executor,
                        cancel_event=cancel_event,
                        deadline=deadline,
                    )
                    page_pairs = matcher.match_pages(base_fps, compare_fps, windows)
                    page_pairs = _pair_failed_pages(page_pairs, base_doc, compare_doc)

                with timer.track("extraction", pairs=len(page_pairs)):
                    self._extract_all(
                        page_pairs, base_doc, compare_doc, base_images, compare_images,
                        executor, cancel_event, deadline, page_results,
                    )
            except ComparisonCancelled as exc:
                complete = False
                logger.warning("Comparison stopped early: %s", exc)
                if not page_pairs:
                    page_pairs = [PagePair(b, c, score, True) for b, c, score in exc.partial]

        metadata_differences = self.extractor.compare_metadata(base_doc.metadata, compare_doc.metadata)
        elapsed = time.monotonic() - start
        logger.info("=== Pipeline finished in %.2fs ===", elapsed)
        timer.log_summary(base_doc.page_count + compare_doc.page_count)

        return assemble_result(
            base_doc.name,
            compare_doc.name,
            page_pairs,
            page_results,
            metadata_differences,
            document_pairs=document_pairs,
            base_page_count=base_doc.page_count,
            compare_page_count=compare_doc.page_count,
            complete=complete,
            metadata={"elapsed_seconds": elapsed, "timings": timer.totals()},
        )

    def _match_segments(self, base_doc, compare_doc, executor, cancel_event, deadline) -> List[DocumentPair]:
        base_segments = self.segmenter.segment(base_doc)
        compare_segments = self.segmenter.segment(compare_doc)
        matcher = SegmentMatcher(
            self.scorer,
            threshold=self.config.effective_threshold,
            executor=executor,
            cancel_event=cancel_event,
            deadline=deadline,
        )
        return matcher.match_segments(base_segments, compare_segments)

    def _visual_fn(self, base_images: PageImages, compare_images: PageImages):
        if self.config.effective_visual_metric != "ssim" or not base_images or not compare_images:
            return None

        def visual(b: int, c: int) -> Optional[float]:
            image_a = _image_at(base_images, b)
            image_b = _image_at(compare_images, c)
            if image_a is None or image_b is None:
                return None
            try:
                return compute_ssim(image_a, image_b)
            except Exception as exc:
                logger.warning("SSIM failed for page %d<->%d: %s. Scoring without it.", b, c, exc)
                return None

        return visual

    def _extract_all(
        self,
        pairs: Sequence[PagePair],
        base_doc: DocumentData,
        compare_doc: DocumentData,
        base_images: PageImages,
        compare_images: PageImages,
        executor: ThreadPoolExecutor,
        cancel_event: threading.Event,
        deadline: float,
        results: List[PageComparisonResult],
    ) -> None:
        """Extract each pair independently; results are appended in pair order.

        A pair whose extraction raises is reported as "could not compare".
        """
        futures: List[Future] = []
        sides = []
        for pair in pairs:
            base_page = base_doc.pages[pair.base_index] if pair.base_index != NO_PAGE else None
            compare_page = compare_doc.pages[pair.compare_index] if pair.compare_index != NO_PAGE else None
            sides.append((base_page, compare_page))
            futures.append(
                executor.submit(
                    self.extractor.compare_pages,
                    base_page,
                    compare_page,
                    pair,
                    _image_at(base_images, pair.base_index),
                    _image_at(compare_images, pair.compare_index),
                )
            )

        for index, (pair, (base_page, compare_page), future) in enumerate(zip(pairs, sides, futures)):
            try:
                check_cancelled(cancel_event, deadline)
            except ComparisonCancelled:
                for pending in futures[index:]:
                    pending.cancel()
                raise
            try:
                results.append(future.result())
            except Exception as exc:
                results.append(self.extractor.could_not_compare(
                    base_page, compare_page, pair, f"{type(exc).__name__}: {exc}",
                ))


def compare_documents(
    base_doc: DocumentData,
    compare_doc: DocumentData,
    base_images: PageImages = None,
    compare_images: PageImages = None,
    *,
    similarity_threshold: Optional[float] = None,
    segmentation: Optional[bool] = None,
    two_phase: Optional[bool] = None,
) -> ComparisonResult:
    """Compare two already-extracted documents with default collaborators."""
    config = PipelineConfig(
        similarity_threshold=similarity_threshold,
        segmentation=segmentation,
        two_phase=two_phase,
    )
    return ComparisonPipeline(config).diff(base_doc, compare_doc, base_images, compare_images)


def compare_pdfs(
    pdf_a: str | Path,
    pdf_b: str | Path,
    *,
    similarity_threshold: Optional[float] = None,
    segmentation: Optional[bool] = None,
    two_phase: Optional[bool] = None,
    render_images: bool = True,
    timeout_seconds: Optional[float] = None,
) -> ComparisonResult:
    """
    Compare two PDF files end-to-end.

    Example:
        from pipeline import compare_pdfs

        result = compare_pdfs("doc_v1.pdf", "doc_v2.pdf")
        for pair in result.page_pairs:
            print(pair.base_index, pair.compare_index, pair.similarity)
    """
    config = PipelineConfig(
        similarity_threshold=similarity_threshold,
        segmentation=segmentation,
        two_phase=two_phase,
        render_images=render_images,
        timeout_seconds=timeout_seconds,
    )
    return ComparisonPipeline(config).compare(pdf_a, pdf_b)
