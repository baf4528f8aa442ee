"""Split multi-page documents into sub-document segments by title detection."""
from __future__ import annotations

from typing import List, Optional, Tuple

from comparison.content_type import ContentTypeDetector
from comparison.models import DocumentData, DocumentSegment, PageData, SegmentFeatures, TextRun
from config.settings import settings
from utils.logging import logger

UNTITLED = "Untitled Document"

_TITLE_CANDIDATES_PER_PAGE = 3
_TITLE_SEARCH_PAGES = 2


class SegmentationStrategy:
    """
    Title-driven segmentation.

    A page opens a new segment when it is the first page, or when one of
    the largest runs in its top region looks like a title (large font,
    plausible length). Runs of fewer than ``min_pages`` pages are folded
    into the preceding segment, so the result always partitions the page
    range.
    """

    def __init__(
        self,
        min_pages: Optional[int] = None,
        font_threshold: Optional[float] = None,
        title_min_length: Optional[int] = None,
        title_max_length: Optional[int] = None,
        title_region_ratio: Optional[float] = None,
        detector: Optional[ContentTypeDetector] = None,
    ):
        self.min_pages = min_pages if min_pages is not None else settings.min_segment_pages
        self.font_threshold = font_threshold if font_threshold is not None else settings.title_font_size_threshold
        self.title_min_length = title_min_length if title_min_length is not None else settings.title_min_length
        self.title_max_length = title_max_length if title_max_length is not None else settings.title_max_length
        self.title_region_ratio = (
            title_region_ratio if title_region_ratio is not None else settings.title_region_ratio
        )
        self.detector = detector or ContentTypeDetector()
        if self.min_pages <= 0:
            raise ValueError("min_pages must be positive")

    # ------------------------------------------------------------------
    # Title detection
    # ------------------------------------------------------------------

    def _is_title_run(self, run: TextRun) -> bool:
        length = len(run.text.strip())
        return run.font_size > self.font_threshold and self.title_min_length < length < self.title_max_length

    def title_candidates(self, page: PageData) -> List[TextRun]:
        """Title-like runs among the largest runs in the top region of the page."""
        if page.failed or not page.runs:
            return []
        limit = page.height * self.title_region_ratio
        top_runs = [run for run in page.runs if run.y < limit and run.text.strip()]
        top_runs.sort(key=lambda run: run.font_size, reverse=True)
        return [run for run in top_runs[:_TITLE_CANDIDATES_PER_PAGE] if self._is_title_run(run)]

    def is_segment_start(self, page: PageData, index: int) -> bool:
        if index == 0:
            return True
        return bool(self.title_candidates(page))

    def extract_title(self, document: DocumentData, start: int, end: int) -> str:
        """Largest-font title candidate in the first pages of the segment."""
        best: Optional[TextRun] = None
        for index in range(start, min(end, start + _TITLE_SEARCH_PAGES - 1) + 1):
            for run in self.title_candidates(document.pages[index]):
                if best is None or run.font_size > best.font_size:
                    best = run
        return best.text.strip() if best is not None else UNTITLED

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    def extract_features(self, document: DocumentData, start: int, end: int) -> SegmentFeatures:
        pages = document.pages[start:end + 1]
        full_text = "\n".join(page.text for page in pages if page.text)

        keywords: List[str] = []
        seen = set()
        for page in pages:
            for run in page.runs:
                text = run.text.strip()
                if not text or text in seen:
                    continue
                if run.font_size > settings.keyword_font_size_threshold or run.style.bold:
                    seen.add(text)
                    keywords.append(text)
                    if len(keywords) >= settings.max_segment_keywords:
                        break
            if len(keywords) >= settings.max_segment_keywords:
                break

        return SegmentFeatures(
            full_text=full_text,
            keywords=tuple(keywords),
            content_type=self.detector.detect(full_text),
            page_dimensions=tuple((page.width, page.height) for page in pages),
            image_count=sum(len(page.images) for page in pages),
        )

    # ------------------------------------------------------------------
    # Segmentation
    # ------------------------------------------------------------------

    def boundaries(self, document: DocumentData) -> List[Tuple[int, int]]:
        """Inclusive (start, end) ranges that partition the document.

        A run shorter than ``min_pages`` is absorbed into the segment before it
        and the next title page still opens a new segment. A short leading run
        has nothing before it, so it keeps growing until it is long enough.
        """
        page_count = document.page_count
        if page_count == 0:
            return []

        ranges: List[Tuple[int, int]] = []
        current_start = 0
        for index in range(1, page_count):
            if not self.is_segment_start(document.pages[index], index):
                continue
            if index - current_start >= self.min_pages:
                ranges.append((current_start, index - 1))
            elif ranges:
                prev_start, _ = ranges.pop()
                ranges.append((prev_start, index - 1))
            else:
                continue
            current_start = index

        tail = (current_start, page_count - 1)
        if ranges and tail[1] - tail[0] + 1 < self.min_pages:
            prev_start, _ = ranges.pop()
            tail = (prev_start, page_count - 1)
        ranges.append(tail)
        return ranges

    def segment(self, document: DocumentData) -> List[DocumentSegment]:
        segments = [
            DocumentSegment(
                start_page=start,
                end_page=end,
                title=self.extract_title(document, start, end),
                features=self.extract_features(document, start, end),
            )
            for start, end in self.boundaries(document)
        ]
        logger.info(
            "Segmented %s: %d pages -> %d segments",
            document.name,
            document.page_count,
            len(segments),
        )
        return segments
