"""Weighted similarity fusion for segments and pages."""
from __future__ import annotations

import math
from typing import Dict, Mapping, Optional, Tuple

from comparison.content_type import ContentTypeDetector
from comparison.models import DocumentSegment, PageFingerprint
from comparison.text_comparison import TextSimilarityCalculator
from config.settings import check_weights, settings
from utils.logging import logger
from utils.page_checksum import hash_similarity


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def _ratio_similarity(a: float, b: float) -> float:
    """1 - |a - b| / max(a, b), with two zeros counting as identical."""
    largest = max(abs(a), abs(b))
    if largest == 0:
        return 1.0
    return _clamp(1.0 - abs(a - b) / largest)


def _histogram_cosine(a: Mapping[str, int], b: Mapping[str, int]) -> float:
    dot = sum(count * b.get(key, 0) for key, count in a.items())
    norm_a = math.sqrt(sum(c * c for c in a.values()))
    norm_b = math.sqrt(sum(c * c for c in b.values()))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return _clamp(dot / (norm_a * norm_b))


class SimilarityScorer:
    """
    Fuse independent similarity signals into a single score.

    Segment fusion: full text, content-type match, first-page layout,
    image count and title.

    Page fusion: visual (perceptual hash or a caller-supplied SSIM), text,
    and optionally font usage and relative position. A page signal that is
    unavailable on either side is dropped and the remaining weights are
    renormalized, so a page without a rendered image is scored on text
    alone rather than penalized.
    """

    def __init__(
        self,
        text_calculator: Optional[TextSimilarityCalculator] = None,
        detector: Optional[ContentTypeDetector] = None,
        page_weights: Optional[Mapping[str, float]] = None,
        segment_weights: Optional[Mapping[str, float]] = None,
    ):
        self.text_calculator = text_calculator or TextSimilarityCalculator()
        self.detector = detector or ContentTypeDetector()
        self.page_weights = dict(page_weights) if page_weights is not None else {
            "visual": settings.visual_weight,
            "text": settings.text_weight,
            "font": settings.font_weight,
            "position": settings.position_weight,
        }
        self.segment_weights = dict(segment_weights) if segment_weights is not None else {
            "text": settings.segment_text_weight,
            "content_type": settings.segment_content_type_weight,
            "layout": settings.segment_layout_weight,
            "image_count": settings.segment_image_count_weight,
            "title": settings.segment_title_weight,
        }
        check_weights("page fusion", self.page_weights, ("visual", "text", "font", "position"))
        check_weights(
            "segment fusion", self.segment_weights, ("text", "content_type", "layout", "image_count", "title"),
        )

    # ------------------------------------------------------------------
    # Segment level
    # ------------------------------------------------------------------

    @staticmethod
    def layout_similarity(a: DocumentSegment, b: DocumentSegment) -> float:
        dims_a = a.features.page_dimensions
        dims_b = b.features.page_dimensions
        if not dims_a or not dims_b:
            return 0.0
        (width_a, height_a), (width_b, height_b) = dims_a[0], dims_b[0]
        return (_ratio_similarity(width_a, width_b) + _ratio_similarity(height_a, height_b)) / 2.0

    def title_similarity(self, a: DocumentSegment, b: DocumentSegment) -> float:
        if not a.title and not b.title:
            return 1.0
        return self.text_calculator.similarity(a.title, b.title)

    def segment_components(self, a: DocumentSegment, b: DocumentSegment) -> Dict[str, float]:
        return {
            "text": self.text_calculator.similarity(a.features.full_text, b.features.full_text),
            "content_type": 1.0 if a.features.content_type == b.features.content_type else 0.0,
            "layout": self.layout_similarity(a, b),
            "image_count": _ratio_similarity(a.features.image_count, b.features.image_count),
            "title": self.title_similarity(a, b),
        }

    def score_segments(self, a: DocumentSegment, b: DocumentSegment) -> float:
        components = self.segment_components(a, b)
        score = sum(self.segment_weights[name] * value for name, value in components.items())
        return _clamp(score)

    # ------------------------------------------------------------------
    # Page level
    # ------------------------------------------------------------------

    @staticmethod
    def visual_score(a: PageFingerprint, b: PageFingerprint) -> float:
        """Hash-only similarity, the cheap first-pass signal."""
        return hash_similarity(a.perceptual_hash, b.perceptual_hash)

    def page_components(
        self,
        a: PageFingerprint,
        b: PageFingerprint,
        visual: Optional[float] = None,
        page_counts: Optional[Tuple[int, int]] = None,
    ) -> Dict[str, float]:
        """Available page signals. Absent keys mean the signal could not be computed."""
        components: Dict[str, float] = {}

        if visual is not None:
            components["visual"] = _clamp(visual)
        elif a.perceptual_hash and b.perceptual_hash:
            components["visual"] = self.visual_score(a, b)

        if a.text or b.text:
            components["text"] = self.text_calculator.similarity(a.text, b.text)

        if a.font_usage or b.font_usage:
            components["font"] = _histogram_cosine(a.font_usage, b.font_usage)

        if page_counts is not None:
            longest = max(page_counts)
            if longest > 0:
                components["position"] = _clamp(1.0 - abs(a.page_index - b.page_index) / longest)

        return components

    def score_pages(
        self,
        a: PageFingerprint,
        b: PageFingerprint,
        visual: Optional[float] = None,
        page_counts: Optional[Tuple[int, int]] = None,
    ) -> float:
        components = self.page_components(a, b, visual=visual, page_counts=page_counts)
        weighted = {
            name: self.page_weights.get(name, 0.0)
            for name in components
            if self.page_weights.get(name, 0.0) > 0
        }
        total_weight = sum(weighted.values())
        if total_weight == 0:
            return 0.0
        score = sum(components[name] * weight for name, weight in weighted.items()) / total_weight
        logger.debug(
            "Page score %d<->%d = %.3f %s",
            a.page_index,
            b.page_index,
            score,
            components,
        )
        return _clamp(score)
