"""Multi-metric text similarity.

Four independent metrics are fused with configurable weights:

- Jaccard over word sets (order-insensitive, ignores repetition)
- Normalized Levenshtein similarity (order-sensitive, character level)
- Cosine over term-frequency vectors (order-insensitive, weights repetition)
- Dice word overlap (order-insensitive, favours partial overlap)

Reordered paragraphs keep the set-based metrics high while the edit
distance collapses, which is why no single metric is used alone.
"""
from __future__ import annotations

import math
from collections import Counter
from typing import Dict, Mapping, Optional

from rapidfuzz.distance.Levenshtein import distance as levenshtein_distance

from config.settings import check_weights, settings
from utils.text_normalization import normalize_text


def _default_weights() -> Dict[str, float]:
    return {
        "jaccard": settings.jaccard_weight,
        "levenshtein": settings.levenshtein_weight,
        "cosine": settings.cosine_weight,
        "dice": settings.dice_weight,
    }


class TextSimilarityCalculator:
    """Fuse Jaccard, edit-distance, cosine and Dice similarity into one score."""

    METRICS = ("jaccard", "levenshtein", "cosine", "dice")

    def __init__(self, weights: Optional[Mapping[str, float]] = None):
        self.weights = dict(weights) if weights is not None else _default_weights()
        check_weights("text similarity", self.weights, self.METRICS)

    @staticmethod
    def jaccard(text_a: str, text_b: str) -> float:
        words_a = set(normalize_text(text_a).split())
        words_b = set(normalize_text(text_b).split())
        if not words_a or not words_b:
            return 0.0
        return len(words_a & words_b) / len(words_a | words_b)

    @staticmethod
    def levenshtein_similarity(text_a: str, text_b: str) -> float:
        """1 - distance / max(len); two empty strings are identical."""
        a = normalize_text(text_a)
        b = normalize_text(text_b)
        longest = max(len(a), len(b))
        if longest == 0:
            return 1.0
        return 1.0 - levenshtein_distance(a, b) / longest

    @staticmethod
    def cosine(text_a: str, text_b: str) -> float:
        tf_a = Counter(normalize_text(text_a).split())
        tf_b = Counter(normalize_text(text_b).split())
        if not tf_a or not tf_b:
            return 0.0
        dot = sum(count * tf_b.get(term, 0) for term, count in tf_a.items())
        norm_a = math.sqrt(sum(c * c for c in tf_a.values()))
        norm_b = math.sqrt(sum(c * c for c in tf_b.values()))
        return min(1.0, dot / (norm_a * norm_b))

    @staticmethod
    def dice(text_a: str, text_b: str) -> float:
        words_a = set(normalize_text(text_a).split())
        words_b = set(normalize_text(text_b).split())
        if not words_a or not words_b:
            return 0.0
        return 2.0 * len(words_a & words_b) / (len(words_a) + len(words_b))

    def components(self, text_a: Optional[str], text_b: Optional[str]) -> Dict[str, float]:
        """Individual metric scores; all zero when either side is empty."""
        if not text_a or not text_b:
            return {metric: 0.0 for metric in self.METRICS}
        return {
            "jaccard": self.jaccard(text_a, text_b),
            "levenshtein": self.levenshtein_similarity(text_a, text_b),
            "cosine": self.cosine(text_a, text_b),
            "dice": self.dice(text_a, text_b),
        }

    def similarity(self, text_a: Optional[str], text_b: Optional[str]) -> float:
        """Weighted fusion of the four metrics in [0, 1]. Empty input scores 0.0."""
        if not text_a or not text_b:
            return 0.0
        norm_a = normalize_text(text_a)
        norm_b = normalize_text(text_b)
        if not norm_a or not norm_b:
            return 0.0
        if norm_a == norm_b:
            return 1.0

        scores = self.components(norm_a, norm_b)
        fused = sum(self.weights[metric] * scores[metric] for metric in self.METRICS)
        return min(1.0, max(0.0, fused))


def text_similarity(text_a: Optional[str], text_b: Optional[str]) -> float:
    """Fused text similarity with the configured weights."""
    return TextSimilarityCalculator().similarity(text_a, text_b)
