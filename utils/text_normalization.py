"""Text normalization utilities for comparison."""
from __future__ import annotations

import re
import unicodedata
from typing import FrozenSet, List

_NON_ALNUM = re.compile(r"[^\w]+|_")
_WHITESPACE = re.compile(r"\s+")

STOPWORDS: FrozenSet[str] = frozenset(
    {
        "the", "and", "for", "are", "but", "not", "you", "all", "any", "can",
        "had", "her", "was", "one", "our", "out", "has", "his", "how", "its",
        "may", "new", "now", "see", "who", "did", "get", "him", "let", "say",
        "she", "too", "use", "this", "that", "with", "from", "have", "been",
        "were", "they", "will", "would", "there", "their", "what", "when",
        "which", "into", "than", "then", "them", "these", "those", "also",
    }
)


def normalize_text(text: str) -> str:
    """
    Normalize text for comparison.

    This function:
    - Converts text to lowercase
    - Normalizes Unicode to NFC so accented characters compare consistently
    - Replaces every non-alphanumeric character with a space
    - Collapses whitespace and strips the ends

    Args:
        text: Input text to normalize

    Returns:
        Normalized text string

    Examples:
        >>> normalize_text("Total:  $1,200.00")
        'total 1 200 00'
        >>> normalize_text("  Multiple   Spaces  ")
        'multiple spaces'
    """
    if not text:
        return ""

    normalized = unicodedata.normalize("NFC", text.lower())
    normalized = _NON_ALNUM.sub(" ", normalized)
    normalized = _WHITESPACE.sub(" ", normalized)
    return normalized.strip()


def tokenize(text: str) -> List[str]:
    """Split already-normalized (or raw) text into word tokens."""
    normalized = normalize_text(text)
    return normalized.split() if normalized else []


def significant_words(text: str, min_length: int = 3) -> FrozenSet[str]:
    """Distinct tokens that carry content: no stopwords, nothing shorter than min_length."""
    return frozenset(
        token for token in tokenize(text)
        if len(token) >= min_length and token not in STOPWORDS
    )
