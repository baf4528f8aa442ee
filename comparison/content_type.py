"""Keyword- and structure-driven content type classification."""
from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

GENERIC_DOCUMENT = "GENERIC_DOCUMENT"

_KEYWORD_SHARE = 0.6
_STRUCTURE_SHARE = 0.4


@dataclass(frozen=True)
class ContentTypeProfile:
    """Evidence for one content type.

    keywords: substrings whose presence counts toward the keyword score
    sections: whole-word section headings, each adding section_weight
    term_pattern: regex whose hits each add term_weight, capped at term_cap
    """

    keywords: FrozenSet[str]
    sections: Tuple[str, ...] = ()
    section_weight: float = 0.0
    term_pattern: Optional[str] = None
    term_weight: float = 0.0
    term_cap: float = 0.0


DEFAULT_CONTENT_PROFILES: Mapping[str, ContentTypeProfile] = MappingProxyType(
    {
        "ACADEMIC_PAPER": ContentTypeProfile(
            keywords=frozenset({
                "abstract", "introduction", "methodology", "results", "conclusion",
                "references", "citations", "research", "study", "analysis",
            }),
            sections=("abstract", "introduction", "methodology", "results", "discussion", "conclusion"),
            section_weight=0.15,
            term_pattern=r"\[[0-9]+\]",
            term_weight=0.02,
            term_cap=0.2,
        ),
        "TECHNICAL_REPORT": ContentTypeProfile(
            keywords=frozenset({
                "technical", "report", "specification", "standard", "procedure",
                "implementation", "architecture", "design", "system",
            }),
            sections=("scope", "requirements", "design", "implementation", "testing", "appendix"),
            section_weight=0.15,
            term_pattern=r"\b(algorithm|architecture|protocol|interface)\b",
            term_weight=0.05,
            term_cap=0.25,
        ),
        "FINANCIAL_DOCUMENT": ContentTypeProfile(
            keywords=frozenset({
                "invoice", "statement", "balance", "revenue", "expense", "budget",
                "financial", "accounting", "transaction", "profit", "loss",
            }),
            sections=("balance sheet", "income statement", "cash flow", "summary", "notes"),
            section_weight=0.2,
            term_pattern=r"\b(revenue|expense|profit|loss|asset|liability|equity)\b",
            term_weight=0.05,
            term_cap=0.3,
        ),
        "LEGAL_DOCUMENT": ContentTypeProfile(
            keywords=frozenset({
                "contract", "agreement", "terms", "conditions", "clause", "legal",
                "party", "liability", "jurisdiction", "signature",
            }),
            sections=("whereas", "hereby", "agreement", "terms", "conditions", "signatures"),
            section_weight=0.2,
            term_pattern=r"\b(party|liability|jurisdiction|covenant|clause)\b",
            term_weight=0.05,
            term_cap=0.3,
        ),
        "MARKETING_MATERIAL": ContentTypeProfile(
            keywords=frozenset({
                "brochure", "campaign", "product", "marketing", "promotion",
                "strategy", "target", "audience", "brand", "advertisement",
            }),
        ),
    }
)


class ContentTypeDetector:
    """Classify text against a table of content-type profiles.

    The profile table is supplied at construction; nothing is shared at
    module level beyond the read-only default.
    """

    def __init__(self, profiles: Optional[Mapping[str, ContentTypeProfile]] = None):
        self.profiles: Mapping[str, ContentTypeProfile] = MappingProxyType(
            dict(profiles if profiles is not None else DEFAULT_CONTENT_PROFILES)
        )
        self._section_patterns = {
            label: [re.compile(rf"\b{re.escape(s)}\b", re.IGNORECASE) for s in profile.sections]
            for label, profile in self.profiles.items()
        }
        self._term_patterns = {
            label: re.compile(profile.term_pattern, re.IGNORECASE)
            for label, profile in self.profiles.items()
            if profile.term_pattern
        }

    @staticmethod
    def keyword_score(text: str, keywords: FrozenSet[str]) -> float:
        """Fraction of keywords that occur in the (lowercased) text."""
        if not keywords:
            return 0.0
        lowered = text.lower()
        return sum(1 for keyword in keywords if keyword in lowered) / len(keywords)

    def structure_score(self, text: str, label: str) -> float:
        profile = self.profiles[label]
        score = profile.section_weight * sum(
            1 for pattern in self._section_patterns[label] if pattern.search(text)
        )
        term_pattern = self._term_patterns.get(label)
        if term_pattern is not None:
            hits = sum(1 for _ in term_pattern.finditer(text))
            score += min(hits * profile.term_weight, profile.term_cap)
        return min(score, 1.0)

    def scores(self, text: str) -> Dict[str, float]:
        return {label: self.keyword_score(text, p.keywords) for label, p in self.profiles.items()}

    def detect(self, text: Optional[str]) -> str:
        """Best-scoring label, or GENERIC_DOCUMENT when nothing matches.

        Ties resolve to the label listed first in the profile table.
        """
        if not text or not text.strip():
            return GENERIC_DOCUMENT
        best_label = GENERIC_DOCUMENT
        best_score = 0.0
        for label, score in self.scores(text).items():
            if score > best_score:
                best_label = label
                best_score = score
        return best_label

    def detect_detailed(self, text: Optional[str]) -> Dict[str, float]:
        """Per-label blend of keyword and structure evidence."""
        if not text:
            return {label: 0.0 for label in self.profiles}
        return {
            label: _KEYWORD_SHARE * self.keyword_score(text, profile.keywords)
            + _STRUCTURE_SHARE * self.structure_score(text, label)
            for label, profile in self.profiles.items()
        }
