"""Shared data models for extraction, matching and difference reporting."""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Dict, List, Literal, Mapping, Optional, Tuple, Union

Source = Literal["base", "compare"]

NO_PAGE = -1

SUBSET_PREFIX = re.compile(r"^[A-Z]{6}\+")


# =============================================================================
# Provider-side page model
# =============================================================================

@dataclass
class Style:
    font: Optional[str] = None
    size: Optional[float] = None
    bold: bool = False
    italic: bool = False
    color: Optional[Tuple[int, int, int]] = None  # RGB


@dataclass
class TextRun:
    text: str
    bbox: Dict[str, float]  # {"x": x, "y": y, "width": w, "height": h} in page points
    style: Style = field(default_factory=Style)

    @property
    def x(self) -> float:
        return float(self.bbox.get("x", 0.0))

    @property
    def y(self) -> float:
        return float(self.bbox.get("y", 0.0))

    @property
    def font_name(self) -> Optional[str]:
        return self.style.font

    @property
    def font_size(self) -> float:
        return float(self.style.size or 0.0)


@dataclass
class ImageElement:
    name: str
    bbox: Dict[str, float]
    format: str = ""
    hash: Optional[str] = None  # perceptual hash of the image content, if the provider has one

    @property
    def width(self) -> float:
        return float(self.bbox.get("width", 0.0))

    @property
    def height(self) -> float:
        return float(self.bbox.get("height", 0.0))


@dataclass
class FontDescriptor:
    name: str
    family: Optional[str] = None
    embedded: bool = False
    subset: bool = False

    @property
    def canonical_name(self) -> str:
        """Name without the six-letter subset tag: "ABCDEF+Arial" -> "Arial"."""
        return SUBSET_PREFIX.sub("", self.name)


@dataclass
class PageData:
    page_num: int  # 0-based index within the document
    width: float
    height: float
    text: str = ""
    runs: List[TextRun] = field(default_factory=list)
    images: List[ImageElement] = field(default_factory=list)
    fonts: List[FontDescriptor] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    error: Optional[str] = None  # set when the provider could not extract this page

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class DocumentData:
    name: str
    pages: List[PageData] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def page_count(self) -> int:
        return len(self.pages)


# =============================================================================
# Fingerprints and segments
# =============================================================================

def _empty_mapping() -> Mapping[str, Any]:
    return MappingProxyType({})


@dataclass(frozen=True)
class PageFingerprint:
    """Compact per-page feature summary. Immutable once built."""

    source: Source
    page_index: int
    width: float
    height: float
    text: str = ""
    text_hash: str = ""
    significant_words: frozenset = frozenset()
    font_usage: Mapping[str, int] = field(default_factory=_empty_mapping)
    element_count: int = 0
    image_count: int = 0
    perceptual_hash: Optional[str] = None
    extensions: Mapping[str, Any] = field(default_factory=_empty_mapping)

    def __post_init__(self) -> None:
        if self.source not in ("base", "compare"):
            raise ValueError(f"Unknown fingerprint source: {self.source!r}")
        if self.page_index < 0:
            raise ValueError(f"page_index must be >= 0, got {self.page_index}")
        # Freeze caller-provided dicts so shared fingerprints cannot drift.
        if not isinstance(self.font_usage, MappingProxyType):
            object.__setattr__(self, "font_usage", MappingProxyType(dict(self.font_usage)))
        if not isinstance(self.extensions, MappingProxyType):
            object.__setattr__(self, "extensions", MappingProxyType(dict(self.extensions)))
        if not isinstance(self.significant_words, frozenset):
            object.__setattr__(self, "significant_words", frozenset(self.significant_words))


@dataclass(frozen=True)
class SegmentFeatures:
    full_text: str = ""
    keywords: Tuple[str, ...] = ()
    content_type: str = "GENERIC_DOCUMENT"
    page_dimensions: Tuple[Tuple[float, float], ...] = ()
    image_count: int = 0


@dataclass(frozen=True)
class DocumentSegment:
    start_page: int
    end_page: int  # inclusive
    title: str = ""
    features: SegmentFeatures = field(default_factory=SegmentFeatures)

    def __post_init__(self) -> None:
        if self.start_page < 0 or self.end_page < self.start_page:
            raise ValueError(f"Invalid segment range [{self.start_page}, {self.end_page}]")

    @property
    def page_count(self) -> int:
        return self.end_page - self.start_page + 1

    def pages(self) -> range:
        return range(self.start_page, self.end_page + 1)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["features"]["keywords"] = list(self.features.keywords)
        data["features"]["page_dimensions"] = [list(d) for d in self.features.page_dimensions]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DocumentSegment":
        """Build a segment from either the snake_case shape or the legacy camelCase map."""
        start = data.get("start_page", data.get("startPage"))
        end = data.get("end_page", data.get("endPage"))
        raw = dict(data.get("features") or {})
        features = SegmentFeatures(
            full_text=raw.get("full_text", raw.get("fullText", "")) or "",
            keywords=tuple(raw.get("keywords") or ()),
            content_type=raw.get("content_type", raw.get("contentType")) or "GENERIC_DOCUMENT",
            page_dimensions=tuple(
                (float(w), float(h))
                for w, h in (raw.get("page_dimensions", raw.get("pageDimensions")) or ())
            ),
            image_count=int(raw.get("image_count", raw.get("imageCount", 0)) or 0),
        )
        return cls(start_page=int(start), end_page=int(end), title=data.get("title") or "", features=features)


# =============================================================================
# Pairing results
# =============================================================================

def _check_score(score: float) -> None:
    if not 0.0 <= score <= 1.0:
        raise ValueError(f"similarity must be in [0, 1], got {score}")


@dataclass(frozen=True)
class PagePair:
    base_index: int
    compare_index: int
    similarity: float
    matched: bool

    def __post_init__(self) -> None:
        _check_score(self.similarity)
        if self.base_index == NO_PAGE and self.compare_index == NO_PAGE:
            raise ValueError("A page pair needs at least one side")
        if self.matched and NO_PAGE in (self.base_index, self.compare_index):
            raise ValueError("A matched pair needs both sides")

    @property
    def is_base_only(self) -> bool:
        return self.compare_index == NO_PAGE

    @property
    def is_compare_only(self) -> bool:
        return self.base_index == NO_PAGE


@dataclass(frozen=True)
class DocumentPair:
    base_start: int
    base_end: int
    compare_start: int
    compare_end: int
    similarity: float
    matched: bool

    def __post_init__(self) -> None:
        _check_score(self.similarity)
        if self.base_start == NO_PAGE and self.compare_start == NO_PAGE:
            raise ValueError("A document pair needs at least one side")
        if self.matched and NO_PAGE in (self.base_start, self.compare_start):
            raise ValueError("A matched pair needs both sides")

    @property
    def is_base_only(self) -> bool:
        return self.compare_start == NO_PAGE

    @property
    def is_compare_only(self) -> bool:
        return self.base_start == NO_PAGE


# =============================================================================
# Differences
# =============================================================================

class ChangeType(str, Enum):
    ADDED = "added"
    DELETED = "deleted"
    MODIFIED = "modified"


class Severity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
    COSMETIC = "cosmetic"


@dataclass(frozen=True)
class TextDifference:
    kind: ClassVar[str] = "text"

    change_type: ChangeType
    severity: Severity
    line_number: int
    base_text: Optional[str] = None
    compare_text: Optional[str] = None
    start_offset: int = 0
    end_offset: int = 0
    bbox: Optional[Dict[str, float]] = None


@dataclass(frozen=True)
class ImageDifference:
    kind: ClassVar[str] = "image"

    change_type: ChangeType
    severity: Severity
    base_image: Optional[ImageElement] = None
    compare_image: Optional[ImageElement] = None
    only_in_base: bool = False
    only_in_compare: bool = False
    dimensions_different: bool = False
    position_different: bool = False
    format_different: bool = False
    similarity: Optional[float] = None
    bbox: Optional[Dict[str, float]] = None


@dataclass(frozen=True)
class FontDifference:
    kind: ClassVar[str] = "font"

    change_type: ChangeType
    severity: Severity
    font_name: str
    base_font: Optional[FontDescriptor] = None
    compare_font: Optional[FontDescriptor] = None
    embedding_different: bool = False
    subset_different: bool = False
    bbox: Optional[Dict[str, float]] = None


@dataclass(frozen=True)
class StyleDifference:
    kind: ClassVar[str] = "style"

    change_type: ChangeType
    severity: Severity
    run_index: int
    text: str = ""
    base_style: Optional[Style] = None
    compare_style: Optional[Style] = None
    changed_attributes: Tuple[str, ...] = ()
    bbox: Optional[Dict[str, float]] = None


@dataclass(frozen=True)
class MetadataDifference:
    kind: ClassVar[str] = "metadata"

    change_type: ChangeType
    severity: Severity
    key: str
    base_value: Any = None
    compare_value: Any = None
    bbox: Optional[Dict[str, float]] = None


@dataclass(frozen=True)
class StructureDifference:
    kind: ClassVar[str] = "structure"

    change_type: ChangeType
    severity: Severity
    description: str
    base_page: int = NO_PAGE
    compare_page: int = NO_PAGE
    bbox: Optional[Dict[str, float]] = None


Difference = Union[
    TextDifference,
    ImageDifference,
    FontDifference,
    StyleDifference,
    MetadataDifference,
    StructureDifference,
]

DIFFERENCE_KINDS: Tuple[str, ...] = tuple(
    cls.kind
    for cls in (
        TextDifference,
        ImageDifference,
        FontDifference,
        StyleDifference,
        MetadataDifference,
        StructureDifference,
    )
)


def difference_to_dict(diff: Difference) -> dict:
    data = asdict(diff)
    data["kind"] = diff.kind
    data["change_type"] = diff.change_type.value
    data["severity"] = diff.severity.value
    return data


# =============================================================================
# Page and document results
# =============================================================================

@dataclass
class PageComparisonResult:
    base_page: int
    compare_page: int
    similarity: float = 0.0
    only_in_base: bool = False
    only_in_compare: bool = False
    dimensions_different: bool = False
    visual_similarity: Optional[float] = None
    text_differences: List[TextDifference] = field(default_factory=list)
    image_differences: List[ImageDifference] = field(default_factory=list)
    font_differences: List[FontDifference] = field(default_factory=list)
    style_differences: List[StyleDifference] = field(default_factory=list)
    structure_differences: List[StructureDifference] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def differences(self) -> List[Difference]:
        return [
            *self.structure_differences,
            *self.text_differences,
            *self.image_differences,
            *self.font_differences,
            *self.style_differences,
        ]

    @property
    def difference_count(self) -> int:
        return len(self.differences)

    @property
    def is_identical(self) -> bool:
        return self.error is None and not self.dimensions_different and self.difference_count == 0

    def to_dict(self) -> dict:
        return {
            "base_page": self.base_page,
            "compare_page": self.compare_page,
            "similarity": self.similarity,
            "only_in_base": self.only_in_base,
            "only_in_compare": self.only_in_compare,
            "dimensions_different": self.dimensions_different,
            "visual_similarity": self.visual_similarity,
            "error": self.error,
            "differences": [difference_to_dict(d) for d in self.differences],
        }


@dataclass
class ComparisonSummary:
    matched_pages: int = 0
    unmatched_base_pages: int = 0
    unmatched_compare_pages: int = 0
    identical_pages: int = 0
    pages_with_differences: int = 0
    failed_pages: int = 0
    totals: Dict[str, int] = field(default_factory=dict)
    total_differences: int = 0
    structural_differences: int = 0
    overall_similarity: float = 0.0
    page_count_mismatch: bool = False

    @property
    def identical_percentage(self) -> float:
        if self.matched_pages == 0:
            return 0.0
        return 100.0 * self.identical_pages / self.matched_pages

    def to_dict(self) -> dict:
        data = asdict(self)
        data["identical_percentage"] = self.identical_percentage
        return data


@dataclass
class ComparisonResult:
    base_name: str
    compare_name: str
    page_pairs: List[PagePair] = field(default_factory=list)
    document_pairs: List[DocumentPair] = field(default_factory=list)
    page_results: List[PageComparisonResult] = field(default_factory=list)
    metadata_differences: List[MetadataDifference] = field(default_factory=list)
    summary: ComparisonSummary = field(default_factory=ComparisonSummary)
    complete: bool = True
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "base_name": self.base_name,
            "compare_name": self.compare_name,
            "complete": self.complete,
            "page_pairs": [asdict(p) for p in self.page_pairs],
            "document_pairs": [asdict(p) for p in self.document_pairs],
            "page_results": [r.to_dict() for r in self.page_results],
            "metadata_differences": [difference_to_dict(d) for d in self.metadata_differences],
            "summary": self.summary.to_dict(),
            "metadata": dict(self.metadata),
        }
