"""Field-level difference extraction for matched page pairs."""
from __future__ import annotations

import difflib
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from comparison.models import (
    NO_PAGE,
    ChangeType,
    FontDescriptor,
    FontDifference,
    ImageDifference,
    ImageElement,
    MetadataDifference,
    PageComparisonResult,
    PageData,
    PagePair,
    Severity,
    StructureDifference,
    Style,
    StyleDifference,
    TextDifference,
    TextRun,
)
from comparison.visual_diff import compute_ssim
from config.settings import settings
from utils.logging import logger
from utils.page_checksum import hash_similarity

if TYPE_CHECKING:
    from PIL import Image


DEFAULT_SEVERITY_POLICY: Mapping[str, Severity] = MappingProxyType(
    {
        "structure": Severity.CRITICAL,
        "image": Severity.MAJOR,
        "font": Severity.MAJOR,
        "text": Severity.MINOR,
        "style": Severity.MINOR,
        "metadata": Severity.COSMETIC,
    }
)


def _collapse(line: str) -> str:
    return " ".join(line.split())


def _text_lines(page: PageData) -> List[str]:
    return [line for line in (_collapse(raw) for raw in page.text.splitlines()) if line]


def _changed_span(before: str, after: str) -> Tuple[int, int]:
    """Offsets of the changed region within ``after``, by common prefix/suffix."""
    limit = min(len(before), len(after))
    prefix = 0
    while prefix < limit and before[prefix] == after[prefix]:
        prefix += 1
    suffix = 0
    while suffix < limit - prefix and before[-1 - suffix] == after[-1 - suffix]:
        suffix += 1
    return prefix, len(after) - suffix


class DifferenceExtractor:
    """
    Classify differences between two matched pages per modality.

    Severity comes from a kind -> Severity policy; pass ``policy`` to
    override individual entries.
    """

    def __init__(self, policy: Optional[Mapping[str, Severity]] = None):
        merged = dict(DEFAULT_SEVERITY_POLICY)
        merged.update(policy or {})
        self.policy: Mapping[str, Severity] = MappingProxyType(merged)
        self.dimension_tolerance = settings.dimension_tolerance
        self.position_tolerance = settings.position_tolerance
        self.font_size_tolerance = settings.font_size_tolerance

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def compare_pages(
        self,
        base_page: Optional[PageData],
        compare_page: Optional[PageData],
        pair: Optional[PagePair] = None,
        base_image: Optional["Image.Image"] = None,
        compare_image: Optional["Image.Image"] = None,
    ) -> PageComparisonResult:
        """Compare one page pair; either side may be None for inserted/deleted pages."""
        if base_page is None and compare_page is None:
            raise ValueError("compare_pages needs at least one page")

        base_index = base_page.page_num if base_page is not None else NO_PAGE
        compare_index = compare_page.page_num if compare_page is not None else NO_PAGE
        result = PageComparisonResult(
            base_page=base_index,
            compare_page=compare_index,
            similarity=pair.similarity if pair is not None else 0.0,
        )

        if base_page is None or compare_page is None:
            return self._one_sided(result)

        if base_page.failed or compare_page.failed:
            reason = "; ".join(
                f"{label}: {page.error}"
                for label, page in (("base", base_page), ("compare", compare_page))
                if page.failed
            )
            return self._not_comparable(result, reason)

        result.dimensions_different = (
            abs(base_page.width - compare_page.width) > self.dimension_tolerance
            or abs(base_page.height - compare_page.height) > self.dimension_tolerance
        )
        result.text_differences = self.compare_text(base_page, compare_page)
        result.style_differences = self.compare_styles(base_page.runs, compare_page.runs)
        result.image_differences = self.compare_images(base_page.images, compare_page.images)
        result.font_differences = self.compare_fonts(base_page.fonts, compare_page.fonts)
        if base_image is not None and compare_image is not None:
            try:
                result.visual_similarity = compute_ssim(base_image, compare_image)
            except Exception as exc:
                logger.warning(
                    "SSIM failed for page %d<->%d: %s. Continuing without it.",
                    base_index,
                    compare_index,
                    exc,
                )

        logger.debug(
            "Page %d<->%d: %d differences",
            base_index,
            compare_index,
            result.difference_count,
        )
        return result

    def _one_sided(self, result: PageComparisonResult) -> PageComparisonResult:
        if result.compare_page == NO_PAGE:
            result.only_in_base = True
            change = ChangeType.DELETED
            description = f"Page {result.base_page + 1} exists only in the base document"
        else:
            result.only_in_compare = True
            change = ChangeType.ADDED
            description = f"Page {result.compare_page + 1} exists only in the compare document"
        result.structure_differences = [
            StructureDifference(
                change_type=change,
                severity=self.policy["structure"],
                description=description,
                base_page=result.base_page,
                compare_page=result.compare_page,
            )
        ]
        return result

    def could_not_compare(
        self,
        base_page: Optional[PageData],
        compare_page: Optional[PageData],
        pair: Optional[PagePair],
        reason: str,
    ) -> PageComparisonResult:
        """Result for a pair whose comparison raised; the rest of the run carries on."""
        result = PageComparisonResult(
            base_page=base_page.page_num if base_page is not None else NO_PAGE,
            compare_page=compare_page.page_num if compare_page is not None else NO_PAGE,
            similarity=pair.similarity if pair is not None else 0.0,
        )
        return self._not_comparable(result, reason)

    def _not_comparable(self, result: PageComparisonResult, reason: str) -> PageComparisonResult:
        result.error = reason
        logger.warning(
            "Could not compare page %d<->%d (%s)",
            result.base_page,
            result.compare_page,
            result.error,
        )
        result.structure_differences = [
            StructureDifference(
                change_type=ChangeType.MODIFIED,
                severity=self.policy["structure"],
                description=f"Could not compare page: {result.error}",
                base_page=result.base_page,
                compare_page=result.compare_page,
            )
        ]
        return result

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    @staticmethod
    def _line_bboxes(page: PageData) -> Dict[str, Dict[str, float]]:
        bboxes: Dict[str, Dict[str, float]] = {}
        for run in page.runs:
            bboxes.setdefault(_collapse(run.text), run.bbox)
        return bboxes

    def compare_text(self, base_page: PageData, compare_page: PageData) -> List[TextDifference]:
        base_lines = _text_lines(base_page)
        compare_lines = _text_lines(compare_page)
        if base_lines == compare_lines:
            return []

        severity = self.policy["text"]
        base_boxes = self._line_bboxes(base_page)
        compare_boxes = self._line_bboxes(compare_page)
        diffs: List[TextDifference] = []

        def deleted(i: int) -> TextDifference:
            line = base_lines[i]
            return TextDifference(
                change_type=ChangeType.DELETED,
                severity=severity,
                line_number=i + 1,
                base_text=line,
                start_offset=0,
                end_offset=len(line),
                bbox=base_boxes.get(line),
            )

        def added(j: int) -> TextDifference:
            line = compare_lines[j]
            return TextDifference(
                change_type=ChangeType.ADDED,
                severity=severity,
                line_number=j + 1,
                compare_text=line,
                start_offset=0,
                end_offset=len(line),
                bbox=compare_boxes.get(line),
            )

        matcher = difflib.SequenceMatcher(None, base_lines, compare_lines, autojunk=False)
        for tag, i1, i2, j1, j2 in matcher.get_opcodes():
            if tag == "equal":
                continue
            if tag == "delete":
                diffs.extend(deleted(i) for i in range(i1, i2))
            elif tag == "insert":
                diffs.extend(added(j) for j in range(j1, j2))
            else:  # replace
                paired = min(i2 - i1, j2 - j1)
                for k in range(paired):
                    before = base_lines[i1 + k]
                    after = compare_lines[j1 + k]
                    start, end = _changed_span(before, after)
                    diffs.append(
                        TextDifference(
                            change_type=ChangeType.MODIFIED,
                            severity=severity,
                            line_number=j1 + k + 1,
                            base_text=before,
                            compare_text=after,
                            start_offset=start,
                            end_offset=end,
                            bbox=compare_boxes.get(after) or base_boxes.get(before),
                        )
                    )
                diffs.extend(deleted(i) for i in range(i1 + paired, i2))
                diffs.extend(added(j) for j in range(j1 + paired, j2))
        return diffs

    # ------------------------------------------------------------------
    # Styles
    # ------------------------------------------------------------------

    def _style_changes(self, style_a: Style, style_b: Style) -> Tuple[str, ...]:
        changed = []
        if (style_a.font or "") != (style_b.font or ""):
            changed.append("font")
        if abs((style_a.size or 0.0) - (style_b.size or 0.0)) > self.font_size_tolerance:
            changed.append("size")
        if style_a.bold != style_b.bold:
            changed.append("bold")
        if style_a.italic != style_b.italic:
            changed.append("italic")
        if style_a.color != style_b.color:
            changed.append("color")
        return tuple(changed)

    def compare_styles(self, base_runs: List[TextRun], compare_runs: List[TextRun]) -> List[StyleDifference]:
        """Style changes on runs whose text is unchanged, compared by position in the run list."""
        diffs: List[StyleDifference] = []
        for index, (run_a, run_b) in enumerate(zip(base_runs, compare_runs)):
            if _collapse(run_a.text) != _collapse(run_b.text):
                continue
            changed = self._style_changes(run_a.style, run_b.style)
            if not changed:
                continue
            diffs.append(
                StyleDifference(
                    change_type=ChangeType.MODIFIED,
                    severity=self.policy["style"],
                    run_index=index,
                    text=run_a.text,
                    base_style=run_a.style,
                    compare_style=run_b.style,
                    changed_attributes=changed,
                    bbox=run_b.bbox,
                )
            )
        return diffs

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def compare_images(
        self,
        base_images: List[ImageElement],
        compare_images: List[ImageElement],
    ) -> List[ImageDifference]:
        severity = self.policy["image"]
        diffs: List[ImageDifference] = []

        for index in range(max(len(base_images), len(compare_images))):
            image_a = base_images[index] if index < len(base_images) else None
            image_b = compare_images[index] if index < len(compare_images) else None

            if image_b is None:
                diffs.append(ImageDifference(
                    change_type=ChangeType.DELETED, severity=severity,
                    base_image=image_a, only_in_base=True, bbox=image_a.bbox,
                ))
                continue
            if image_a is None:
                diffs.append(ImageDifference(
                    change_type=ChangeType.ADDED, severity=severity,
                    compare_image=image_b, only_in_compare=True, bbox=image_b.bbox,
                ))
                continue

            dimensions_different = (
                abs(image_a.width - image_b.width) > self.dimension_tolerance
                or abs(image_a.height - image_b.height) > self.dimension_tolerance
            )
            position_different = (
                abs(image_a.bbox.get("x", 0.0) - image_b.bbox.get("x", 0.0)) > self.position_tolerance
                or abs(image_a.bbox.get("y", 0.0) - image_b.bbox.get("y", 0.0)) > self.position_tolerance
            )
            format_different = (image_a.format or "").lower() != (image_b.format or "").lower()
            similarity = hash_similarity(image_a.hash, image_b.hash) if image_a.hash and image_b.hash else None

            if not (dimensions_different or position_different or format_different):
                continue
            diffs.append(ImageDifference(
                change_type=ChangeType.MODIFIED,
                severity=severity,
                base_image=image_a,
                compare_image=image_b,
                dimensions_different=dimensions_different,
                position_different=position_different,
                format_different=format_different,
                similarity=similarity,
                bbox=image_b.bbox,
            ))
        return diffs

    # ------------------------------------------------------------------
    # Fonts
    # ------------------------------------------------------------------

    def compare_fonts(
        self,
        base_fonts: List[FontDescriptor],
        compare_fonts: List[FontDescriptor],
    ) -> List[FontDifference]:
        """Fonts pair up by name with any subset tag removed, so a re-tagged or
        newly subset font reports a flag change rather than a removal plus an addition."""
        severity = self.policy["font"]
        fonts_a = {font.canonical_name: font for font in base_fonts}
        fonts_b = {font.canonical_name: font for font in compare_fonts}
        diffs: List[FontDifference] = []

        for name, font_a in fonts_a.items():
            font_b = fonts_b.get(name)
            if font_b is None:
                diffs.append(FontDifference(
                    change_type=ChangeType.DELETED, severity=severity, font_name=name, base_font=font_a,
                ))
                continue
            embedding_different = font_a.embedded != font_b.embedded
            subset_different = font_a.subset != font_b.subset
            if embedding_different or subset_different:
                diffs.append(FontDifference(
                    change_type=ChangeType.MODIFIED,
                    severity=severity,
                    font_name=name,
                    base_font=font_a,
                    compare_font=font_b,
                    embedding_different=embedding_different,
                    subset_different=subset_different,
                ))

        for name, font_b in fonts_b.items():
            if name not in fonts_a:
                diffs.append(FontDifference(
                    change_type=ChangeType.ADDED, severity=severity, font_name=name, compare_font=font_b,
                ))
        return diffs

    # ------------------------------------------------------------------
    # Document metadata
    # ------------------------------------------------------------------

    def compare_metadata(
        self,
        base_meta: Optional[Mapping[str, Any]],
        compare_meta: Optional[Mapping[str, Any]],
    ) -> List[MetadataDifference]:
        base_meta = base_meta or {}
        compare_meta = compare_meta or {}
        severity = self.policy["metadata"]
        diffs: List[MetadataDifference] = []

        for key, value in base_meta.items():
            if key not in compare_meta:
                diffs.append(MetadataDifference(ChangeType.DELETED, severity, key, base_value=value))
            elif compare_meta[key] != value:
                diffs.append(MetadataDifference(
                    ChangeType.MODIFIED, severity, key, base_value=value, compare_value=compare_meta[key],
                ))
        for key, value in compare_meta.items():
            if key not in base_meta:
                diffs.append(MetadataDifference(ChangeType.ADDED, severity, key, compare_value=value))
        return diffs
