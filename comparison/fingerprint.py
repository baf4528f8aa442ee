"""Per-page fingerprints used by the matchers."""
from __future__ import annotations

from collections import Counter
from concurrent.futures import Executor
from typing import TYPE_CHECKING, Any, List, Mapping, Optional, Sequence

from comparison.models import DocumentData, PageData, PageFingerprint, Source
from config.settings import settings
from utils.logging import logger
from utils.page_checksum import compute_perceptual_hash, compute_text_checksum
from utils.text_normalization import normalize_text, significant_words

if TYPE_CHECKING:
    from PIL import Image


def build_fingerprint(
    page: PageData,
    source: Source,
    image: Optional["Image.Image"] = None,
    method: Optional[str] = None,
    grid_size: Optional[int] = None,
    extensions: Optional[Mapping[str, Any]] = None,
) -> PageFingerprint:
    """Summarize one page. A page the provider failed on yields an empty fingerprint."""
    if page.failed:
        logger.warning("Page %d (%s) failed extraction: %s", page.page_num, source, page.error)
        return PageFingerprint(
            source=source,
            page_index=page.page_num,
            width=page.width,
            height=page.height,
            extensions={"error": page.error, **(extensions or {})},
        )

    text = normalize_text(page.text)
    font_usage = Counter(run.font_name for run in page.runs if run.font_name)

    perceptual_hash = None
    if image is not None:
        perceptual_hash = compute_perceptual_hash(
            image,
            method=method or settings.hash_method,
            grid_size=grid_size or settings.hash_grid_size,
        )

    return PageFingerprint(
        source=source,
        page_index=page.page_num,
        width=page.width,
        height=page.height,
        text=text,
        text_hash=compute_text_checksum(text),
        significant_words=significant_words(text),
        font_usage=dict(font_usage),
        element_count=len(page.runs) + len(page.images),
        image_count=len(page.images),
        perceptual_hash=perceptual_hash,
        extensions=extensions or {},
    )


def _build_or_empty(page: PageData, source: Source, image) -> PageFingerprint:
    try:
        return build_fingerprint(page, source, image)
    except Exception as exc:
        logger.warning(
            "Fingerprint failed for page %d (%s): %s. Continuing with an empty one.",
            page.page_num,
            source,
            exc,
        )
        return PageFingerprint(
            source=source,
            page_index=page.page_num,
            width=page.width,
            height=page.height,
            extensions={"error": f"{type(exc).__name__}: {exc}"},
        )


def build_fingerprints(
    document: DocumentData,
    source: Source,
    images: Optional[Sequence[Optional["Image.Image"]]] = None,
    executor: Optional[Executor] = None,
) -> List[PageFingerprint]:
    """Fingerprint every page, in page order. A page that raises gets an empty fingerprint."""
    images = list(images or [])

    def _image_for(index: int):
        return images[index] if index < len(images) else None

    if executor is None:
        fingerprints = [
            _build_or_empty(page, source, _image_for(i)) for i, page in enumerate(document.pages)
        ]
    else:
        futures = [
            executor.submit(_build_or_empty, page, source, _image_for(i))
            for i, page in enumerate(document.pages)
        ]
        fingerprints = [future.result() for future in futures]

    logger.debug("Built %d %s fingerprints", len(fingerprints), source)
    return fingerprints
