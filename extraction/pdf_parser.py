"""Digital PDF extraction and rendering using PyMuPDF."""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from comparison.models import (
    SUBSET_PREFIX,
    DocumentData,
    FontDescriptor,
    ImageElement,
    PageData,
    Style,
    TextRun,
)
from utils.logging import logger

if TYPE_CHECKING:
    from PIL import Image


# PDF stream filters -> conventional image format names
_FILTER_FORMATS = {
    "DCTDecode": "jpeg",
    "JPXDecode": "jpx",
    "FlateDecode": "png",
    "CCITTFaxDecode": "tiff",
    "JBIG2Decode": "jbig2",
}


def _import_fitz():
    try:
        import fitz  # PyMuPDF
    except ImportError as exc:
        raise RuntimeError(
            "PyMuPDF is required for PDF parsing. Install via `pip install PyMuPDF`."
        ) from exc
    return fitz


def _bbox_dict(bbox) -> Dict[str, float]:
    x0, y0, x1, y1 = bbox
    return {"x": float(x0), "y": float(y0), "width": float(x1 - x0), "height": float(y1 - y0)}


def _color_to_rgb(color: Any) -> Optional[Tuple[int, int, int]]:
    if not isinstance(color, int):
        return None
    return ((color >> 16) & 0xFF, (color >> 8) & 0xFF, color & 0xFF)


def _extract_runs(page, fitz) -> List[TextRun]:
    runs: List[TextRun] = []
    content = page.get_text("dict", flags=fitz.TEXT_PRESERVE_LIGATURES)
    for block in content.get("blocks", []):
        if block.get("type") != 0:  # Not text block
            continue
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                text = span.get("text", "")
                if not text.strip():
                    continue
                flags = span.get("flags", 0)
                runs.append(
                    TextRun(
                        text=text,
                        bbox=_bbox_dict(span["bbox"]),
                        style=Style(
                            font=span.get("font"),
                            size=span.get("size"),
                            bold=bool(flags & 16),  # Bit 4 indicates bold
                            italic=bool(flags & 1),  # Bit 0 indicates italic
                            color=_color_to_rgb(span.get("color")),
                        ),
                    )
                )
    return runs


def _extract_images(page) -> List[ImageElement]:
    filters = {entry[0]: entry[8] for entry in page.get_images(full=True)}
    images: List[ImageElement] = []
    for index, info in enumerate(page.get_image_info(xrefs=True)):
        xref = info.get("xref", 0)
        name = f"xref{xref}" if xref else f"inline{index}"
        images.append(
            ImageElement(
                name=name,
                bbox=_bbox_dict(info["bbox"]),
                format=_FILTER_FORMATS.get(filters.get(xref, ""), filters.get(xref, "") or "unknown"),
            )
        )
    return images


def _extract_fonts(page) -> List[FontDescriptor]:
    fonts: List[FontDescriptor] = []
    seen = set()
    for xref, ext, _font_type, basefont, _name, _encoding in page.get_fonts(full=False):
        if not basefont or basefont in seen:
            continue
        seen.add(basefont)
        family = SUBSET_PREFIX.sub("", basefont).split(",")[0].split("-")[0]
        fonts.append(
            FontDescriptor(
                name=basefont,
                family=family or None,
                embedded=ext != "n/a",
                subset=bool(SUBSET_PREFIX.match(basefont)),
            )
        )
    return fonts


def _extract_page(page, index: int, fitz) -> PageData:
    return PageData(
        page_num=index,
        width=page.rect.width,
        height=page.rect.height,
        text=page.get_text("text"),
        runs=_extract_runs(page, fitz),
        images=_extract_images(page),
        fonts=_extract_fonts(page),
        metadata={"rotation": page.rotation},
    )


class PdfDocumentProvider:
    """DocumentProvider backed by PyMuPDF."""

    def load_document(self, source: str | Path) -> DocumentData:
        """Extract text runs, images, fonts and metadata from a digital PDF.

        A page that fails to parse is returned as a PageData with ``error``
        set; the remaining pages are still extracted.
        """
        fitz = _import_fitz()
        path = Path(source)
        logger.info("Parsing PDF: %s", path)

        pages: List[PageData] = []
        with fitz.open(path) as doc:
            metadata = {k: v for k, v in (doc.metadata or {}).items() if v}
            for index in range(doc.page_count):
                try:
                    page = doc.load_page(index)
                    pages.append(_extract_page(page, index, fitz))
                except Exception as exc:  # one bad page must not sink the document
                    logger.warning("Failed to extract page %d of %s: %s", index + 1, path, exc)
                    pages.append(PageData(page_num=index, width=0.0, height=0.0, error=str(exc)))

        logger.info("Extracted %d pages from PDF", len(pages))
        return DocumentData(name=path.name, pages=pages, metadata=metadata)

    def render_pages(self, source: str | Path, dpi: int = 72) -> List[Optional["Image.Image"]]:
        """Render each page to an RGB image; pages that fail to render yield None."""
        fitz = _import_fitz()
        from PIL import Image

        path = Path(source)
        zoom = dpi / 72.0
        images: List[Optional["Image.Image"]] = []
        with fitz.open(path) as doc:
            for index in range(doc.page_count):
                try:
                    pix = doc.load_page(index).get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
                    images.append(Image.frombytes("RGB", (pix.width, pix.height), pix.samples))
                except Exception as exc:
                    logger.warning("Failed to render page %d of %s: %s", index + 1, path, exc)
                    images.append(None)
        logger.debug("Rendered %d pages of %s at %d dpi", len(images), path, dpi)
        return images
