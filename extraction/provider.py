"""Document-model provider boundary.

The matching engine never parses files itself; a provider turns a source
(usually a path) into a DocumentData plus optional low-resolution page
renders. Concrete providers are injected into the pipeline.
"""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Protocol, Sequence, Union

from comparison.models import DocumentData

if TYPE_CHECKING:
    from PIL import Image

DocumentSource = Union[str, Path]


class DocumentProvider(Protocol):
    def load_document(self, source: DocumentSource) -> DocumentData: ...

    def render_pages(self, source: DocumentSource, dpi: int) -> List[Optional["Image.Image"]]: ...


class StaticDocumentProvider:
    """Serve documents that were extracted elsewhere, keyed by source name."""

    def __init__(
        self,
        documents: Mapping[str, DocumentData],
        images: Optional[Mapping[str, Sequence[Optional["Image.Image"]]]] = None,
    ):
        self._documents: Dict[str, DocumentData] = {str(k): v for k, v in documents.items()}
        self._images = {str(k): list(v) for k, v in (images or {}).items()}

    def load_document(self, source: DocumentSource) -> DocumentData:
        try:
            return self._documents[str(source)]
        except KeyError as exc:
            raise FileNotFoundError(f"Unknown document source: {source}") from exc

    def render_pages(self, source: DocumentSource, dpi: int) -> List[Optional["Image.Image"]]:
        return list(self._images.get(str(source), []))
