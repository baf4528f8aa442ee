"""Document-model providers consumed by the comparison pipeline."""
from extraction.pdf_parser import PdfDocumentProvider
from extraction.provider import DocumentProvider, DocumentSource, StaticDocumentProvider

__all__ = [
    "DocumentProvider",
    "DocumentSource",
    "PdfDocumentProvider",
    "StaticDocumentProvider",
]
