"""
PDF backends using PyMuPDF.

Two backends share one document-opening path:
- PdfTextOnlyParser reads only the embedded text layer (cheap first pass)
- PdfOcrParser renders every page and runs OCR over it, either instead of
  the text layer (OCR_ONLY) or in addition to it (OCR_AND_TEXT)

With OCR_AND_TEXT the text layer and the OCR of the rendered page are
concatenated per page, so text that is present in both appears twice.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from docharvest.exceptions import EncryptedDocumentError, ParseError

from ..constants import MAX_DOCUMENT_PAGES, RENDER_DPI
from ..metadata import DocumentMetadata
from ..ocr import OCREngine, OcrOptions
from ..result import ExtractionOutcome
from ..stream import StreamBuffer
from .base import BackendId, ParserBackend

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"

# PyMuPDF document info -> exported metadata key
PDF_INFO_KEYS = {
    "format": "pdf:PDFVersion",
    "title": "dc:title",
    "author": "dc:creator",
    "subject": "dc:subject",
    "keywords": "meta:keyword",
    "creator": "xmp:CreatorTool",
    "producer": "pdf:producer",
    "creationDate": "dcterms:created",
    "modDate": "dcterms:modified",
}


class OcrStrategy(str, Enum):
    NO_OCR = "no_ocr"
    OCR_ONLY = "ocr_only"
    OCR_AND_TEXT = "ocr_and_text"


@dataclass(frozen=True)
class PdfOptions:
    """Rendering / OCR settings for a PDF backend."""
    ocr_strategy: OcrStrategy = OcrStrategy.NO_OCR
    render_dpi: int = RENDER_DPI
    max_pages: int = MAX_DOCUMENT_PAGES

    @classmethod
    def for_ocr(cls, ocr_only: bool) -> "PdfOptions":
        return cls(ocr_strategy=OcrStrategy.OCR_ONLY if ocr_only else OcrStrategy.OCR_AND_TEXT)


def open_pdf(content: bytes, backend: Optional[str] = None) -> Any:
    """
    Open PDF bytes with PyMuPDF.

    Raises:
        EncryptedDocumentError: The document needs a password
        ParseError: PyMuPDF is missing or the bytes are not a readable PDF
    """
    try:
        import fitz  # PyMuPDF
    except ImportError as e:
        raise ParseError("PyMuPDF not installed. Run: pip install pymupdf", backend=backend, cause=e) from e

    try:
        doc = fitz.open(stream=content, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        raise ParseError(f"Unable to open PDF: {e}", backend=backend, cause=e) from e

    if doc.needs_pass:
        doc.close()
        raise EncryptedDocumentError(backend=backend)
    return doc


def pdf_metadata(doc: Any, **extra: Any) -> DocumentMetadata:
    info: Dict[str, Any] = {}
    for source_key, target_key in PDF_INFO_KEYS.items():
        value = (doc.metadata or {}).get(source_key)
        if value:
            info[target_key] = value
    info.update(extra)
    return DocumentMetadata(
        content_type=PDF_CONTENT_TYPE,
        page_count=doc.page_count,
        extra=info,
    )


def extract_text_layer(doc: Any) -> str:
    """Embedded text of every page, blank pages dropped."""
    pages = (page.get_text().strip() for page in doc)
    return "\n\n".join(text for text in pages if text)


class PdfTextOnlyParser(ParserBackend):
    """Text-layer extraction only. Never runs OCR, never extracts inline images."""

    backend_id = BackendId.PDF_TEXT_ONLY

    def parse(self, buffer: StreamBuffer, document_id: Optional[str] = None) -> ExtractionOutcome:
        doc = open_pdf(buffer.read_all(), backend=self.backend_id.value)
        try:
            text = extract_text_layer(doc)
            metadata = pdf_metadata(doc)
        except (RuntimeError, ValueError) as e:
            raise ParseError(f"PDF text extraction failed: {e}", backend=self.backend_id.value, cause=e) from e
        finally:
            doc.close()

        logger.debug(f"Text layer of {document_id or '<stream>'}: {len(text)} chars")
        return ExtractionOutcome(text=text, metadata=metadata, bytes_consumed=buffer.position())


class PdfOcrParser(ParserBackend):
    """Renders pages to images and OCRs them."""

    backend_id = BackendId.PDF_OCR

    def __init__(
        self,
        ocr_engine: OCREngine,
        pdf_options: PdfOptions,
        ocr_options: Optional[OcrOptions] = None,
    ):
        if pdf_options.ocr_strategy == OcrStrategy.NO_OCR:
            raise ValueError("PdfOcrParser requires an OCR strategy")
        self.ocr_engine = ocr_engine
        self.pdf_options = pdf_options
        self.ocr_options = ocr_options or OcrOptions()

    def parse(self, buffer: StreamBuffer, document_id: Optional[str] = None) -> ExtractionOutcome:
        backend = self.backend_id.value
        doc = open_pdf(buffer.read_all(), backend=backend)

        pages_text = []
        truncated = False
        try:
            for i, page in enumerate(doc):
                if i >= self.pdf_options.max_pages:
                    logger.warning(f"PDF exceeds {self.pdf_options.max_pages} page limit, truncating OCR")
                    truncated = True
                    break

                ocr_text = self._ocr_page(page)
                if self.pdf_options.ocr_strategy == OcrStrategy.OCR_AND_TEXT:
                    native_text = page.get_text().strip()
                    parts = [native_text, ocr_text]
                else:
                    parts = [ocr_text]
                page_text = "\n".join(part for part in parts if part)
                if page_text:
                    pages_text.append(page_text)
                logger.debug(f"Page {i+1}: OCR ({len(ocr_text)} chars)")

            metadata = pdf_metadata(
                doc,
                **{
                    "ocr:strategy": self.pdf_options.ocr_strategy.value,
                    "ocr:language": self.ocr_options.language,
                    "ocr:truncated": truncated or None,
                },
            )
        except (RuntimeError, ValueError) as e:
            raise ParseError(f"PDF OCR failed: {e}", backend=backend, cause=e) from e
        finally:
            doc.close()

        return ExtractionOutcome(
            text="\n\n".join(pages_text),
            metadata=metadata,
            bytes_consumed=buffer.position(),
        )

    def _ocr_page(self, page: Any) -> str:
        import numpy as np
        from PIL import Image

        pix = page.get_pixmap(dpi=self.pdf_options.render_dpi)
        img = Image.frombytes("RGB", [pix.width, pix.height], pix.samples)
        return self.ocr_engine.extract_text(np.array(img), self.ocr_options)
