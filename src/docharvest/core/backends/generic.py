"""
Generic parser for every non-PDF document.

Detects the media type itself and routes to a format handler (text, CSV,
HTML, XML, RTF, DOCX, XLSX, PPTX, images via OCR, PDF text layer for
embedded PDFs, ZIP archives). Unknown types yield empty text with the
detected Content-Type, not an error.

Archive members are only parsed when an embedded parser has been wired in
with wire_embedded_parser(); otherwise archives list their member names.
"""

import io
import logging
import zipfile
from typing import Callable, Dict, Optional

from docharvest.exceptions import ParseError

from ..constants import (
    MAX_ARCHIVE_NESTING_DEPTH,
    MAX_DECOMPRESSED_SIZE,
    MAX_DOCUMENT_PAGES,
    MAX_FILES_PER_ARCHIVE,
)
from ..detection import (
    APPLICATION_RTF,
    APPLICATION_XML,
    APPLICATION_ZIP,
    DOCX,
    PPTX,
    TEXT_CSV,
    TEXT_HTML,
    TEXT_PLAIN,
    TEXT_TSV,
    XLSX,
    MediaType,
    TypeDetector,
)
from ..formats import (
    FormatResult,
    extract_delimited,
    extract_docx,
    extract_html,
    extract_plain_text,
    extract_pptx,
    extract_rtf,
    extract_xlsx,
    extract_xml,
)
from ..metadata import DocumentMetadata
from ..ocr import OCREngine, OcrOptions
from ..result import ExtractionOutcome
from ..stream import StreamBuffer
from .base import BackendId, ParserBackend
from .pdf import extract_text_layer, open_pdf, pdf_metadata

logger = logging.getLogger(__name__)

FORMAT_HANDLERS: Dict[str, Callable[[bytes], FormatResult]] = {
    str(TEXT_PLAIN): extract_plain_text,
    str(TEXT_CSV): extract_delimited,
    str(TEXT_TSV): lambda content: extract_delimited(content, "\t"),
    str(TEXT_HTML): extract_html,
    "application/xhtml+xml": extract_html,
    str(APPLICATION_XML): extract_xml,
    "text/xml": extract_xml,
    str(APPLICATION_RTF): extract_rtf,
    "text/rtf": extract_rtf,
    str(DOCX): extract_docx,
    str(XLSX): extract_xlsx,
    str(PPTX): extract_pptx,
}

Handler = Callable[[bytes, Optional[str], int], FormatResult]


class GenericParser(ParserBackend):
    """Format-detecting parser for non-PDF documents."""

    backend_id = BackendId.GENERIC

    def __init__(
        self,
        ocr_engine: Optional[OCREngine] = None,
        ocr_options: Optional[OcrOptions] = None,
        detector: Optional[TypeDetector] = None,
        max_depth: int = MAX_ARCHIVE_NESTING_DEPTH,
    ):
        self.ocr_engine = ocr_engine
        self.ocr_options = ocr_options or OcrOptions()
        self.detector = detector or TypeDetector()
        self.max_depth = max_depth
        self._embedded_parser: Optional["GenericParser"] = None

    @property
    def embedded_parser(self) -> Optional["GenericParser"]:
        return self._embedded_parser

    def wire_embedded_parser(self, parser: Optional["GenericParser"]) -> None:
        """Enable recursive parsing of archive members through ``parser`` (usually self)."""
        self._embedded_parser = parser

    def parse(self, buffer: StreamBuffer, document_id: Optional[str] = None) -> ExtractionOutcome:
        media_type = self.detector.detect(buffer, document_id)
        text, metadata = self._parse_content(buffer.read_all(), media_type, document_id, depth=0)
        return ExtractionOutcome(text=text, metadata=metadata, bytes_consumed=buffer.position())

    def parse_embedded(self, content: bytes, resource_name: Optional[str], depth: int) -> ExtractionOutcome:
        """Parse a document found inside a container at nesting level ``depth``."""
        with StreamBuffer.wrap(content) as buffer:
            media_type = self.detector.detect(buffer, resource_name)
        text, metadata = self._parse_content(content, media_type, resource_name, depth)
        return ExtractionOutcome(text=text, metadata=metadata, bytes_consumed=len(content))

    def _handler_for(self, media_type: MediaType) -> Optional[Handler]:
        format_handler = FORMAT_HANDLERS.get(str(media_type))
        if format_handler is not None:
            return lambda content, _name, _depth: format_handler(content)
        if media_type.type == "image":
            return self._parse_image
        if media_type.is_pdf:
            return self._parse_pdf
        if media_type == APPLICATION_ZIP:
            return self._parse_archive
        if media_type.type == "text":
            return lambda content, _name, _depth: extract_plain_text(content)
        return None

    def _parse_content(
        self,
        content: bytes,
        media_type: MediaType,
        resource_name: Optional[str],
        depth: int,
    ) -> tuple:
        handler = self._handler_for(media_type)
        if handler is None:
            logger.info(f"No handler for {media_type} ({resource_name or '<stream>'}); metadata only")
            result = FormatResult(text="")
        else:
            try:
                result = handler(content, resource_name, depth)
            except ParseError:
                raise
            except Exception as e:
                # Library-specific errors (BadZipFile, PackageNotFoundError, ...) share no base class
                raise ParseError(
                    f"Failed to parse {media_type} document: {e}",
                    backend=self.backend_id.value,
                    cause=e,
                ) from e

        for warning in result.warnings:
            logger.warning(f"{resource_name or '<stream>'}: {warning}")

        metadata = DocumentMetadata(
            content_type=str(media_type),
            page_count=result.page_count,
            extra={**result.extra, "warnings": result.warnings or None},
        )
        return result.text, metadata

    def _parse_image(self, content: bytes, resource_name: Optional[str], depth: int) -> FormatResult:
        """OCR every frame of an image (multi-page TIFFs included)."""
        if self.ocr_engine is None or not self.ocr_engine.is_available:
            return FormatResult(text="", page_count=1, warnings=["Image OCR not available"])

        import numpy as np
        from PIL import Image, ImageSequence

        img = Image.open(io.BytesIO(content))
        pages_text = []
        frames = 0
        warnings = []
        for frame in ImageSequence.Iterator(img):
            if frames >= MAX_DOCUMENT_PAGES:
                warnings.append(f"Image truncated at {MAX_DOCUMENT_PAGES} frames")
                break
            frames += 1
            text = self.ocr_engine.extract_text(np.array(frame.convert("RGB")), self.ocr_options)
            if text:
                pages_text.append(text)

        return FormatResult(
            text="\n\n".join(pages_text),
            page_count=frames,
            extra={"ocr:language": self.ocr_options.language},
            warnings=warnings,
        )

    def _parse_pdf(self, content: bytes, resource_name: Optional[str], depth: int) -> FormatResult:
        """Text layer of an embedded PDF. Embedded PDFs are never OCR'd."""
        doc = open_pdf(content, backend=self.backend_id.value)
        try:
            return FormatResult(
                text=extract_text_layer(doc),
                page_count=doc.page_count,
                extra=dict(pdf_metadata(doc).extra),
            )
        finally:
            doc.close()

    def _parse_archive(self, content: bytes, resource_name: Optional[str], depth: int) -> FormatResult:
        parts = []
        warnings = []
        parsed = 0

        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            members = [info for info in archive.infolist() if not info.is_dir()]
            if len(members) > MAX_FILES_PER_ARCHIVE:
                warnings.append(f"Archive truncated at {MAX_FILES_PER_ARCHIVE} entries")
                members = members[:MAX_FILES_PER_ARCHIVE]

            if sum(info.file_size for info in members) > MAX_DECOMPRESSED_SIZE:
                raise ValueError(
                    f"Decompression bomb detected: archive expands beyond "
                    f"{MAX_DECOMPRESSED_SIZE // (1024*1024)}MB limit"
                )

            for info in members:
                if self._embedded_parser is None:
                    parts.append(info.filename)
                    continue
                if depth + 1 > self.max_depth:
                    warnings.append(f"Skipped {info.filename}: nesting depth limit {self.max_depth}")
                    parts.append(info.filename)
                    continue

                try:
                    embedded = self._embedded_parser.parse_embedded(
                        archive.read(info), info.filename, depth + 1
                    )
                except ParseError as e:
                    # One bad member does not fail the container; it is reported instead
                    warnings.append(f"{info.filename}: {e.message}")
                    parts.append(info.filename)
                    continue

                parsed += 1
                nested_warnings = embedded.metadata.extra.get("warnings") or []
                warnings.extend(f"{info.filename}: {w}" for w in nested_warnings)
                parts.append(f"{info.filename}\n{embedded.text}" if embedded.text else info.filename)

        return FormatResult(
            text="\n\n".join(parts),
            extra={"archive-entries": len(members), "embedded-resources": parsed},
            warnings=warnings,
        )
