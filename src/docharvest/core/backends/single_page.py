"""
Legacy single-page OCR backend.

Office suites commonly export scanned material as a one-page PDF holding a
single full-page image and no usable text layer. This backend rasterizes the
first page with ImageMagick and runs OCR over the resulting bitmap, instead
of going through PyMuPDF's page rendering.

The policy only selects it for documents whose text-only pass reported a
page count of exactly one.
"""

import io
import logging
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from docharvest.exceptions import ParseError

from ..constants import (
    DEFAULT_CONVERSION_DENSITY,
    DEFAULT_CONVERSION_TIMEOUT,
    DEFAULT_CONVERT_BINARY,
)
from ..metadata import DocumentMetadata
from ..ocr import OCREngine, OcrOptions
from ..result import ExtractionOutcome
from ..stream import StreamBuffer
from .base import BackendId, ParserBackend
from .pdf import PDF_CONTENT_TYPE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversionOptions:
    """ImageMagick invocation settings."""
    convert_binary: str = DEFAULT_CONVERT_BINARY
    density: int = DEFAULT_CONVERSION_DENSITY
    timeout: float = DEFAULT_CONVERSION_TIMEOUT


class ImageMagickConverter:
    """Rasterizes the first page of a PDF to PNG via the ImageMagick CLI."""

    def __init__(self, options: Optional[ConversionOptions] = None):
        self.options = options or ConversionOptions()

    def build_command(self, source: Path, target: Path) -> list:
        return [
            self.options.convert_binary,
            "-density", str(self.options.density),
            f"{source}[0]",
            "-background", "white",
            "-alpha", "remove",
            "-depth", "8",
            str(target),
        ]

    def convert_first_page(self, content: bytes) -> bytes:
        """
        Returns:
            PNG bytes of page one

        Raises:
            ParseError: Binary missing, conversion failed or timed out
        """
        backend = BackendId.PDF_SINGLE_PAGE_OCR.value
        with tempfile.TemporaryDirectory(prefix="docharvest-") as tmp:
            source = Path(tmp) / "input.pdf"
            target = Path(tmp) / "page.png"
            source.write_bytes(content)

            try:
                subprocess.run(
                    self.build_command(source, target),
                    check=True,
                    capture_output=True,
                    timeout=self.options.timeout,
                )
            except FileNotFoundError as e:
                raise ParseError(
                    f"ImageMagick binary not found: {self.options.convert_binary}",
                    backend=backend,
                    cause=e,
                ) from e
            except subprocess.TimeoutExpired as e:
                raise ParseError(
                    f"Image conversion timed out after {self.options.timeout:g}s",
                    backend=backend,
                    cause=e,
                ) from e
            except subprocess.CalledProcessError as e:
                stderr = (e.stderr or b"").decode("utf-8", errors="replace").strip()
                raise ParseError(
                    f"Image conversion failed (exit {e.returncode}): {stderr}",
                    backend=backend,
                    cause=e,
                ) from e

            if not target.exists():
                raise ParseError("Image conversion produced no output", backend=backend)
            return target.read_bytes()


class PdfSinglePageOcrParser(ParserBackend):
    """ImageMagick conversion followed by OCR of the single page image."""

    backend_id = BackendId.PDF_SINGLE_PAGE_OCR

    def __init__(
        self,
        ocr_engine: OCREngine,
        ocr_options: OcrOptions,
        converter: Optional[ImageMagickConverter] = None,
    ):
        self.ocr_engine = ocr_engine
        self.ocr_options = ocr_options
        self.converter = converter or ImageMagickConverter()

    def parse(self, buffer: StreamBuffer, document_id: Optional[str] = None) -> ExtractionOutcome:
        import numpy as np
        from PIL import Image, UnidentifiedImageError

        png = self.converter.convert_first_page(buffer.read_all())
        try:
            image = Image.open(io.BytesIO(png)).convert("RGB")
        except (UnidentifiedImageError, OSError) as e:
            raise ParseError(
                f"Converted page is not a readable image: {e}",
                backend=self.backend_id.value,
                cause=e,
            ) from e

        text = self.ocr_engine.extract_text(np.array(image), self.ocr_options)
        logger.debug(f"Single-page OCR of {document_id or '<stream>'}: {len(text)} chars")

        metadata = DocumentMetadata(
            content_type=PDF_CONTENT_TYPE,
            page_count=1,
            extra={
                "ocr:language": self.ocr_options.language,
                "ocr:conversion-density": self.converter.options.density,
            },
        )
        return ExtractionOutcome(text=text, metadata=metadata, bytes_consumed=buffer.position())
