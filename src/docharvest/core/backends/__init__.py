"""
Parser backends and the backend registry.

build_backends() derives one instance of every enabled backend from the
settings and returns them as a read-only BackendId -> backend mapping.
"""

import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Mapping, Optional

from ..ocr import OCREngine, OcrOptions
from .base import BackendId, ParserBackend
from .generic import GenericParser
from .pdf import OcrStrategy, PdfOcrParser, PdfOptions, PdfTextOnlyParser
from .single_page import ConversionOptions, ImageMagickConverter, PdfSinglePageOcrParser

if TYPE_CHECKING:
    from docharvest.config import ExtractionSettings

logger = logging.getLogger(__name__)

__all__ = [
    "BackendId",
    "ConversionOptions",
    "GenericParser",
    "ImageMagickConverter",
    "OcrStrategy",
    "ParserBackend",
    "PdfOcrParser",
    "PdfOptions",
    "PdfSinglePageOcrParser",
    "PdfTextOnlyParser",
    "build_backends",
]


def ocr_options_from(settings: "ExtractionSettings", timeout: Optional[float] = None) -> OcrOptions:
    return OcrOptions(
        timeout=settings.ocr_timeout if timeout is None else timeout,
        apply_rotation=settings.ocr_apply_rotation,
        enable_image_processing=settings.ocr_enable_image_processing,
        language=settings.ocr_language,
    )


def build_backends(
    settings: "ExtractionSettings",
    ocr_engine: Optional[OCREngine] = None,
) -> Mapping[BackendId, ParserBackend]:
    """
    Instantiate the backend set for ``settings``.

    The single-page backend is only present when
    use_legacy_ocr_parser_for_single_page_documents is enabled. Only the
    generic parser is wired for recursive (embedded document) parsing.
    """
    if ocr_engine is None:
        ocr_engine = OCREngine(models_dir=settings.models_dir, language=settings.ocr_language)
    ocr_options = ocr_options_from(settings)

    generic = GenericParser(ocr_engine=ocr_engine, ocr_options=ocr_options)
    generic.wire_embedded_parser(generic)

    backends = {
        BackendId.GENERIC: generic,
        BackendId.PDF_TEXT_ONLY: PdfTextOnlyParser(),
        BackendId.PDF_OCR: PdfOcrParser(
            ocr_engine,
            PdfOptions.for_ocr(settings.pdf_ocr_only_strategy),
            ocr_options,
        ),
    }

    if settings.use_legacy_ocr_parser_for_single_page_documents:
        legacy = settings.legacy
        backends[BackendId.PDF_SINGLE_PAGE_OCR] = PdfSinglePageOcrParser(
            ocr_engine,
            ocr_options_from(settings, timeout=legacy.ocr_timeout),
            ImageMagickConverter(
                ConversionOptions(
                    convert_binary=legacy.convert_binary,
                    density=legacy.density,
                    timeout=legacy.conversion_timeout,
                )
            ),
        )

    logger.debug(f"Built backends: {', '.join(b.value for b in backends)}")
    return MappingProxyType(backends)
