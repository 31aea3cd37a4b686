"""Tests for build_backends (settings -> backend set)."""

from unittest.mock import MagicMock

import pytest

from docharvest.config import ExtractionSettings, LegacyOcrSettings
from docharvest.core.backends import (
    BackendId,
    GenericParser,
    OcrStrategy,
    PdfOcrParser,
    PdfSinglePageOcrParser,
    PdfTextOnlyParser,
    build_backends,
)


class TestBuildBackends:

    def test_default_set(self):
        backends = build_backends(ExtractionSettings(), MagicMock())

        assert isinstance(backends[BackendId.GENERIC], GenericParser)
        assert isinstance(backends[BackendId.PDF_TEXT_ONLY], PdfTextOnlyParser)
        assert isinstance(backends[BackendId.PDF_OCR], PdfOcrParser)
        assert BackendId.PDF_SINGLE_PAGE_OCR not in backends

    def test_read_only(self):
        backends = build_backends(ExtractionSettings(), MagicMock())
        with pytest.raises(TypeError):
            backends[BackendId.GENERIC] = None

    def test_legacy_backend_when_enabled(self):
        settings = ExtractionSettings(
            use_legacy_ocr_parser_for_single_page_documents=True,
            ocr_timeout=300,
            legacy=LegacyOcrSettings(ocr_timeout=45, conversion_timeout=20, density=150, convert_binary="magick"),
        )
        legacy = build_backends(settings, MagicMock())[BackendId.PDF_SINGLE_PAGE_OCR]

        assert isinstance(legacy, PdfSinglePageOcrParser)
        assert legacy.ocr_options.timeout == 45
        assert legacy.converter.options.timeout == 20
        assert legacy.converter.options.density == 150
        assert legacy.converter.options.convert_binary == "magick"

    def test_only_generic_is_wired_for_recursion(self):
        backends = build_backends(ExtractionSettings(), MagicMock())
        generic = backends[BackendId.GENERIC]

        assert generic.embedded_parser is generic
        assert not hasattr(backends[BackendId.PDF_OCR], "embedded_parser")

    def test_ocr_settings_flow_to_backends(self):
        settings = ExtractionSettings(
            ocr_timeout=60,
            ocr_apply_rotation=True,
            ocr_enable_image_processing=True,
            ocr_language="fra",
            pdf_ocr_only_strategy=False,
        )
        backends = build_backends(settings, MagicMock())

        ocr = backends[BackendId.PDF_OCR]
        assert ocr.pdf_options.ocr_strategy == OcrStrategy.OCR_AND_TEXT
        assert ocr.ocr_options.timeout == 60
        assert ocr.ocr_options.apply_rotation is True
        assert ocr.ocr_options.enable_image_processing is True
        assert ocr.ocr_options.language == "fra"
        assert backends[BackendId.GENERIC].ocr_options == ocr.ocr_options

    def test_shared_ocr_engine(self):
        engine = MagicMock()
        settings = ExtractionSettings(use_legacy_ocr_parser_for_single_page_documents=True)
        backends = build_backends(settings, engine)

        assert backends[BackendId.GENERIC].ocr_engine is engine
        assert backends[BackendId.PDF_OCR].ocr_engine is engine
        assert backends[BackendId.PDF_SINGLE_PAGE_OCR].ocr_engine is engine
