"""
Adaptive extraction policy.

Decides, per document, which backend produces the final text:

    START -> TYPE_DETECTED -> FIRST_PASS_DONE -> ACCEPTED -> DONE
    FIRST_PASS_DONE -> ESCALATING -> SECOND_PASS_DONE -> ACCEPTED -> DONE
    (any exception) -> FAILED

Non-PDF documents go through the generic parser once. PDFs get a cheap
text-layer pass first; when that pass yields too little text for a document
of non-trivial size, the stream is rewound and the document is OCR'd. The
first-pass outcome is then discarded whole; outcomes are never merged.

Usage:
    from docharvest.core.policy import ExtractionPolicy

    policy = ExtractionPolicy()
    with open("scan.pdf", "rb") as f:
        result = policy.process(f, document_id="scan.pdf")
    print(result.metadata["X-Parsed-By"])
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping, Optional

from docharvest.exceptions import DocHarvestError
from docharvest.logging import document_context

from .backends import BackendId, ParserBackend, build_backends
from .detection import TypeDetector
from .metadata import page_count_of, tag_provenance
from .ocr import OCREngine
from .result import ExtractionOutcome, ProcessingResult, assemble_result
from .stream import StreamBuffer, StreamSource

logger = logging.getLogger(__name__)

__all__ = ["ExtractionPolicy", "ExtractionRequest", "PolicyState"]

BackendFactory = Callable[..., Mapping[BackendId, ParserBackend]]


class PolicyState(str, Enum):
    START = "start"
    TYPE_DETECTED = "type_detected"
    FIRST_PASS_DONE = "first_pass_done"
    ESCALATING = "escalating"
    SECOND_PASS_DONE = "second_pass_done"
    ACCEPTED = "accepted"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ExtractionRequest:
    """A document stream plus its logical identifier (also used as a file name hint)."""
    source: StreamSource
    document_id: Optional[str] = None


class _Run:
    """State tracker for one process() call."""

    def __init__(self, document_id: Optional[str]):
        self.document_id = document_id
        self.label = document_id or "<stream>"
        self.state = PolicyState.START

    def advance(self, state: PolicyState, detail: str = "") -> None:
        logger.debug(
            f"{self.label}: {self.state.value} -> {state.value}"
            + (f" ({detail})" if detail else "")
        )
        self.state = state


class ExtractionPolicy:
    """
    Orchestrates type detection, backend selection and escalation.

    Thread-safe: concurrent process() calls share only the frozen settings
    and the currently published backend set. reset() publishes a new set
    without disturbing calls already in flight.
    """

    def __init__(
        self,
        settings=None,
        ocr_engine: Optional[OCREngine] = None,
        detector: Optional[TypeDetector] = None,
        backend_factory: BackendFactory = build_backends,
    ):
        """
        Args:
            settings: ExtractionSettings; defaults to get_settings()
            ocr_engine: Shared OCR engine; built from settings if omitted
            detector: Media type detector
            backend_factory: Callable(settings, ocr_engine) returning the
                             BackendId -> backend mapping
        """
        if settings is None:
            from docharvest.config import get_settings
            settings = get_settings()

        self.settings = settings
        self.detector = detector or TypeDetector()
        self._ocr_engine = ocr_engine or OCREngine(
            models_dir=settings.models_dir,
            language=settings.ocr_language,
        )
        self._backend_factory = backend_factory
        self._lock = threading.Lock()
        self._backends = backend_factory(settings, self._ocr_engine)

    @property
    def backends(self) -> Mapping[BackendId, ParserBackend]:
        """The currently published backend set."""
        with self._lock:
            return self._backends

    def reset(self) -> None:
        """Rebuild every backend from the settings and publish the new set."""
        backends = self._backend_factory(self.settings, self._ocr_engine)
        with self._lock:
            self._backends = backends
        logger.info(f"Re-initialized {len(backends)} backends")

    def process_request(self, request: ExtractionRequest) -> ProcessingResult:
        return self.process(request.source, request.document_id)

    def process(self, source: StreamSource, document_id: Optional[str] = None) -> ProcessingResult:
        """
        Extract text and metadata from ``source``.

        Never raises: every failure is logged and returned as a
        ProcessingResult with success=False.
        """
        backends = self.backends
        run = _Run(document_id)

        with document_context(document_id):
            buffer = None
            try:
                buffer = StreamBuffer.wrap(source, max_size=self.settings.max_document_size)
                outcome = self._extract(buffer, backends, run)
            except Exception as e:
                run.advance(PolicyState.FAILED, type(e).__name__)
                logger.error(f"Processing failed for {run.label}: {e}")
                return assemble_result(error=self._error_message(e), success=False)
            finally:
                if buffer is not None and buffer is not source:
                    buffer.close()

            result = assemble_result(outcome)
            run.advance(PolicyState.DONE)
            return result

    def is_sufficient(self, outcome: ExtractionOutcome) -> bool:
        """
        Whether a text-only pass is good enough to keep.

        Small files are accepted whatever their text yield; larger ones must
        produce at least pdf_min_doc_text_length bytes of text.
        """
        return (
            outcome.text_length >= self.settings.pdf_min_doc_text_length
            or outcome.bytes_consumed <= self.settings.pdf_min_doc_byte_size
        )

    def select_ocr_backend(
        self,
        backends: Mapping[BackendId, ParserBackend],
        page_count: Optional[int],
    ) -> ParserBackend:
        if (
            self.settings.use_legacy_ocr_parser_for_single_page_documents
            and page_count == 1
            and BackendId.PDF_SINGLE_PAGE_OCR in backends
        ):
            return backends[BackendId.PDF_SINGLE_PAGE_OCR]
        return backends[BackendId.PDF_OCR]

    def _extract(
        self,
        buffer: StreamBuffer,
        backends: Mapping[BackendId, ParserBackend],
        run: _Run,
    ) -> ExtractionOutcome:
        buffer.mark()
        media_type = self.detector.detect(buffer, run.document_id)
        run.advance(PolicyState.TYPE_DETECTED, str(media_type))

        if not media_type.is_pdf:
            outcome = self._parse(backends[BackendId.GENERIC], buffer, run)
            run.advance(PolicyState.FIRST_PASS_DONE)
            run.advance(PolicyState.ACCEPTED)
            return outcome

        buffer.reset()
        first = self._parse(backends[BackendId.PDF_TEXT_ONLY], buffer, run)
        run.advance(
            PolicyState.FIRST_PASS_DONE,
            f"text={first.text_length}B consumed={first.bytes_consumed}B",
        )

        if self.is_sufficient(first):
            run.advance(PolicyState.ACCEPTED)
            return first

        run.advance(PolicyState.ESCALATING)
        page_count = page_count_of(first.metadata)
        backend = self.select_ocr_backend(backends, page_count)
        logger.info(
            f"Escalating {run.label} to {backend.backend_id.value}: "
            f"{first.text_length} text bytes from {first.bytes_consumed} bytes read "
            f"(pages={page_count})"
        )

        buffer.reset()
        second = self._parse(backend, buffer, run)
        run.advance(PolicyState.SECOND_PASS_DONE)
        run.advance(PolicyState.ACCEPTED)
        return second

    @staticmethod
    def _parse(backend: ParserBackend, buffer: StreamBuffer, run: _Run) -> ExtractionOutcome:
        outcome = backend.parse(buffer, run.document_id)
        return ExtractionOutcome(
            text=outcome.text,
            metadata=tag_provenance(outcome.metadata, backend.backend_id),
            bytes_consumed=outcome.bytes_consumed,
        )

    @staticmethod
    def _error_message(error: Exception) -> str:
        if isinstance(error, DocHarvestError):
            return error.message
        return str(error) or type(error).__name__
