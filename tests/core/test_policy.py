"""Tests for the adaptive extraction policy.

Tests cover:
- Non-PDF routing through the generic parser (and idempotence)
- The text-length / byte-size escalation boundary
- Stream replay for the second pass
- Legacy single-page routing
- Provenance tagging and failure results
- Backend reset / publication
"""

import io
import threading

import pytest

from conftest import (
    FakeBackend,
    NonSeekableStream,
    factory_for,
    fake_backend_set,
    make_pdf_bytes,
    make_zip,
)
from docharvest.config import ExtractionSettings
from docharvest.core.backends import BackendId, GenericParser
from docharvest.core.policy import ExtractionPolicy, ExtractionRequest, PolicyState
from docharvest.core.result import ERROR_PREFIX
from docharvest.exceptions import EncryptedDocumentError, ParseError

BACKEND_IDS = {b.value for b in BackendId}


def make_policy(settings=None, **overrides):
    backends = fake_backend_set(**overrides)
    policy = ExtractionPolicy(
        settings=settings or ExtractionSettings(),
        backend_factory=factory_for(backends),
    )
    return policy, backends


# =============================================================================
# NON-PDF ROUTING
# =============================================================================

class TestNonPdfRouting:
    """Non-PDF documents go through the generic parser exactly once."""

    def test_plain_text_uses_generic(self):
        policy, backends = make_policy()
        result = policy.process(b"hello world", document_id="note.txt")

        assert result.success is True
        assert result.metadata["X-Parsed-By"] == "GenericParser"
        assert len(backends[BackendId.GENERIC].seen) == 1
        assert backends[BackendId.PDF_TEXT_ONLY].seen == []
        assert backends[BackendId.PDF_OCR].seen == []

    def test_non_pdf_never_escalates(self):
        """A large non-PDF with almost no text is still accepted."""
        generic = FakeBackend(BackendId.GENERIC, text="", content_type="application/octet-stream")
        policy, backends = make_policy(generic=generic)

        result = policy.process(b"\x00\x01" * 50_000)

        assert result.success is True
        assert result.metadata["X-Parsed-By"] == "GenericParser"
        assert backends[BackendId.PDF_OCR].seen == []

    def test_generic_sees_whole_document(self):
        policy, backends = make_policy()
        policy.process(b"line one\nline two\n")
        assert backends[BackendId.GENERIC].seen == [b"line one\nline two\n"]

    def test_idempotent_with_real_generic_parser(self, settings):
        """Same document twice gives the same text and metadata keys."""
        generic = GenericParser()
        generic.wire_embedded_parser(generic)
        policy, _ = make_policy(settings, generic=generic)

        content = b"name,amount\nalice,10\nbob,20\n"
        first = policy.process(content, document_id="ledger.csv")
        second = policy.process(content, document_id="ledger.csv")

        assert first.success and second.success
        assert first.text == second.text
        assert first.text == "name | amount\nalice | 10\nbob | 20"
        assert set(first.metadata) == set(second.metadata)
        assert first.metadata["Content-Type"] == "text/csv"

    def test_zip_with_stray_mimetype_member_parsed_as_archive(self, settings):
        generic = GenericParser()
        generic.wire_embedded_parser(generic)
        policy, _ = make_policy(settings, generic=generic)

        content = make_zip({"notes/readme.txt": b"quarterly report body", "mimetype": b"text/plain"})
        result = policy.process(content, document_id="bundle.zip")

        assert result.success is True
        assert result.metadata["Content-Type"] == "application/zip"
        assert "quarterly report body" in result.text
        assert "PK\x03\x04" not in result.text


# =============================================================================
# ESCALATION BOUNDARY
# =============================================================================

class TestEscalation:
    """Accept iff text_bytes >= min_text_length OR bytes_consumed <= min_byte_size."""

    @pytest.fixture
    def thresholds(self):
        return ExtractionSettings(pdf_min_doc_text_length=100, pdf_min_doc_byte_size=10_000)

    def test_short_text_large_document_escalates(self, thresholds):
        text_only = FakeBackend(BackendId.PDF_TEXT_ONLY, text="a" * 99, page_count=4)
        policy, backends = make_policy(thresholds, pdf_text_only=text_only)

        result = policy.process(make_pdf_bytes(10_001))

        assert result.success is True
        assert result.metadata["X-Parsed-By"] == "PdfOcrParser"
        assert result.text == "ocr text"

    def test_consumed_exactly_min_byte_size_accepted(self, thresholds):
        text_only = FakeBackend(BackendId.PDF_TEXT_ONLY, text="a" * 99, page_count=4)
        policy, backends = make_policy(thresholds, pdf_text_only=text_only)

        result = policy.process(make_pdf_bytes(10_000))

        assert result.metadata["X-Parsed-By"] == "PdfTextOnlyParser"
        assert result.text == "a" * 99
        assert backends[BackendId.PDF_OCR].seen == []

    def test_enough_text_accepted(self, thresholds):
        text_only = FakeBackend(BackendId.PDF_TEXT_ONLY, text="a" * 100, page_count=4)
        policy, backends = make_policy(thresholds, pdf_text_only=text_only)

        result = policy.process(make_pdf_bytes(50_000))

        assert result.metadata["X-Parsed-By"] == "PdfTextOnlyParser"
        assert backends[BackendId.PDF_OCR].seen == []

    def test_text_length_counts_utf8_bytes(self, thresholds):
        """50 two-byte characters meet a 100-byte threshold."""
        text_only = FakeBackend(BackendId.PDF_TEXT_ONLY, text="é" * 50, page_count=4)
        policy, _ = make_policy(thresholds, pdf_text_only=text_only)

        result = policy.process(make_pdf_bytes(50_000))

        assert result.metadata["X-Parsed-By"] == "PdfTextOnlyParser"

    def test_first_pass_discarded_whole(self, thresholds):
        text_only = FakeBackend(BackendId.PDF_TEXT_ONLY, text="stub", page_count=2)
        ocr = FakeBackend(BackendId.PDF_OCR, text="recognized", page_count=7)
        policy, _ = make_policy(thresholds, pdf_text_only=text_only, pdf_ocr=ocr)

        result = policy.process(make_pdf_bytes(20_000))

        assert result.text == "recognized"
        assert "stub" not in result.text
        assert result.metadata["page-count"] == 7

    def test_is_sufficient_directly(self, thresholds):
        from docharvest.core.metadata import DocumentMetadata
        from docharvest.core.result import ExtractionOutcome

        policy, _ = make_policy(thresholds)
        meta = DocumentMetadata()
        assert policy.is_sufficient(ExtractionOutcome("x" * 100, meta, 1_000_000))
        assert policy.is_sufficient(ExtractionOutcome("", meta, 10_000))
        assert not policy.is_sufficient(ExtractionOutcome("x" * 99, meta, 10_001))


# =============================================================================
# REPLAY
# =============================================================================

class TestReplay:
    """The second pass observes the document from byte 0."""

    def test_ocr_backend_sees_original_bytes(self):
        document = make_pdf_bytes(30_000)
        text_only = FakeBackend(BackendId.PDF_TEXT_ONLY, text="", page_count=5)
        policy, backends = make_policy(pdf_text_only=text_only)

        policy.process(document)

        assert backends[BackendId.PDF_TEXT_ONLY].seen == [document]
        assert backends[BackendId.PDF_OCR].seen == [document]

    def test_non_seekable_source_is_spooled_and_replayed(self):
        document = make_pdf_bytes(30_000)
        text_only = FakeBackend(BackendId.PDF_TEXT_ONLY, text="", page_count=5)
        policy, backends = make_policy(pdf_text_only=text_only)

        result = policy.process(NonSeekableStream(document))

        assert result.success is True
        assert backends[BackendId.PDF_OCR].seen == [document]

    def test_replay_starts_at_caller_position(self):
        """A seekable source already advanced by the caller is replayed from there."""
        document = make_pdf_bytes(30_000)
        source = io.BytesIO(b"JUNK" + document)
        source.seek(4)
        text_only = FakeBackend(BackendId.PDF_TEXT_ONLY, text="", page_count=5)
        policy, backends = make_policy(pdf_text_only=text_only)

        policy.process(source)

        assert backends[BackendId.PDF_OCR].seen == [document]
        assert source.closed is False

    def test_oversized_non_seekable_source_fails(self):
        settings = ExtractionSettings(max_document_size=1024)
        policy, _ = make_policy(settings)

        result = policy.process(NonSeekableStream(make_pdf_bytes(4096)))

        assert result.success is False
        assert "maximum buffered size" in result.error


# =============================================================================
# LEGACY SINGLE-PAGE ROUTING
# =============================================================================

class TestLegacyRouting:
    """Single-page documents go to the legacy backend only when enabled."""

    def _settings(self, enabled: bool) -> ExtractionSettings:
        return ExtractionSettings(use_legacy_ocr_parser_for_single_page_documents=enabled)

    def test_single_page_with_legacy_enabled(self):
        text_only = FakeBackend(BackendId.PDF_TEXT_ONLY, text="", page_count=1)
        policy, backends = make_policy(self._settings(True), pdf_text_only=text_only)

        result = policy.process(make_pdf_bytes(40_000))

        assert result.metadata["X-Parsed-By"] == "PdfSinglePageOcrParser"
        assert result.text == "legacy ocr"
        assert backends[BackendId.PDF_OCR].seen == []

    def test_multi_page_with_legacy_enabled(self):
        text_only = FakeBackend(BackendId.PDF_TEXT_ONLY, text="", page_count=2)
        policy, backends = make_policy(self._settings(True), pdf_text_only=text_only)

        result = policy.process(make_pdf_bytes(40_000))

        assert result.metadata["X-Parsed-By"] == "PdfOcrParser"
        assert backends[BackendId.PDF_SINGLE_PAGE_OCR].seen == []

    def test_single_page_with_legacy_disabled(self):
        text_only = FakeBackend(BackendId.PDF_TEXT_ONLY, text="", page_count=1)
        policy, backends = make_policy(self._settings(False), pdf_text_only=text_only)

        result = policy.process(make_pdf_bytes(40_000))

        assert result.metadata["X-Parsed-By"] == "PdfOcrParser"

    def test_unknown_page_count_uses_ocr(self):
        text_only = FakeBackend(BackendId.PDF_TEXT_ONLY, text="", page_count=None)
        policy, _ = make_policy(self._settings(True), pdf_text_only=text_only)

        result = policy.process(make_pdf_bytes(40_000))

        assert result.metadata["X-Parsed-By"] == "PdfOcrParser"


# =============================================================================
# PROVENANCE & RESULTS
# =============================================================================

class TestProvenance:
    """Every success names exactly one backend."""

    @pytest.mark.parametrize("content,text_only_text", [
        (b"plain text", "unused"),
        (make_pdf_bytes(500), ""),
        (make_pdf_bytes(50_000), "x" * 500),
        (make_pdf_bytes(50_000), ""),
    ])
    def test_exactly_one_backend(self, content, text_only_text):
        text_only = FakeBackend(BackendId.PDF_TEXT_ONLY, text=text_only_text, page_count=3)
        policy, _ = make_policy(pdf_text_only=text_only)

        result = policy.process(content)

        assert result.success is True
        assert result.metadata["X-Parsed-By"] in BACKEND_IDS

    def test_success_has_timestamp(self):
        policy, _ = make_policy()
        result = policy.process(b"text")
        assert result.timestamp is not None
        assert result.timestamp.tzinfo is not None

    def test_backend_metadata_passes_through(self):
        policy, _ = make_policy()
        result = policy.process(b"text", document_id="doc-7")
        assert result.metadata["fake:document-id"] == "doc-7"
        assert result.metadata["Content-Type"] == "text/plain"


class TestFailures:
    """Exceptions become failed results at the process boundary."""

    def test_encrypted_pdf(self):
        text_only = FakeBackend(
            BackendId.PDF_TEXT_ONLY,
            error=EncryptedDocumentError(backend="PdfTextOnlyParser"),
        )
        policy, _ = make_policy(pdf_text_only=text_only)

        result = policy.process(make_pdf_bytes(2_000))

        assert result.success is False
        assert "document is encrypted" in result.error
        assert result.error.startswith(ERROR_PREFIX)
        assert result.timestamp is None
        assert result.text is None
        assert result.metadata is None

    def test_encrypted_pdf_with_real_pymupdf(self, settings):
        import fitz
        doc = fitz.open()
        doc.new_page()
        content = doc.tobytes(
            encryption=fitz.PDF_ENCRYPT_AES_256,
            owner_pw="owner-secret",
            user_pw="user-secret",
        )
        doc.close()

        result = ExtractionPolicy(settings=settings).process(content, document_id="locked.pdf")

        assert result.success is False
        assert "document is encrypted" in result.error
        assert result.timestamp is None

    def test_second_pass_failure(self):
        text_only = FakeBackend(BackendId.PDF_TEXT_ONLY, text="", page_count=3)
        ocr = FakeBackend(BackendId.PDF_OCR, error=ParseError("OCR timed out after 300s"))
        policy, _ = make_policy(pdf_text_only=text_only, pdf_ocr=ocr)

        result = policy.process(make_pdf_bytes(40_000))

        assert result.success is False
        assert result.error == f"{ERROR_PREFIX}OCR timed out after 300s"

    def test_unexpected_exception(self):
        generic = FakeBackend(BackendId.GENERIC, error=RuntimeError("disk on fire"))
        policy, _ = make_policy(generic=generic)

        result = policy.process(b"hello")

        assert result.success is False
        assert result.error == f"{ERROR_PREFIX}disk on fire"
        assert result.timestamp is None

    def test_failure_serializes_null_timestamp(self):
        generic = FakeBackend(BackendId.GENERIC, error=ValueError("bad"))
        policy, _ = make_policy(generic=generic)

        data = policy.process(b"hello").to_dict()

        assert data["success"] is False
        assert data["timestamp"] is None


# =============================================================================
# LIFECYCLE
# =============================================================================

class TestLifecycle:
    """reset() rebuilds backends from settings and publishes them."""

    def test_reset_publishes_new_backends(self, settings):
        built = []

        def factory(s, engine):
            backends = fake_backend_set()
            built.append(backends)
            return backends

        policy = ExtractionPolicy(settings=settings, backend_factory=factory)
        before = policy.backends
        policy.reset()

        assert len(built) == 2
        assert policy.backends is not before
        assert policy.backends[BackendId.GENERIC] is built[1][BackendId.GENERIC]

    def test_in_flight_call_keeps_its_backend_set(self, settings):
        """A reset during processing does not switch backends mid-document."""
        started = threading.Event()
        release = threading.Event()

        class BlockingTextOnly(FakeBackend):
            def parse(self, buffer, document_id=None):
                started.set()
                release.wait(5)
                return super().parse(buffer, document_id)

        first_set = fake_backend_set(
            pdf_text_only=BlockingTextOnly(BackendId.PDF_TEXT_ONLY, text="", page_count=2)
        )
        second_set = fake_backend_set()
        sets = iter([first_set, second_set])
        policy = ExtractionPolicy(settings=settings, backend_factory=lambda s, e: next(sets))

        results = []
        worker = threading.Thread(target=lambda: results.append(policy.process(make_pdf_bytes(40_000))))
        worker.start()
        assert started.wait(5)
        policy.reset()
        release.set()
        worker.join(5)

        assert results[0].success is True
        assert len(first_set[BackendId.PDF_OCR].seen) == 1
        assert second_set[BackendId.PDF_OCR].seen == []

    def test_default_factory_builds_backends(self, settings):
        policy = ExtractionPolicy(settings=settings)
        assert BackendId.GENERIC in policy.backends
        assert BackendId.PDF_SINGLE_PAGE_OCR not in policy.backends

    def test_process_request(self):
        policy, _ = make_policy()
        result = policy.process_request(ExtractionRequest(source=b"hi", document_id="a.txt"))
        assert result.success is True
        assert result.metadata["fake:document-id"] == "a.txt"

    def test_states_cover_lifecycle(self):
        names = {s.name for s in PolicyState}
        assert {"START", "TYPE_DETECTED", "FIRST_PASS_DONE", "ESCALATING",
                "SECOND_PASS_DONE", "ACCEPTED", "DONE", "FAILED"} <= names
